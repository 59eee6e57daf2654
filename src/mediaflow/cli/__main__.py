"""CLI entry point for mediaflow.cli module.

Enables execution via: python -m mediaflow.cli <command> [OPTIONS]

Commands:
    run            Run the fleet controller and worker pollers without the API
    grant-credits  Add credits to a user's wallet
    fleet-status   Show GPU fleet status and queue depths
    job-status     Show a job's status, progress and error message
"""

import sys

from mediaflow.cli import fleet_status, grant_credits, job_status, run_workers

COMMANDS = {
    "run": run_workers.main,
    "grant-credits": grant_credits.main,
    "fleet-status": fleet_status.main,
    "job-status": job_status.main,
}


def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    if not argv or argv[0] not in COMMANDS:
        print(__doc__, file=sys.stderr)
        sys.exit(2)
    COMMANDS[argv[0]](argv[1:])


if __name__ == "__main__":
    main()
