"""CLI command for granting credits to a user's wallet.

Usage:
    python -m mediaflow.cli grant-credits USER_ID AMOUNT --reason TEXT [OPTIONS]

Examples:
    # Manual top-up after a bank transfer
    python -m mediaflow.cli grant-credits user-42 500 --reason "Bank transfer" \\
        --admin-id ops-1 --receipt-url https://example.com/receipts/1001

    # Redeem a voucher on behalf of a user
    python -m mediaflow.cli grant-credits user-42 --voucher WELCOME10
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from mediaflow.core import timezone  # noqa: F401
from mediaflow.core.config import Settings, configure_logging
from mediaflow.core.database import setup_db_session
from mediaflow.services.billing import BillingService
from mediaflow.services.exceptions import BillingError
from mediaflow.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        prog="mediaflow.cli grant-credits",
        description="Add credits to a user's wallet (creates the wallet if needed)",
    )
    parser.add_argument("user_id", help="User to credit")
    parser.add_argument("amount", type=int, nargs="?", help="Credits to add (positive integer)")
    parser.add_argument("--reason", default="Manual credit grant", help="Ledger reason")
    parser.add_argument("--admin-id", help="Operator performing the grant")
    parser.add_argument("--admin-note", help="Free-form operator note")
    parser.add_argument("--receipt-url", help="Link to the payment receipt")
    parser.add_argument("--voucher", help="Redeem this voucher code instead of a fixed amount")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    args = parser.parse_args(argv)
    if args.voucher is None and args.amount is None:
        parser.error("AMOUNT is required unless --voucher is given")
    if args.amount is not None and args.amount <= 0:
        parser.error("AMOUNT must be positive")
    return args


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    billing = BillingService(create_uow_factory(session_factory))

    try:
        if args.voucher:
            credits_added = await billing.apply_voucher(args.user_id, args.voucher)
        else:
            transaction = await billing.add_credits(
                args.user_id,
                args.amount,
                args.reason,
                admin_id=args.admin_id,
                admin_note=args.admin_note,
                receipt_url=args.receipt_url,
            )
            credits_added = transaction.amount

        available = await billing.get_available_credits(args.user_id)
        print(f"Added {credits_added} credits to {args.user_id}; available: {available}")
        return 0

    except BillingError as e:
        logger.error("cli.billing_error", error=str(e), error_type=type(e).__name__)
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        return 130

    except Exception as e:
        logger.error("cli.unexpected_error", error=str(e), error_type=type(e).__name__)
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    finally:
        await session_factory.kw["bind"].dispose()


def main(argv: list[str] | None = None) -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main(argv)))


if __name__ == "__main__":
    main()
