"""GPU fleet lifecycle status."""

from enum import Enum


class FleetStatus(str, Enum):
    """Shared status of the rented GPU fleet.

    stopped → starting → running → stopping → stopped, plus starting → stopped
    when a start attempt fails.
    """

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
