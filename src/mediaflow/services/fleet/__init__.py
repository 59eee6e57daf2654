"""GPU fleet lifecycle management."""

from mediaflow.services.fleet.controller import FleetController
from mediaflow.services.fleet.provider_client import FleetProviderClient

__all__ = ["FleetController", "FleetProviderClient"]
