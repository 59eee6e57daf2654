"""Domain entities.

Table models are imported here to ensure they're registered with SQLModel
metadata for Alembic and ``create_all``.
"""

from mediaflow.models.fleet import FleetStatus
from mediaflow.models.job import (
    InvalidStateTransition,
    Job,
    JobRequirements,
    JobStatus,
    Lane,
    OutputFile,
    ToolType,
)
from mediaflow.models.voucher import Voucher, VoucherType, VoucherUsage
from mediaflow.models.wallet import TransactionType, Wallet, WalletTransaction

__all__ = [
    "FleetStatus",
    "InvalidStateTransition",
    "Job",
    "JobRequirements",
    "JobStatus",
    "Lane",
    "OutputFile",
    "ToolType",
    "TransactionType",
    "Voucher",
    "VoucherType",
    "VoucherUsage",
    "Wallet",
    "WalletTransaction",
]
