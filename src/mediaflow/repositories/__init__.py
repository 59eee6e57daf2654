"""Repository layer for the wallet ledger.

Provides data access abstractions for relational entities.
No base classes - each repository is self-contained.
"""

from mediaflow.repositories.voucher import VoucherRepository
from mediaflow.repositories.wallet import WalletBalance, WalletRepository
from mediaflow.repositories.wallet_transaction import WalletTransactionRepository

__all__ = [
    "VoucherRepository",
    "WalletBalance",
    "WalletRepository",
    "WalletTransactionRepository",
]
