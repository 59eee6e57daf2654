"""Wallet and WalletTransaction entities - per-user credit ledger."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Column, DateTime
from sqlmodel import Field, SQLModel

from mediaflow.core.timezone import utcnow


class TransactionType(str, Enum):
    """Direction of a ledger entry."""

    CREDIT = "credit"
    DEBIT = "debit"


class Wallet(SQLModel, table=True):
    """Wallet holds a user's credit balance and the credits reserved for in-flight jobs."""

    __tablename__ = "wallets"  # type: ignore[assignment]
    __table_args__ = (
        CheckConstraint("reserved_credits >= 0", name="ck_wallets_reserved_non_negative"),
        CheckConstraint(
            "reserved_credits <= balance_credits", name="ck_wallets_reserved_within_balance"
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(max_length=255, unique=True, index=True)
    balance_credits: int = Field(default=0)
    reserved_credits: int = Field(default=0)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    @property
    def available_credits(self) -> int:
        """Credits that can still be reserved or spent."""
        return self.balance_credits - self.reserved_credits


class WalletTransaction(SQLModel, table=True):
    """Immutable ledger entry. Rows are only ever inserted."""

    __tablename__ = "wallet_transactions"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    wallet_id: UUID = Field(foreign_key="wallets.id", index=True)
    user_id: str = Field(max_length=255, index=True)
    type: TransactionType
    amount: int
    balance_after: int
    reason: str = Field(max_length=500)
    description: Optional[str] = Field(default=None)
    reference_type: Optional[str] = Field(default=None, max_length=50)
    reference_id: Optional[str] = Field(default=None, max_length=255)
    admin_id: Optional[str] = Field(default=None, max_length=255)
    admin_note: Optional[str] = Field(default=None)
    receipt_url: Optional[str] = Field(default=None)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
