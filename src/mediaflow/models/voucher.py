"""Voucher and VoucherUsage entities - redeemable credit codes."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from mediaflow.core.timezone import utcnow


class VoucherType(str, Enum):
    """Voucher kinds. Only credit vouchers move wallet balance."""

    CREDITS = "credits"
    DISCOUNT_PERCENT = "discount_percent"
    DISCOUNT_FIXED = "discount_fixed"


class Voucher(SQLModel, table=True):
    """Voucher is a code redeemable once per user within its validity window."""

    __tablename__ = "vouchers"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    code: str = Field(max_length=64, unique=True, index=True)
    type: VoucherType = Field(default=VoucherType.CREDITS)
    value: int = Field(ge=0)
    max_uses: Optional[int] = Field(default=None, ge=1)
    used_count: int = Field(default=0, ge=0)
    is_active: bool = Field(default=True)
    valid_from: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    valid_until: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class VoucherUsage(SQLModel, table=True):
    """One row per (voucher, user) redemption."""

    __tablename__ = "voucher_usage"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("voucher_id", "user_id", name="uq_voucher_usage_user"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    voucher_id: UUID = Field(foreign_key="vouchers.id", index=True)
    user_id: str = Field(max_length=255, index=True)
    used_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
