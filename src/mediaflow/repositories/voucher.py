"""Voucher repository for redeemable credit codes."""

from uuid import UUID, uuid4

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mediaflow.core.database import dialect_insert
from mediaflow.core.timezone import utcnow
from mediaflow.models.voucher import Voucher, VoucherUsage


class VoucherRepository:
    """Repository for Voucher and VoucherUsage entities.

    The (voucher_id, user_id) unique constraint on voucher_usage is the
    enforcement point for single redemption per user.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, voucher: Voucher) -> Voucher:
        """Persist new voucher."""
        self.session.add(voucher)
        await self.session.flush()
        return voucher

    async def get_active_by_code(self, code: str, for_update: bool = False) -> Voucher | None:
        """Retrieve an active voucher by code.

        Args:
            code: Voucher code as entered by the user
            for_update: Lock the voucher row until the transaction ends

        Returns:
            Voucher if found and active, None otherwise
        """
        stmt = (
            select(Voucher)
            .where(Voucher.code == code, Voucher.is_active.is_(True))  # type: ignore[arg-type,attr-defined]
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def has_usage(self, voucher_id: UUID, user_id: str) -> bool:
        """Check whether the user already redeemed the voucher."""
        result = await self.session.execute(
            select(VoucherUsage.id).where(
                VoucherUsage.voucher_id == voucher_id,  # type: ignore[arg-type]
                VoucherUsage.user_id == user_id,  # type: ignore[arg-type]
            )
        )
        return result.first() is not None

    async def add_usage(self, voucher_id: UUID, user_id: str) -> bool:
        """Record a redemption.

        Query:
            INSERT INTO voucher_usage (...) VALUES (...)
            ON CONFLICT (voucher_id, user_id) DO NOTHING

        Returns:
            True if a usage row was inserted, False if one already existed
        """
        stmt = dialect_insert(self.session, VoucherUsage).values(
            id=uuid4(),
            voucher_id=voucher_id,
            user_id=user_id,
            used_at=utcnow(),
        )
        result = await self.session.execute(
            stmt.on_conflict_do_nothing(index_elements=["voucher_id", "user_id"])
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def increment_used_count(self, voucher_id: UUID) -> int | None:
        """Increment used_count unless max_uses is already reached.

        Returns:
            New used_count, or None if the limit was reached
        """
        stmt = (
            update(Voucher)
            .where(
                Voucher.id == voucher_id,  # type: ignore[arg-type]
                or_(
                    Voucher.max_uses.is_(None),  # type: ignore[union-attr]
                    Voucher.used_count < Voucher.max_uses,  # type: ignore[operator]
                ),
            )
            .values(used_count=Voucher.used_count + 1)
            .returning(Voucher.used_count)  # type: ignore[arg-type]
            .execution_options(synchronize_session=False)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()
