"""WalletTransaction repository for the append-only credit ledger."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mediaflow.models.wallet import WalletTransaction


class WalletTransactionRepository:
    """Repository for WalletTransaction entities.

    Entries are only inserted; there are no update or delete methods.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, transaction: WalletTransaction) -> WalletTransaction:
        """Append ledger entry.

        Args:
            transaction: WalletTransaction entity to persist

        Returns:
            Persisted entry with generated ID
        """
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def list_by_user(self, user_id: str, limit: int = 50) -> list[WalletTransaction]:
        """Retrieve a user's most recent ledger entries (newest first)."""
        result = await self.session.execute(
            select(WalletTransaction)
            .where(WalletTransaction.user_id == user_id)  # type: ignore[arg-type]
            .order_by(WalletTransaction.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_by_reference(
        self, reference_type: str, reference_id: str
    ) -> list[WalletTransaction]:
        """Retrieve entries linked to a job or voucher (oldest first)."""
        result = await self.session.execute(
            select(WalletTransaction)
            .where(
                WalletTransaction.reference_type == reference_type,  # type: ignore[arg-type]
                WalletTransaction.reference_id == reference_id,  # type: ignore[arg-type]
            )
            .order_by(WalletTransaction.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
