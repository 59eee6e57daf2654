"""Wallet repository for the credit ledger.

Every balance mutation is a single guarded ``UPDATE ... RETURNING`` so the
database evaluates the invariant and applies the change in one statement.
Concurrent callers on the same wallet serialize on the row lock taken by
the UPDATE; callers on different wallets never contend.
"""

from typing import NamedTuple
from uuid import UUID, uuid4

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mediaflow.core.database import dialect_insert
from mediaflow.core.timezone import utcnow
from mediaflow.models.wallet import Wallet


class WalletBalance(NamedTuple):
    """Post-update wallet snapshot returned by mutating statements."""

    wallet_id: UUID
    balance_credits: int
    reserved_credits: int

    @property
    def available_credits(self) -> int:
        return self.balance_credits - self.reserved_credits


class WalletRepository:
    """Repository for Wallet entities.

    Methods:
    - get_by_user: Fresh read of a user's wallet
    - get_or_create: Race-safe lazy creation (INSERT ... ON CONFLICT DO NOTHING)
    - reserve / release / debit / credit: Atomic guarded balance updates
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_user(self, user_id: str) -> Wallet | None:
        """Retrieve wallet by user ID.

        Uses populate_existing so values written by the atomic UPDATE
        statements below are visible even if the wallet is already loaded.

        Args:
            user_id: Owner of the wallet

        Returns:
            Wallet if found, None otherwise
        """
        result = await self.session.execute(
            select(Wallet)
            .where(Wallet.user_id == user_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: str) -> Wallet:
        """Return the user's wallet, creating an empty one on first access.

        Two concurrent first-time callers both issue the INSERT; the unique
        constraint on user_id makes one of them a no-op and both read the
        same row afterwards.

        Args:
            user_id: Owner of the wallet

        Returns:
            Existing or newly created wallet
        """
        wallet = await self.get_by_user(user_id)
        if wallet is not None:
            return wallet

        now = utcnow()
        stmt = dialect_insert(self.session, Wallet).values(
            id=uuid4(),
            user_id=user_id,
            balance_credits=0,
            reserved_credits=0,
            created_at=now,
            updated_at=now,
        )
        await self.session.execute(stmt.on_conflict_do_nothing(index_elements=["user_id"]))

        wallet = await self.get_by_user(user_id)
        if wallet is None:
            raise RuntimeError(f"Wallet for user {user_id} missing after insert")
        return wallet

    async def _apply(self, user_id: str, *conditions, **values) -> WalletBalance | None:
        stmt = (
            update(Wallet)
            .where(Wallet.user_id == user_id, *conditions)  # type: ignore[arg-type]
            .values(updated_at=utcnow(), **values)
            .returning(Wallet.id, Wallet.balance_credits, Wallet.reserved_credits)  # type: ignore[arg-type]
            .execution_options(synchronize_session=False)
        )
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return WalletBalance(row[0], row[1], row[2])

    async def reserve(self, user_id: str, amount: int) -> WalletBalance | None:
        """Increase reserved credits if available credits cover the amount.

        Query:
            UPDATE wallets SET reserved_credits = reserved_credits + :amount
            WHERE user_id = :user_id
              AND balance_credits - reserved_credits >= :amount

        Returns:
            New balance snapshot, or None if the wallet is missing or short
        """
        return await self._apply(
            user_id,
            Wallet.balance_credits - Wallet.reserved_credits >= amount,
            reserved_credits=Wallet.reserved_credits + amount,
        )

    async def release(self, user_id: str, amount: int) -> WalletBalance | None:
        """Decrease reserved credits, floored at zero.

        Returns:
            New balance snapshot, or None if the wallet is missing
        """
        return await self._apply(
            user_id,
            reserved_credits=case(
                (Wallet.reserved_credits > amount, Wallet.reserved_credits - amount),
                else_=0,
            ),
        )

    async def debit(self, user_id: str, amount: int) -> WalletBalance | None:
        """Spend credits, consuming up to ``amount`` of the reservation.

        balance -= amount and reserved -= min(reserved, amount), guarded by
        balance >= amount so reserved can never exceed balance afterwards.

        Returns:
            New balance snapshot, or None if the wallet is missing or short
        """
        return await self._apply(
            user_id,
            Wallet.balance_credits >= amount,
            balance_credits=Wallet.balance_credits - amount,
            reserved_credits=case(
                (Wallet.reserved_credits > amount, Wallet.reserved_credits - amount),
                else_=0,
            ),
        )

    async def credit(self, user_id: str, amount: int) -> WalletBalance | None:
        """Add credits to the balance.

        Returns:
            New balance snapshot, or None if the wallet is missing
        """
        return await self._apply(user_id, balance_credits=Wallet.balance_credits + amount)
