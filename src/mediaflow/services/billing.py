"""Wallet ledger: credit reservations, debits, grants and voucher redemption.

Each credit-moving operation runs inside one UnitOfWork: the guarded
wallet UPDATE and the ledger INSERT commit together or not at all.
"""

import math
from typing import Callable

import structlog

from mediaflow.core.timezone import ensure_utc, utcnow
from mediaflow.models.job import ToolType
from mediaflow.models.voucher import VoucherType
from mediaflow.models.wallet import TransactionType, Wallet, WalletTransaction
from mediaflow.services.exceptions import (
    InsufficientCredits,
    InvalidVoucher,
    VoucherAlreadyUsed,
    VoucherExpired,
    VoucherLimitReached,
    VoucherNotYetValid,
    WalletNotFound,
)
from mediaflow.uow import UnitOfWork

logger = structlog.get_logger(__name__)

BASE_COST_CREDITS = 10
CREDITS_PER_MB = 2
CREDITS_PER_SECOND = 0.5
GPU_MULTIPLIER = 3


def estimate_cost(
    tool_type: ToolType | str,
    file_size_bytes: int,
    duration_seconds: float,
    requires_gpu: bool,
) -> int:
    """Estimate job cost in credits.

    ceil((10 + size_mb * 2 + duration_seconds * 0.5) * (3 if gpu else 1))

    ``tool_type`` does not change the price today; it is accepted so
    per-tool pricing can be introduced without touching callers.
    """
    size_mb = file_size_bytes / (1024 * 1024)
    base = BASE_COST_CREDITS + size_mb * CREDITS_PER_MB + duration_seconds * CREDITS_PER_SECOND
    multiplier = GPU_MULTIPLIER if requires_gpu else 1
    return math.ceil(base * multiplier)


def _require_positive(amount: int) -> None:
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")


class BillingService:
    """Wallet ledger operations.

    Reservations are holds, not ledger events: reserve/release write no
    transaction. Debits and credits each append exactly one transaction
    carrying the post-operation balance.
    """

    def __init__(self, uow_factory: Callable):
        """Initialize billing service.

        Args:
            uow_factory: Factory returned by create_uow_factory()
        """
        self.uow_factory = uow_factory

    async def get_wallet(self, user_id: str) -> Wallet | None:
        async with await self.uow_factory() as uow:
            return await uow.wallets.get_by_user(user_id)

    async def get_or_create_wallet(self, user_id: str) -> Wallet:
        """Return the user's wallet, creating an empty one on first access."""
        async with await self.uow_factory() as uow:
            return await uow.wallets.get_or_create(user_id)

    async def get_available_credits(self, user_id: str) -> int:
        wallet = await self.get_wallet(user_id)
        return wallet.available_credits if wallet else 0

    async def reserve_credits(self, user_id: str, amount: int) -> bool:
        """Hold credits for an in-flight job.

        Returns:
            True if reserved, False if available credits are short
            (or the user has no wallet)
        """
        _require_positive(amount)
        async with await self.uow_factory() as uow:
            balance = await uow.wallets.reserve(user_id, amount)

        if balance is None:
            logger.info("wallet.reserve.denied", user_id=user_id, amount=amount)
            return False

        logger.info(
            "wallet.reserved",
            user_id=user_id,
            amount=amount,
            reserved_credits=balance.reserved_credits,
            available_credits=balance.available_credits,
        )
        return True

    async def require_reservation(self, user_id: str, amount: int) -> None:
        """Reserve credits or raise.

        Raises:
            InsufficientCredits: If available credits do not cover ``amount``
        """
        if not await self.reserve_credits(user_id, amount):
            raise InsufficientCredits(user_id, amount, await self.get_available_credits(user_id))

    async def release_credits(self, user_id: str, amount: int) -> None:
        """Release a hold. Over-release floors reserved credits at zero."""
        if amount <= 0:
            return
        async with await self.uow_factory() as uow:
            balance = await uow.wallets.release(user_id, amount)

        if balance is None:
            logger.warning("wallet.release.missing", user_id=user_id, amount=amount)
            return
        logger.info(
            "wallet.released",
            user_id=user_id,
            amount=amount,
            reserved_credits=balance.reserved_credits,
        )

    async def deduct_credits(
        self,
        user_id: str,
        amount: int,
        reason: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
    ) -> WalletTransaction:
        """Spend credits and consume up to ``amount`` of the reservation.

        Never creates a wallet.

        Returns:
            The debit transaction

        Raises:
            WalletNotFound: If the user has no wallet
            InsufficientCredits: If the balance is below ``amount``
        """
        _require_positive(amount)
        async with await self.uow_factory() as uow:
            balance = await uow.wallets.debit(user_id, amount)
            if balance is None:
                wallet = await uow.wallets.get_by_user(user_id)
                if wallet is None:
                    raise WalletNotFound(user_id)
                raise InsufficientCredits(user_id, amount, wallet.balance_credits)

            transaction = await uow.wallet_transactions.add(
                WalletTransaction(
                    wallet_id=balance.wallet_id,
                    user_id=user_id,
                    type=TransactionType.DEBIT,
                    amount=amount,
                    balance_after=balance.balance_credits,
                    reason=reason,
                    description=reason,
                    reference_type=reference_type,
                    reference_id=reference_id,
                )
            )

        logger.info(
            "wallet.debited",
            user_id=user_id,
            amount=amount,
            balance_after=balance.balance_credits,
            reserved_credits=balance.reserved_credits,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        return transaction

    async def add_credits(
        self,
        user_id: str,
        amount: int,
        reason: str,
        admin_id: str | None = None,
        admin_note: str | None = None,
        receipt_url: str | None = None,
    ) -> WalletTransaction:
        """Grant credits, creating the wallet if needed.

        Returns:
            The credit transaction
        """
        _require_positive(amount)
        async with await self.uow_factory() as uow:
            transaction = await self._add_credits(
                uow,
                user_id,
                amount,
                reason,
                admin_id=admin_id,
                admin_note=admin_note,
                receipt_url=receipt_url,
            )

        logger.info(
            "wallet.credited",
            user_id=user_id,
            amount=amount,
            balance_after=transaction.balance_after,
            admin_id=admin_id,
        )
        return transaction

    async def _add_credits(
        self,
        uow: UnitOfWork,
        user_id: str,
        amount: int,
        reason: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
        admin_id: str | None = None,
        admin_note: str | None = None,
        receipt_url: str | None = None,
    ) -> WalletTransaction:
        await uow.wallets.get_or_create(user_id)
        balance = await uow.wallets.credit(user_id, amount)
        if balance is None:
            raise WalletNotFound(user_id)

        return await uow.wallet_transactions.add(
            WalletTransaction(
                wallet_id=balance.wallet_id,
                user_id=user_id,
                type=TransactionType.CREDIT,
                amount=amount,
                balance_after=balance.balance_credits,
                reason=reason,
                description=reason,
                reference_type=reference_type,
                reference_id=reference_id,
                admin_id=admin_id,
                admin_note=admin_note,
                receipt_url=receipt_url,
            )
        )

    async def apply_voucher(self, user_id: str, code: str) -> int:
        """Redeem a voucher code for a user.

        Workflow (single transaction, voucher row locked):
        1. Load active voucher by code
        2. Check validity window, prior redemption by this user, usage limit
        3. Insert usage record (unique per voucher and user)
        4. Increment used_count (guarded by max_uses)
        5. Credit the wallet for credit vouchers

        Returns:
            Credits added (0 for non-credit vouchers)

        Raises:
            InvalidVoucher: Unknown or inactive code
            VoucherNotYetValid: Before valid_from
            VoucherExpired: After valid_until
            VoucherLimitReached: used_count >= max_uses
            VoucherAlreadyUsed: User already redeemed this voucher
        """
        async with await self.uow_factory() as uow:
            voucher = await uow.vouchers.get_active_by_code(code, for_update=True)
            if voucher is None:
                raise InvalidVoucher(f"Invalid voucher code: {code}")

            now = utcnow()
            if now < ensure_utc(voucher.valid_from):
                raise VoucherNotYetValid(f"Voucher {code} is not yet valid")
            if voucher.valid_until is not None and now > ensure_utc(voucher.valid_until):
                raise VoucherExpired(f"Voucher {code} expired")
            if await uow.vouchers.has_usage(voucher.id, user_id):
                raise VoucherAlreadyUsed(f"Voucher {code} already used")
            if voucher.max_uses is not None and voucher.used_count >= voucher.max_uses:
                raise VoucherLimitReached(f"Voucher {code} usage limit reached")

            if not await uow.vouchers.add_usage(voucher.id, user_id):
                raise VoucherAlreadyUsed(f"Voucher {code} already used")

            used_count = await uow.vouchers.increment_used_count(voucher.id)
            if used_count is None:
                raise VoucherLimitReached(f"Voucher {code} usage limit reached")

            credits_added = 0
            if voucher.type == VoucherType.CREDITS and voucher.value > 0:
                credits_added = voucher.value
                await self._add_credits(
                    uow,
                    user_id,
                    credits_added,
                    f"Voucher: {code}",
                    reference_type="voucher",
                    reference_id=str(voucher.id),
                )

        logger.info(
            "voucher.applied",
            user_id=user_id,
            code=code,
            credits_added=credits_added,
            used_count=used_count,
        )
        return credits_added

    async def list_transactions(self, user_id: str, limit: int = 50) -> list[WalletTransaction]:
        async with await self.uow_factory() as uow:
            return await uow.wallet_transactions.list_by_user(user_id, limit=limit)
