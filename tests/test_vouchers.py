"""Voucher redemption tests.

Tests focus on:
- Single use per user (usage record is the enforcement point)
- Usage limit across users
- Validity window and inactive codes
- Non-credit vouchers record usage without moving credits
"""

from datetime import timedelta

import pytest

from mediaflow.core.timezone import utcnow
from mediaflow.models.voucher import Voucher, VoucherType
from mediaflow.services.exceptions import (
    InvalidVoucher,
    VoucherAlreadyUsed,
    VoucherExpired,
    VoucherLimitReached,
    VoucherNotYetValid,
)


async def create_voucher(uow_factory, **kwargs) -> Voucher:
    fields = {"code": "WELCOME10", "type": VoucherType.CREDITS, "value": 10}
    fields.update(kwargs)
    async with await uow_factory() as uow:
        return await uow.vouchers.add(Voucher(**fields))


async def used_count(uow_factory, code: str) -> int:
    async with await uow_factory() as uow:
        voucher = await uow.vouchers.get_active_by_code(code)
        return voucher.used_count


@pytest.mark.asyncio
async def test_voucher_single_use_per_user(billing, uow_factory):
    """WELCOME10 credits 10 once for user A; a repeat is rejected."""
    await create_voucher(uow_factory, max_uses=2)

    assert await billing.apply_voucher("user-a", "WELCOME10") == 10
    assert await billing.get_available_credits("user-a") == 10
    assert await used_count(uow_factory, "WELCOME10") == 1

    with pytest.raises(VoucherAlreadyUsed):
        await billing.apply_voucher("user-a", "WELCOME10")

    assert await billing.get_available_credits("user-a") == 10
    assert await used_count(uow_factory, "WELCOME10") == 1

    assert await billing.apply_voucher("user-b", "WELCOME10") == 10
    assert await used_count(uow_factory, "WELCOME10") == 2


@pytest.mark.asyncio
async def test_repeat_redemption_reports_already_used_even_when_exhausted(billing, uow_factory):
    await create_voucher(uow_factory, max_uses=1)
    await billing.apply_voucher("user-a", "WELCOME10")

    with pytest.raises(VoucherAlreadyUsed):
        await billing.apply_voucher("user-a", "WELCOME10")


@pytest.mark.asyncio
async def test_voucher_limit_reached_for_other_users(billing, uow_factory):
    await create_voucher(uow_factory, max_uses=1)
    await billing.apply_voucher("user-a", "WELCOME10")

    with pytest.raises(VoucherLimitReached):
        await billing.apply_voucher("user-b", "WELCOME10")

    assert await billing.get_wallet("user-b") is None


@pytest.mark.asyncio
async def test_voucher_redemption_writes_credit_entry(billing, uow_factory):
    voucher = await create_voucher(uow_factory, code="SPRING50", value=50)

    await billing.apply_voucher("user-a", "SPRING50")

    [entry] = await billing.list_transactions("user-a")
    assert entry.amount == 50
    assert entry.balance_after == 50
    assert entry.reference_type == "voucher"
    assert entry.reference_id == str(voucher.id)


@pytest.mark.asyncio
async def test_unknown_code_is_invalid(billing):
    with pytest.raises(InvalidVoucher):
        await billing.apply_voucher("user-a", "NOPE")


@pytest.mark.asyncio
async def test_inactive_voucher_is_invalid(billing, uow_factory):
    await create_voucher(uow_factory, is_active=False)

    with pytest.raises(InvalidVoucher):
        await billing.apply_voucher("user-a", "WELCOME10")


@pytest.mark.asyncio
async def test_voucher_not_yet_valid(billing, uow_factory):
    await create_voucher(uow_factory, valid_from=utcnow() + timedelta(days=1))

    with pytest.raises(VoucherNotYetValid):
        await billing.apply_voucher("user-a", "WELCOME10")


@pytest.mark.asyncio
async def test_voucher_expired(billing, uow_factory):
    await create_voucher(
        uow_factory,
        valid_from=utcnow() - timedelta(days=10),
        valid_until=utcnow() - timedelta(days=1),
    )

    with pytest.raises(VoucherExpired):
        await billing.apply_voucher("user-a", "WELCOME10")

    assert await used_count(uow_factory, "WELCOME10") == 0


@pytest.mark.asyncio
async def test_discount_voucher_records_usage_without_credits(billing, uow_factory):
    await create_voucher(uow_factory, code="HALFOFF", type=VoucherType.DISCOUNT_PERCENT, value=50)

    assert await billing.apply_voucher("user-a", "HALFOFF") == 0
    assert await billing.get_wallet("user-a") is None
    assert await used_count(uow_factory, "HALFOFF") == 1

    with pytest.raises(VoucherAlreadyUsed):
        await billing.apply_voucher("user-a", "HALFOFF")
