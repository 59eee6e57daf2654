"""Repository layer tests.

Tests focus on the guarded statements:
- Wallet UPDATE guards return None instead of violating invariants
- INSERT ... ON CONFLICT DO NOTHING for wallets and voucher usage
- used_count increment guarded by max_uses

Simple CRUD operations are not tested (trust SQLAlchemy).
"""

import pytest

from mediaflow.models.voucher import Voucher
from mediaflow.repositories.voucher import VoucherRepository
from mediaflow.repositories.wallet import WalletRepository


@pytest.mark.asyncio
async def test_get_or_create_returns_same_wallet(session):
    repo = WalletRepository(session)

    first = await repo.get_or_create("user-1")
    second = await repo.get_or_create("user-1")
    await session.commit()

    assert first.id == second.id
    assert first.balance_credits == 0


@pytest.mark.asyncio
async def test_wallet_guards_reject_invalid_updates(session):
    repo = WalletRepository(session)
    await repo.get_or_create("user-1")
    await repo.credit("user-1", 50)

    assert await repo.reserve("user-1", 51) is None
    assert await repo.debit("user-1", 51) is None

    balance = await repo.reserve("user-1", 50)
    assert balance.available_credits == 0
    assert await repo.reserve("user-1", 1) is None


@pytest.mark.asyncio
async def test_debit_consumes_at_most_the_reservation(session):
    repo = WalletRepository(session)
    await repo.get_or_create("user-1")
    await repo.credit("user-1", 100)
    await repo.reserve("user-1", 10)

    balance = await repo.debit("user-1", 30)

    assert balance.balance_credits == 70
    assert balance.reserved_credits == 0


@pytest.mark.asyncio
async def test_mutations_on_missing_wallet_return_none(session):
    repo = WalletRepository(session)

    assert await repo.reserve("ghost", 1) is None
    assert await repo.release("ghost", 1) is None
    assert await repo.debit("ghost", 1) is None
    assert await repo.credit("ghost", 1) is None
    assert await repo.get_by_user("ghost") is None


@pytest.mark.asyncio
async def test_voucher_usage_is_unique_per_user(session):
    repo = VoucherRepository(session)
    voucher = await repo.add(Voucher(code="ONCE", value=5))

    assert await repo.add_usage(voucher.id, "user-1") is True
    assert await repo.add_usage(voucher.id, "user-1") is False
    assert await repo.add_usage(voucher.id, "user-2") is True
    assert await repo.has_usage(voucher.id, "user-1")
    assert not await repo.has_usage(voucher.id, "user-3")


@pytest.mark.asyncio
async def test_increment_used_count_stops_at_max_uses(session):
    repo = VoucherRepository(session)
    voucher = await repo.add(Voucher(code="TWICE", value=5, max_uses=2))

    assert await repo.increment_used_count(voucher.id) == 1
    assert await repo.increment_used_count(voucher.id) == 2
    assert await repo.increment_used_count(voucher.id) is None


@pytest.mark.asyncio
async def test_unlimited_voucher_keeps_counting(session):
    repo = VoucherRepository(session)
    voucher = await repo.add(Voucher(code="OPEN", value=5))

    for expected in range(1, 4):
        assert await repo.increment_used_count(voucher.id) == expected


@pytest.mark.asyncio
async def test_inactive_voucher_is_not_found_by_code(session):
    repo = VoucherRepository(session)
    await repo.add(Voucher(code="OFF", value=5, is_active=False))

    assert await repo.get_active_by_code("OFF") is None


@pytest.mark.asyncio
async def test_get_or_create_raises_when_row_cannot_be_read_back(session, monkeypatch):
    async def never_found(self, user_id):
        return None

    monkeypatch.setattr(WalletRepository, "get_by_user", never_found)

    with pytest.raises(RuntimeError, match="user-1"):
        await WalletRepository(session).get_or_create("user-1")
