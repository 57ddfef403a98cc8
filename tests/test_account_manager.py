from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from sqlalchemy import func, select

from loyalty_ledger.models.loyalty import (
    LoyaltyEarnReason,
    LoyaltyRedeemReason,
    LoyaltyTier,
    LoyaltyTransaction,
    LoyaltyTransactionType,
    as_utc,
)
from loyalty_ledger.observability.ledger import get_ledger_store
from loyalty_ledger.services.loyalty import (
    AccountManager,
    InsufficientPointsError,
    LoyaltyService,
    NotFoundError,
    ValidationError,
)
from loyalty_ledger.services.loyalty.accounts import SIGNUP_BONUS_DESCRIPTION, add_months


async def _transaction_count(session) -> int:
    return int((await session.execute(select(func.count(LoyaltyTransaction.id)))).scalar_one())


def test_add_months_clamps_to_month_end() -> None:
    assert add_months(datetime(2024, 1, 31, tzinfo=timezone.utc), 1) == datetime(2024, 2, 29, tzinfo=timezone.utc)
    assert add_months(datetime(2024, 2, 29, tzinfo=timezone.utc), 12) == datetime(2025, 2, 28, tzinfo=timezone.utc)
    assert add_months(datetime(2024, 11, 15, tzinfo=timezone.utc), 3) == datetime(2025, 2, 15, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_new_account_receives_signup_bonus(session_factory, clock) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session, clock=clock)

        account = await service.get_or_create_account(uuid4())

        assert account.current_points == 100
        assert account.lifetime_points == 100
        assert account.tier == LoyaltyTier.BRONZE
        assert account.next_tier_threshold == 500

        entries = await service.accounts.ledger.list_for_account(account.id)
        assert len(entries) == 1
        bonus = entries[0]
        assert bonus.type == LoyaltyTransactionType.EARNED
        assert bonus.earn_reason == LoyaltyEarnReason.SIGNUP_BONUS
        assert bonus.description == SIGNUP_BONUS_DESCRIPTION
        assert as_utc(bonus.expires_at) == datetime(2025, 1, 31, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_get_or_create_is_idempotent(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        user_id = uuid4()

        first = await service.get_or_create_account(user_id)
        second = await service.get_or_create_account(user_id)

        assert first.id == second.id
        assert second.current_points == 100
        assert await _transaction_count(session) == 1


@pytest.mark.asyncio
async def test_award_crossing_every_tier_applies_cascading_bonuses(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        account = await service.get_or_create_account(uuid4())

        purchase = await service.award_points(account.id, 5000, LoyaltyEarnReason.PURCHASE, reference_id="order-1")

        assert purchase.points == 5000
        assert purchase.reference_id == "order-1"

        account = await service.get_account(account.id)
        assert account.lifetime_points == 5950
        assert account.current_points == 5950
        assert account.tier == LoyaltyTier.PLATINUM
        assert Decimal(account.points_multiplier) == Decimal("2.00")
        assert account.next_tier_threshold is None

        bonuses = [
            entry
            for entry in await service.accounts.ledger.list_for_account(account.id)
            if entry.earn_reason == LoyaltyEarnReason.ADMIN_ADJUSTMENT
        ]
        assert sorted(entry.points for entry in bonuses) == [100, 250, 500]
        assert {entry.description for entry in bonuses} == {
            "Tier upgrade bonus for reaching silver tier",
            "Tier upgrade bonus for reaching gold tier",
            "Tier upgrade bonus for reaching platinum tier",
        }
        assert get_ledger_store().snapshot().tier_upgrades == {"platinum": 1}


@pytest.mark.asyncio
async def test_tier_bonus_can_reapply_multiplier(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session, tier_bonus_applies_multiplier=True)
        account = await service.get_or_create_account(uuid4())

        await service.award_points(account.id, 450, LoyaltyEarnReason.PURCHASE)

        account = await service.get_account(account.id)
        assert account.tier == LoyaltyTier.SILVER
        # 100 signup + 450 purchase + floor(100 * 1.25) silver bonus
        assert account.current_points == 675


@pytest.mark.asyncio
async def test_award_floors_multiplied_points(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        account = await service.get_or_create_account(uuid4())
        await service.award_points(account.id, 450, LoyaltyEarnReason.PURCHASE)

        entry = await service.award_points(account.id, 3, LoyaltyEarnReason.REVIEW)

        assert entry.points == 3  # floor(3 * 1.25)
        account = await service.get_account(account.id)
        assert account.current_points == 653
        assert account.last_activity_date is not None


@pytest.mark.asyncio
async def test_insufficient_points_leaves_account_untouched(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        account = await service.get_or_create_account(uuid4())
        account_id = account.id
        await service.award_points(account_id, 5000, LoyaltyEarnReason.PURCHASE)
        before = await _transaction_count(session)

        with pytest.raises(InsufficientPointsError) as excinfo:
            await service.redeem_points(account_id, 6000, LoyaltyRedeemReason.DISCOUNT)

        assert excinfo.value.requested == 6000
        assert excinfo.value.available == 5950
        account = await service.get_account(account_id)
        assert account.current_points == 5950
        assert await _transaction_count(session) == before
        assert get_ledger_store().snapshot().redemptions["insufficient_points"] == 1


@pytest.mark.asyncio
async def test_redeem_debits_balance_but_not_lifetime(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        account = await service.get_or_create_account(uuid4())

        entry = await service.redeem_points(
            account.id, 40, LoyaltyRedeemReason.FREE_SHIPPING, "Free shipping", "order-9"
        )

        assert entry.type == LoyaltyTransactionType.REDEEMED
        assert entry.points == -40
        assert entry.redeem_reason == LoyaltyRedeemReason.FREE_SHIPPING
        account = await service.get_account(account.id)
        assert account.current_points == 60
        assert account.lifetime_points == 100


@pytest.mark.asyncio
async def test_ledger_sum_matches_balance(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        account = await service.get_or_create_account(uuid4())
        await service.award_points(account.id, 1200, LoyaltyEarnReason.PURCHASE)
        await service.redeem_points(account.id, 300, LoyaltyRedeemReason.DISCOUNT)
        await service.award_points(account.id, 20, LoyaltyEarnReason.BIRTHDAY)

        account = await service.get_account(account.id)
        async with service.accounts.unit_of_work():
            balance = await service.accounts.ledger.balance(account.id)
        assert balance == account.current_points
        assert account.lifetime_points >= account.current_points


@pytest.mark.asyncio
@pytest.mark.parametrize("points", [0, -5])
async def test_non_positive_amounts_are_rejected(session_factory, points: int) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        account = await service.get_or_create_account(uuid4())

        with pytest.raises(ValidationError):
            await service.award_points(account.id, points, LoyaltyEarnReason.PURCHASE)
        with pytest.raises(ValidationError):
            await service.redeem_points(account.id, points, LoyaltyRedeemReason.DISCOUNT)

        assert await _transaction_count(session) == 1


@pytest.mark.asyncio
async def test_unknown_account_raises_not_found(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        missing = uuid4()

        with pytest.raises(NotFoundError):
            await service.award_points(missing, 10, LoyaltyEarnReason.PURCHASE)
        with pytest.raises(NotFoundError):
            await service.redeem_points(missing, 10, LoyaltyRedeemReason.DISCOUNT)
        with pytest.raises(NotFoundError):
            await service.get_account(missing)
        with pytest.raises(NotFoundError):
            await service.list_transactions(missing)


@pytest.mark.asyncio
async def test_signup_bonus_can_be_disabled(session_factory) -> None:
    async with session_factory() as session:
        manager = AccountManager(session, signup_bonus_points=0)

        account = await manager.get_or_create_account(uuid4())

        assert account.current_points == 0
        assert await _transaction_count(session) == 0
        found = await manager.get_account_for_user(account.user_id)
        assert found.id == account.id


@pytest.mark.asyncio
async def test_transaction_history_is_paginated_newest_first(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        account = await service.get_or_create_account(uuid4())
        for points in (10, 20, 30, 40):
            await service.award_points(account.id, points, LoyaltyEarnReason.REVIEW)

        first = await service.list_transactions(account.id, page=1, limit=2)
        last = await service.list_transactions(account.id, page=3, limit=2)

        assert [entry.points for entry in first.data] == [40, 30]
        assert first.meta.total == 5
        assert first.meta.total_pages == 3
        assert [entry.earn_reason for entry in last.data] == [LoyaltyEarnReason.SIGNUP_BONUS]

        capped = await service.list_transactions(account.id, page=0, limit=500)
        assert capped.meta.page == 1
        assert capped.meta.limit == 100
        assert len(capped.data) == 5
