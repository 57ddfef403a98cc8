from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from loyalty_ledger.models.loyalty import (
    LoyaltyEarnReason,
    LoyaltyRedeemReason,
    LoyaltyReward,
    LoyaltyTier,
    LoyaltyTransactionType,
    RewardType,
)
from loyalty_ledger.observability.ledger import get_ledger_store
from loyalty_ledger.services.loyalty import (
    InsufficientPointsError,
    LoyaltyService,
    NotFoundError,
    RewardUnavailableError,
    TierRestrictedError,
    ValidationError,
)
from loyalty_ledger.services.loyalty.rewards import redeem_reason_for


def _reward(name: str, points_cost: int, **overrides) -> LoyaltyReward:
    values = {
        "name": name,
        "description": f"{name} reward",
        "type": RewardType.DISCOUNT_FIXED,
        "points_cost": points_cost,
        "current_redemptions": 0,
        "is_active": True,
    }
    values.update(overrides)
    return LoyaltyReward(**values)


@pytest.mark.asyncio
async def test_redeem_reward_debits_points_and_counts_redemption(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        reward = _reward("Free delivery", 80, type=RewardType.FREE_SHIPPING, max_redemptions=5)
        session.add(reward)
        await session.commit()
        account = await service.get_or_create_account(uuid4())

        redemption = await service.redeem_reward(account.id, reward.id)

        assert redemption.transaction.type == LoyaltyTransactionType.REDEEMED
        assert redemption.transaction.points == -80
        assert redemption.transaction.redeem_reason == LoyaltyRedeemReason.FREE_SHIPPING
        assert redemption.transaction.description == "Redeemed: Free delivery"
        assert redemption.transaction.reference_id == str(reward.id)
        assert redemption.reward.current_redemptions == 1

        account = await service.get_account(account.id)
        assert account.current_points == 20
        assert get_ledger_store().snapshot().redemptions["rewards"] == 1


@pytest.mark.asyncio
async def test_exhausted_reward_is_unavailable(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        reward = _reward("Cooking class", 10, max_redemptions=1, current_redemptions=1)
        session.add(reward)
        await session.commit()
        account = await service.get_or_create_account(uuid4())
        account_id, reward_id = account.id, reward.id

        with pytest.raises(RewardUnavailableError):
            await service.redeem_reward(account_id, reward_id)

        account = await service.get_account(account_id)
        assert account.current_points == 100
        assert await service.list_available_rewards() == []


@pytest.mark.asyncio
async def test_reward_outside_validity_window_is_unavailable(session_factory) -> None:
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        service = LoyaltyService(session)
        expired = _reward("Summer sale", 10, valid_until=now - timedelta(days=1))
        upcoming = _reward("Winter sale", 10, valid_from=now + timedelta(days=1))
        inactive = _reward("Retired perk", 10, is_active=False)
        session.add_all([expired, upcoming, inactive])
        await session.commit()
        account = await service.get_or_create_account(uuid4())
        account_id = account.id
        reward_ids = [expired.id, upcoming.id, inactive.id]

        for reward_id in reward_ids:
            with pytest.raises(RewardUnavailableError):
                await service.redeem_reward(account_id, reward_id)

        assert await service.list_available_rewards() == []


@pytest.mark.asyncio
async def test_tier_restricted_reward(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        reward = _reward("Chef consultation", 50, conditions={"tierRestriction": ["GOLD", "platinum"]})
        session.add(reward)
        await session.commit()
        account = await service.get_or_create_account(uuid4())
        account_id, reward_id = account.id, reward.id

        with pytest.raises(TierRestrictedError):
            await service.redeem_reward(account_id, reward_id)

        await service.award_points(account_id, 1500, LoyaltyEarnReason.PURCHASE)
        redemption = await service.redeem_reward(account_id, reward_id)
        assert redemption.reward.current_redemptions == 1


@pytest.mark.asyncio
async def test_reward_redemption_requires_enough_points(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        reward = _reward("Stand mixer", 5000, type=RewardType.FREE_PRODUCT)
        session.add(reward)
        await session.commit()
        account = await service.get_or_create_account(uuid4())
        account_id, reward_id = account.id, reward.id

        with pytest.raises(InsufficientPointsError):
            await service.redeem_reward(account_id, reward_id)

        refreshed = await service.rewards.get_reward(reward_id)
        assert refreshed.current_redemptions == 0


@pytest.mark.asyncio
async def test_unknown_reward_raises_not_found(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        account = await service.get_or_create_account(uuid4())

        with pytest.raises(NotFoundError):
            await service.redeem_reward(account.id, uuid4())


@pytest.mark.asyncio
async def test_available_rewards_are_sorted_and_filtered_by_tier(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        session.add_all(
            [
                _reward("Pastry", 300),
                _reward("Apron", 100),
                _reward("Knife", 300, conditions={"tierRestriction": ["platinum"]}),
                _reward("Baguette", 300),
            ]
        )
        await session.commit()

        everything = await service.list_available_rewards()
        bronze = await service.list_available_rewards(LoyaltyTier.BRONZE)

        assert [reward.name for reward in everything] == ["Apron", "Baguette", "Knife", "Pastry"]
        assert [reward.name for reward in bronze] == ["Apron", "Baguette", "Pastry"]


@pytest.mark.asyncio
async def test_available_rewards_accept_tier_names(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        session.add_all(
            [
                _reward("Apron", 100),
                _reward("Knife", 300, conditions={"tierRestriction": ["Gold", "platinum"]}),
            ]
        )
        await session.commit()

        bronze = await service.list_available_rewards("bronze")
        gold = await service.list_available_rewards("GOLD")

        assert [reward.name for reward in bronze] == ["Apron"]
        assert [reward.name for reward in gold] == ["Apron", "Knife"]
        with pytest.raises(ValidationError):
            await service.list_available_rewards("diamond")


def test_redeem_reason_follows_reward_type() -> None:
    assert redeem_reason_for(RewardType.DISCOUNT_PERCENTAGE) == LoyaltyRedeemReason.DISCOUNT
    assert redeem_reason_for(RewardType.DISCOUNT_FIXED) == LoyaltyRedeemReason.DISCOUNT
    assert redeem_reason_for(RewardType.FREE_PRODUCT) == LoyaltyRedeemReason.FREE_PRODUCT
    assert redeem_reason_for(RewardType.CLASS_DISCOUNT) == LoyaltyRedeemReason.CLASS_DISCOUNT


def test_reward_availability_helpers() -> None:
    reward = _reward("Gift card", 10, max_redemptions=3, current_redemptions=1)

    assert reward.redemptions_left == 2
    assert reward.is_available
    assert reward.allows_tier(LoyaltyTier.BRONZE)
    restricted = _reward("Knife", 10, conditions={"tierRestriction": ["platinum"]})
    assert restricted.allows_tier("Platinum")
    assert not restricted.allows_tier("silver")
    assert _reward("Unlimited", 10, max_redemptions=None).redemptions_left is None
