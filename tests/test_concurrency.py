import asyncio
from uuid import uuid4

import pytest

from sqlalchemy import func, select

from loyalty_ledger.models.loyalty import (
    LoyaltyAccount,
    LoyaltyEarnReason,
    LoyaltyRedeemReason,
    LoyaltyReward,
    LoyaltyTransaction,
    LoyaltyTransactionType,
    RewardType,
)
from loyalty_ledger.services.loyalty import InsufficientPointsError, LoyaltyService, RewardUnavailableError


async def _seed_account(file_session_factory):
    async with file_session_factory() as session:
        service = LoyaltyService(session)
        account = await service.get_or_create_account(uuid4())
        await service.award_points(account.id, 5000, LoyaltyEarnReason.PURCHASE)
        return account.id


@pytest.mark.asyncio
async def test_concurrent_redemptions_never_overdraw(file_session_factory) -> None:
    account_id = await _seed_account(file_session_factory)

    async def redeem() -> object:
        async with file_session_factory() as session:
            service = LoyaltyService(session)
            try:
                return await service.redeem_points(account_id, 3000, LoyaltyRedeemReason.DISCOUNT)
            except InsufficientPointsError as exc:
                return exc

    outcomes = await asyncio.gather(redeem(), redeem())

    failures = [outcome for outcome in outcomes if isinstance(outcome, InsufficientPointsError)]
    successes = [outcome for outcome in outcomes if not isinstance(outcome, InsufficientPointsError)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert failures[0].available == 2950

    async with file_session_factory() as session:
        service = LoyaltyService(session)
        account = await service.get_account(account_id)
        assert account.current_points == 2950
        async with service.accounts.unit_of_work():
            redeemed = await service.accounts.ledger.list_for_account(
                account_id, types=[LoyaltyTransactionType.REDEEMED]
            )
            balance = await service.accounts.ledger.balance(account_id)
        assert [entry.points for entry in redeemed] == [-3000]
        assert balance == 2950


@pytest.mark.asyncio
async def test_concurrent_awards_are_all_applied(file_session_factory) -> None:
    account_id = await _seed_account(file_session_factory)

    async def award(points: int) -> None:
        async with file_session_factory() as session:
            await LoyaltyService(session).award_points(account_id, points, LoyaltyEarnReason.REVIEW)

    await asyncio.gather(*(award(10) for _ in range(5)))

    async with file_session_factory() as session:
        account = await LoyaltyService(session).get_account(account_id)
        # platinum multiplier 2x on each award
        assert account.current_points == 5950 + 5 * 20
        assert account.lifetime_points == 5950 + 5 * 20


@pytest.mark.asyncio
async def test_concurrent_first_lookups_create_one_account(file_session_factory) -> None:
    user_id = uuid4()

    async def lookup():
        async with file_session_factory() as session:
            account = await LoyaltyService(session).get_or_create_account(user_id)
            return account.id

    account_ids = await asyncio.gather(*(lookup() for _ in range(4)))

    assert len(set(account_ids)) == 1
    async with file_session_factory() as session:
        accounts = await session.scalar(
            select(func.count()).select_from(LoyaltyAccount).where(LoyaltyAccount.user_id == user_id)
        )
        bonuses = await session.scalar(
            select(func.count())
            .select_from(LoyaltyTransaction)
            .where(
                LoyaltyTransaction.account_id == account_ids[0],
                LoyaltyTransaction.earn_reason == LoyaltyEarnReason.SIGNUP_BONUS,
            )
        )
        account = await LoyaltyService(session).get_account(account_ids[0])
    assert accounts == 1
    assert bonuses == 1
    assert account.current_points == 100


@pytest.mark.asyncio
async def test_concurrent_reward_redemptions_respect_max_redemptions(file_session_factory) -> None:
    async with file_session_factory() as session:
        service = LoyaltyService(session)
        reward = LoyaltyReward(
            name="Chef's table",
            description="One seat only",
            type=RewardType.FREE_PRODUCT,
            points_cost=50,
            max_redemptions=1,
            current_redemptions=0,
            is_active=True,
        )
        session.add(reward)
        await session.commit()
        reward_id = reward.id
        account_ids = []
        for _ in range(2):
            account = await service.get_or_create_account(uuid4())
            account_ids.append(account.id)

    async def redeem(account_id):
        async with file_session_factory() as session:
            try:
                return await LoyaltyService(session).redeem_reward(account_id, reward_id)
            except RewardUnavailableError as exc:
                return exc

    outcomes = await asyncio.gather(*(redeem(account_id) for account_id in account_ids))

    failures = [outcome for outcome in outcomes if isinstance(outcome, RewardUnavailableError)]
    assert len(failures) == 1
    assert len(outcomes) - len(failures) == 1

    async with file_session_factory() as session:
        service = LoyaltyService(session)
        reward = await service.rewards.get_reward(reward_id)
        balances = sorted([(await service.get_account(account_id)).current_points for account_id in account_ids])
    assert reward.current_redemptions == 1
    assert balances == [50, 100]
