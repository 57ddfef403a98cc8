"""Reward catalog queries and reward redemption."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import or_, select

from loyalty_ledger.models.loyalty import (
    LoyaltyRedeemReason,
    LoyaltyReward,
    LoyaltyTier,
    LoyaltyTransaction,
    RewardType,
)

from .accounts import AccountManager
from .errors import NotFoundError, RewardUnavailableError, TierRestrictedError, ValidationError

_REDEEM_REASON_BY_REWARD_TYPE: dict[RewardType, LoyaltyRedeemReason] = {
    RewardType.DISCOUNT_PERCENTAGE: LoyaltyRedeemReason.DISCOUNT,
    RewardType.DISCOUNT_FIXED: LoyaltyRedeemReason.DISCOUNT,
    RewardType.FREE_SHIPPING: LoyaltyRedeemReason.FREE_SHIPPING,
    RewardType.FREE_PRODUCT: LoyaltyRedeemReason.FREE_PRODUCT,
    RewardType.CLASS_DISCOUNT: LoyaltyRedeemReason.CLASS_DISCOUNT,
}


def redeem_reason_for(reward_type: RewardType) -> LoyaltyRedeemReason:
    return _REDEEM_REASON_BY_REWARD_TYPE.get(reward_type, LoyaltyRedeemReason.ADMIN_ADJUSTMENT)


def coerce_tier(tier: LoyaltyTier | str | None) -> LoyaltyTier | None:
    """Accept a tier enum or its name in any case."""

    if tier is None or isinstance(tier, LoyaltyTier):
        return tier
    try:
        return LoyaltyTier(str(tier).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown loyalty tier: {tier}") from exc


@dataclass
class RewardRedemption:
    """Ledger debit paired with the reward it paid for."""

    transaction: LoyaltyTransaction
    reward: LoyaltyReward


class RewardCatalog:
    """Lists redeemable rewards and redeems them against account balances."""

    def __init__(self, accounts: AccountManager) -> None:
        self._accounts = accounts

    async def list_available_rewards(
        self, tier: LoyaltyTier | str | None = None
    ) -> list[LoyaltyReward]:
        """Return available rewards (optionally for a tier) ordered by cost."""

        tier = coerce_tier(tier)
        now = self._accounts.now()
        stmt = (
            select(LoyaltyReward)
            .where(
                LoyaltyReward.is_active.is_(True),
                or_(LoyaltyReward.valid_from.is_(None), LoyaltyReward.valid_from <= now),
                or_(LoyaltyReward.valid_until.is_(None), LoyaltyReward.valid_until >= now),
                or_(
                    LoyaltyReward.max_redemptions.is_(None),
                    LoyaltyReward.current_redemptions < LoyaltyReward.max_redemptions,
                ),
            )
            .order_by(LoyaltyReward.points_cost.asc(), LoyaltyReward.name.asc())
        )
        async with self._accounts.unit_of_work() as session:
            result = await session.execute(stmt)
            rewards = list(result.scalars().all())

        if tier is not None:
            rewards = [reward for reward in rewards if reward.allows_tier(tier)]
        logger.debug(
            "Fetched available loyalty rewards",
            count=len(rewards),
            tier=tier.value if tier else None,
        )
        return rewards

    async def get_reward(self, reward_id: UUID) -> LoyaltyReward:
        async with self._accounts.unit_of_work() as session:
            reward = await session.get(LoyaltyReward, reward_id, populate_existing=True)
            if reward is None:
                raise NotFoundError("Reward", reward_id)
        return reward

    async def redeem_reward(self, account_id: UUID, reward_id: UUID) -> RewardRedemption:
        """Spend the reward's cost and count the redemption in one unit of work.

        The account row is locked before the reward row; every caller follows that order.
        """

        async with self._accounts.unit_of_work() as session:
            account = await self._accounts.lock_account(account_id)

            stmt = (
                select(LoyaltyReward)
                .where(LoyaltyReward.id == reward_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            reward = (await session.execute(stmt)).scalar_one_or_none()
            if reward is None:
                raise NotFoundError("Reward", reward_id)

            if not reward.is_available_at(self._accounts.now()):
                logger.warning(
                    "Rejected redemption of unavailable reward",
                    account_id=str(account_id),
                    reward_id=str(reward_id),
                    current_redemptions=reward.current_redemptions,
                    max_redemptions=reward.max_redemptions,
                )
                raise RewardUnavailableError(f"Reward {reward_id} is not available")

            if not reward.allows_tier(account.tier):
                raise TierRestrictedError(reward.id, account.tier)

            transaction = await self._accounts.apply_redeem(
                account,
                int(reward.points_cost),
                redeem_reason_for(reward.type),
                description=f"Redeemed: {reward.name}",
                reference_id=str(reward.id),
                reward=True,
            )
            reward.current_redemptions = int(reward.current_redemptions or 0) + 1
            await session.flush()

        logger.info(
            "Redeemed loyalty reward",
            account_id=str(account_id),
            reward_id=str(reward_id),
            points=int(reward.points_cost),
            redemptions=reward.current_redemptions,
        )
        return RewardRedemption(transaction=transaction, reward=reward)


__all__ = ["RewardCatalog", "RewardRedemption", "redeem_reason_for"]
