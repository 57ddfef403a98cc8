"""Library entry point for the loyalty ledger."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.core.settings import settings
from loyalty_ledger.models.loyalty import (
    LoyaltyAccount,
    LoyaltyEarnReason,
    LoyaltyRedeemReason,
    LoyaltyReward,
    LoyaltyTier,
    LoyaltyTransaction,
)

from .accounts import AccountManager, Clock
from .expiry import ExpiryScanner, ExpirySweepResult
from .ledger import TransactionPage
from .rewards import RewardCatalog, RewardRedemption
from .tiers import TierEngine


class LoyaltyService:
    """Coordinates accounts, rewards and expiry over one database session."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        tier_engine: TierEngine | None = None,
        clock: Clock | None = None,
        points_per_currency_unit: int | None = None,
        expiry_batch_size: int | None = None,
        **account_options,
    ) -> None:
        self._db = db_session
        self.accounts = AccountManager(
            db_session,
            tier_engine=tier_engine,
            clock=clock,
            **account_options,
        )
        self.rewards = RewardCatalog(self.accounts)
        self.expiry = ExpiryScanner(self.accounts, batch_size=expiry_batch_size)
        self._points_per_unit = (
            settings.points_per_currency_unit
            if points_per_currency_unit is None
            else points_per_currency_unit
        )

    async def get_or_create_account(self, user_id: UUID) -> LoyaltyAccount:
        return await self.accounts.get_or_create_account(user_id)

    async def get_account(self, account_id: UUID) -> LoyaltyAccount:
        return await self.accounts.get_account(account_id)

    async def award_points(
        self,
        account_id: UUID,
        base_points: int,
        reason: LoyaltyEarnReason,
        description: str | None = None,
        reference_id: str | None = None,
    ) -> LoyaltyTransaction:
        return await self.accounts.award_points(
            account_id, base_points, reason, description, reference_id
        )

    async def redeem_points(
        self,
        account_id: UUID,
        points: int,
        reason: LoyaltyRedeemReason,
        description: str | None = None,
        reference_id: str | None = None,
    ) -> LoyaltyTransaction:
        return await self.accounts.redeem_points(
            account_id, points, reason, description, reference_id
        )

    async def list_transactions(
        self,
        account_id: UUID,
        page: int = 1,
        limit: int = 20,
    ) -> TransactionPage:
        return await self.accounts.list_transactions(account_id, page=page, limit=limit)

    async def list_available_rewards(self, tier: LoyaltyTier | str | None = None) -> list[LoyaltyReward]:
        return await self.rewards.list_available_rewards(tier)

    async def redeem_reward(self, account_id: UUID, reward_id: UUID) -> RewardRedemption:
        return await self.rewards.redeem_reward(account_id, reward_id)

    async def run_expiry_sweep(self) -> ExpirySweepResult:
        return await self.expiry.sweep()

    async def award_points_for_order(
        self,
        *,
        user_id: UUID | None,
        order_id: str,
        order_total: Decimal | float | int,
        order_number: str | None = None,
    ) -> LoyaltyTransaction | None:
        """Credit a completed order; guest orders never earn."""

        if user_id is None:
            logger.debug("Skipping loyalty award for guest order", order_id=order_id)
            return None
        base_points = self._points_for_amount(order_total)
        if base_points <= 0:
            return None
        account = await self.accounts.get_or_create_account(user_id)
        return await self.accounts.award_points(
            account.id,
            base_points,
            LoyaltyEarnReason.PURCHASE,
            f"Points earned from order {order_number or order_id}",
            str(order_id),
        )

    async def award_points_for_booking(
        self,
        *,
        user_id: UUID | None,
        booking_id: str,
        total_amount: Decimal | float | int | None,
    ) -> LoyaltyTransaction | None:
        """Credit a completed booking; guest bookings never earn."""

        if user_id is None:
            logger.debug("Skipping loyalty award for guest booking", booking_id=booking_id)
            return None
        base_points = self._points_for_amount(total_amount or 0)
        if base_points <= 0:
            return None
        account = await self.accounts.get_or_create_account(user_id)
        return await self.accounts.award_points(
            account.id,
            base_points,
            LoyaltyEarnReason.BOOKING,
            "Points earned from booking",
            str(booking_id),
        )

    def _points_for_amount(self, amount: Decimal | float | int) -> int:
        scaled = Decimal(str(amount)) * Decimal(self._points_per_unit)
        return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


__all__ = ["LoyaltyService"]
