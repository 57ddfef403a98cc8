"""Loyalty account aggregate: balances, earning and redemption."""

from __future__ import annotations

import calendar
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal
from typing import AsyncIterator, Callable
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.core.settings import settings
from loyalty_ledger.models.loyalty import (
    LoyaltyAccount,
    LoyaltyEarnReason,
    LoyaltyRedeemReason,
    LoyaltyTransaction,
)
from loyalty_ledger.observability.ledger import LedgerObservabilityStore, get_ledger_store

from .errors import InsufficientPointsError, NotFoundError, ValidationError
from .ledger import TransactionLedger, TransactionPage
from .tiers import TierEngine

Clock = Callable[[], datetime]

SIGNUP_BONUS_DESCRIPTION = "Welcome bonus for joining the loyalty program"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift ``moment`` by whole calendar months, clamping to the month's last day."""

    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


class AccountManager:
    """Owns loyalty accounts and every balance-affecting mutation.

    Each public call is one unit of work: the account row is locked, the ledger entry
    and the aggregate update are flushed together, and the session commits or rolls
    back as a whole. Sessions are expected to use ``expire_on_commit=False`` so the
    returned records stay readable after commit.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        tier_engine: TierEngine | None = None,
        ledger: TransactionLedger | None = None,
        clock: Clock | None = None,
        signup_bonus_points: int | None = None,
        points_expiry_months: int | None = None,
        tier_bonus_applies_multiplier: bool | None = None,
        observability: LedgerObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._tiers = tier_engine or TierEngine()
        self._ledger = ledger or TransactionLedger(
            db_session, max_page_limit=settings.transactions_page_max_limit
        )
        self._clock = clock or _utcnow
        self._signup_bonus = (
            settings.signup_bonus_points if signup_bonus_points is None else signup_bonus_points
        )
        self._expiry_months = points_expiry_months or settings.points_expiry_months
        self._bonus_applies_multiplier = (
            settings.tier_bonus_applies_multiplier
            if tier_bonus_applies_multiplier is None
            else tier_bonus_applies_multiplier
        )
        self._observability = observability or get_ledger_store()

    @property
    def ledger(self) -> TransactionLedger:
        return self._ledger

    @property
    def tiers(self) -> TierEngine:
        return self._tiers

    def now(self) -> datetime:
        return self._clock()

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[AsyncSession]:
        """Commit on success, roll back and re-raise on any failure."""

        try:
            yield self._db
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise

    async def lock_account(self, account_id: UUID) -> LoyaltyAccount:
        """Load the account under an exclusive row lock for the current transaction."""

        stmt = (
            select(LoyaltyAccount)
            .where(LoyaltyAccount.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        account = result.scalar_one_or_none()
        if account is None:
            raise NotFoundError("Loyalty account", account_id)
        return account

    async def get_account(self, account_id: UUID) -> LoyaltyAccount:
        async with self.unit_of_work():
            account = await self._db.get(LoyaltyAccount, account_id, populate_existing=True)
            if account is None:
                raise NotFoundError("Loyalty account", account_id)
        return account

    async def get_account_for_user(self, user_id: UUID) -> LoyaltyAccount:
        async with self.unit_of_work():
            account = await self._find_by_user(user_id)
            if account is None:
                raise NotFoundError("Loyalty account for user", user_id)
        return account

    async def get_or_create_account(self, user_id: UUID) -> LoyaltyAccount:
        """Fetch the user's account, creating it with the signup bonus on first use."""

        try:
            async with self.unit_of_work():
                account = await self._find_by_user(user_id)
                if account is not None:
                    return account

                account = LoyaltyAccount(
                    user_id=user_id,
                    current_points=0,
                    lifetime_points=0,
                    is_active=True,
                )
                self._tiers.initialize(account)
                self._db.add(account)
                await self._db.flush()

                if self._signup_bonus > 0:
                    await self.apply_award(
                        account,
                        self._signup_bonus,
                        LoyaltyEarnReason.SIGNUP_BONUS,
                        description=SIGNUP_BONUS_DESCRIPTION,
                    )
        except IntegrityError:
            logger.warning("Detected race when creating loyalty account", user_id=str(user_id))
            async with self.unit_of_work():
                existing = await self._find_by_user(user_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "Created loyalty account",
            user_id=str(user_id),
            account_id=str(account.id),
            current_points=account.current_points,
        )
        return account

    async def award_points(
        self,
        account_id: UUID,
        base_points: int,
        reason: LoyaltyEarnReason,
        description: str | None = None,
        reference_id: str | None = None,
    ) -> LoyaltyTransaction:
        """Credit ``base_points`` scaled by the account's current multiplier."""

        if base_points <= 0:
            raise ValidationError("Points to award must be positive")

        async with self.unit_of_work():
            account = await self.lock_account(account_id)
            return await self.apply_award(
                account,
                base_points,
                reason,
                description=description,
                reference_id=reference_id,
            )

    async def redeem_points(
        self,
        account_id: UUID,
        points: int,
        reason: LoyaltyRedeemReason,
        description: str | None = None,
        reference_id: str | None = None,
    ) -> LoyaltyTransaction:
        """Debit ``points`` from the balance; lifetime points are untouched."""

        if points <= 0:
            raise ValidationError("Points to redeem must be positive")

        async with self.unit_of_work():
            account = await self.lock_account(account_id)
            return await self.apply_redeem(
                account,
                points,
                reason,
                description=description,
                reference_id=reference_id,
            )

    async def list_transactions(
        self,
        account_id: UUID,
        page: int = 1,
        limit: int = 20,
    ) -> TransactionPage:
        async with self.unit_of_work():
            account = await self._db.get(LoyaltyAccount, account_id)
            if account is None:
                raise NotFoundError("Loyalty account", account_id)
            return await self._ledger.page(account_id, page=page, limit=limit)

    async def apply_award(
        self,
        account: LoyaltyAccount,
        base_points: int,
        reason: LoyaltyEarnReason,
        *,
        description: str | None = None,
        reference_id: str | None = None,
        apply_multiplier: bool = True,
    ) -> LoyaltyTransaction:
        """Credit a locked account inside the caller's unit of work."""

        if base_points <= 0:
            raise ValidationError("Points to award must be positive")

        now = self.now()
        multiplier = Decimal(account.points_multiplier or 1) if apply_multiplier else Decimal(1)
        credited = int((Decimal(base_points) * multiplier).to_integral_value(rounding=ROUND_FLOOR))

        entry = await self._ledger.append_earn(
            account.id,
            points=credited,
            reason=reason,
            expires_at=add_months(now, self._expiry_months),
            description=description,
            reference_id=reference_id,
        )
        account.current_points = int(account.current_points or 0) + credited
        account.lifetime_points = int(account.lifetime_points or 0) + credited
        account.last_activity_date = now
        await self._db.flush()

        self._observability.record_award(reason.value, credited)
        logger.info(
            "Awarded loyalty points",
            account_id=str(account.id),
            base_points=base_points,
            credited=credited,
            multiplier=str(multiplier),
            reason=reason.value,
            reference_id=reference_id,
        )

        change = self._tiers.recompute(account)
        if change.upgraded:
            self._observability.record_tier_upgrade(change.current_tier.value)
            logger.info(
                "Upgraded loyalty tier",
                account_id=str(account.id),
                previous_tier=change.previous_tier.value,
                tier=change.current_tier.value,
                lifetime_points=account.lifetime_points,
            )
            for tier, bonus in change.bonuses:
                await self.apply_award(
                    account,
                    bonus,
                    LoyaltyEarnReason.ADMIN_ADJUSTMENT,
                    description=f"Tier upgrade bonus for reaching {tier.value} tier",
                    apply_multiplier=self._bonus_applies_multiplier,
                )
        return entry

    async def apply_redeem(
        self,
        account: LoyaltyAccount,
        points: int,
        reason: LoyaltyRedeemReason,
        *,
        description: str | None = None,
        reference_id: str | None = None,
        reward: bool = False,
    ) -> LoyaltyTransaction:
        """Debit a locked account inside the caller's unit of work."""

        if points <= 0:
            raise ValidationError("Points to redeem must be positive")

        available = int(account.current_points or 0)
        if available < points:
            self._observability.record_insufficient_points()
            logger.warning(
                "Rejected loyalty redemption for insufficient balance",
                account_id=str(account.id),
                requested=points,
                available=available,
            )
            raise InsufficientPointsError(points, available)

        entry = await self._ledger.append_redeem(
            account.id,
            points=points,
            reason=reason,
            description=description,
            reference_id=reference_id,
        )
        account.current_points = available - points
        account.last_activity_date = self.now()
        await self._db.flush()

        self._observability.record_redemption(reason.value, points, reward=reward)
        logger.info(
            "Redeemed loyalty points",
            account_id=str(account.id),
            points=points,
            reason=reason.value,
            reference_id=reference_id,
        )
        return entry

    async def apply_expiry(
        self,
        account: LoyaltyAccount,
        source: LoyaltyTransaction,
    ) -> LoyaltyTransaction:
        """Expire an earn entry of a locked account; lifetime points are untouched."""

        original = int(source.points or 0)
        balance = int(account.current_points or 0)
        # Debit is capped at the balance so the ledger keeps summing to current_points.
        entry = await self._ledger.append_expiry(source, points=min(original, balance))
        account.current_points = max(0, balance - original)
        await self._db.flush()
        return entry

    async def _find_by_user(self, user_id: UUID) -> LoyaltyAccount | None:
        stmt = (
            select(LoyaltyAccount)
            .where(LoyaltyAccount.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()


__all__ = ["AccountManager", "SIGNUP_BONUS_DESCRIPTION", "add_months"]
