"""Loyalty ledger domain models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from loyalty_ledger.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps returned by backends without tz support."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LoyaltyTier(str, Enum):
    """Ordered loyalty levels; rank lives in the tier table."""

    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class LoyaltyTransactionType(str, Enum):
    EARNED = "earned"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    ADJUSTED = "adjusted"


class LoyaltyEarnReason(str, Enum):
    PURCHASE = "purchase"
    BOOKING = "booking"
    REVIEW = "review"
    REFERRAL = "referral"
    BIRTHDAY = "birthday"
    SIGNUP_BONUS = "signup_bonus"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class LoyaltyRedeemReason(str, Enum):
    DISCOUNT = "discount"
    FREE_SHIPPING = "free_shipping"
    FREE_PRODUCT = "free_product"
    CLASS_DISCOUNT = "class_discount"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class RewardType(str, Enum):
    DISCOUNT_PERCENTAGE = "discount_percentage"
    DISCOUNT_FIXED = "discount_fixed"
    FREE_SHIPPING = "free_shipping"
    FREE_PRODUCT = "free_product"
    CLASS_DISCOUNT = "class_discount"


_TIER_BENEFITS: dict[LoyaltyTier, list[str]] = {
    LoyaltyTier.BRONZE: ["1x points on purchases", "Birthday discount"],
    LoyaltyTier.SILVER: [
        "1.25x points on purchases",
        "Birthday discount",
        "Free shipping on orders over €30",
    ],
    LoyaltyTier.GOLD: [
        "1.5x points on purchases",
        "Birthday discount",
        "Free shipping on all orders",
        "Early access to new products",
    ],
    LoyaltyTier.PLATINUM: [
        "2x points on purchases",
        "Birthday discount",
        "Free shipping on all orders",
        "Early access to new products",
        "Exclusive cooking classes",
        "Personal chef consultation",
    ],
}


class LoyaltyAccount(Base):
    """Loyalty balance aggregate, one per user."""

    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_loyalty_accounts_user_id"),
        CheckConstraint("current_points >= 0", name="ck_loyalty_accounts_current_points_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    current_points = Column(Integer, nullable=False, default=0, server_default="0")
    lifetime_points = Column(Integer, nullable=False, default=0, server_default="0")
    tier = Column(
        SqlEnum(LoyaltyTier, name="loyalty_tier"),
        nullable=False,
        default=LoyaltyTier.BRONZE,
        server_default=LoyaltyTier.BRONZE.name,
    )
    points_multiplier = Column(Numeric(5, 2), nullable=False, default=1, server_default="1.00")
    next_tier_threshold = Column(Integer, nullable=True)
    last_activity_date = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )

    transactions = relationship(
        "LoyaltyTransaction",
        back_populates="account",
        order_by="LoyaltyTransaction.created_at",
        lazy="raise",
    )

    @property
    def points_to_next_tier(self) -> int:
        if self.next_tier_threshold is None:
            return 0
        return max(0, int(self.next_tier_threshold) - int(self.lifetime_points or 0))

    @property
    def tier_benefits(self) -> list[str]:
        return list(_TIER_BENEFITS.get(self.tier, []))


class LoyaltyTransaction(Base):
    """Append-only ledger entry; only ``is_expired`` may change after insert."""

    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        Index("ix_loyalty_transactions_account_created", "account_id", "created_at"),
        Index("ix_loyalty_transactions_expiry_scan", "type", "is_expired", "expires_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    type = Column(SqlEnum(LoyaltyTransactionType, name="loyalty_transaction_type"), nullable=False)
    points = Column(Integer, nullable=False)
    earn_reason = Column(SqlEnum(LoyaltyEarnReason, name="loyalty_earn_reason"), nullable=True)
    redeem_reason = Column(SqlEnum(LoyaltyRedeemReason, name="loyalty_redeem_reason"), nullable=True)
    description = Column(String, nullable=True)
    reference_id = Column(String, nullable=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_expired = Column(Boolean, nullable=False, default=False, server_default="false")
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    account = relationship("LoyaltyAccount", back_populates="transactions")


class LoyaltyReward(Base):
    """Redeemable perk with a point cost and availability constraints."""

    __tablename__ = "loyalty_rewards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="", server_default="")
    type = Column(SqlEnum(RewardType, name="loyalty_reward_type"), nullable=False)
    points_cost = Column(Integer, nullable=False)
    value = Column(Numeric(10, 2), nullable=True)
    product_id = Column(UUID(as_uuid=True), nullable=True)
    max_redemptions = Column(Integer, nullable=True)
    current_redemptions = Column(Integer, nullable=False, default=0, server_default="0")
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    conditions = Column(JSON, nullable=True)
    image_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )

    @property
    def tier_restriction(self) -> list[str]:
        conditions = self.conditions or {}
        restriction = conditions.get("tierRestriction") or []
        return [str(entry).lower() for entry in restriction]

    @property
    def has_redemptions_left(self) -> bool:
        if self.max_redemptions is None:
            return True
        return int(self.current_redemptions or 0) < int(self.max_redemptions)

    @property
    def redemptions_left(self) -> int | None:
        if self.max_redemptions is None:
            return None
        return max(0, int(self.max_redemptions) - int(self.current_redemptions or 0))

    def is_available_at(self, moment: datetime) -> bool:
        now = as_utc(moment)
        valid_from = as_utc(self.valid_from)
        valid_until = as_utc(self.valid_until)
        within_window = (valid_from is None or now >= valid_from) and (
            valid_until is None or now <= valid_until
        )
        return bool(self.is_active) and within_window and self.has_redemptions_left

    @property
    def is_available(self) -> bool:
        return self.is_available_at(_utcnow())

    def allows_tier(self, tier: LoyaltyTier | str) -> bool:
        restriction = self.tier_restriction
        value = tier.value if isinstance(tier, LoyaltyTier) else str(tier).lower()
        return not restriction or value in restriction


__all__ = [
    "LoyaltyAccount",
    "LoyaltyEarnReason",
    "LoyaltyRedeemReason",
    "LoyaltyReward",
    "LoyaltyTier",
    "LoyaltyTransaction",
    "LoyaltyTransactionType",
    "RewardType",
    "as_utc",
]
