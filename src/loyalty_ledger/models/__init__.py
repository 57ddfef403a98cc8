"""SQLAlchemy models package."""

from .loyalty import (  # noqa: F401
    LoyaltyAccount,
    LoyaltyEarnReason,
    LoyaltyRedeemReason,
    LoyaltyReward,
    LoyaltyTier,
    LoyaltyTransaction,
    LoyaltyTransactionType,
    RewardType,
)
