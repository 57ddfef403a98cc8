"""Loyalty service exports."""

from .accounts import AccountManager  # noqa: F401
from .errors import (  # noqa: F401
    InsufficientPointsError,
    LoyaltyError,
    NotFoundError,
    RewardUnavailableError,
    TierRestrictedError,
    ValidationError,
)
from .expiry import ExpiryScanner, ExpirySweepResult  # noqa: F401
from .ledger import PageMeta, TransactionLedger, TransactionPage  # noqa: F401
from .loyalty_service import LoyaltyService  # noqa: F401
from .rewards import RewardCatalog, RewardRedemption  # noqa: F401
from .tiers import DEFAULT_TIER_TABLE, TierChange, TierEngine, TierRule, TierTable  # noqa: F401
