"""Business-rule failures raised by the loyalty ledger."""

from __future__ import annotations

from uuid import UUID

from loyalty_ledger.models.loyalty import LoyaltyTier


class LoyaltyError(RuntimeError):
    """Base exception for loyalty ledger business-rule violations."""


class ValidationError(LoyaltyError):
    """Raised when a point amount is not strictly positive or a tier name is unknown."""


class NotFoundError(LoyaltyError):
    """Raised when an account or reward does not exist."""

    def __init__(self, entity: str, identifier: UUID | str) -> None:
        super().__init__(f"{entity} {identifier} not found")
        self.entity = entity
        self.identifier = identifier


class InsufficientPointsError(LoyaltyError):
    """Raised when a debit exceeds the account's current balance."""

    def __init__(self, requested: int, available: int) -> None:
        super().__init__(f"Insufficient points: requested {requested}, available {available}")
        self.requested = requested
        self.available = available


class RewardUnavailableError(LoyaltyError):
    """Raised when a reward is inactive, outside its window, or exhausted."""


class TierRestrictedError(LoyaltyError):
    """Raised when a reward excludes the account's tier."""

    def __init__(self, reward_id: UUID, tier: LoyaltyTier) -> None:
        super().__init__(f"Reward {reward_id} is not available for the {tier.value} tier")
        self.reward_id = reward_id
        self.tier = tier


__all__ = [
    "InsufficientPointsError",
    "LoyaltyError",
    "NotFoundError",
    "RewardUnavailableError",
    "TierRestrictedError",
    "ValidationError",
]
