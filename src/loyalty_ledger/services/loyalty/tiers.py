"""Tier thresholds, multipliers and upgrade bonuses."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from loyalty_ledger.models.loyalty import LoyaltyAccount, LoyaltyTier


@dataclass(frozen=True, slots=True)
class TierRule:
    """Static configuration for a single tier."""

    tier: LoyaltyTier
    threshold: int
    multiplier: Decimal
    upgrade_bonus: int


@dataclass(frozen=True, slots=True)
class TierChange:
    """Outcome of a tier recomputation."""

    upgraded: bool
    previous_tier: LoyaltyTier
    current_tier: LoyaltyTier
    bonuses: tuple[tuple[LoyaltyTier, int], ...] = ()

    @property
    def bonus(self) -> int:
        return sum(points for _, points in self.bonuses)


class TierTable:
    """Ordered tier rules indexed by rank (lowest first)."""

    def __init__(self, rules: Sequence[TierRule]) -> None:
        if not rules:
            raise ValueError("Tier table requires at least one tier")
        if rules[0].threshold != 0:
            raise ValueError("Lowest tier must start at zero lifetime points")
        for lower, higher in zip(rules, rules[1:]):
            # A bonus must never be able to re-trigger the upgrade that granted it.
            assert lower.threshold < higher.threshold, "tier thresholds must be strictly increasing"
        self._rules = tuple(rules)
        self._rank = {rule.tier: index for index, rule in enumerate(self._rules)}

    def __iter__(self):
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def rule(self, tier: LoyaltyTier) -> TierRule:
        return self._rules[self._rank[tier]]

    def rank(self, tier: LoyaltyTier) -> int:
        return self._rank[tier]

    @property
    def lowest(self) -> TierRule:
        return self._rules[0]

    def threshold(self, tier: LoyaltyTier) -> int:
        return self.rule(tier).threshold

    def multiplier(self, tier: LoyaltyTier) -> Decimal:
        return self.rule(tier).multiplier

    def upgrade_bonus(self, tier: LoyaltyTier) -> int:
        return self.rule(tier).upgrade_bonus

    def next_rule(self, tier: LoyaltyTier) -> TierRule | None:
        index = self._rank[tier] + 1
        if index >= len(self._rules):
            return None
        return self._rules[index]

    def next_threshold(self, tier: LoyaltyTier) -> int | None:
        following = self.next_rule(tier)
        return following.threshold if following else None

    def tier_for(self, lifetime_points: int) -> LoyaltyTier:
        """Return the highest tier whose threshold is met."""

        matched = self._rules[0]
        for rule in self._rules:
            if rule.threshold > lifetime_points:
                break
            matched = rule
        return matched.tier


DEFAULT_TIER_TABLE = TierTable(
    [
        TierRule(LoyaltyTier.BRONZE, threshold=0, multiplier=Decimal("1.00"), upgrade_bonus=0),
        TierRule(LoyaltyTier.SILVER, threshold=500, multiplier=Decimal("1.25"), upgrade_bonus=100),
        TierRule(LoyaltyTier.GOLD, threshold=1500, multiplier=Decimal("1.50"), upgrade_bonus=250),
        TierRule(LoyaltyTier.PLATINUM, threshold=3000, multiplier=Decimal("2.00"), upgrade_bonus=500),
    ]
)


class TierEngine:
    """Derives an account's tier from its lifetime points."""

    def __init__(self, table: TierTable | None = None) -> None:
        self.table = table or DEFAULT_TIER_TABLE

    def tier_for(self, lifetime_points: int) -> LoyaltyTier:
        return self.table.tier_for(int(lifetime_points or 0))

    def initialize(self, account: LoyaltyAccount) -> None:
        """Seed a new account with the lowest tier's cached values."""

        lowest = self.table.lowest
        account.tier = lowest.tier
        account.points_multiplier = lowest.multiplier
        account.next_tier_threshold = self.table.next_threshold(lowest.tier)

    def recompute(self, account: LoyaltyAccount) -> TierChange:
        """Move the account to the tier its lifetime points earn.

        Upgrades report the bonus of every tier crossed, lowest first. Tiers never
        drop because lifetime points never decrease.
        """

        previous = LoyaltyTier(account.tier)
        target = self.tier_for(account.lifetime_points)
        if target == previous or self.table.rank(target) < self.table.rank(previous):
            return TierChange(upgraded=False, previous_tier=previous, current_tier=previous)

        account.tier = target
        account.points_multiplier = self.table.multiplier(target)
        account.next_tier_threshold = self.table.next_threshold(target)

        crossed = [
            rule
            for rule in self.table
            if self.table.rank(previous) < self.table.rank(rule.tier) <= self.table.rank(target)
        ]
        bonuses = tuple((rule.tier, rule.upgrade_bonus) for rule in crossed if rule.upgrade_bonus > 0)
        return TierChange(
            upgraded=True,
            previous_tier=previous,
            current_tier=target,
            bonuses=bonuses,
        )


__all__ = ["DEFAULT_TIER_TABLE", "TierChange", "TierEngine", "TierRule", "TierTable"]
