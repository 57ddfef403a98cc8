from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LedgerSnapshot:
    awards: Dict[str, int]
    redemptions: Dict[str, int]
    tier_upgrades: Dict[str, int]
    expiry: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "awards": dict(self.awards),
            "redemptions": dict(self.redemptions),
            "tier_upgrades": dict(self.tier_upgrades),
            "expiry": dict(self.expiry),
        }


class LedgerObservabilityStore:
    """Collect ledger activity counters for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._awards: Dict[str, int] = defaultdict(int)
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._tier_upgrades: Dict[str, int] = defaultdict(int)
        self._expiry: Dict[str, int] = defaultdict(int)

    def record_award(self, reason: str, points: int) -> None:
        with self._lock:
            self._awards["total"] += 1
            self._awards["points"] += points
            self._awards[f"reason:{reason}"] += 1

    def record_redemption(self, reason: str, points: int, *, reward: bool = False) -> None:
        with self._lock:
            self._redemptions["total"] += 1
            self._redemptions["points"] += points
            self._redemptions[f"reason:{reason}"] += 1
            if reward:
                self._redemptions["rewards"] += 1

    def record_insufficient_points(self) -> None:
        with self._lock:
            self._redemptions["insufficient_points"] += 1

    def record_tier_upgrade(self, tier: str) -> None:
        with self._lock:
            self._tier_upgrades[tier] += 1

    def record_expiry_run(self, *, expired: int, failed: int) -> None:
        with self._lock:
            self._expiry["runs"] += 1
            self._expiry["expired"] += expired
            self._expiry["failed"] += failed

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return LedgerSnapshot(
                awards=dict(self._awards),
                redemptions=dict(self._redemptions),
                tier_upgrades=dict(self._tier_upgrades),
                expiry=dict(self._expiry),
            )

    def reset(self) -> None:
        with self._lock:
            self._awards.clear()
            self._redemptions.clear()
            self._tier_upgrades.clear()
            self._expiry.clear()


_STORE = LedgerObservabilityStore()


def get_ledger_store() -> LedgerObservabilityStore:
    return _STORE


__all__ = ["get_ledger_store", "LedgerObservabilityStore", "LedgerSnapshot"]
