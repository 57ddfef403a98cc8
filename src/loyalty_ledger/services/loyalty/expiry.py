"""Batch expiry of aged earn entries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from loguru import logger

from loyalty_ledger.models.loyalty import LoyaltyTransactionType
from loyalty_ledger.observability.ledger import get_ledger_store

from .accounts import AccountManager


@dataclass
class ExpirySweepResult:
    expired_count: int = 0
    failed_count: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"expired_count": self.expired_count, "failed_count": self.failed_count}


class ExpiryScanner:
    """Converts earn entries past ``expires_at`` into compensating expiry entries."""

    def __init__(self, accounts: AccountManager, *, batch_size: int | None = None) -> None:
        self._accounts = accounts
        self._batch_size = batch_size

    async def sweep(self, *, now: datetime | None = None) -> ExpirySweepResult:
        """Expire every due entry, one account-locked unit per entry.

        Candidates are fetched ``batch_size`` at a time until none are left. A
        failing entry is rolled back, counted and not retried within this sweep;
        the sweep carries on. Entries already flagged ``is_expired`` are skipped,
        so re-running is a no-op.
        """

        horizon = now or self._accounts.now()
        result = ExpirySweepResult()
        # Ids that stay due after processing; excluded so later batches make progress.
        passed_over: set[UUID] = set()
        batches = 0

        while True:
            async with self._accounts.unit_of_work():
                candidate_ids = await self._accounts.ledger.list_expirable(
                    now=horizon, limit=self._batch_size, exclude=passed_over
                )
            if not candidate_ids:
                break
            batches += 1

            for transaction_id in candidate_ids:
                try:
                    expired = await self._expire_entry(transaction_id)
                except Exception as exc:
                    result.failed_count += 1
                    passed_over.add(transaction_id)
                    logger.opt(exception=exc).warning(
                        "Unable to expire loyalty transaction",
                        transaction_id=str(transaction_id),
                    )
                    continue
                if expired:
                    result.expired_count += 1
                else:
                    passed_over.add(transaction_id)

            if self._batch_size is None:
                break

        get_ledger_store().record_expiry_run(
            expired=result.expired_count, failed=result.failed_count
        )
        logger.info(
            "Loyalty expiry sweep completed",
            batches=batches,
            expired=result.expired_count,
            failed=result.failed_count,
        )
        return result

    async def _expire_entry(self, transaction_id: UUID) -> bool:
        ledger = self._accounts.ledger
        async with self._accounts.unit_of_work():
            source = await ledger.get(transaction_id)
            if source is None or source.type != LoyaltyTransactionType.EARNED:
                return False
            account = await self._accounts.lock_account(source.account_id)
            # Re-read under the account lock; a concurrent sweep may have closed it.
            source = await ledger.get(transaction_id, for_update=True)
            if source is None or source.is_expired:
                return False
            entry = await self._accounts.apply_expiry(account, source)

        logger.debug(
            "Expired loyalty points",
            account_id=str(account.id),
            transaction_id=str(transaction_id),
            expired_points=-int(entry.points),
            current_points=account.current_points,
        )
        return True


__all__ = ["ExpiryScanner", "ExpirySweepResult"]
