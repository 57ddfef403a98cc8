"""Append-only point ledger backing every loyalty balance."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Collection, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.models.loyalty import (
    LoyaltyEarnReason,
    LoyaltyRedeemReason,
    LoyaltyTransaction,
    LoyaltyTransactionType,
)


@dataclass
class PageMeta:
    total: int
    page: int
    limit: int
    total_pages: int


@dataclass
class TransactionPage:
    """Paginated slice of an account's ledger, newest first."""

    data: list[LoyaltyTransaction]
    meta: PageMeta


class TransactionLedger:
    """Appends and queries signed point deltas.

    The ledger never updates or deletes rows apart from flipping ``is_expired``
    once on an earn entry. Callers own the surrounding transaction.
    """

    def __init__(self, db_session: AsyncSession, *, max_page_limit: int = 100) -> None:
        self._db = db_session
        self._max_page_limit = max_page_limit

    async def append_earn(
        self,
        account_id: UUID,
        *,
        points: int,
        reason: LoyaltyEarnReason,
        expires_at: datetime,
        description: str | None = None,
        reference_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LoyaltyTransaction:
        if points < 0:
            raise ValueError("Earn entries carry a non-negative point delta")
        return await self._append(
            LoyaltyTransaction(
                account_id=account_id,
                type=LoyaltyTransactionType.EARNED,
                points=points,
                earn_reason=reason,
                description=description,
                reference_id=reference_id,
                expires_at=expires_at,
                is_expired=False,
                metadata_json=metadata,
            )
        )

    async def append_redeem(
        self,
        account_id: UUID,
        *,
        points: int,
        reason: LoyaltyRedeemReason,
        description: str | None = None,
        reference_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LoyaltyTransaction:
        if points <= 0:
            raise ValueError("Redeem entries require a positive amount")
        return await self._append(
            LoyaltyTransaction(
                account_id=account_id,
                type=LoyaltyTransactionType.REDEEMED,
                points=-points,
                redeem_reason=reason,
                description=description,
                reference_id=reference_id,
                metadata_json=metadata,
            )
        )

    async def append_expiry(
        self,
        source: LoyaltyTransaction,
        *,
        points: int,
    ) -> LoyaltyTransaction:
        """Record the compensating entry for an aged earn entry and close it."""

        if source.type != LoyaltyTransactionType.EARNED:
            raise ValueError("Only earn entries expire")
        if source.is_expired:
            raise ValueError(f"Transaction {source.id} already expired")
        entry = await self._append(
            LoyaltyTransaction(
                account_id=source.account_id,
                type=LoyaltyTransactionType.EXPIRED,
                points=-points,
                description=f"Points expired from transaction {source.id}",
                reference_id=str(source.id),
                metadata_json={"expired_transaction_id": str(source.id), "original_points": source.points},
            )
        )
        source.is_expired = True
        return entry

    async def get(self, transaction_id: UUID, *, for_update: bool = False) -> LoyaltyTransaction | None:
        stmt = (
            select(LoyaltyTransaction)
            .where(LoyaltyTransaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def balance(self, account_id: UUID) -> int:
        """Sum of every delta for the account; must equal ``current_points``."""

        stmt = select(func.coalesce(func.sum(LoyaltyTransaction.points), 0)).where(
            LoyaltyTransaction.account_id == account_id
        )
        result = await self._db.execute(stmt)
        return int(result.scalar_one())

    async def list_for_account(
        self,
        account_id: UUID,
        *,
        types: Sequence[LoyaltyTransactionType] | None = None,
    ) -> list[LoyaltyTransaction]:
        stmt = (
            select(LoyaltyTransaction)
            .where(LoyaltyTransaction.account_id == account_id)
            .order_by(LoyaltyTransaction.created_at.asc())
        )
        if types:
            stmt = stmt.where(LoyaltyTransaction.type.in_(list(types)))
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def page(self, account_id: UUID, *, page: int = 1, limit: int = 20) -> TransactionPage:
        """Return one page of history ordered newest first."""

        bounded_page = max(1, page)
        bounded_limit = max(1, min(limit, self._max_page_limit))

        count_stmt = select(func.count(LoyaltyTransaction.id)).where(
            LoyaltyTransaction.account_id == account_id
        )
        total = int((await self._db.execute(count_stmt)).scalar_one())

        stmt = (
            select(LoyaltyTransaction)
            .where(LoyaltyTransaction.account_id == account_id)
            .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
            .offset((bounded_page - 1) * bounded_limit)
            .limit(bounded_limit)
        )
        result = await self._db.execute(stmt)
        return TransactionPage(
            data=list(result.scalars().all()),
            meta=PageMeta(
                total=total,
                page=bounded_page,
                limit=bounded_limit,
                total_pages=math.ceil(total / bounded_limit),
            ),
        )

    async def list_expirable(
        self,
        *,
        now: datetime,
        limit: int | None = None,
        exclude: Collection[UUID] = (),
    ) -> list[UUID]:
        """Ids of earn entries past their expiry that have not been expired yet."""

        stmt = (
            select(LoyaltyTransaction.id)
            .where(
                LoyaltyTransaction.type == LoyaltyTransactionType.EARNED,
                LoyaltyTransaction.is_expired.is_(False),
                LoyaltyTransaction.expires_at.is_not(None),
                LoyaltyTransaction.expires_at <= now,
            )
            .order_by(LoyaltyTransaction.expires_at.asc())
        )
        if exclude:
            stmt = stmt.where(LoyaltyTransaction.id.not_in(list(exclude)))
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def _append(self, entry: LoyaltyTransaction) -> LoyaltyTransaction:
        self._db.add(entry)
        await self._db.flush()
        return entry


__all__ = ["PageMeta", "TransactionLedger", "TransactionPage"]
