"""Scheduled sweep that expires aged loyalty points."""

# meta: job: loyalty-expiry

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.services.loyalty import LoyaltyService

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def run_expiry_sweep(*, session_factory: SessionFactory, batch_size: int | None = None) -> Dict[str, Any]:
    """Expire earn entries past their expiry date and report the outcome."""

    maybe_session = session_factory()
    session: AsyncSession
    if isinstance(maybe_session, AsyncSession):
        session = maybe_session
    else:
        session = await maybe_session

    async with session as managed_session:
        service = LoyaltyService(managed_session, expiry_batch_size=batch_size)
        result = await service.run_expiry_sweep()

    summary = result.as_dict()
    logger.bind(summary=summary).info("Loyalty expiry job completed")
    return summary


__all__ = ["run_expiry_sweep"]
