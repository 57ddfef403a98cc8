"""Command line entry points: a one-off expiry sweep or the job scheduler."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Any, Sequence

from loguru import logger

from loyalty_ledger.core.logging import configure_logging
from loyalty_ledger.core.settings import settings
from loyalty_ledger.db.session import async_session, engine
from loyalty_ledger.jobs.expiry import run_expiry_sweep
from loyalty_ledger.scheduling import LoyaltyJobScheduler

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def resolve_schedule_path(raw: str) -> Path:
    path = Path(raw)
    if path.is_absolute() or path.exists():
        return path
    return _PROJECT_ROOT / path


async def _run_sweep(batch_size: int | None) -> dict[str, Any]:
    try:
        return await run_expiry_sweep(session_factory=async_session, batch_size=batch_size)
    finally:
        await engine.dispose()


async def _run_scheduler(schedule_path: Path) -> None:
    scheduler = LoyaltyJobScheduler(session_factory=async_session, config_path=schedule_path)
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        await scheduler.stop()
        await engine.dispose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="loyalty_ledger", description="Loyalty ledger maintenance.")
    commands = parser.add_subparsers(dest="command", required=True)

    sweep = commands.add_parser("sweep", help="Expire points past their expiry date once.")
    sweep.add_argument("--batch-size", type=int, default=None, help="Maximum entries to expire.")

    scheduler = commands.add_parser("scheduler", help="Run scheduled jobs until interrupted.")
    scheduler.add_argument(
        "--schedule",
        default=settings.job_schedule_path,
        help="Path to the TOML job schedule.",
    )
    return parser


def cli(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(
        service_name=settings.service_name,
        environment=settings.environment,
        version=settings.version,
        level=settings.log_level,
    )

    if args.command == "sweep":
        asyncio.run(_run_sweep(args.batch_size))
        return 0

    if not settings.job_scheduler_enabled:
        logger.warning("Loyalty job scheduler disabled; set LOYALTY_JOB_SCHEDULER_ENABLED=true")
        return 1
    try:
        asyncio.run(_run_scheduler(resolve_schedule_path(args.schedule)))
    except KeyboardInterrupt:
        logger.info("Loyalty job scheduler interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(cli())
