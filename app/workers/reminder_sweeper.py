from __future__ import annotations
import argparse
import asyncio
import logging
import signal
from typing import Optional

from ..config import get_settings
from ..db import SessionLocal, engine
from ..domain.errors import GateError
from ..domain.schemas.dispatch import DispatchReport
from ..observability.logging import setup_logging
from ..redis_client import acquire_lock, redis, release_lock
from ..repos import admin_settings as settings_repo
from ..services.mailer import get_transport
from ..services.reminders import SWEEP_LOCK_KEY, run_reminder_sweep

S = get_settings()
log = logging.getLogger("worker.reminder_sweeper")


async def run_once(*, limit: Optional[int] = None, cancel: Optional[asyncio.Event] = None) -> Optional[DispatchReport]:
    """One sweep under the shared lock. Returns None when another run holds it."""
    token = await acquire_lock(SWEEP_LOCK_KEY, S.SWEEP_LOCK_TTL_SEC)
    if token is None:
        log.info("reminder sweep already running; skipping")
        return None
    try:
        async with SessionLocal() as db:
            settings = await settings_repo.get_snapshot(db)
            return await run_reminder_sweep(
                db, settings, transport=get_transport(), limit=limit, cancel=cancel
            )
    finally:
        await release_lock(SWEEP_LOCK_KEY, token)


async def _main(limit: Optional[int]) -> int:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.set)
        except NotImplementedError:  # windows
            pass
    try:
        report = await run_once(limit=limit, cancel=cancel)
    except GateError as e:
        log.error("reminder sweep aborted: %s", e.detail, extra={"code": e.code})
        return 1
    finally:
        await redis.aclose()
        await engine.dispose()
    if report is None:
        return 0
    log.info(
        "reminder sweep finished: sent=%d failed=%d cancelled=%s",
        len(report.sent), len(report.failed), report.cancelled,
    )
    return 1 if report.failed else 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Send due item reminders once and exit (run from cron).")
    parser.add_argument("--limit", type=int, default=None, help="remind at most this many items")
    args = parser.parse_args(argv)
    setup_logging()
    return asyncio.run(_main(args.limit))


if __name__ == "__main__":
    raise SystemExit(main())
