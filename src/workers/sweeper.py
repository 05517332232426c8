"""
Background Sweeper
==================

Runs every ``SWEEP_INTERVAL_SECONDS`` (default 60 s).

Per cycle
---------
1. Disconnect realtime connections whose writer failed (client vanished
   without a close frame).
2. Purge expired verification codes from the in-memory store (Redis
   expires its own keys).
3. Log the number of live connections.

A failing cycle is logged and the loop carries on.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from src.config import settings
from src.infrastructure.codes import CodeStore
from src.infrastructure.pubsub import TopicHub

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_sweeper(
    hub: TopicHub,
    codes: Optional[CodeStore] = None,
    interval: float = settings.sweep_interval_seconds,
) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(hub, codes, interval))
    logger.info("Sweeper started (interval=%ss)", interval)


async def stop_sweeper() -> None:
    global _task, _stop_event
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    _task = None
    _stop_event = None
    logger.info("Sweeper stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(hub: TopicHub, codes: Optional[CodeStore], interval: float) -> None:
    assert _stop_event is not None
    stop = _stop_event
    while not stop.is_set():
        try:
            await run_sweep_cycle(hub, codes)
        except Exception:
            logger.exception("Unhandled error in sweep cycle")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def run_sweep_cycle(hub: TopicHub, codes: Optional[CodeStore] = None) -> dict:
    """Execute one sweep.  Returns what was cleaned up."""
    pruned = await hub.prune()
    purged = await codes.purge_expired() if codes is not None else 0
    live = len(hub.connections)
    if pruned or purged:
        logger.info(
            "Sweep: %d dead connections pruned, %d expired codes purged", pruned, purged
        )
    logger.debug("Sweep: %d live connections", live)
    return {"pruned": pruned, "purged": purged, "live": live}
