"""Idle sandbox reaper: hibernates projects with no recent activity."""

import asyncio
import logging
import time
from typing import Any

from sandbox.lifecycle import SnapshotType

logger = logging.getLogger(__name__)


async def run_idle_reaper_once(services: Any, now: float | None = None) -> int:
    """Hibernate every active project idle past the inactivity limit."""
    cfg = services.settings.reaper
    cutoff = (now if now is not None else time.time()) - cfg.inactivity_sec
    rows = await asyncio.to_thread(services.projects.list_idle, cutoff)
    total = 0
    for row in rows:
        try:
            hibernated = await services.project_service.hibernate(
                row, SnapshotType.AUTO_CLEANUP, idle_before=cutoff
            )
            if hibernated is not None:
                total += 1
        except Exception as e:
            logger.warning("[idle-reaper] failed to hibernate %s: %s", row.id, e)
    purged = services.sessions.purge_expired()
    if purged:
        logger.debug("[idle-reaper] purged %d expired session(s)", purged)
    return total


async def idle_reaper_loop(services: Any) -> None:
    """Background task that periodically hibernates idle projects."""
    interval = services.settings.reaper.interval_sec
    while True:
        try:
            count = await run_idle_reaper_once(services)
            if count > 0:
                logger.info("[idle-reaper] hibernated %d idle project(s)", count)
        except Exception as e:
            logger.error("[idle-reaper] error: %s", e)
        await asyncio.sleep(interval)
