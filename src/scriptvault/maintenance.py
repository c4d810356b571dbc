"""
Periodic background jobs.

The vault schedules its vacuum pass through :func:`startup` and cancels it in
:func:`shutdown`. A failing cycle is logged and the loop keeps going.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


def startup(
    task_fn: Callable[[], Awaitable[object]],
    interval: float,
    *,
    name: str = "maintenance",
) -> asyncio.Task:
    """
    Run ``task_fn`` every ``interval`` seconds until cancelled.

    The first run happens one interval after scheduling, so startup is not
    slowed down by a full sweep. Returns the :class:`asyncio.Task` handle.
    """

    async def _periodic() -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await task_fn()
            except Exception:
                logger.exception("%s cycle failed", name)

    logger.info("Scheduled %s every %ss", name, interval)
    return asyncio.create_task(_periodic(), name=name)


async def shutdown(task: asyncio.Task | None) -> None:
    """Cancel a task started with :func:`startup`; ``None`` is ignored."""

    if not task:
        return

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:  # pragma: no cover - normal cancellation
        pass


__all__ = ["startup", "shutdown"]
