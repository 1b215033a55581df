"""
Background maintenance - periodic retention cleanup of finished tasks.
"""

import asyncio

from app.config import logger
from app.services.task_queue import TaskQueue


async def run_cleanup_loop(queue: TaskQueue, retention_hours: float, interval_seconds: float):
    """Drop finished tasks older than ``retention_hours`` every ``interval_seconds``."""
    logger.info(f"🔄 Task cleanup loop started (retention {retention_hours}h, every {interval_seconds}s)")
    while True:
        try:
            removed = queue.cleanup_tasks(retention_hours)
            if removed:
                logger.info(f"Removed {removed} expired tasks, {len(queue)} remain")
        except Exception as e:
            logger.error(f"Task cleanup error: {e}", exc_info=True)
        await asyncio.sleep(interval_seconds)
