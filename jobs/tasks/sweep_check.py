"""
Sweep check task.

Runs one sweep cycle of a chain in a dramatiq worker.
"""

import asyncio
from collections import Counter

import dramatiq
from loguru import logger

from custody.utils.exceptions import is_transient
from jobs.utils.database import task_custody_service


@dramatiq.actor(max_retries=3, time_limit=600_000)  # 10 min timeout
def sweep_chain(chain: str) -> None:
    """
    Sweep deposit addresses of a chain into its main pool.

    Args:
        chain: Chain name with sweeping enabled
    """
    logger.info(f"Starting {chain} sweep check...")

    try:
        statuses = asyncio.run(_sweep_chain_async(chain))
    except Exception as e:
        if is_transient(e):
            logger.warning(f"{chain} sweep check hit a transient error, retrying: {e}")
            raise
        logger.exception(f"{chain} sweep check failed: {e}")
        return

    logger.info(f"{chain} sweep check complete: {dict(statuses)}")


async def _sweep_chain_async(chain: str) -> Counter:
    """Async implementation of one sweep cycle."""
    async with task_custody_service() as service:
        results = await service.sweep_once(chain)
        return Counter(result.status.value for result in results)
