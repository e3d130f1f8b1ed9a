"""
Deposit scan task.

Runs one deposit scan cycle of a chain in a dramatiq worker, for
deployments that drive polling from the queue instead of custody.main.
"""

import asyncio

import dramatiq
from loguru import logger

from custody.utils.exceptions import is_transient
from jobs.utils.database import task_custody_service


@dramatiq.actor(max_retries=3, time_limit=300_000)  # 5 min timeout
def scan_chain_deposits(chain: str) -> None:
    """
    Scan all monitored addresses of a chain once.

    Args:
        chain: Chain name (solana, ethereum, tron)
    """
    logger.info(f"Starting {chain} deposit scan...")

    try:
        report = asyncio.run(_scan_chain_deposits_async(chain))
    except Exception as e:
        if is_transient(e):
            logger.warning(f"{chain} deposit scan hit a transient error, retrying: {e}")
            raise
        logger.exception(f"{chain} deposit scan failed: {e}")
        return

    logger.info(
        f"{chain} deposit scan complete: addresses={report['addresses']}, "
        f"credited={report['credited']}, duplicates={report['duplicates']}, "
        f"failed={len(report['failed_addresses'])}"
    )


async def _scan_chain_deposits_async(chain: str) -> dict:
    """Async implementation of one scan cycle."""
    async with task_custody_service() as service:
        report = await service.process_deposit_scan_once(chain)
        return report.as_dict()
