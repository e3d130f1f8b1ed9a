"""
Custody main entry point.

Runs the deposit pollers and sweep loops of every enabled chain in one
asyncio process, with the health check server alongside.

Usage:
    python -m custody.main
"""

import asyncio
import signal
import sys

from loguru import logger

from custody.config.database import create_engine, create_session_maker
from custody.config.logging import setup_logging
from custody.config.settings import settings
from custody.services.factory import build_custody_service
from jobs.health import set_custody_service, start_health_server, stop_health_server


async def main() -> None:
    """Initialize and run the custody process until SIGINT/SIGTERM."""
    setup_logging(settings.log_level, settings.log_file)
    logger.info(f"Starting custody service ({settings.environment})")

    engine = create_engine(settings.database_url, echo=settings.database_echo)
    service = build_custody_service(settings, create_session_maker(engine))
    set_custody_service(service)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    runner = None
    try:
        runner, _ = await start_health_server(
            host=settings.health_check_host,
            port=settings.health_check_port,
        )
    except OSError as e:
        logger.warning(f"Failed to start health check server: {e}")

    service.start()
    try:
        await stop_event.wait()
        logger.info("Shutdown signal received")
    finally:
        logger.info("Graceful shutdown initiated...")
        await service.stop()
        if runner is not None:
            await stop_health_server(runner)
        await engine.dispose()
        logger.info("Graceful shutdown complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Custody service stopped by user (KeyboardInterrupt)")
    except Exception as e:
        logger.exception(f"Custody service crashed: {e}")
        sys.exit(1)
