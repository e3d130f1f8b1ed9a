"""Isolated custody service for dramatiq tasks."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from custody.config.database import create_engine, create_session_maker
from custody.config.settings import settings
from custody.services.custody_service import CustodyService
from custody.services.factory import build_custody_service


@asynccontextmanager
async def task_custody_service() -> AsyncIterator[CustodyService]:
    """
    Build a custody service bound to the current event loop.

    Uses a NullPool engine so nothing outlives the task's asyncio.run().

    Yields:
        CustodyService (scheduler not started)
    """
    engine = create_engine(settings.database_url)
    service = build_custody_service(settings, create_session_maker(engine))
    try:
        yield service
    finally:
        await service.stop()
        await engine.dispose()
