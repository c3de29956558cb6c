import asyncio
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from knowledge.config import settings
from knowledge.services.ingestion import sweep_expired_tickets
from knowledge.services.storage import FileStore

logger = logging.getLogger(__name__)


class StagingSweeper:
    """Periodically expires unplaced staging tickets and frees their bytes."""

    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        store: FileStore | None = None,
    ):
        if session_factory is None:
            from knowledge.db import async_session_factory

            session_factory = async_session_factory
        self.session_factory = session_factory
        self.store = store or FileStore()
        self.running = False

    async def run_once(self) -> int:
        async with self.session_factory() as session:
            return await sweep_expired_tickets(session, self.store)

    async def run(self) -> None:
        self.running = True
        logger.info("Starting staging sweeper")

        while self.running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Sweeper error: {e}")
            await asyncio.sleep(settings.sweep_interval_seconds)

    def stop(self) -> None:
        self.running = False
        logger.info("Stopping staging sweeper")
