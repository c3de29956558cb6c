import asyncio
import logging
import signal

from knowledge.config import settings
from knowledge.services.embeddings import get_embedder
from knowledge.workers.sweeper import StagingSweeper
from knowledge.workers.vectorization import VectorizationWorker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_workers() -> list[VectorizationWorker | StagingSweeper]:
    """The vectorization loops (sharing one embedder) plus the staging sweeper."""
    embedder = get_embedder()
    if embedder is None:
        logger.warning("No embedding provider configured; vectorization jobs will fail")

    workers: list[VectorizationWorker | StagingSweeper] = [
        VectorizationWorker(embedder=embedder)
        for _ in range(max(1, settings.vectorization_workers))
    ]
    workers.append(StagingSweeper())
    return workers


async def run_workers():
    workers = build_workers()

    def handle_shutdown(sig, frame):  # noqa: ARG001
        logger.info(f"Received shutdown signal: {sig}")
        for worker in workers:
            worker.stop()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    await asyncio.gather(*(worker.run() for worker in workers))


def main():
    """Entry point for ``jacc-worker``."""
    logger.info("Starting JACC knowledge workers")
    asyncio.run(run_workers())


if __name__ == "__main__":
    main()
