import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from knowledge.config import settings
from knowledge.models import Document, Job, JobType, VectorizationStatus
from knowledge.services.corpus import delete_chunks, replace_chunks
from knowledge.services.embeddings import Embedder, get_embedder
from knowledge.services.extraction import UnsupportedFileType, chunk_text, extract_content
from knowledge.workers.base import BaseWorker

logger = logging.getLogger(__name__)

EMBEDDING_BATCH_SIZE = 100


class VectorizationWorker(BaseWorker):
    """Worker that extracts, chunks and embeds placed documents."""

    job_type = JobType.VECTORIZE_DOCUMENT

    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        embedder: Embedder | None = None,
    ):
        super().__init__(session_factory)
        self.embedder = embedder

    async def process_job(self, session: AsyncSession, job: Job) -> None:
        """
        Process a VECTORIZE_DOCUMENT job:
        1. Extract text from the stored file
        2. Chunk it
        3. Embed the chunks and replace the document's index entries
        """
        if not job.document_id:
            raise ValueError("VECTORIZE_DOCUMENT job requires document_id")

        document = await session.get(Document, job.document_id)
        if not document:
            raise ValueError(f"Document {job.document_id} not found")

        try:
            extracted = extract_content(document.storage_path, document.mime_type)
        except UnsupportedFileType:
            logger.info(f"No text extractor for {document.mime_type}, skipping {document.id}")
            await self._skip(session, document, f"No text extractor for {document.mime_type}")
            return

        chunks = chunk_text(
            extracted.text,
            chunk_size=settings.chunk_size,
            overlap=settings.chunk_overlap,
        )
        if not chunks:
            await self._skip(session, document, "No text found in document")
            return

        embedder = self.embedder or get_embedder()
        if embedder is None:
            raise RuntimeError("No embedding provider configured")

        vectors: list[list[float]] = []
        for i in range(0, len(chunks), EMBEDDING_BATCH_SIZE):
            batch = chunks[i : i + EMBEDDING_BATCH_SIZE]
            vectors.extend(await embedder.embed([c.text for c in batch]))

        await replace_chunks(session, document, chunks, vectors)

        document.vectorization_status = VectorizationStatus.VECTORIZED
        document.vectorization_error = None
        document.last_vectorized_at = datetime.utcnow()
        logger.info(f"Vectorized document {document.id}: {len(chunks)} chunks")

    async def _skip(self, session: AsyncSession, document: Document, reason: str) -> None:
        await delete_chunks(session, document.id)
        document.vectorization_status = VectorizationStatus.SKIPPED
        document.vectorization_error = reason

    async def on_final_failure(self, session: AsyncSession, job: Job, error: str) -> None:
        document = await session.get(Document, job.document_id) if job.document_id else None
        if document:
            document.vectorization_status = VectorizationStatus.FAILED
            document.vectorization_error = error
