"""Local byte storage for staged uploads and placed documents."""

import hashlib
import logging
import shutil
from pathlib import Path
from uuid import UUID

from knowledge.config import settings
from knowledge.errors import StorageFailure

logger = logging.getLogger(__name__)


def content_hash(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


class FileStore:
    """
    Two directories: a staging area keyed by ticket, and permanent storage
    keyed by document id. Any OS-level failure surfaces as StorageFailure.
    """

    def __init__(self, staging_dir: str | None = None, storage_dir: str | None = None):
        self.staging_dir = Path(staging_dir or settings.staging_dir)
        self.storage_dir = Path(storage_dir or settings.storage_dir)

    def stage(self, ticket_id: UUID, file_id: UUID, data: bytes) -> str:
        path = self.staging_dir / str(ticket_id) / str(file_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            logger.error(f"Failed to stage file {file_id} for ticket {ticket_id}: {e}")
            raise StorageFailure(f"Could not write to staging area: {e}") from e
        return str(path)

    def place(self, document_id: UUID, filename: str, data: bytes) -> str:
        suffix = Path(filename).suffix.lower()
        path = self.storage_dir / f"{document_id}{suffix}"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            logger.error(f"Failed to store document {document_id}: {e}")
            raise StorageFailure(f"Could not write to document storage: {e}") from e
        return str(path)

    def read(self, path: str) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise StorageFailure(f"Could not read {path}: {e}") from e

    def delete(self, path: str) -> None:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            raise StorageFailure(f"Could not delete {path}: {e}") from e

    def discard_ticket(self, ticket_id: UUID) -> None:
        """Remove everything staged under a ticket."""
        path = self.staging_dir / str(ticket_id)
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise StorageFailure(f"Could not remove staging area {path}: {e}") from e
