# ragflow/application/ingestion_service.py

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ragflow.application.chunker import Chunker
from ragflow.domain.errors import EmbeddingError, PersistenceError
from ragflow.domain.interfaces import EmbeddingPort
from ragflow.domain.models import (
    DOCUMENT_ID_KEY,
    DOCUMENT_NAME_KEY,
    FRAGMENT_INDEX_KEY,
    DocumentRecord,
    DocumentStatus,
    Fragment,
    IndexReport,
)
from ragflow.infrastructure.document_loader import DocumentLoader
from ragflow.infrastructure.document_repository import DocumentRepository
from ragflow.infrastructure.file_hasher import compute_file_hash
from ragflow.infrastructure.vector_store import VectorIndex
from ragflow.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SyncReport:
    indexed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)


class IngestionService:
    """
    Turns documents into indexed fragments: load -> chunk -> embed -> index.

    Re-indexing a document adds the new fragment records first, swaps the
    vectors in one exclusive section of the collection, and only then
    retires the old records, so a concurrent query never sees a mix of old
    and new fragments and never misses content for a fragment it found.
    Runs on the same document are serialized.
    """

    def __init__(
        self,
        chunker: Chunker,
        embedding_engine: EmbeddingPort,
        vector_index: VectorIndex,
        repository: DocumentRepository,
        loader: Optional[DocumentLoader] = None,
    ):
        self._chunker = chunker
        self._embedding_engine = embedding_engine
        self._vector_index = vector_index
        self._repository = repository
        self._loader = loader or DocumentLoader()
        self._document_locks: Dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    def load(self) -> None:
        """Restore index and records from disk. Failures leave an empty state."""
        try:
            self._repository.load()
        except PersistenceError as error:
            logger.error(f"[Ingestion] {error}, starting with an empty repository")
        self._vector_index.load()

    def save(self) -> bool:
        ok = self._vector_index.save()
        try:
            self._repository.save()
        except PersistenceError as error:
            logger.error(f"[Ingestion] {error}")
            ok = False
        return ok

    # ─── Documents ────────────────────────────────────────────────────────────

    def register_document(self, collection: str, path: Path, name: Optional[str] = None) -> DocumentRecord:
        path = Path(path)
        record = self._repository.add_document(
            collection=collection,
            name=name or path.name,
            path=str(path.resolve()),
        )
        logger.info(f"[Ingestion] Registered '{record.name}' as document {record.document_id} in '{collection}'")
        return record

    def index_document(self, document_id: int, persist: bool = True) -> IndexReport:
        """
        (Re)index one registered document. Failures mark the document FAILED
        and come back in the report instead of being raised.
        """
        self._repository.get_document(document_id)
        with self._document_lock(document_id):
            # Re-read under the lock: a concurrent ingest may have moved the path.
            document = self._repository.get_document(document_id)
            report = self._index_locked(document)

        if persist:
            self.save()
        return report

    def _index_locked(self, document: DocumentRecord) -> IndexReport:
        document_id = document.document_id
        try:
            text = self._loader.load_text(Path(document.path))
            chunks = self._chunker.chunk(text)
            vectors = self._embedding_engine.embed_batch(chunks) if chunks else []
            if len(vectors) != len(chunks):
                raise EmbeddingError(f"Expected {len(chunks)} embeddings, got {len(vectors)}")

            records = self._repository.add_fragments(document_id, chunks)
            fragments = [
                Fragment(
                    fragment_id=record.fragment_id,
                    collection=document.collection,
                    vector=vector,
                    metadata={
                        DOCUMENT_ID_KEY: document_id,
                        DOCUMENT_NAME_KEY: document.name,
                        FRAGMENT_INDEX_KEY: record.fragment_index,
                    },
                )
                for record, vector in zip(records, vectors)
            ]
            new_ids = [record.fragment_id for record in records]

            try:
                self._vector_index.replace_document(document.collection, document_id, fragments)
            except Exception:
                self._repository.drop_fragments(document_id, keep=self._other_ids(document_id, new_ids))
                raise
            self._repository.drop_fragments(document_id, keep=new_ids)

            self._repository.update_document(
                document_id,
                status=DocumentStatus.INDEXED,
                fragment_count=len(fragments),
                content_hash=compute_file_hash(Path(document.path)),
            )
            logger.info(f"[Ingestion] Indexed '{document.name}': {len(fragments)} fragments")
            return IndexReport(document_id, len(fragments), DocumentStatus.INDEXED)

        except Exception as error:
            logger.error(f"[Ingestion] Indexing '{document.name}' failed: {error}")
            self._repository.update_document(document_id, status=DocumentStatus.FAILED)
            return IndexReport(document_id, 0, DocumentStatus.FAILED, str(error))

    def ingest_file(
        self,
        collection: str,
        path: Path,
        name: Optional[str] = None,
        discard_previous: bool = False,
    ) -> IndexReport:
        """
        Register the file (or reuse the record with the same name) and index it.
        With `discard_previous`, the file the reused record pointed at is deleted.
        """
        path = Path(path)
        existing = self._repository.find_document(collection, name or path.name)
        if existing is None:
            record = self.register_document(collection, path, name)
            return self.index_document(record.document_id)

        with self._document_lock(existing.document_id):
            previous = Path(self._repository.get_document(existing.document_id).path)
            self._repository.update_document(existing.document_id, path=str(path.resolve()))
        report = self.index_document(existing.document_id)

        if discard_previous and previous != path.resolve():
            try:
                previous.unlink(missing_ok=True)
            except OSError as error:
                logger.warning(f"[Ingestion] Could not remove replaced file '{previous}': {error}")
        return report

    def delete_document(self, document_id: int) -> DocumentRecord:
        record = self._repository.get_document(document_id)
        removed = self._vector_index.delete_document(record.collection, document_id)
        self._repository.delete_document(document_id)
        with self._locks_guard:
            self._document_locks.pop(document_id, None)
        self.save()
        logger.info(f"[Ingestion] Deleted document {document_id} ({removed} fragments)")
        return record

    def delete_collection(self, collection: str) -> int:
        documents = self._repository.list_documents(collection)
        for record in documents:
            self._repository.delete_document(record.document_id)
        self._vector_index.delete_collection(collection)
        self.save()
        logger.info(f"[Ingestion] Deleted collection '{collection}' ({len(documents)} documents)")
        return len(documents)

    def list_documents(self, collection: Optional[str] = None) -> List[DocumentRecord]:
        return self._repository.list_documents(collection)

    def list_collections(self) -> List[str]:
        return sorted(set(self._repository.list_collections()) | set(self._vector_index.collections()))

    # ─── Directories ──────────────────────────────────────────────────────────

    def sync_directory(self, collection: str, directory: Path) -> SyncReport:
        """
        Bring the documents of `collection` that were read from `directory`
        in line with its files: new or modified files are (re)indexed,
        vanished ones are deleted. Documents added from elsewhere (uploads)
        are left alone.
        """
        directory = Path(directory)
        files = self._loader.list_files(directory)
        root = directory.resolve()

        current = {file_path.relative_to(directory).as_posix(): file_path for file_path in files}
        existing = {
            record.name: record
            for record in self._repository.list_documents(collection)
            if Path(record.path).is_relative_to(root)
        }
        report = SyncReport()

        for name, file_path in current.items():
            record = existing.get(name)
            if (
                record is not None
                and record.content_hash == compute_file_hash(file_path)
                and record.status is DocumentStatus.INDEXED
            ):
                report.unchanged.append(name)
                continue

            if record is None:
                record = self.register_document(collection, file_path, name=name)
            result = self.index_document(record.document_id, persist=False)
            if result.status is DocumentStatus.INDEXED:
                report.indexed.append(name)
            else:
                report.failed.append(name)

        for name, record in existing.items():
            if name not in current:
                self._vector_index.delete_document(collection, record.document_id)
                self._repository.delete_document(record.document_id)
                report.deleted.append(name)

        self.save()
        logger.info(
            f"[Ingestion] Synced '{collection}': {len(report.indexed)} indexed, "
            f"{len(report.failed)} failed, {len(report.deleted)} deleted, "
            f"{len(report.unchanged)} unchanged"
        )
        return report

    def _document_lock(self, document_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._document_locks.get(document_id)
            if lock is None:
                lock = threading.Lock()
                self._document_locks[document_id] = lock
            return lock

    def _other_ids(self, document_id: int, new_ids: List[int]) -> List[int]:
        fresh = set(new_ids)
        return [
            record.fragment_id
            for record in self._repository.fragments_for_document(document_id)
            if record.fragment_id not in fresh
        ]
