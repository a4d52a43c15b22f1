# ragflow/infrastructure/document_repository.py

import json
import os
import tempfile
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ragflow.domain.errors import DocumentNotFoundError, PersistenceError
from ragflow.domain.interfaces import FragmentLookupPort
from ragflow.domain.models import DocumentRecord, DocumentStatus, FragmentRecord
from ragflow.logger import get_logger

logger = get_logger(__name__)


REPOSITORY_FILENAME = "documents.json"


class DocumentRepository(FragmentLookupPort):
    """
    Document and fragment records with process-wide unique integer ids.

    Held in memory and written as one JSON file next to the vector index
    artifacts (temp file + os.replace). Fragment ids are never reused, even
    after the owning document is deleted or re-indexed.
    """

    def __init__(self, storage_dir: Path):
        self._path = Path(storage_dir) / REPOSITORY_FILENAME
        self._lock = threading.RLock()
        self._documents: Dict[int, DocumentRecord] = {}
        self._fragments: Dict[int, FragmentRecord] = {}
        self._next_document_id = 1
        self._next_fragment_id = 1

    # ─── Documents ────────────────────────────────────────────────────────────

    def add_document(self, collection: str, name: str, path: str, content_hash: str = "") -> DocumentRecord:
        with self._lock:
            record = DocumentRecord(
                document_id=self._next_document_id,
                collection=collection,
                name=name,
                path=path,
                content_hash=content_hash,
            )
            self._next_document_id += 1
            self._documents[record.document_id] = record
            return record

    def get_document(self, document_id: int) -> DocumentRecord:
        with self._lock:
            record = self._documents.get(document_id)
            if record is None:
                raise DocumentNotFoundError(document_id)
            return record

    def find_document(self, collection: str, name: str) -> Optional[DocumentRecord]:
        with self._lock:
            for record in self._documents.values():
                if record.collection == collection and record.name == name:
                    return record
            return None

    def list_documents(self, collection: Optional[str] = None) -> List[DocumentRecord]:
        with self._lock:
            return [
                record for _, record in sorted(self._documents.items())
                if collection is None or record.collection == collection
            ]

    def list_collections(self) -> List[str]:
        with self._lock:
            return sorted({record.collection for record in self._documents.values()})

    def update_document(
        self,
        document_id: int,
        status: Optional[DocumentStatus] = None,
        fragment_count: Optional[int] = None,
        content_hash: Optional[str] = None,
        path: Optional[str] = None,
    ) -> DocumentRecord:
        with self._lock:
            record = self.get_document(document_id)
            if path is not None:
                record.path = path
            if status is not None:
                record.status = status
            if fragment_count is not None:
                record.fragment_count = fragment_count
            if content_hash is not None:
                record.content_hash = content_hash
            return record

    def delete_document(self, document_id: int) -> DocumentRecord:
        with self._lock:
            record = self.get_document(document_id)
            self.drop_fragments(document_id)
            del self._documents[document_id]
            return record

    # ─── Fragments ────────────────────────────────────────────────────────────

    def add_fragments(self, document_id: int, contents: List[str]) -> List[FragmentRecord]:
        """New fragment records with fresh ids. Existing ones are left in place."""
        with self._lock:
            document = self.get_document(document_id)

            records = []
            for position, content in enumerate(contents):
                record = FragmentRecord(
                    fragment_id=self._next_fragment_id,
                    document_id=document_id,
                    collection=document.collection,
                    fragment_index=position,
                    content=content,
                )
                self._next_fragment_id += 1
                self._fragments[record.fragment_id] = record
                records.append(record)
            return records

    def get_fragments_by_ids(self, fragment_ids: Iterable[int]) -> Dict[int, str]:
        with self._lock:
            return {
                fragment_id: self._fragments[fragment_id].content
                for fragment_id in fragment_ids
                if fragment_id in self._fragments
            }

    def fragments_for_document(self, document_id: int) -> List[FragmentRecord]:
        with self._lock:
            return sorted(
                (f for f in self._fragments.values() if f.document_id == document_id),
                key=lambda f: f.fragment_index,
            )

    def drop_fragments(self, document_id: int, keep: Iterable[int] = ()) -> int:
        """Remove a document's fragment records, except the ids in `keep`."""
        keep = set(keep)
        with self._lock:
            stale = [
                fid for fid, f in self._fragments.items()
                if f.document_id == document_id and fid not in keep
            ]
            for fragment_id in stale:
                del self._fragments[fragment_id]
            return len(stale)

    # ─── Persistence ──────────────────────────────────────────────────────────

    def save(self) -> None:
        with self._lock:
            payload = {
                "next_document_id": self._next_document_id,
                "next_fragment_id": self._next_fragment_id,
                "documents": [asdict(d) for d in self._documents.values()],
                "fragments": [asdict(f) for f in self._fragments.values()],
            }

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".documents.", suffix=".tmp")
        except OSError as error:
            raise PersistenceError(f"Failed to save document repository: {error}") from error

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False)
            os.replace(tmp_name, self._path)
        except (OSError, TypeError, ValueError) as error:
            Path(tmp_name).unlink(missing_ok=True)
            raise PersistenceError(f"Failed to save document repository: {error}") from error

    def load(self) -> None:
        """Missing file means an empty repository."""
        if not self._path.exists():
            logger.info(f"[DocumentRepository] No repository at '{self._path}', starting empty.")
            return

        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            documents = {
                d["document_id"]: DocumentRecord(**{**d, "status": DocumentStatus(d["status"])})
                for d in payload["documents"]
            }
            fragments = {f["fragment_id"]: FragmentRecord(**f) for f in payload["fragments"]}
        except (OSError, ValueError, KeyError, TypeError) as error:
            raise PersistenceError(f"Failed to load document repository: {error}") from error

        with self._lock:
            self._documents = documents
            self._fragments = fragments
            self._next_document_id = max(payload.get("next_document_id", 1), max(documents, default=0) + 1)
            self._next_fragment_id = max(payload.get("next_fragment_id", 1), max(fragments, default=0) + 1)

        logger.info(
            f"[DocumentRepository] Loaded {len(documents)} documents, {len(fragments)} fragments"
        )
