# ragflow/infrastructure/vector_store.py

import json
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote, unquote

import numpy as np

from ragflow.domain.errors import PersistenceError, SearchError
from ragflow.domain.models import DOCUMENT_ID_KEY, DOCUMENT_NAME_KEY, Fragment, Metadata, SearchResult
from ragflow.logger import get_logger

logger = get_logger(__name__)


ARTIFACT_SUFFIX = ".npz"


def cosine_similarity(v1: Sequence[float], v2: Sequence[float]) -> float:
    """
    dot(v1, v2) / (|v1| * |v2|).
    Mismatched lengths, zero norms and non-finite input all score 0.0.
    """
    a = np.asarray(v1, dtype=np.float64).ravel()
    b = np.asarray(v2, dtype=np.float64).ravel()
    if a.shape != b.shape or a.size == 0:
        return 0.0

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0 or not np.isfinite(norm_a * norm_b):
        return 0.0

    score = float(np.dot(a, b) / (norm_a * norm_b))
    if not np.isfinite(score):
        return 0.0
    return max(-1.0, min(1.0, score))


def artifact_path(storage_dir: Path, collection: str) -> Path:
    """Deterministic artifact location for a collection name."""
    return Path(storage_dir) / f"{quote(collection, safe='')}{ARTIFACT_SUFFIX}"


@dataclass(frozen=True)
class _Snapshot:
    """Immutable view of one collection, shared by concurrent searches."""
    ids: np.ndarray         # int64, ascending
    matrix: np.ndarray      # float64, shape (n, d)
    norms: np.ndarray       # float64, shape (n,)
    metadata: Tuple[Metadata, ...]


class _CollectionIndex:
    """
    fragment_id -> (vector, metadata) for one collection.
    Every access to `entries` happens with `lock` held.
    """

    def __init__(self, name: str):
        self.name = name
        self.lock = threading.Lock()
        self.entries: Dict[int, Tuple[np.ndarray, Metadata]] = {}
        self._snapshot: Optional[_Snapshot] = None

    def put(self, fragment_id: int, vector: np.ndarray, metadata: Metadata) -> None:
        self.entries[fragment_id] = (vector, metadata)
        self._snapshot = None

    def remove(self, fragment_ids: Iterable[int]) -> int:
        removed = 0
        for fragment_id in fragment_ids:
            if self.entries.pop(fragment_id, None) is not None:
                removed += 1
        if removed:
            self._snapshot = None
        return removed

    def ids_for_document(self, document_id) -> List[int]:
        return [
            fragment_id
            for fragment_id, (_, metadata) in self.entries.items()
            if metadata.get(DOCUMENT_ID_KEY) == document_id
        ]

    def snapshot(self, dimension: int) -> _Snapshot:
        if self._snapshot is None:
            ids = sorted(self.entries)
            if ids:
                matrix = np.stack([self.entries[i][0] for i in ids]).astype(np.float64)
            else:
                matrix = np.zeros((0, dimension), dtype=np.float64)
            self._snapshot = _Snapshot(
                ids=np.asarray(ids, dtype=np.int64),
                matrix=matrix,
                norms=np.linalg.norm(matrix, axis=1),
                metadata=tuple(self.entries[i][1] for i in ids),
            )
        return self._snapshot


class VectorIndex:
    """
    In-memory, brute-force cosine index partitioned by collection, with one
    .npz artifact per collection on disk.

    Concurrency:
    - the collection registry has its own lock, held only to look up,
      create or drop a collection;
    - each collection has an exclusive lock held for the whole of a
      mutation (single or bulk), so a search sees the fragment set either
      before or after it, never in between;
    - searches score against an immutable snapshot taken under the
      collection lock, so the lock is never held while scoring;
    - save() and load() serialize on a process-wide persistence lock and
      replace artifacts through a temp file + os.replace.
    """

    def __init__(self, storage_dir: Path, dimension: int):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self._storage_dir = Path(storage_dir)
        self._dimension = dimension
        self._collections: Dict[str, _CollectionIndex] = {}
        self._dropped: set[str] = set()
        self._registry_lock = threading.Lock()
        self._persist_lock = threading.Lock()

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def storage_dir(self) -> Path:
        return self._storage_dir

    # ─── Mutation ─────────────────────────────────────────────────────────────

    def upsert(self, collection: str, fragment_id: int, vector, metadata: Optional[Metadata] = None) -> None:
        """Insert or replace one fragment. In-memory only until save()."""
        prepared = self._prepare_vector(fragment_id, vector)
        index = self._get_or_create(collection)
        with index.lock:
            index.put(int(fragment_id), prepared, dict(metadata or {}))

    def upsert_many(self, collection: str, fragments: Sequence[Fragment]) -> None:
        """Bulk upsert applied under a single exclusive section. All or nothing."""
        prepared = [
            (int(f.fragment_id), self._prepare_vector(f.fragment_id, f.vector), dict(f.metadata))
            for f in fragments
        ]
        index = self._get_or_create(collection)
        with index.lock:
            for fragment_id, vector, metadata in prepared:
                index.put(fragment_id, vector, metadata)

    def replace_document(self, collection: str, document_id, fragments: Sequence[Fragment]) -> int:
        """
        Drop every fragment of `document_id` in `collection` and insert
        `fragments` in the same exclusive section. Returns the number of
        fragments removed.
        """
        for f in fragments:
            if f.document_id != document_id:
                raise ValueError(
                    f"Fragment {f.fragment_id} belongs to document {f.document_id}, not {document_id}"
                )
        prepared = [
            (int(f.fragment_id), self._prepare_vector(f.fragment_id, f.vector), dict(f.metadata))
            for f in fragments
        ]
        index = self._get_or_create(collection)
        with index.lock:
            removed = index.remove(index.ids_for_document(document_id))
            for fragment_id, vector, metadata in prepared:
                index.put(fragment_id, vector, metadata)

        logger.info(
            f"[VectorIndex] Re-indexed document {document_id} in '{collection}': "
            f"-{removed} +{len(prepared)} fragments"
        )
        return removed

    def delete(self, collection: str, fragment_ids: Iterable[int]) -> int:
        index = self._get(collection)
        if index is None:
            return 0
        with index.lock:
            return index.remove(list(fragment_ids))

    def delete_document(self, collection: str, document_id) -> int:
        index = self._get(collection)
        if index is None:
            return 0
        with index.lock:
            return index.remove(index.ids_for_document(document_id))

    def delete_collection(self, collection: str) -> bool:
        with self._registry_lock:
            index = self._collections.pop(collection, None)
            if index is not None:
                self._dropped.add(collection)
        return index is not None

    # ─── Search ───────────────────────────────────────────────────────────────

    def search(self, collection: str, query_vector, top_k: int) -> List[SearchResult]:
        """
        Cosine similarity against every fragment in `collection`, descending
        by score, ties broken by ascending fragment_id. Unknown or empty
        collections return an empty list.
        """
        if top_k <= 0:
            return []

        index = self._get(collection)
        if index is None:
            return []

        try:
            with index.lock:
                snapshot = index.snapshot(self._dimension)

            if snapshot.ids.size == 0:
                return []

            scores = self._score(snapshot, query_vector, collection)
            # lexsort: last key is primary -> score descending, then id ascending
            order = np.lexsort((snapshot.ids, -scores))[:top_k]
        except (TypeError, ValueError) as error:
            raise SearchError(f"Search failed in '{collection}': {error}") from error

        return [
            SearchResult(
                fragment_id=int(snapshot.ids[i]),
                score=float(scores[i]),
                metadata=dict(snapshot.metadata[i]),
            )
            for i in order
        ]

    def _score(self, snapshot: _Snapshot, query_vector, collection: str) -> np.ndarray:
        query = np.asarray(query_vector, dtype=np.float64).ravel()
        zeros = np.zeros(snapshot.ids.size, dtype=np.float64)

        if query.size != self._dimension:
            logger.warning(
                f"[VectorIndex] Query dimension {query.size} does not match "
                f"index dimension {self._dimension} in '{collection}', scoring 0.0"
            )
            return zeros

        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0 or not np.isfinite(query_norm):
            return zeros

        denominators = snapshot.norms * query_norm
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = (snapshot.matrix @ query) / denominators
        scores = np.where(denominators > 0.0, scores, 0.0)
        scores = np.nan_to_num(scores, nan=0.0, posinf=0.0, neginf=0.0)
        return np.clip(scores, -1.0, 1.0)

    # ─── Introspection ────────────────────────────────────────────────────────

    def collections(self) -> List[str]:
        with self._registry_lock:
            return sorted(self._collections)

    def count(self, collection: Optional[str] = None) -> int:
        if collection is not None:
            index = self._get(collection)
            if index is None:
                return 0
            with index.lock:
                return len(index.entries)
        return sum(self.count(name) for name in self.collections())

    def is_ready(self) -> bool:
        return self.count() > 0

    def get_document_stats(self, collection: Optional[str] = None) -> List[dict]:
        """Indexed documents with their fragment counts, per collection."""
        names = [collection] if collection is not None else self.collections()
        stats = []
        for name in names:
            index = self._get(name)
            if index is None:
                continue
            counts: Dict[tuple, int] = {}
            with index.lock:
                for _, metadata in index.entries.values():
                    key = (metadata.get(DOCUMENT_ID_KEY), metadata.get(DOCUMENT_NAME_KEY, "unknown"))
                    counts[key] = counts.get(key, 0) + 1
            stats.extend(
                {"collection": name, "document_id": doc_id, "document_name": doc_name, "count": count}
                for (doc_id, doc_name), count in sorted(counts.items(), key=lambda item: str(item[0][0]))
            )
        return stats

    # ─── Persistence ──────────────────────────────────────────────────────────

    def save(self) -> bool:
        """
        Persist every collection to its own artifact. A failure on one
        collection is logged and does not stop the others; in-memory state
        is never rolled back. Returns True when every artifact was written.
        """
        with self._persist_lock:
            with self._registry_lock:
                indexes = list(self._collections.values())
                dropped = set(self._dropped)

            try:
                self._storage_dir.mkdir(parents=True, exist_ok=True)
            except OSError as error:
                logger.error(f"[VectorIndex] Cannot create storage dir '{self._storage_dir}': {error}")
                return False

            ok = True
            for index in indexes:
                with index.lock:
                    entries = sorted(index.entries.items())
                try:
                    self._write_artifact(index.name, entries)
                    logger.info(f"[VectorIndex] Saved '{index.name}' ({len(entries)} fragments)")
                except PersistenceError as error:
                    ok = False
                    logger.error(f"[VectorIndex] {error}")

            for name in dropped:
                try:
                    artifact_path(self._storage_dir, name).unlink(missing_ok=True)
                except OSError as error:
                    ok = False
                    logger.error(f"[VectorIndex] Failed to remove artifact for '{name}': {error}")

            with self._registry_lock:
                self._dropped -= dropped
            return ok

    def load(self) -> int:
        """
        Rebuild every collection from the artifacts in the storage directory,
        replacing the in-memory state. A missing directory means an empty
        index; an unreadable artifact is logged and skipped. Returns the
        number of collections loaded.
        """
        with self._persist_lock:
            loaded: Dict[str, _CollectionIndex] = {}

            if self._storage_dir.is_dir():
                for path in sorted(self._storage_dir.glob(f"*{ARTIFACT_SUFFIX}")):
                    if path.name.startswith("."):
                        continue
                    name = unquote(path.name[: -len(ARTIFACT_SUFFIX)])
                    try:
                        loaded[name] = self._read_artifact(name, path)
                    except PersistenceError as error:
                        logger.error(f"[VectorIndex] {error}")
            else:
                logger.info(f"[VectorIndex] No index at '{self._storage_dir}', starting empty.")

            with self._registry_lock:
                self._collections = loaded
                self._dropped.clear()

            for name, index in loaded.items():
                logger.info(f"[VectorIndex] Loaded '{name}' with {len(index.entries)} fragments")
            return len(loaded)

    def _write_artifact(self, collection: str, entries: List[Tuple[int, Tuple[np.ndarray, Metadata]]]) -> None:
        final_path = artifact_path(self._storage_dir, collection)
        ids = np.asarray([fragment_id for fragment_id, _ in entries], dtype=np.int64)
        if entries:
            vectors = np.stack([vector for _, (vector, _) in entries]).astype(np.float32)
        else:
            vectors = np.zeros((0, self._dimension), dtype=np.float32)
        metadata = json.dumps([meta for _, (_, meta) in entries], ensure_ascii=False)

        fd, tmp_name = tempfile.mkstemp(dir=self._storage_dir, prefix=f".{final_path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                np.savez(handle, ids=ids, vectors=vectors, metadata=np.array(metadata))
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, final_path)
        except (OSError, TypeError, ValueError) as error:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise PersistenceError(f"Failed to save collection '{collection}': {error}") from error

    def _read_artifact(self, collection: str, path: Path) -> _CollectionIndex:
        try:
            with np.load(path, allow_pickle=False) as data:
                ids = data["ids"]
                vectors = data["vectors"]
                metadata = json.loads(data["metadata"].item())
        except (OSError, KeyError, ValueError) as error:
            raise PersistenceError(f"Failed to load '{path}': {error}") from error

        if vectors.ndim != 2 or vectors.shape[1] != self._dimension:
            raise PersistenceError(
                f"Artifact '{path}' has vectors of shape {vectors.shape}, "
                f"expected dimension {self._dimension}"
            )
        if not (len(ids) == len(vectors) == len(metadata)):
            raise PersistenceError(f"Artifact '{path}' is inconsistent: ids/vectors/metadata lengths differ")

        index = _CollectionIndex(collection)
        for fragment_id, vector, meta in zip(ids, vectors.astype(np.float32), metadata):
            index.put(int(fragment_id), vector, dict(meta))
        return index

    # ─── Internals ────────────────────────────────────────────────────────────

    def _get(self, collection: str) -> Optional[_CollectionIndex]:
        with self._registry_lock:
            return self._collections.get(collection)

    def _get_or_create(self, collection: str) -> _CollectionIndex:
        with self._registry_lock:
            index = self._collections.get(collection)
            if index is None:
                index = _CollectionIndex(collection)
                self._collections[collection] = index
                self._dropped.discard(collection)
            return index

    def _prepare_vector(self, fragment_id, vector) -> np.ndarray:
        if vector is None:
            raise ValueError(f"Fragment {fragment_id} is missing its embedding")
        prepared = np.array(vector, dtype=np.float32).ravel()
        if prepared.size != self._dimension:
            raise ValueError(
                f"Fragment {fragment_id} has dimension {prepared.size}, "
                f"index dimension is {self._dimension}"
            )
        prepared.setflags(write=False)
        return prepared
