# tests/test_ingestion_service.py

import threading
from unittest.mock import MagicMock

import pytest
from ragflow.application.chunker import Chunker
from ragflow.application.ingestion_service import IngestionService
from ragflow.config import ChunkingConfig
from ragflow.domain.errors import DocumentNotFoundError
from ragflow.domain.models import DocumentStatus
from ragflow.infrastructure.document_repository import DocumentRepository
from ragflow.infrastructure.embedding_engine import HashEmbeddingEngine
from ragflow.infrastructure.vector_store import VectorIndex

DIMENSION = 16


def _service(storage_dir, embedding_engine=None) -> IngestionService:
    return IngestionService(
        chunker=Chunker(ChunkingConfig(chunk_size=20, chunk_overlap=5)),
        embedding_engine=embedding_engine or HashEmbeddingEngine(DIMENSION),
        vector_index=VectorIndex(storage_dir, DIMENSION),
        repository=DocumentRepository(storage_dir),
    )


def _write(path, text: str):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _search(service, text: str, top_k: int = 5, collection: str = "docs"):
    query = HashEmbeddingEngine(DIMENSION).embed(text)
    return service._vector_index.search(collection, query, top_k)


def test_ingest_file_indexes_all_chunks(tmp_path):
    service = _service(tmp_path / "index")
    source = _write(tmp_path / "docs" / "guide.txt", "a" * 20 + "b" * 20 + "c" * 5)

    report = service.ingest_file("docs", source)

    # 45 characters, size 20, step 15 -> windows at 0, 15, 30
    assert report.status is DocumentStatus.INDEXED
    assert report.fragment_count == 3
    record = service.list_documents("docs")[0]
    assert record.status is DocumentStatus.INDEXED
    assert record.fragment_count == 3
    assert record.content_hash
    assert service._vector_index.count("docs") == 3


def test_indexed_fragment_is_found_with_its_content(tmp_path):
    service = _service(tmp_path / "index")
    source = _write(tmp_path / "docs" / "note.md", "Paris is lovely")
    service.ingest_file("docs", source)

    [best] = _search(service, "Paris is lovely", top_k=1)
    assert best.score == pytest.approx(1.0, abs=1e-5)
    assert best.document_name == "note.md"
    assert service._repository.get_fragments_by_ids([best.fragment_id]) == {best.fragment_id: "Paris is lovely"}


def test_reindex_replaces_old_fragments(tmp_path):
    service = _service(tmp_path / "index")
    source = _write(tmp_path / "docs" / "guide.txt", "first version of the text")
    report = service.ingest_file("docs", source)
    old_ids = {f.fragment_id for f in service._repository.fragments_for_document(report.document_id)}

    _write(source, "second")
    second = service.index_document(report.document_id)

    assert second.status is DocumentStatus.INDEXED
    assert second.fragment_count == 1
    new_ids = {f.fragment_id for f in service._repository.fragments_for_document(report.document_id)}
    assert new_ids.isdisjoint(old_ids)
    assert service._repository.get_fragments_by_ids(old_ids) == {}
    indexed_ids = {r.fragment_id for r in _search(service, "second", top_k=10)}
    assert indexed_ids == new_ids


def test_ingesting_same_name_reuses_document(tmp_path):
    service = _service(tmp_path / "index")
    first = service.ingest_file("docs", _write(tmp_path / "u1" / "a.txt", "one"), name="a.txt")
    second = service.ingest_file("docs", _write(tmp_path / "u2" / "a.txt", "two"), name="a.txt")

    assert first.document_id == second.document_id
    assert (tmp_path / "u1" / "a.txt").exists()
    assert len(service.list_documents("docs")) == 1
    assert service._vector_index.count("docs") == 1


def test_replacing_an_upload_discards_the_previous_file(tmp_path):
    service = _service(tmp_path / "index")
    first = _write(tmp_path / "uploads" / "1_a.txt", "one")
    second = _write(tmp_path / "uploads" / "2_a.txt", "two")

    service.ingest_file("docs", first, name="a.txt", discard_previous=True)
    report = service.ingest_file("docs", second, name="a.txt", discard_previous=True)

    assert report.status is DocumentStatus.INDEXED
    assert not first.exists()
    assert second.exists()
    assert service.list_documents("docs")[0].path == str(second.resolve())


def test_concurrent_reindex_of_one_document_stays_consistent(tmp_path):
    service = _service(tmp_path / "index")
    report = service.ingest_file("docs", _write(tmp_path / "docs" / "a.txt", "x" * 45))

    index = service._vector_index
    real_replace = index.replace_document
    first_inside = threading.Event()
    second_done = threading.Event()
    overlapped = []

    def slow_replace(collection, document_id, fragments):
        if not first_inside.is_set():
            first_inside.set()
            second_done.wait(timeout=1.0)
            overlapped.append(second_done.is_set())
        return real_replace(collection, document_id, fragments)

    def reindex_again():
        service.index_document(report.document_id)
        second_done.set()

    index.replace_document = slow_replace
    first = threading.Thread(target=service.index_document, args=(report.document_id,))
    first.start()
    assert first_inside.wait(timeout=5)
    second = threading.Thread(target=reindex_again)
    second.start()
    first.join()
    second.join()

    assert overlapped == [False]
    indexed = {r.fragment_id for r in _search(service, "x", top_k=10)}
    assert len(indexed) == 3
    assert set(service._repository.get_fragments_by_ids(indexed)) == indexed
    assert {f.fragment_id for f in service._repository.fragments_for_document(report.document_id)} == indexed


def test_missing_source_file_marks_document_failed(tmp_path):
    service = _service(tmp_path / "index")
    record = service.register_document("docs", tmp_path / "ghost.txt")

    report = service.index_document(record.document_id)

    assert report.status is DocumentStatus.FAILED
    assert report.error
    assert service._repository.get_document(record.document_id).status is DocumentStatus.FAILED


def test_embedding_failure_keeps_previous_fragments(tmp_path):
    engine = HashEmbeddingEngine(DIMENSION)
    service = _service(tmp_path / "index", embedding_engine=engine)
    source = _write(tmp_path / "docs" / "a.txt", "stable content")
    report = service.ingest_file("docs", source)

    broken = MagicMock(wraps=engine)
    broken.embed_batch.side_effect = RuntimeError("out of memory")
    service._embedding_engine = broken
    _write(source, "new content")
    failed = service.index_document(report.document_id)

    assert failed.status is DocumentStatus.FAILED
    assert service._vector_index.count("docs") == 1
    [hit] = _search(service, "stable content", top_k=1)
    assert service._repository.get_fragments_by_ids([hit.fragment_id]) == {hit.fragment_id: "stable content"}


def test_unknown_document_raises(tmp_path):
    service = _service(tmp_path / "index")
    with pytest.raises(DocumentNotFoundError):
        service.index_document(42)
    with pytest.raises(DocumentNotFoundError):
        service.delete_document(42)


def test_delete_document_removes_fragments(tmp_path):
    service = _service(tmp_path / "index")
    keep = service.ingest_file("docs", _write(tmp_path / "docs" / "keep.txt", "keep me"))
    gone = service.ingest_file("docs", _write(tmp_path / "docs" / "gone.txt", "remove me"))

    service.delete_document(gone.document_id)

    assert [d.name for d in service.list_documents("docs")] == ["keep.txt"]
    assert service._repository.fragments_for_document(gone.document_id) == []
    assert {r.metadata["document_id"] for r in _search(service, "remove me", top_k=10)} == {keep.document_id}


def test_delete_collection(tmp_path):
    service = _service(tmp_path / "index")
    service.ingest_file("docs", _write(tmp_path / "d" / "a.txt", "alpha"))
    service.ingest_file("docs", _write(tmp_path / "d" / "b.txt", "beta"))
    service.ingest_file("other", _write(tmp_path / "d" / "c.txt", "gamma"))

    assert service.delete_collection("docs") == 2
    assert service.list_collections() == ["other"]
    assert service._vector_index.count("docs") == 0


def test_state_survives_restart(tmp_path):
    storage = tmp_path / "index"
    service = _service(storage)
    report = service.ingest_file("docs", _write(tmp_path / "docs" / "a.txt", "persistent text"))

    restarted = _service(storage)
    restarted.load()

    [hit] = _search(restarted, "persistent text", top_k=1)
    assert hit.metadata["document_id"] == report.document_id
    assert restarted._repository.get_fragments_by_ids([hit.fragment_id]) == {hit.fragment_id: "persistent text"}

    again = restarted.ingest_file("docs", _write(tmp_path / "docs" / "b.txt", "more"))
    assert again.document_id > report.document_id
    new_ids = {f.fragment_id for f in restarted._repository.fragments_for_document(again.document_id)}
    assert hit.fragment_id not in new_ids


# ─── sync_directory ───────────────────────────────────────────────────────────

def test_sync_directory_is_incremental(tmp_path):
    data = tmp_path / "data"
    _write(data / "a.txt", "alpha text")
    _write(data / "nested" / "b.md", "beta text")
    _write(data / "ignored.pdf", "binary")
    service = _service(tmp_path / "index")

    first = service.sync_directory("docs", data)
    assert sorted(first.indexed) == ["a.txt", "nested/b.md"]
    assert first.failed == [] and first.deleted == []

    second = service.sync_directory("docs", data)
    assert second.indexed == []
    assert sorted(second.unchanged) == ["a.txt", "nested/b.md"]

    _write(data / "a.txt", "alpha text, revised")
    (data / "nested" / "b.md").unlink()
    third = service.sync_directory("docs", data)

    assert third.indexed == ["a.txt"]
    assert third.deleted == ["nested/b.md"]
    assert [d.name for d in service.list_documents("docs")] == ["a.txt"]
    assert {r.metadata["document_name"] for r in _search(service, "x", top_k=10)} == {"a.txt"}


def test_sync_missing_directory_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        _service(tmp_path / "index").sync_directory("docs", tmp_path / "nope")


def test_sync_leaves_uploaded_documents_alone(tmp_path):
    service = _service(tmp_path / "index")
    upload = _write(tmp_path / "uploads" / "123_report.txt", "quarterly report")
    service.ingest_file("default", upload, name="report.txt")
    data = tmp_path / "data"
    _write(data / "a.txt", "alpha")

    report = service.sync_directory("default", data)

    assert report.indexed == ["a.txt"]
    assert report.deleted == []
    assert sorted(d.name for d in service.list_documents("default")) == ["a.txt", "report.txt"]
    names = {r.metadata["document_name"] for r in _search(service, "x", top_k=10, collection="default")}
    assert names == {"a.txt", "report.txt"}
