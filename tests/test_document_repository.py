# tests/test_document_repository.py

import pytest
from ragflow.domain.errors import DocumentNotFoundError, PersistenceError
from ragflow.domain.models import DocumentStatus
from ragflow.infrastructure.document_loader import DocumentLoader
from ragflow.infrastructure.document_repository import DocumentRepository
from ragflow.infrastructure.file_hasher import compute_file_hash


def test_fragment_ids_are_unique_across_documents(tmp_path):
    repo = DocumentRepository(tmp_path)
    a = repo.add_document("docs", "a.txt", "/a.txt")
    b = repo.add_document("other", "b.txt", "/b.txt")

    first = repo.add_fragments(a.document_id, ["one", "two"])
    second = repo.add_fragments(b.document_id, ["three"])

    ids = [f.fragment_id for f in first + second]
    assert len(set(ids)) == 3
    assert [f.fragment_index for f in first] == [0, 1]
    assert second[0].collection == "other"


def test_lookup_skips_unknown_ids(tmp_path):
    repo = DocumentRepository(tmp_path)
    doc = repo.add_document("docs", "a.txt", "/a.txt")
    [fragment] = repo.add_fragments(doc.document_id, ["content"])

    assert repo.get_fragments_by_ids([fragment.fragment_id, 999]) == {fragment.fragment_id: "content"}


def test_drop_fragments_keeps_listed_ids(tmp_path):
    repo = DocumentRepository(tmp_path)
    doc = repo.add_document("docs", "a.txt", "/a.txt")
    old = repo.add_fragments(doc.document_id, ["old"])
    new = repo.add_fragments(doc.document_id, ["new"])

    assert repo.drop_fragments(doc.document_id, keep=[new[0].fragment_id]) == 1
    assert repo.get_fragments_by_ids([old[0].fragment_id, new[0].fragment_id]) == {new[0].fragment_id: "new"}


def test_unknown_document(tmp_path):
    repo = DocumentRepository(tmp_path)
    with pytest.raises(DocumentNotFoundError, match="Document not found: 3"):
        repo.get_document(3)


def test_save_and_load(tmp_path):
    repo = DocumentRepository(tmp_path)
    doc = repo.add_document("docs", "a.txt", "/a.txt")
    repo.add_fragments(doc.document_id, ["x", "y"])
    repo.update_document(doc.document_id, status=DocumentStatus.INDEXED, fragment_count=2)
    repo.delete_document(repo.add_document("docs", "gone.txt", "/gone.txt").document_id)
    repo.save()

    restored = DocumentRepository(tmp_path)
    restored.load()

    record = restored.get_document(doc.document_id)
    assert record.status is DocumentStatus.INDEXED
    assert record.fragment_count == 2
    assert [f.content for f in restored.fragments_for_document(doc.document_id)] == ["x", "y"]
    # ids of deleted documents are not handed out again
    assert restored.add_document("docs", "c.txt", "/c.txt").document_id == 3


def test_missing_file_loads_empty(tmp_path):
    repo = DocumentRepository(tmp_path / "nowhere")
    repo.load()
    assert repo.list_documents() == []


def test_corrupt_file_raises_persistence_error(tmp_path):
    (tmp_path / "documents.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError):
        DocumentRepository(tmp_path).load()


# ─── loading and hashing ──────────────────────────────────────────────────────

def test_loader_normalizes_text(tmp_path):
    path = tmp_path / "note.txt"
    path.write_bytes(b"  line one\r\n\r\n\r\n\r\nline two  \n")
    assert DocumentLoader().load_text(path) == "line one\n\nline two"


def test_loader_rejects_unsupported_types(tmp_path):
    path = tmp_path / "paper.pdf"
    path.write_bytes(b"%PDF")
    with pytest.raises(ValueError, match="not supported"):
        DocumentLoader().load_text(path)


def test_loader_lists_supported_files(tmp_path):
    (tmp_path / "a.txt").write_text("a")
    (tmp_path / "b.md").write_text("b")
    (tmp_path / "c.csv").write_text("c")
    assert [p.name for p in DocumentLoader().list_files(tmp_path)] == ["a.txt", "b.md"]

    with pytest.raises(FileNotFoundError):
        DocumentLoader().list_files(tmp_path / "missing")


def test_file_hash_tracks_content(tmp_path):
    a = tmp_path / "a.txt"
    b = tmp_path / "b.md"
    a.write_text("same")
    b.write_text("same")

    assert compute_file_hash(a) == compute_file_hash(b)
    b.write_text("changed")
    assert compute_file_hash(a) != compute_file_hash(b)
