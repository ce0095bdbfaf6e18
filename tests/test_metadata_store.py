from __future__ import annotations

import pytest

from groundedqa.errors import ConflictError, NotFoundError
from groundedqa.models import DocumentStatus, SourceKind
from groundedqa.storage.metadata import MetadataStore


def _store() -> MetadataStore:
    return MetadataStore.from_url("sqlite://")


def test_create_and_get_project_with_document_count():
    store = _store()
    project = store.create_project("Handbook")
    store.create_document(project.project_id, "a.txt", SourceKind.TXT)
    store.create_document(project.project_id, "https://example.com", SourceKind.URL)

    fetched = store.get_project(project.project_id)
    assert fetched.name == "Handbook"
    assert fetched.document_count == 2
    assert store.count_documents(project.project_id) == 2
    assert store.project_exists(project.project_id)


def test_duplicate_project_name_conflicts():
    store = _store()
    store.create_project("Handbook")
    with pytest.raises(ConflictError):
        store.create_project("Handbook")


def test_missing_project_raises_not_found():
    store = _store()
    with pytest.raises(NotFoundError):
        store.get_project("nope")
    with pytest.raises(NotFoundError):
        store.create_document("nope", "a.txt", SourceKind.TXT)
    assert not store.project_exists("nope")


def test_document_lifecycle_is_monotonic():
    store = _store()
    project = store.create_project("p")
    document = store.create_document(project.project_id, "a.txt", SourceKind.TXT, storage_path="/tmp/a.txt")
    assert document.status is DocumentStatus.PENDING

    with pytest.raises(ConflictError):
        store.transition_document(document.document_id, DocumentStatus.READY)

    processing = store.transition_document(document.document_id, DocumentStatus.PROCESSING)
    assert processing.status is DocumentStatus.PROCESSING

    with pytest.raises(ConflictError):
        store.transition_document(document.document_id, DocumentStatus.PROCESSING)

    failed = store.transition_document(document.document_id, DocumentStatus.FAILED, error_message="boom")
    assert failed.status is DocumentStatus.FAILED
    assert failed.error_message == "boom"
    assert failed.status.is_terminal

    for target in DocumentStatus:
        with pytest.raises(ConflictError):
            store.transition_document(document.document_id, target)
    assert store.get_document(document.document_id).status is DocumentStatus.FAILED


def test_transition_unknown_document_raises_not_found():
    with pytest.raises(NotFoundError):
        _store().transition_document("missing", DocumentStatus.PROCESSING)


def test_delete_project_cascades_to_documents():
    store = _store()
    project = store.create_project("p")
    document = store.create_document(project.project_id, "a.txt", SourceKind.TXT)
    store.delete_project(project.project_id)

    assert store.get_document(document.document_id) is None
    assert store.list_documents(project.project_id) == []
    with pytest.raises(NotFoundError):
        store.delete_project(project.project_id)
