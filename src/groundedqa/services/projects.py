"""Project lifecycle: creation, lookup and cascading deletion."""

from __future__ import annotations

from groundedqa.embeddings.store import VectorStore
from groundedqa.errors import NotFoundError, ValidationError
from groundedqa.metrics.observability import get_logger
from groundedqa.models import ProjectRecord
from groundedqa.resilience.guards import DependencyGuards
from groundedqa.storage.files import LocalFileStore
from groundedqa.storage.metadata import MetadataStore

MAX_NAME_LENGTH = 100


class ProjectService:
    """Owns projects and everything stored under them."""

    def __init__(
        self,
        *,
        metadata: MetadataStore,
        files: LocalFileStore,
        vector_store: VectorStore,
        guards: DependencyGuards,
    ) -> None:
        self._metadata = metadata
        self._files = files
        self._vector_store = vector_store
        self._guards = guards
        self._logger = get_logger("projects")

    def create_project(self, name: str) -> ProjectRecord:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError("Project name is required")
        if len(cleaned) > MAX_NAME_LENGTH:
            raise ValidationError(f"Project name must be at most {MAX_NAME_LENGTH} characters")
        project = self._metadata.create_project(cleaned)
        self._logger.info("project.created", project_id=project.project_id)
        return project

    def get_project(self, project_id: str) -> ProjectRecord:
        return self._metadata.get_project(project_id)

    def delete_project(self, project_id: str) -> None:
        """Remove the vector collection, stored payloads and metadata rows.

        The collection goes first so a failure there leaves the project
        visible and the delete can be retried.
        """

        if not self._metadata.project_exists(project_id):
            raise NotFoundError(f"Project with id {project_id} not found")
        self._guards.vector_store.execute(lambda: self._vector_store.delete_collection(project_id))
        for document in self._metadata.list_documents(project_id):
            self._files.delete(document.storage_path)
        self._metadata.delete_project(project_id)
        self._logger.info("project.deleted", project_id=project_id)
