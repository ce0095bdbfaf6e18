"""Relational metadata store for projects and documents."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Sequence

from sqlalchemy import DateTime, ForeignKey, String, Text, create_engine, event, func, select, update
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from groundedqa.errors import ConflictError, DatabaseError, NotFoundError
from groundedqa.models import DocumentRecord, DocumentStatus, ProjectRecord, SourceKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class ProjectRow(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    documents: Mapped[list["DocumentRow"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class DocumentRow(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), index=True, nullable=False
    )
    filename: Mapped[str] = mapped_column(Text, nullable=False)  # URL for url documents
    source_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=DocumentStatus.PENDING.value)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    storage_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    project: Mapped[ProjectRow] = relationship(back_populates="documents")


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_metadata_engine(database_url: str) -> Engine:
    """Build an engine; SQLite URLs get foreign keys and thread-safe pooling."""

    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, pool_pre_ping=True, future=True)
    if url.database in (None, "", ":memory:"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
    else:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(database_url, connect_args={"check_same_thread": False, "timeout": 30}, future=True)
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


class MetadataStore:
    """Project and document persistence with atomic status transitions."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)

    @classmethod
    def from_url(cls, database_url: str) -> "MetadataStore":
        store = cls(create_metadata_engine(database_url))
        store.create_schema()
        return store

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise DatabaseError(f"Failed to create schema: {exc}") from exc

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(f"Failed to {action}: resource already exists") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise DatabaseError(f"Failed to {action}: {exc}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Projects

    def create_project(self, name: str) -> ProjectRecord:
        row = ProjectRow(id=uuid.uuid4().hex, name=name, created_at=_utcnow())
        with self._session("create project") as session:
            session.add(row)
            session.flush()
            return self._project_record(row, 0)

    def get_project(self, project_id: str) -> ProjectRecord:
        with self._session("retrieve project") as session:
            row = session.get(ProjectRow, project_id)
            if row is None:
                raise NotFoundError(f"Project with id {project_id} not found")
            return self._project_record(row, self._count_documents(session, project_id))

    def count_documents(self, project_id: str) -> int:
        with self._session("count documents") as session:
            return self._count_documents(session, project_id)

    @staticmethod
    def _count_documents(session: Session, project_id: str) -> int:
        count = session.scalar(
            select(func.count()).select_from(DocumentRow).where(DocumentRow.project_id == project_id)
        )
        return int(count or 0)

    def project_exists(self, project_id: str) -> bool:
        with self._session("check project") as session:
            return session.get(ProjectRow, project_id) is not None

    def delete_project(self, project_id: str) -> None:
        with self._session("delete project") as session:
            row = session.get(ProjectRow, project_id)
            if row is None:
                raise NotFoundError(f"Project with id {project_id} not found")
            session.delete(row)

    # Documents

    def create_document(
        self,
        project_id: str,
        filename: str,
        source_kind: SourceKind,
        *,
        storage_path: str | None = None,
        document_id: str | None = None,
    ) -> DocumentRecord:
        row = DocumentRow(
            id=document_id or uuid.uuid4().hex,
            project_id=project_id,
            filename=filename,
            source_kind=source_kind.value,
            status=DocumentStatus.PENDING.value,
            storage_path=storage_path,
            uploaded_at=_utcnow(),
            updated_at=_utcnow(),
        )
        with self._session("create document") as session:
            if session.get(ProjectRow, project_id) is None:
                raise NotFoundError(f"Project with id {project_id} not found")
            session.add(row)
            session.flush()
            return self._document_record(row)

    def get_document(self, document_id: str) -> DocumentRecord | None:
        with self._session("retrieve document") as session:
            row = session.get(DocumentRow, document_id)
            return self._document_record(row) if row is not None else None

    def list_documents(self, project_id: str) -> Sequence[DocumentRecord]:
        with self._session("list documents") as session:
            rows = session.scalars(
                select(DocumentRow).where(DocumentRow.project_id == project_id).order_by(DocumentRow.uploaded_at)
            )
            return [self._document_record(row) for row in rows]

    def transition_document(
        self,
        document_id: str,
        target: DocumentStatus,
        *,
        error_message: str | None = None,
    ) -> DocumentRecord:
        """Move a document to ``target`` if its current status allows it.

        The check and the write are a single conditional UPDATE, so two
        workers can never both move the same document out of a status.
        """

        allowed_from = [status.value for status in DocumentStatus if status.can_transition_to(target)]
        with self._session("update document status") as session:
            result = session.execute(
                update(DocumentRow)
                .where(DocumentRow.id == document_id, DocumentRow.status.in_(allowed_from))
                .values(status=target.value, error_message=error_message, updated_at=_utcnow())
            )
            row = session.get(DocumentRow, document_id, populate_existing=True)
            if row is None:
                raise NotFoundError(f"Document with id {document_id} not found")
            if result.rowcount != 1:
                raise ConflictError(
                    f"Document {document_id} cannot move from {row.status} to {target.value}",
                )
            return self._document_record(row)

    @staticmethod
    def _project_record(row: ProjectRow, document_count: int) -> ProjectRecord:
        return ProjectRecord(
            project_id=row.id,
            name=row.name,
            created_at=row.created_at,
            document_count=document_count,
        )

    @staticmethod
    def _document_record(row: DocumentRow) -> DocumentRecord:
        return DocumentRecord(
            document_id=row.id,
            project_id=row.project_id,
            filename=row.filename,
            source_kind=SourceKind(row.source_kind),
            status=DocumentStatus(row.status),
            uploaded_at=row.uploaded_at,
            error_message=row.error_message,
            storage_path=row.storage_path,
        )
