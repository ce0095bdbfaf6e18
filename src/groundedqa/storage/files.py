"""Local persistence for uploaded document payloads."""

from __future__ import annotations

from pathlib import Path

from groundedqa.errors import NotFoundError


class LocalFileStore:
    """Stores raw upload bytes on disk, one file per document."""

    def __init__(self, uploads_path: str | Path = "./data/uploads") -> None:
        self._root = Path(uploads_path)
        self._root.mkdir(parents=True, exist_ok=True)

    def save(self, document_id: str, suffix: str, data: bytes) -> str:
        path = self._root / f"{document_id}.{suffix.lstrip('.')}"
        path.write_bytes(data)
        return str(path)

    def load(self, storage_path: str) -> bytes:
        path = Path(storage_path)
        if not path.is_file():
            raise NotFoundError(f"Stored payload not found: {path.name}")
        return path.read_bytes()

    def delete(self, storage_path: str | None) -> None:
        if storage_path:
            Path(storage_path).unlink(missing_ok=True)
