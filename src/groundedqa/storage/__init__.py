"""Metadata and payload persistence."""

from .files import LocalFileStore
from .metadata import MetadataStore, create_metadata_engine

__all__ = ["LocalFileStore", "MetadataStore", "create_metadata_engine"]
