"""Document store backends."""

from docrel.store.base import DocumentSession, DocumentStore, DuplicateKeyError
from docrel.store.memory import MemoryDocumentStore

__all__ = ["DocumentSession", "DocumentStore", "DuplicateKeyError", "MemoryDocumentStore"]
