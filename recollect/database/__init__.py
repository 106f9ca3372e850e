"""Database layer - SQLite storage for documents and vectors."""

from .store import DocumentStore, StoreError

__all__ = ["DocumentStore", "StoreError"]
