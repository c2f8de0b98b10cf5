"""Bill document storage (local files and http(s) references)."""

from .store import DocumentStore, compute_document_hash, is_url

__all__ = ["DocumentStore", "compute_document_hash", "is_url"]
