"""
Bill document storage.

A file reference is either an http(s) URL or a path relative to the
configured document root (absolute paths are used as given). URLs are
fetched through a requests session with retry; local files are read and
deleted directly.
"""

import hashlib
import logging
import shutil
from pathlib import Path
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import DocumentFetchFailure

logger = logging.getLogger(__name__)


def compute_document_hash(file_bytes: bytes) -> str:
    """Compute SHA256 hash of document bytes."""
    return hashlib.sha256(file_bytes).hexdigest()


def is_url(ref: str) -> bool:
    return ref.startswith("http://") or ref.startswith("https://")


class DocumentStore:
    """
    Reads, stores and deletes bill documents.

    Features:
    - Local files under a document root
    - Remote documents over http(s)
    - Automatic retry with backoff for remote fetches
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        root: Path,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize the document store.

        Args:
            root: Directory that relative references resolve against
            timeout: Request timeout in seconds for URL references
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.root = Path(root)
        self.timeout = timeout

        self.session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def resolve(self, ref: str) -> Path:
        """Local path for a non-URL reference."""
        path = Path(ref)
        return path if path.is_absolute() else self.root / path

    def fetch(self, ref: Optional[str]) -> bytes:
        """
        Read a document's bytes.

        Raises:
            DocumentFetchFailure: Missing reference, unreadable file or failed request
        """
        if not ref:
            raise DocumentFetchFailure("PDF file not found in storage")
        if is_url(ref):
            return self._fetch_url(ref)

        path = self.resolve(ref)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise DocumentFetchFailure(f"PDF file not found in storage: {ref}") from e
        except OSError as e:
            raise DocumentFetchFailure(f"Could not read document {ref}: {e}") from e

    def _fetch_url(self, url: str) -> bytes:
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise DocumentFetchFailure(f"Document download timed out: {url}") from e
        except requests.exceptions.RequestException as e:
            raise DocumentFetchFailure(f"Document download failed: {e}") from e

        if not response.ok:
            raise DocumentFetchFailure(
                f"Document download failed with HTTP {response.status_code}: {url}"
            )
        return response.content

    def save(self, source: Path) -> str:
        """
        Copy a local file into the document root.

        The stored name is prefixed with the content hash so two uploads of
        the same file name do not collide.

        Returns:
            Reference relative to the root
        """
        source = Path(source)
        digest = compute_document_hash(source.read_bytes())[:12]
        ref = f"{digest}-{source.name}"
        target = self.root / ref
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        logger.debug("Stored %s as %s", source, ref)
        return ref

    def delete(self, ref: Optional[str]) -> bool:
        """
        Remove a stored document.

        URL references are not owned by the store and are left alone.

        Returns:
            True if a file was removed
        """
        if not ref or is_url(ref):
            return False
        path = self.resolve(ref)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug("Document %s already gone", ref)
            return False
        logger.debug("Deleted document %s", ref)
        return True

    def close(self) -> None:
        self.session.close()
