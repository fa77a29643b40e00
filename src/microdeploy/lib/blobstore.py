"""Local content-addressable blob store.

Blobs are copied into a single directory under a generated identifier; the
sha1 of each blob is returned at creation time and checked on every ``get``
that supplies an expected digest.
"""

from __future__ import annotations

import hashlib
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Protocol, runtime_checkable

from microdeploy.lib.errors import BlobstoreError, IntegrityError
from microdeploy.lib.logging_config import get_logger

logger = get_logger(__name__)

_CHUNK_SIZE = 64 * 1024


def sha1_file(path: Path) -> str:
    """Compute the sha1 hex digest of a file."""
    digest = hashlib.sha1()  # noqa: S324  # nosec B324
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


@runtime_checkable
class Blobstore(Protocol):
    """Blob storage used by compilers and installers."""

    def create(self, local_path: Path) -> tuple[str, str]:
        """Store a file and return ``(blob_id, sha1)``."""
        ...

    def get(self, blob_id: str, expected_sha1: str | None = None) -> Path:
        """Copy a blob to a temp file, verifying it when a digest is given."""
        ...

    def validate(self, blob_id: str, expected_sha1: str) -> None:
        """Raise IntegrityError if the stored blob does not match."""
        ...

    def delete(self, blob_id: str) -> None:
        """Remove a blob if present."""
        ...


class LocalBlobstore:
    """Blob store backed by a local directory."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    def create(self, local_path: Path) -> tuple[str, str]:
        blob_id = str(uuid.uuid4())
        destination = self._root / blob_id
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(local_path, destination)
        except OSError as exc:
            raise BlobstoreError(f"Creating blob from {local_path}: {exc}") from exc
        sha1 = sha1_file(destination)
        logger.debug(f"Stored blob {blob_id} (sha1 {sha1}) from {local_path}")
        return blob_id, sha1

    def get(self, blob_id: str, expected_sha1: str | None = None) -> Path:
        source = self._blob_path(blob_id)
        if expected_sha1 is not None:
            self.validate(blob_id, expected_sha1)

        handle = tempfile.NamedTemporaryFile(prefix=f"blob-{blob_id}-", delete=False)
        handle.close()
        target = Path(handle.name)
        try:
            shutil.copyfile(source, target)
        except OSError as exc:
            target.unlink(missing_ok=True)
            raise BlobstoreError(f"Getting blob '{blob_id}': {exc}") from exc
        return target

    def validate(self, blob_id: str, expected_sha1: str) -> None:
        actual = sha1_file(self._blob_path(blob_id))
        if actual != expected_sha1:
            raise IntegrityError(blob_id, expected_sha1, actual)

    def delete(self, blob_id: str) -> None:
        (self._root / blob_id).unlink(missing_ok=True)

    def _blob_path(self, blob_id: str) -> Path:
        path = self._root / blob_id
        if not path.is_file():
            raise BlobstoreError(f"Blob '{blob_id}' not found in {self._root}")
        return path
