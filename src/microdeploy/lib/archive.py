"""Gzipped tarball helpers used for package, job and release archives."""

from __future__ import annotations

import tarfile
import tempfile
from pathlib import Path

from microdeploy.lib.errors import ArchiveError


def compress_dir(source_dir: Path, dest_dir: Path | None = None) -> Path:
    """Archive the contents of a directory into a new ``.tgz`` file.

    Entries are stored relative to ``source_dir`` (``./bin/run`` etc.).

    Args:
        source_dir: Directory whose contents are archived.
        dest_dir: Directory to create the archive in (system temp by default).

    Returns:
        Path to the created archive.
    """
    handle = tempfile.NamedTemporaryFile(
        prefix="microdeploy-archive-",
        suffix=".tgz",
        dir=str(dest_dir) if dest_dir else None,
        delete=False,
    )
    handle.close()
    archive_path = Path(handle.name)
    try:
        with tarfile.open(archive_path, "w:gz") as tar:
            for entry in sorted(source_dir.iterdir()):
                tar.add(str(entry), arcname=f"./{entry.name}")
    except (OSError, tarfile.TarError) as exc:
        archive_path.unlink(missing_ok=True)
        raise ArchiveError(f"Compressing directory {source_dir}: {exc}") from exc
    return archive_path


def decompress(archive_path: Path, dest_dir: Path) -> Path:
    """Extract a gzipped tarball into ``dest_dir``.

    Args:
        archive_path: Archive to extract.
        dest_dir: Destination directory, created if missing.

    Returns:
        The destination directory.
    """
    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive_path, "r:*") as tar:
            tar.extractall(str(dest_dir), filter="data")  # nosec B202
    except (OSError, tarfile.TarError) as exc:
        raise ArchiveError(f"Extracting archive {archive_path}: {exc}") from exc
    return dest_dir
