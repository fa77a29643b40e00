"""Release tarball reader.

A release tarball contains ``release.MF`` plus one archive per package
(``packages/<name>.tgz``) and per job (``jobs/<name>.tgz``). Each job
archive holds a ``job.MF`` describing its templates, packages and properties.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from microdeploy.lib.archive import decompress
from microdeploy.lib.errors import ValidationError
from microdeploy.lib.logging_config import get_logger
from microdeploy.models.release import Job, Package, Release

logger = get_logger(__name__)


def _read_manifest(path: Path, subject: str) -> dict[str, Any]:
    if not path.is_file():
        raise ValidationError(subject, [f"{path.name} not found"])
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ValidationError(subject, [f"Reading {path.name}: {exc}"]) from exc
    if not isinstance(data, dict):
        raise ValidationError(subject, [f"{path.name} must contain a YAML mapping"])
    return data


class ReleaseReader:
    """Extract a release tarball and parse its manifests."""

    def read(self, tarball_path: Path, extract_dir: Path) -> Release:
        """Extract ``tarball_path`` into ``extract_dir`` and return the Release.

        Raises:
            ArchiveError: If the tarball cannot be extracted
            ValidationError: If a manifest is missing or malformed
        """
        logger.info(f"Extracting release {tarball_path} to {extract_dir}")
        decompress(Path(tarball_path), extract_dir)
        return self.read_extracted(extract_dir)

    def read_extracted(self, release_dir: Path) -> Release:
        """Parse an already extracted release directory."""
        manifest = _read_manifest(release_dir / "release.MF", "release")

        packages = [
            self._read_package(release_dir, item)
            for item in manifest.get("packages") or []
        ]
        jobs = [self._read_job(release_dir, item) for item in manifest.get("jobs") or []]

        try:
            return Release(
                name=manifest.get("name", ""),
                version=str(manifest.get("version", "")),
                packages=packages,
                jobs=jobs,
                extracted_path=release_dir,
            )
        except PydanticValidationError as exc:
            raise ValidationError("release", [str(exc)]) from exc

    def _read_package(self, release_dir: Path, item: dict[str, Any]) -> Package:
        name = item.get("name", "")
        try:
            return Package(
                name=name,
                version=str(item.get("version", "")),
                fingerprint=item.get("fingerprint", ""),
                sha1=item.get("sha1", ""),
                dependencies=tuple(item.get("dependencies") or ()),
                archive_path=release_dir / "packages" / f"{name}.tgz",
            )
        except PydanticValidationError as exc:
            raise ValidationError("release", [f"package '{name}': {exc}"]) from exc

    def _read_job(self, release_dir: Path, item: dict[str, Any]) -> Job:
        name = item.get("name", "")
        job_dir = release_dir / "extracted_jobs" / name
        archive = release_dir / "jobs" / f"{name}.tgz"
        if archive.is_file():
            decompress(archive, job_dir)
        job_manifest = _read_manifest(job_dir / "job.MF", f"job '{name}'")

        try:
            return Job(
                name=name,
                version=str(item.get("version", "")),
                fingerprint=item.get("fingerprint", ""),
                sha1=item.get("sha1", ""),
                templates=job_manifest.get("templates") or {},
                packages=tuple(job_manifest.get("packages") or ()),
                properties={
                    key: value or {}
                    for key, value in (job_manifest.get("properties") or {}).items()
                },
                path=job_dir,
            )
        except PydanticValidationError as exc:
            raise ValidationError("release", [f"job '{name}': {exc}"]) from exc
