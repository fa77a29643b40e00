"""Install compiled jobs and their packages onto the local machine."""

from __future__ import annotations

import shutil
import stat
from dataclasses import dataclass
from pathlib import Path

from microdeploy.compile.release_compiler import CompiledRelease
from microdeploy.eventlog.logger import EventLogger
from microdeploy.lib.archive import decompress
from microdeploy.lib.blobstore import Blobstore
from microdeploy.lib.errors import (
    ArchiveError,
    BlobstoreError,
    DeploymentError,
    leaf_message,
)
from microdeploy.lib.logging_config import get_logger
from microdeploy.models.release import Job

logger = get_logger(__name__)

STAGE_NAME = "installing CPI jobs"


@dataclass(frozen=True)
class InstalledJob:
    """A job extracted into the jobs directory."""

    name: str
    path: Path


class JobInstaller:
    """Extract a compiled job and the packages it needs.

    Packages land in ``<packages_dir>/<name>`` and rendered templates in
    ``<jobs_dir>/<job>``. Files under ``bin/`` are made executable.
    """

    def __init__(
        self,
        blobstore: Blobstore,
        jobs_dir: Path,
        packages_dir: Path,
        event_logger: EventLogger,
    ) -> None:
        self._blobstore = blobstore
        self._jobs_dir = Path(jobs_dir)
        self._packages_dir = Path(packages_dir)
        self._event_logger = event_logger

    def install(self, job: Job, compiled: CompiledRelease) -> InstalledJob:
        stage = self._event_logger.new_stage(STAGE_NAME)
        stage.start()
        step = stage.new_step(job.name)
        step.start()
        try:
            installed = self._install(job, compiled)
        except Exception as exc:
            step.fail(leaf_message(exc))
            stage.fail(leaf_message(exc))
            raise
        step.finish()
        stage.finish()
        return installed

    def _install(self, job: Job, compiled: CompiledRelease) -> InstalledJob:
        for package_name in job.packages:
            record = compiled.packages.get(package_name)
            if record is None:
                raise DeploymentError(
                    "install job", f"Package '{package_name}' of job '{job.name}' is not compiled"
                )
            self._extract(record.blob_id, record.blob_sha1, self._packages_dir / package_name)

        template = compiled.templates.get(job.name)
        if template is None:
            raise DeploymentError("install job", f"Templates of job '{job.name}' are not rendered")
        job_dir = self._jobs_dir / job.name
        self._extract(template.blob_id, template.blob_sha1, job_dir)

        bin_dir = job_dir / "bin"
        if bin_dir.is_dir():
            for path in bin_dir.iterdir():
                if path.is_file():
                    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

        logger.info(f"Installed job {job.name} into {job_dir}")
        return InstalledJob(name=job.name, path=job_dir)

    def _extract(self, blob_id: str, sha1: str, target: Path) -> None:
        shutil.rmtree(target, ignore_errors=True)
        try:
            blob_path = self._blobstore.get(blob_id, sha1)
            try:
                decompress(blob_path, target)
            finally:
                blob_path.unlink(missing_ok=True)
        except (BlobstoreError, ArchiveError) as exc:
            raise DeploymentError("install job", f"Extracting blob '{blob_id}'") from exc
