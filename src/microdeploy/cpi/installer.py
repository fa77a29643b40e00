"""Install a CPI release and hand back a Cloud that talks to it."""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

from microdeploy.compile.release_compiler import ReleaseCompiler
from microdeploy.cpi.cloud import Cloud, CloudFactory
from microdeploy.cpi.job_installer import JobInstaller
from microdeploy.lib.errors import ArchiveError, DeploymentError
from microdeploy.lib.logging_config import get_logger
from microdeploy.models.deployment import DeploymentManifest
from microdeploy.release.reader import ReleaseReader
from microdeploy.release.validation import CpiReleaseValidator

logger = get_logger(__name__)


class CpiInstaller:
    """Read, validate, compile and install a CPI release.

    Validation happens before anything is compiled, so a malformed release
    never touches the caches.
    """

    def __init__(
        self,
        reader: ReleaseReader,
        validator: CpiReleaseValidator,
        release_compiler: ReleaseCompiler,
        job_installer: JobInstaller,
        cloud_factory: CloudFactory,
        tmp_dir: Path,
    ) -> None:
        self._reader = reader
        self._validator = validator
        self._release_compiler = release_compiler
        self._job_installer = job_installer
        self._cloud_factory = cloud_factory
        self._tmp_dir = Path(tmp_dir)

    def install(
        self,
        tarball_path: Path,
        manifest: DeploymentManifest,
        deployment_uuid: str,
    ) -> Cloud:
        """Install the CPI job of ``tarball_path``.

        Raises:
            ValidationError: If the release is malformed or has no CPI job
            DeploymentError: If the tarball cannot be extracted
            CompileError, CacheError: If compiling the release fails
        """
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        extract_dir = Path(tempfile.mkdtemp(prefix="cpi-release-", dir=self._tmp_dir))
        try:
            try:
                release = self._reader.read(tarball_path, extract_dir)
            except ArchiveError as exc:
                raise DeploymentError(
                    "install CPI", f"Extracting CPI release {tarball_path}"
                ) from exc
            self._validator.validate(release)
            logger.info(f"Installing CPI release {release.name}/{release.version}")

            compiled = self._release_compiler.compile(
                release,
                manifest.name,
                manifest.cloud_provider.properties,
                [self._validator.job_name],
            )
            cpi_job = release.find_job(self._validator.job_name)
            if cpi_job is None:
                raise DeploymentError(
                    "install CPI", f"CPI job '{self._validator.job_name}' not found"
                )
            installed = self._job_installer.install(cpi_job, compiled)
        finally:
            shutil.rmtree(extract_dir, ignore_errors=True)

        return self._cloud_factory.new_cloud(installed.path, deployment_uuid)
