"""Compile a single package with its packaging script."""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

from microdeploy.lib.archive import compress_dir, decompress
from microdeploy.lib.blobstore import Blobstore
from microdeploy.lib.errors import ArchiveError, BlobstoreError, CompileError
from microdeploy.lib.logging_config import get_logger
from microdeploy.lib.runner import CommandRunner
from microdeploy.models.release import CompiledPackageRecord, Package

logger = get_logger(__name__)

PACKAGING_SCRIPT = "packaging"


@runtime_checkable
class Compiler(Protocol):
    """Turns a package source into a compiled blob."""

    def compile(
        self,
        package: Package,
        dependencies: Mapping[str, CompiledPackageRecord],
    ) -> CompiledPackageRecord: ...


class PackageCompiler:
    """Run a package's ``packaging`` script and store the result as a blob.

    Compiled dependencies are extracted to ``<packages_dir>/<name>`` before
    the script runs, and the script installs into ``<packages_dir>/<package>``.
    This class never consults or updates the compiled package cache.
    """

    def __init__(
        self,
        runner: CommandRunner,
        packages_dir: Path,
        blobstore: Blobstore,
    ) -> None:
        self._runner = runner
        self._packages_dir = Path(packages_dir)
        self._blobstore = blobstore

    def compile(
        self,
        package: Package,
        dependencies: Mapping[str, CompiledPackageRecord],
    ) -> CompiledPackageRecord:
        """Compile ``package`` against its already compiled dependencies.

        Args:
            package: Package to compile
            dependencies: Compiled records keyed by package name; must include
                every direct dependency of ``package``

        Returns:
            Record of the compiled blob

        Raises:
            CompileError: If staging, the packaging script or storing the result fails
        """
        if package.archive_path is None:
            raise CompileError(package.name, "Package source archive is not set")

        install_dir = self._packages_dir / package.name
        compile_dir = Path(tempfile.mkdtemp(prefix=f"compile-{package.name}-"))
        try:
            self._stage_dependencies(package, dependencies)
            shutil.rmtree(install_dir, ignore_errors=True)
            install_dir.mkdir(parents=True, exist_ok=True)

            try:
                decompress(package.archive_path, compile_dir)
            except ArchiveError as exc:
                raise CompileError(package.name, "Extracting package source") from exc

            if not (compile_dir / PACKAGING_SCRIPT).is_file():
                raise CompileError(package.name, "Packaging script is missing")

            self._run_packaging(package, compile_dir, install_dir)
            return self._store(package, install_dir)
        finally:
            shutil.rmtree(compile_dir, ignore_errors=True)

    def _stage_dependencies(
        self,
        package: Package,
        dependencies: Mapping[str, CompiledPackageRecord],
    ) -> None:
        for name in package.dependencies:
            record = dependencies.get(name)
            if record is None:
                raise CompileError(package.name, f"Dependency '{name}' has not been compiled")
            target = self._packages_dir / name
            shutil.rmtree(target, ignore_errors=True)
            try:
                blob_path = self._blobstore.get(record.blob_id, record.blob_sha1)
                try:
                    decompress(blob_path, target)
                finally:
                    blob_path.unlink(missing_ok=True)
            except (BlobstoreError, ArchiveError) as exc:
                raise CompileError(package.name, f"Staging dependency '{name}'") from exc

    def _run_packaging(self, package: Package, compile_dir: Path, install_dir: Path) -> None:
        logger.info(f"Compiling package {package.name}/{package.version}")
        env = {
            "BOSH_COMPILE_TARGET": str(compile_dir),
            "BOSH_INSTALL_TARGET": str(install_dir),
            "BOSH_PACKAGE_NAME": package.name,
            "BOSH_PACKAGE_VERSION": package.version,
        }
        try:
            result = self._runner.run(
                ["bash", "-x", PACKAGING_SCRIPT], cwd=compile_dir, env=env
            )
        except OSError as exc:
            raise CompileError(package.name, f"Running packaging script: {exc}") from exc
        if not result.succeeded:
            raise CompileError(
                package.name,
                f"Packaging script exited with status {result.exit_status}",
                result.combined_output,
            )

    def _store(self, package: Package, install_dir: Path) -> CompiledPackageRecord:
        try:
            archive = compress_dir(install_dir)
            try:
                blob_id, sha1 = self._blobstore.create(archive)
            finally:
                archive.unlink(missing_ok=True)
        except (ArchiveError, BlobstoreError) as exc:
            raise CompileError(package.name, "Storing compiled package") from exc
        logger.debug(f"Compiled package {package.name} stored as blob {blob_id}")
        return CompiledPackageRecord(blob_id=blob_id, blob_sha1=sha1)
