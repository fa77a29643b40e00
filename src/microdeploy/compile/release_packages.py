"""Compile every package of a release, reusing cached results."""

from __future__ import annotations

from collections.abc import Mapping

from microdeploy.compile.dependency import DependencyAnalysis
from microdeploy.compile.package_compiler import Compiler
from microdeploy.compile.repo import CompiledPackageRepository
from microdeploy.eventlog.logger import EventLogger
from microdeploy.index.canonical import fingerprint
from microdeploy.lib.errors import leaf_message
from microdeploy.lib.logging_config import get_logger
from microdeploy.models.release import CompiledPackageRecord, Package, Release

logger = get_logger(__name__)

STAGE_NAME = "compiling packages"
ALREADY_COMPILED = "Package already compiled"


def dependency_fingerprint(
    package: Package, compiled: Mapping[str, CompiledPackageRecord]
) -> str:
    """Fingerprint the compiled blobs of a package's direct dependencies."""
    return fingerprint(
        [
            {
                "name": name,
                "blob_id": compiled[name].blob_id,
                "blob_sha1": compiled[name].blob_sha1,
            }
            for name in sorted(package.dependencies)
        ]
    )


class ReleasePackagesCompiler:
    """Compile a release's packages in dependency order.

    A package whose (identity, dependency fingerprint) pair is already in the
    repository is skipped and its recorded blob reused. The first failure
    aborts the whole release.
    """

    def __init__(
        self,
        dependency_analysis: DependencyAnalysis,
        compiler: Compiler,
        repo: CompiledPackageRepository,
        event_logger: EventLogger,
    ) -> None:
        self._dependency_analysis = dependency_analysis
        self._compiler = compiler
        self._repo = repo
        self._event_logger = event_logger

    def compile(self, release: Release) -> dict[str, CompiledPackageRecord]:
        """Compile all packages of ``release``.

        Returns:
            Compiled records keyed by package name.

        Raises:
            CycleError, ValidationError: If the dependency graph is unusable
            CompileError, CacheError: On the first package that fails
        """
        packages = self._dependency_analysis.determine_compile_order(release.packages)

        stage = self._event_logger.new_stage(STAGE_NAME)
        stage.start()
        compiled: dict[str, CompiledPackageRecord] = {}
        for package in packages:
            step_name = f"{package.name}/{package.version}"
            try:
                dep_fingerprint = dependency_fingerprint(package, compiled)
                record, found = self._repo.find(package, dep_fingerprint)
            except Exception as exc:
                stage.new_step(step_name).fail(leaf_message(exc))
                stage.fail(leaf_message(exc))
                raise

            if found and record is not None:
                logger.debug(f"Package {step_name} found in cache as blob {record.blob_id}")
                stage.skip_step(step_name, ALREADY_COMPILED)
                compiled[package.name] = record
                continue

            step = stage.new_step(step_name)
            step.start()
            try:
                record = self._compiler.compile(package, compiled)
                self._repo.save(package, dep_fingerprint, record)
            except Exception as exc:
                step.fail(leaf_message(exc))
                stage.fail(leaf_message(exc))
                raise
            step.finish()
            compiled[package.name] = record

        stage.finish()
        return compiled
