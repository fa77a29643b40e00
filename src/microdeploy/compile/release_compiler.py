"""Compile a whole release: packages first, then job templates."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from microdeploy.compile.release_packages import ReleasePackagesCompiler
from microdeploy.lib.errors import ValidationError
from microdeploy.models.release import CompiledPackageRecord, Release, TemplateRecord
from microdeploy.templates.compiler import TemplatesCompiler


@dataclass
class CompiledRelease:
    """Blob records produced by compiling a release."""

    release: Release
    packages: dict[str, CompiledPackageRecord] = field(default_factory=dict)
    templates: dict[str, TemplateRecord] = field(default_factory=dict)


class ReleaseCompiler:
    """Runs the packages compiler and then the templates compiler."""

    def __init__(
        self,
        packages_compiler: ReleasePackagesCompiler,
        templates_compiler: TemplatesCompiler,
    ) -> None:
        self._packages_compiler = packages_compiler
        self._templates_compiler = templates_compiler

    def compile(
        self,
        release: Release,
        deployment_name: str,
        properties: dict[str, Any],
        job_names: list[str] | None = None,
    ) -> CompiledRelease:
        """Compile every package and render the selected jobs (all jobs by default).

        Raises:
            ValidationError: If a selected job is not in the release
        """
        jobs = release.jobs
        if job_names is not None:
            missing = [name for name in job_names if release.find_job(name) is None]
            if missing:
                raise ValidationError(
                    "release", [f"Job '{name}' not found in release" for name in missing]
                )
            jobs = [job for job in release.jobs if job.name in job_names]

        packages = self._packages_compiler.compile(release)
        templates = self._templates_compiler.compile(jobs, deployment_name, properties)
        return CompiledRelease(release=release, packages=packages, templates=templates)
