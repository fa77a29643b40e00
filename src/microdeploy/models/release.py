"""Pydantic models for releases, packages, jobs and their compiled records."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Package(BaseModel):
    """A release package: source archive plus named dependencies.

    Attributes:
        name: Package name, unique within the release
        version: Package version
        fingerprint: Hash of the source and its transitive dependency fingerprints
        sha1: sha1 of the package source archive
        dependencies: Names of packages this one depends on
        archive_path: Extracted source archive location (not part of any cache key)
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Package name")
    version: str = Field(..., description="Package version")
    fingerprint: str = Field(..., description="Package fingerprint")
    sha1: str = Field(..., description="Source archive sha1")
    dependencies: tuple[str, ...] = Field(
        default=(), description="Names of packages this package depends on"
    )
    archive_path: Path | None = Field(
        default=None, exclude=True, description="Extracted source archive"
    )


class JobProperty(BaseModel):
    """A property declared in a job spec."""

    model_config = ConfigDict(frozen=True)

    description: str | None = None
    default: Any = None


class Job(BaseModel):
    """A release job: templates rendered into configuration at compile time.

    Attributes:
        name: Job name, unique within the release
        version: Job version
        fingerprint: Hash of the job's template sources
        sha1: sha1 of the job archive
        templates: Template source path -> destination path within the job
        packages: Names of packages the job runs
        properties: Declared properties with optional defaults
        path: Extracted job directory (not part of any cache key)
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Job name")
    version: str = Field(..., description="Job version")
    fingerprint: str = Field(..., description="Job fingerprint")
    sha1: str = Field(..., description="Job archive sha1")
    templates: dict[str, str] = Field(
        default_factory=dict, description="Template source -> destination"
    )
    packages: tuple[str, ...] = Field(default=(), description="Package names")
    properties: dict[str, JobProperty] = Field(
        default_factory=dict, description="Declared job properties"
    )
    path: Path | None = Field(default=None, exclude=True, description="Job directory")


class Release(BaseModel):
    """A versioned bundle of packages and jobs."""

    name: str = Field(..., description="Release name")
    version: str = Field(..., description="Release version")
    packages: list[Package] = Field(default_factory=list)
    jobs: list[Job] = Field(default_factory=list)
    extracted_path: Path | None = Field(default=None, exclude=True)

    def find_job(self, name: str) -> Job | None:
        """Return the job with the given name, if any."""
        return next((job for job in self.jobs if job.name == name), None)

    def find_package(self, name: str) -> Package | None:
        """Return the package with the given name, if any."""
        return next((pkg for pkg in self.packages if pkg.name == name), None)


class CompiledPackageRecord(BaseModel):
    """Blob reference for a compiled package."""

    model_config = ConfigDict(frozen=True)

    blob_id: str = Field(..., description="Blob store identifier")
    blob_sha1: str = Field(..., description="sha1 of the compiled archive")


class TemplateRecord(BaseModel):
    """Blob reference for a job's rendered template archive."""

    model_config = ConfigDict(frozen=True)

    blob_id: str = Field(..., description="Blob store identifier")
    blob_sha1: str = Field(..., description="sha1 of the rendered archive")
