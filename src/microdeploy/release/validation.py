"""Structural validation of releases."""

from __future__ import annotations

from collections import Counter

from microdeploy.config.defaults import DEFAULT_CPI_JOB_NAME
from microdeploy.lib.blobstore import sha1_file
from microdeploy.lib.errors import ValidationError
from microdeploy.models.release import Release


class ReleaseValidator:
    """Check that a release is internally consistent.

    All failures are collected and reported together in one ValidationError.
    """

    def errors(self, release: Release) -> list[str]:
        """Return every structural problem found in the release."""
        errors: list[str] = []
        if not release.name:
            errors.append("Release name is missing")
        if not release.version:
            errors.append("Release version is missing")

        for name, count in Counter(p.name for p in release.packages).items():
            if count > 1:
                errors.append(f"Package '{name}' is defined {count} times")
        for name, count in Counter(j.name for j in release.jobs).items():
            if count > 1:
                errors.append(f"Job '{name}' is defined {count} times")

        package_names = {p.name for p in release.packages}
        for package in release.packages:
            for field in ("name", "version", "fingerprint", "sha1"):
                if not getattr(package, field):
                    errors.append(f"Package '{package.name}' is missing {field}")
            for dependency in package.dependencies:
                if dependency not in package_names:
                    errors.append(
                        f"Package '{package.name}' depends on missing package '{dependency}'"
                    )
            if package.archive_path is None or not package.archive_path.is_file():
                errors.append(f"Package '{package.name}' archive is missing")
            elif package.sha1 and sha1_file(package.archive_path) != package.sha1:
                errors.append(f"Package '{package.name}' archive sha1 does not match")

        for job in release.jobs:
            for field in ("name", "version", "fingerprint", "sha1"):
                if not getattr(job, field):
                    errors.append(f"Job '{job.name}' is missing {field}")
            for package_name in job.packages:
                if package_name not in package_names:
                    errors.append(
                        f"Job '{job.name}' requires missing package '{package_name}'"
                    )
            for source in job.templates:
                if job.path is None or not (job.path / "templates" / source).is_file():
                    errors.append(f"Job '{job.name}' is missing template '{source}'")

        return errors

    def validate(self, release: Release, subject: str = "release") -> None:
        errors = self.errors(release)
        if errors:
            raise ValidationError(subject, errors)


class CpiReleaseValidator(ReleaseValidator):
    """Release validation plus the rules a CPI release must satisfy."""

    def __init__(self, job_name: str = DEFAULT_CPI_JOB_NAME) -> None:
        self.job_name = job_name

    def errors(self, release: Release) -> list[str]:
        errors = super().errors(release)
        if release.find_job(self.job_name) is None:
            errors.append(f"CPI release must contain a job named '{self.job_name}'")
        return errors

    def validate(self, release: Release, subject: str = "CPI release") -> None:
        super().validate(release, subject)
