"""Build the apply spec sent to the agent."""

from __future__ import annotations

from typing import Any

from microdeploy.compile.release_compiler import CompiledRelease
from microdeploy.lib.errors import DeploymentError
from microdeploy.models.deployment import DeploymentManifest
from microdeploy.models.release import Release
from microdeploy.models.stemcell import ApplySpec


def required_packages(release: Release, job_names: list[str]) -> list[str]:
    """Names of packages the given jobs need, including transitive dependencies.

    Order follows the release's package list.
    """
    needed: set[str] = set()
    pending: list[str] = []
    for job_name in job_names:
        job = release.find_job(job_name)
        if job is None:
            raise DeploymentError("apply spec", f"Job '{job_name}' not found in release")
        pending.extend(job.packages)

    while pending:
        name = pending.pop()
        if name in needed:
            continue
        needed.add(name)
        package = release.find_package(name)
        if package is None:
            raise DeploymentError("apply spec", f"Package '{name}' not found in release")
        pending.extend(package.dependencies)

    return [p.name for p in release.packages if p.name in needed]


class ApplySpecFactory:
    """Assemble the apply payload from the manifest and compiled release."""

    def create(
        self,
        manifest: DeploymentManifest,
        compiled: CompiledRelease,
        config_hash: str,
        base: ApplySpec | None = None,
    ) -> dict[str, Any]:
        release = compiled.release
        job_names = [template.name for template in manifest.job.templates]

        templates = []
        for name in job_names:
            job = release.find_job(name)
            record = compiled.templates.get(name)
            if job is None or record is None:
                raise DeploymentError("apply spec", f"Job '{name}' has not been compiled")
            templates.append(
                {
                    "name": job.name,
                    "version": job.version,
                    "sha1": record.blob_sha1,
                    "blobstore_id": record.blob_id,
                }
            )

        packages: dict[str, Any] = {}
        for name in required_packages(release, job_names):
            package = release.find_package(name)
            record = compiled.packages.get(name)
            if package is None or record is None:
                raise DeploymentError("apply spec", f"Package '{name}' has not been compiled")
            packages[name] = {
                "name": package.name,
                "version": package.version,
                "sha1": record.blob_sha1,
                "blobstore_id": record.blob_id,
            }

        spec: dict[str, Any] = base.model_dump() if base is not None else {}
        spec.update(
            {
                "deployment": manifest.name,
                "index": 0,
                "job": {
                    "name": manifest.job.name,
                    "template": templates[0]["name"],
                    "templates": templates,
                },
                "packages": packages,
                "networks": manifest.network_settings(),
                "resource_pool": manifest.resource_pool.model_dump(),
                "properties": manifest.job_properties(),
                "persistent_disk": manifest.disk_size(),
                "configuration_hash": config_hash,
            }
        )
        return spec
