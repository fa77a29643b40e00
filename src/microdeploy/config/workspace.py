"""Workspace layout: where state, caches, blobs and installed jobs live."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from microdeploy.config.defaults import DEFAULT_WORKSPACE_DIR, WORKSPACE_ENV_VAR


class Workspace(BaseModel):
    """Filesystem layout for one deployment.

    Caches, blobs and installed CPI jobs are namespaced by the deployment
    UUID so that two deployments sharing a workspace never see each other's
    records.

    Attributes:
        root: Workspace root directory
        deployment_uuid: UUID of the current deployment
    """

    model_config = ConfigDict(frozen=True)

    root: Path = Field(..., description="Workspace root directory")
    deployment_uuid: str = Field(default="", description="Current deployment UUID")

    @classmethod
    def from_env(cls, root: str | Path | None = None) -> Workspace:
        """Build a workspace from an explicit root, ``MICRODEPLOY_HOME`` or the default."""
        selected = root or os.environ.get(WORKSPACE_ENV_VAR) or DEFAULT_WORKSPACE_DIR
        return cls(root=Path(selected).expanduser().resolve())

    def for_deployment(self, deployment_uuid: str) -> Workspace:
        return self.model_copy(update={"deployment_uuid": deployment_uuid})

    @property
    def deployment_state_path(self) -> Path:
        return self.root / "deployment.json"

    @property
    def deployment_dir(self) -> Path:
        if not self.deployment_uuid:
            raise ValueError("deployment_uuid is not set on this workspace")
        return self.root / self.deployment_uuid

    @property
    def compiled_packages_index_path(self) -> Path:
        return self.deployment_dir / "compiled_packages.json"

    @property
    def templates_index_path(self) -> Path:
        return self.deployment_dir / "templates.json"

    @property
    def blobstore_path(self) -> Path:
        return self.deployment_dir / "blobs"

    @property
    def packages_path(self) -> Path:
        """Installed CPI packages."""
        return self.deployment_dir / "packages"

    @property
    def compile_packages_path(self) -> Path:
        """Build and dependency staging area for package compilation."""
        return self.deployment_dir / "compile_packages"

    @property
    def jobs_path(self) -> Path:
        return self.deployment_dir / "jobs"

    @property
    def tmp_path(self) -> Path:
        return self.deployment_dir / "tmp"
