"""Deployment state models for persisted deployments."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StemcellRecord(BaseModel):
    """An uploaded stemcell, keyed by its manifest fingerprint."""

    model_config = ConfigDict(extra="forbid")

    fingerprint: str = Field(..., description="Stemcell manifest fingerprint")
    name: str = Field(..., description="Stemcell name")
    version: str = Field(default="", description="Stemcell version")
    cid: str = Field(..., description="CPI-assigned stemcell identifier")


class VMRecord(BaseModel):
    """The VM created for this deployment."""

    model_config = ConfigDict(extra="forbid")

    cid: str = Field(..., description="CPI-assigned VM identifier")
    agent_id: str = Field(..., description="Agent identifier baked into the VM")
    stemcell_cid: str = Field(..., description="Stemcell the VM was created from")
    config_hash: str = Field(..., description="Manifest hash the VM was created for")


class DiskRecord(BaseModel):
    """The persistent disk attached to the VM."""

    model_config = ConfigDict(extra="forbid")

    cid: str = Field(..., description="CPI-assigned disk identifier")
    size: int = Field(..., ge=0, description="Disk size in MiB")
    cloud_properties: dict[str, Any] = Field(default_factory=dict)


class DeploymentRecord(BaseModel):
    """Persisted record of what has converged for a single deployment."""

    model_config = ConfigDict(extra="forbid")

    deployment_uuid: str = Field(..., description="Deployment UUID")
    manifest_path: str | None = Field(
        default=None, description="Deployment manifest last used or selected"
    )
    deployment_fingerprint: str | None = Field(
        default=None, description="Fingerprint of the last fully converged deployment"
    )
    stemcells: list[StemcellRecord] = Field(default_factory=list)
    vm: VMRecord | None = Field(default=None)
    disk: DiskRecord | None = Field(default=None)
    created_at: datetime | None = Field(
        default=None, description="Initial deployment timestamp"
    )
    updated_at: datetime | None = Field(
        default=None, description="Last update timestamp"
    )


class DeploymentState(BaseModel):
    """Top-level deployment state stored on disk."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1.0", description="State file version")
    current_deployment: str | None = Field(
        default=None, description="Name of the deployment selected for commands"
    )
    deployments: dict[str, DeploymentRecord] = Field(
        default_factory=dict, description="Deployments keyed by deployment name"
    )
