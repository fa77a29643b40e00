"""Pydantic models for the deployment manifest.

This module defines the schema of the YAML manifest describing the single
VM to deploy and the cloud provider (CPI) used to create it.
"""

import re
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from microdeploy.config.defaults import (
    DEFAULT_AGENT_PING_DELAY,
    DEFAULT_AGENT_PING_TIMEOUT,
    DEFAULT_CPI_JOB_NAME,
    DEFAULT_REGISTRY_PORT,
    DEFAULT_SSH_PORT,
)

NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class NetworkType(str, Enum):
    """Supported network types."""

    MANUAL = "manual"
    DYNAMIC = "dynamic"
    VIP = "vip"


class NetworkConfig(BaseModel):
    """A network the VM is attached to.

    Attributes:
        name: Network name
        type: Network type (manual, dynamic, vip)
        ip: Static IP address (manual and vip networks)
        netmask: Netmask (manual networks)
        gateway: Gateway (manual networks)
        dns: DNS servers
        default: Default gateway/DNS roles this network provides
        cloud_properties: Provider-specific properties
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Network name")
    type: NetworkType = Field(default=NetworkType.MANUAL, description="Network type")
    ip: str | None = Field(default=None, description="Static IP address")
    netmask: str | None = Field(default=None, description="Netmask")
    gateway: str | None = Field(default=None, description="Gateway")
    dns: list[str] = Field(default_factory=list, description="DNS servers")
    default: list[str] = Field(default_factory=list, description="Default roles")
    cloud_properties: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_static_ip(self) -> "NetworkConfig":
        """Manual and vip networks need a static IP."""
        if self.type in (NetworkType.MANUAL, NetworkType.VIP) and not self.ip:
            raise ValueError(f"network '{self.name}' of type {self.type.value} requires an ip")
        return self

    def to_agent_settings(self) -> dict[str, Any]:
        """Return the network in the shape agents and CPIs expect."""
        settings: dict[str, Any] = {
            "type": self.type.value,
            "cloud_properties": self.cloud_properties,
        }
        for key in ("ip", "netmask", "gateway"):
            value = getattr(self, key)
            if value is not None:
                settings[key] = value
        if self.dns:
            settings["dns"] = self.dns
        if self.default:
            settings["default"] = self.default
        return settings


class ResourcePoolConfig(BaseModel):
    """Compute settings for the VM."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="default", description="Resource pool name")
    cloud_properties: dict[str, Any] = Field(default_factory=dict)
    env: dict[str, Any] = Field(default_factory=dict, description="VM env passed to CPI")


class DiskPoolConfig(BaseModel):
    """Persistent disk settings."""

    model_config = ConfigDict(extra="forbid")

    disk_size: int = Field(..., ge=0, description="Disk size in MiB")
    cloud_properties: dict[str, Any] = Field(default_factory=dict)


class TemplateRef(BaseModel):
    """A job from the deployed release to run on the VM."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Job name within the release")


class InstanceJobConfig(BaseModel):
    """The single instance group deployed on the VM."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Instance group name")
    templates: list[TemplateRef] = Field(..., min_length=1)
    networks: list[str] = Field(
        default_factory=list,
        description="Network names (all manifest networks when empty)",
    )
    persistent_disk: int = Field(default=0, ge=0, description="Disk size in MiB")
    persistent_disk_pool: DiskPoolConfig | None = Field(default=None)
    properties: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate job name pattern."""
        if not NAME_PATTERN.match(v):
            raise ValueError(f"Invalid job name: {v}")
        return v


class RegistryConfig(BaseModel):
    """Registry server the VM fetches its settings from."""

    model_config = ConfigDict(extra="forbid")

    host: str = Field(default="127.0.0.1", description="Address to listen on")
    port: int = Field(default=DEFAULT_REGISTRY_PORT, ge=0, le=65535)
    username: str = Field(..., description="Basic auth username")
    password: str = Field(..., description="Basic auth password")


class SSHTunnelConfig(BaseModel):
    """SSH tunnel used by the VM to reach the local registry."""

    model_config = ConfigDict(extra="forbid")

    host: str = Field(..., description="VM address to connect to")
    port: int = Field(default=DEFAULT_SSH_PORT, ge=1, le=65535)
    user: str = Field(..., description="SSH user")
    private_key: str | None = Field(default=None, description="Private key file path")
    password: str | None = Field(default=None, description="SSH password")

    @model_validator(mode="after")
    def validate_credentials(self) -> "SSHTunnelConfig":
        """Either a private key or a password is required."""
        if not self.private_key and not self.password:
            raise ValueError("ssh_tunnel requires either private_key or password")
        return self


class AgentConfig(BaseModel):
    """Agent reachability settings."""

    model_config = ConfigDict(extra="forbid")

    ping_timeout: float = Field(default=DEFAULT_AGENT_PING_TIMEOUT, gt=0)
    ping_delay: float = Field(default=DEFAULT_AGENT_PING_DELAY, ge=0)


class CloudProviderConfig(BaseModel):
    """How to reach the cloud: CPI job, message bus, registry, tunnel."""

    model_config = ConfigDict(extra="forbid")

    job: str = Field(default=DEFAULT_CPI_JOB_NAME, description="CPI job name")
    mbus: str = Field(..., description="Agent message bus URL")
    registry: RegistryConfig | None = Field(default=None)
    ssh_tunnel: SSHTunnelConfig | None = Field(default=None)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    properties: dict[str, Any] = Field(
        default_factory=dict, description="Properties for rendering the CPI job"
    )

    @field_validator("mbus")
    @classmethod
    def validate_mbus(cls, v: str) -> str:
        """The message bus must be an http(s) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid mbus URL: {v}. Must start with http:// or https://")
        return v


class DeploymentManifest(BaseModel):
    """Top-level deployment manifest.

    Attributes:
        name: Deployment name
        networks: Networks available to the VM
        resource_pool: Compute settings for the VM
        job: The instance group to run on the VM
        properties: Global properties used when rendering job templates
        cloud_provider: CPI and connectivity settings
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Deployment name")
    networks: list[NetworkConfig] = Field(..., min_length=1)
    resource_pool: ResourcePoolConfig = Field(default_factory=ResourcePoolConfig)
    job: InstanceJobConfig
    properties: dict[str, Any] = Field(default_factory=dict)
    cloud_provider: CloudProviderConfig

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate deployment name pattern."""
        if not NAME_PATTERN.match(v):
            raise ValueError(
                f"Invalid deployment name: {v}. "
                "Must contain only letters, numbers, '.', '_', '-'"
            )
        return v

    @model_validator(mode="after")
    def validate_job_networks(self) -> "DeploymentManifest":
        """Job networks must reference declared networks."""
        declared = {network.name for network in self.networks}
        unknown = [name for name in self.job.networks if name not in declared]
        if unknown:
            raise ValueError(f"job references unknown networks: {', '.join(unknown)}")
        if len(declared) != len(self.networks):
            raise ValueError("network names must be unique")
        return self

    def job_networks(self) -> list[NetworkConfig]:
        """Networks the job is attached to."""
        if not self.job.networks:
            return list(self.networks)
        return [n for n in self.networks if n.name in self.job.networks]

    def network_settings(self) -> dict[str, dict[str, Any]]:
        """Networks keyed by name, in agent/CPI format."""
        return {n.name: n.to_agent_settings() for n in self.job_networks()}

    def disk_size(self) -> int:
        """Requested persistent disk size in MiB (0 means no disk)."""
        if self.job.persistent_disk_pool is not None:
            return self.job.persistent_disk_pool.disk_size
        return self.job.persistent_disk

    def disk_cloud_properties(self) -> dict[str, Any]:
        if self.job.persistent_disk_pool is not None:
            return self.job.persistent_disk_pool.cloud_properties
        return {}

    def job_properties(self) -> dict[str, Any]:
        """Global properties overlaid with job-level properties."""
        return _deep_merge(self.properties, self.job.properties)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
