"""Deployment manifest loading."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from microdeploy.lib.errors import ConfigError
from microdeploy.lib.logging_config import get_logger
from microdeploy.models.deployment import DeploymentManifest

logger = get_logger(__name__)


def load_yaml_file(path: Path, field: str) -> dict[str, Any]:
    """Read a YAML mapping from disk.

    Args:
        path: File to read
        field: Name reported in ConfigError when the file is unusable

    Returns:
        Parsed mapping

    Raises:
        ConfigError: If the file is missing, unreadable, not YAML or not a mapping
    """
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(field=field, message=f"Failed to read {path}: {exc}") from exc

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ConfigError(field=field, message=f"Invalid YAML in {path}: {exc}") from exc

    if data is None:
        raise ConfigError(field=field, message=f"{path} is empty")
    if not isinstance(data, dict):
        raise ConfigError(field=field, message=f"{path} must contain a YAML mapping")
    return data


def load_deployment_manifest(path: str | Path) -> DeploymentManifest:
    """Load and validate a deployment manifest.

    Args:
        path: Path to the manifest YAML

    Returns:
        Validated DeploymentManifest

    Raises:
        ConfigError: If the manifest cannot be read or fails schema validation
    """
    manifest_path = Path(path)
    data = load_yaml_file(manifest_path, field="manifest")
    try:
        manifest = DeploymentManifest.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "manifest"
        raise ConfigError(field=location, message=first["msg"]) from exc

    logger.debug(f"Loaded deployment manifest '{manifest.name}' from {manifest_path}")
    return manifest
