"""Deployment state tracking helpers."""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from microdeploy.config.defaults import STATE_VERSION
from microdeploy.index.canonical import canonical_json
from microdeploy.lib.errors import DeploymentError
from microdeploy.models.deployment import DeploymentManifest
from microdeploy.models.deployment_state import DeploymentRecord, DeploymentState


def compute_config_hash(manifest: DeploymentManifest) -> str:
    """Compute a deterministic hash for the deployment manifest."""
    payload = canonical_json(manifest.model_dump(mode="json", exclude_unset=False))
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def compute_deployment_fingerprint(
    config_hash: str, stemcell_cid: str, vm_cid: str, blob_ids: list[str]
) -> str:
    """Hash the inputs a converged job was applied from."""
    payload = canonical_json(
        {
            "config_hash": config_hash,
            "stemcell_cid": stemcell_cid,
            "vm_cid": vm_cid,
            "blob_ids": sorted(blob_ids),
        }
    )
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def load_state(state_path: Path) -> DeploymentState:
    """Load deployment state data from disk."""
    if not state_path.exists():
        return DeploymentState(version=STATE_VERSION)

    try:
        content = state_path.read_text(encoding="utf-8")
        if not content.strip():
            return DeploymentState(version=STATE_VERSION)
    except OSError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Failed to read deployment state at {state_path}: {exc}",
        ) from exc

    try:
        state = DeploymentState.model_validate_json(content)
    except ValidationError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Invalid deployment state format in {state_path}: {exc}",
        ) from exc

    if not state.version:
        state = state.model_copy(update={"version": STATE_VERSION})
    return state


def save_state(state_path: Path, state: DeploymentState) -> None:
    """Persist deployment state data to disk."""
    try:
        state_path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(state.model_dump(mode="json"), indent=2, sort_keys=True)
        state_path.write_text(payload, encoding="utf-8")
    except OSError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Failed to write deployment state to {state_path}: {exc}",
        ) from exc


def get_deployment_record(
    state_path: Path, deployment_name: str
) -> DeploymentRecord | None:
    """Return the record for a specific deployment."""
    state = load_state(state_path)
    return state.deployments.get(deployment_name)


def update_deployment_record(
    state_path: Path, deployment_name: str, record: DeploymentRecord
) -> DeploymentRecord:
    """Update the record for a deployment and persist it."""
    state = load_state(state_path)
    existing = state.deployments.get(deployment_name)
    now = datetime.now(timezone.utc)

    created_at = record.created_at or (existing.created_at if existing else None) or now
    updated_record = record.model_copy(
        update={"created_at": created_at, "updated_at": now}
    )

    state.deployments[deployment_name] = updated_record
    if not state.version:
        state = state.model_copy(update={"version": STATE_VERSION})
    save_state(state_path, state)
    return updated_record


def set_current_deployment(
    state_path: Path, deployment_name: str, manifest_path: Path
) -> DeploymentRecord:
    """Select a deployment for subsequent commands, creating its record if needed."""
    store = DeploymentRecordStore(state_path, deployment_name)
    record = store.update(manifest_path=str(manifest_path.resolve()))
    state = load_state(state_path)
    save_state(state_path, state.model_copy(update={"current_deployment": deployment_name}))
    return record


class DeploymentRecordStore:
    """Read-modify-write access to one deployment's record.

    The record is created with a fresh deployment UUID the first time it is
    loaded. Managers hold no state of their own; they read and write through
    this store.
    """

    def __init__(self, state_path: Path, deployment_name: str) -> None:
        self.state_path = Path(state_path)
        self.deployment_name = deployment_name

    def load(self) -> DeploymentRecord:
        record = get_deployment_record(self.state_path, self.deployment_name)
        if record is None:
            record = update_deployment_record(
                self.state_path,
                self.deployment_name,
                DeploymentRecord(deployment_uuid=str(uuid.uuid4())),
            )
        return record

    def save(self, record: DeploymentRecord) -> DeploymentRecord:
        return update_deployment_record(self.state_path, self.deployment_name, record)

    def update(self, **changes: Any) -> DeploymentRecord:
        """Apply field changes to the stored record and persist it."""
        record = self.load()
        return self.save(record.model_copy(update=changes))
