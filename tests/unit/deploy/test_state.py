"""Unit tests for deployment state helpers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from microdeploy.config.defaults import STATE_VERSION
from microdeploy.deploy.state import (
    DeploymentRecordStore,
    compute_config_hash,
    compute_deployment_fingerprint,
    get_deployment_record,
    load_state,
    save_state,
    set_current_deployment,
    update_deployment_record,
)
from microdeploy.lib.errors import DeploymentError
from microdeploy.models.deployment import DeploymentManifest
from microdeploy.models.deployment_state import (
    DeploymentRecord,
    DeploymentState,
    DiskRecord,
    VMRecord,
)


def _make_record() -> DeploymentRecord:
    return DeploymentRecord(
        deployment_uuid="deployment-uuid",
        deployment_fingerprint="sha256:feedface",
        vm=VMRecord(
            cid="vm-cid",
            agent_id="agent-id",
            stemcell_cid="stemcell-cid",
            config_hash="sha256:deadbeef",
        ),
        disk=DiskRecord(cid="disk-cid", size=1024),
    )


class TestDeploymentStateIO:
    """Tests for DeploymentState read/write helpers."""

    def test_load_state_missing_returns_default(self, state_path: Path) -> None:
        """Missing state file returns default state."""
        state = load_state(state_path)

        assert state.version == STATE_VERSION
        assert state.current_deployment is None
        assert state.deployments == {}

    def test_load_state_empty_file_returns_default(self, state_path: Path) -> None:
        state_path.write_text("  \n", encoding="utf-8")

        assert load_state(state_path).deployments == {}

    def test_save_and_load_state_round_trip(self, state_path: Path) -> None:
        """Saving and loading state preserves records."""
        record = _make_record()
        state = DeploymentState(current_deployment="micro", deployments={"micro": record})

        save_state(state_path, state)
        loaded = load_state(state_path)

        assert loaded.current_deployment == "micro"
        loaded_record = loaded.deployments["micro"]
        assert loaded_record.vm == record.vm
        assert loaded_record.disk == record.disk
        assert loaded_record.deployment_uuid == "deployment-uuid"

    def test_load_state_invalid_json_raises(self, state_path: Path) -> None:
        """Invalid JSON should raise DeploymentError."""
        state_path.write_text("{invalid}", encoding="utf-8")

        with pytest.raises(DeploymentError, match="Invalid deployment state format"):
            load_state(state_path)

    def test_load_state_invalid_schema_raises(self, state_path: Path) -> None:
        payload = {"version": "1.0", "deployments": []}
        state_path.write_text(json.dumps(payload), encoding="utf-8")

        with pytest.raises(DeploymentError, match="Invalid deployment state format"):
            load_state(state_path)


class TestDeploymentRecordHelpers:
    """Tests for deployment record helper functions."""

    def test_update_deployment_record_sets_timestamps(self, state_path: Path) -> None:
        """Update helper sets created_at and updated_at timestamps."""
        updated = update_deployment_record(state_path, "micro", _make_record())

        assert updated.created_at is not None
        assert updated.updated_at is not None

        updated_again = update_deployment_record(
            state_path,
            "micro",
            updated.model_copy(update={"disk": None}),
        )

        assert updated_again.created_at == updated.created_at
        assert updated_again.updated_at >= updated.created_at
        assert get_deployment_record(state_path, "micro").disk is None

    def test_get_deployment_record_returns_none(self, state_path: Path) -> None:
        assert get_deployment_record(state_path, "missing") is None

    def test_set_current_deployment(self, tmp_path: Path, state_path: Path) -> None:
        manifest_path = tmp_path / "micro.yml"
        manifest_path.write_text("name: micro\n", encoding="utf-8")

        record = set_current_deployment(state_path, "micro", manifest_path)

        state = load_state(state_path)
        assert state.current_deployment == "micro"
        assert record.manifest_path == str(manifest_path.resolve())
        assert state.deployments["micro"].deployment_uuid == record.deployment_uuid

    def test_compute_config_hash_stable(self, manifest_data: dict[str, Any]) -> None:
        """Config hash is deterministic for the same manifest."""
        first = compute_config_hash(DeploymentManifest.model_validate(manifest_data))
        second = compute_config_hash(DeploymentManifest.model_validate(manifest_data))

        assert first == second
        assert first.startswith("sha256:")

    def test_compute_config_hash_changes_with_manifest(
        self, manifest_data: dict[str, Any]
    ) -> None:
        before = compute_config_hash(DeploymentManifest.model_validate(manifest_data))
        manifest_data["job"]["persistent_disk"] = 2048

        after = compute_config_hash(DeploymentManifest.model_validate(manifest_data))

        assert before != after

    def test_deployment_fingerprint_changes_with_any_input(self) -> None:
        base = compute_deployment_fingerprint("sha256:abc", "stemcell-cid", "vm-cid", ["b1", "b2"])

        assert base == compute_deployment_fingerprint(
            "sha256:abc", "stemcell-cid", "vm-cid", ["b2", "b1"]
        )
        assert base != compute_deployment_fingerprint(
            "sha256:abc", "stemcell-cid", "vm-cid", ["b1", "b3"]
        )
        assert base != compute_deployment_fingerprint(
            "sha256:abc", "stemcell-cid", "other-vm-cid", ["b1", "b2"]
        )
        assert base != compute_deployment_fingerprint(
            "sha256:def", "stemcell-cid", "vm-cid", ["b1", "b2"]
        )


class TestDeploymentRecordStore:
    def test_load_creates_record_with_uuid(self, store: DeploymentRecordStore) -> None:
        record = store.load()

        assert record.deployment_uuid
        assert store.load().deployment_uuid == record.deployment_uuid

    def test_update_persists_changes(self, store: DeploymentRecordStore) -> None:
        store.update(deployment_fingerprint="sha256:abc")

        reloaded = DeploymentRecordStore(store.state_path, store.deployment_name).load()
        assert reloaded.deployment_fingerprint == "sha256:abc"

    def test_deployments_are_independent(self, state_path: Path) -> None:
        first = DeploymentRecordStore(state_path, "first").load()
        second = DeploymentRecordStore(state_path, "second").load()

        assert first.deployment_uuid != second.deployment_uuid
        assert set(load_state(state_path).deployments) == {"first", "second"}
