"""Tests for VM lookup/creation and persistent disk convergence."""

from __future__ import annotations

import pytest

from fakes import FakeAgentClient, FakeCloud
from microdeploy.deploy.disk import ALREADY_ATTACHED, DiskManager
from microdeploy.deploy.state import DeploymentRecordStore
from microdeploy.deploy.vm import VM, VMManager
from microdeploy.eventlog.logger import EventLogger, EventState, Stage
from microdeploy.eventlog.sinks import RecordingEventSink
from microdeploy.lib.errors import AgentError, CPIError
from microdeploy.models.deployment import DeploymentManifest
from microdeploy.models.deployment_state import DiskRecord
from microdeploy.models.stemcell import CloudStemcell


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def vm_manager(cloud: FakeCloud, store: DeploymentRecordStore) -> VMManager:
    return VMManager(cloud, store, FakeAgentClient)


@pytest.fixture
def vm(vm_manager: VMManager, manifest: DeploymentManifest) -> VM:
    return vm_manager.create(CloudStemcell(cid="stemcell-cid"), manifest, "sha256:abc")


@pytest.fixture
def stage(event_logger: EventLogger) -> Stage:
    return event_logger.new_stage("deploying")


class TestVMManager:
    def test_create_records_vm(
        self,
        cloud: FakeCloud,
        store: DeploymentRecordStore,
        vm: VM,
        manifest: DeploymentManifest,
    ) -> None:
        record = store.load().vm

        assert record is not None
        assert record.cid == vm.cid
        assert record.stemcell_cid == "stemcell-cid"
        assert record.config_hash == "sha256:abc"
        agent_id, stemcell_cid, cloud_properties, networks, env = cloud.method_calls(
            "create_vm"
        )[0]
        assert agent_id == record.agent_id
        assert stemcell_cid == "stemcell-cid"
        assert cloud_properties == {"instance_type": "m1.small"}
        assert networks == manifest.network_settings()
        assert env == {"bosh": {"password": "secret"}}
        assert vm.agent_client.agent_id == record.agent_id

    def test_find_current_returns_existing_vm(self, vm_manager: VMManager, vm: VM) -> None:
        found = vm_manager.find_current()

        assert found is not None
        assert found.cid == vm.cid

    def test_find_current_forgets_vanished_vm(
        self,
        cloud: FakeCloud,
        store: DeploymentRecordStore,
        vm_manager: VMManager,
        vm: VM,
    ) -> None:
        cloud.vms.clear()

        assert vm_manager.find_current() is None
        assert store.load().vm is None

    def test_find_current_without_record(self, vm_manager: VMManager) -> None:
        assert vm_manager.find_current() is None

    def test_delete_forgets_vm(
        self, cloud: FakeCloud, store: DeploymentRecordStore, vm: VM
    ) -> None:
        vm.delete()

        assert cloud.vms == set()
        assert store.load().vm is None
        assert vm.agent_client.method_names() == ["stop"]

    def test_delete_detaches_disk_before_deleting_vm(self, cloud: FakeCloud, vm: VM) -> None:
        disk = DiskRecord(cid="disk-cid", size=1024)
        vm.attach_disk(disk)
        cloud.calls.clear()

        vm.delete(disk)

        assert vm.agent_client.method_names()[-2:] == ["stop", "unmount_disk"]
        assert [name for name, _ in cloud.calls] == ["detach_disk", "delete_vm"]
        assert "disk-cid" not in cloud.attachments

    def test_delete_survives_unreachable_agent(
        self, cloud: FakeCloud, store: DeploymentRecordStore, vm: VM
    ) -> None:
        vm.agent_client.errors["stop"] = AgentError("connection refused")
        vm.agent_client.errors["unmount_disk"] = AgentError("connection refused")

        vm.delete(DiskRecord(cid="disk-cid", size=1024))

        assert [name for name, _ in cloud.calls][-2:] == ["detach_disk", "delete_vm"]
        assert store.load().vm is None

    def test_apply_stops_job_first(self, vm: VM) -> None:
        vm.apply({"job": {}})

        assert vm.agent_client.method_names() == ["stop", "apply"]


class TestDiskManager:
    def test_creates_and_attaches_new_disk(
        self,
        cloud: FakeCloud,
        store: DeploymentRecordStore,
        vm: VM,
        stage: Stage,
    ) -> None:
        disk = DiskManager(cloud, store).converge(vm, 1024, {}, stage)

        assert disk is not None
        assert store.load().disk == disk
        assert cloud.attachments == {disk.cid: vm.cid}
        assert vm.agent_client.mounted == [disk.cid]

    def test_same_disk_attach_is_skipped(
        self,
        cloud: FakeCloud,
        store: DeploymentRecordStore,
        vm: VM,
        event_logger: EventLogger,
        event_sink: RecordingEventSink,
    ) -> None:
        manager = DiskManager(cloud, store)
        disk = manager.converge(vm, 1024, {}, event_logger.new_stage("first"))
        event_sink.events.clear()

        again = manager.converge(vm, 1024, {}, event_logger.new_stage("second"))

        assert again == disk
        assert len(cloud.method_calls("create_disk")) == 1
        assert len(cloud.method_calls("attach_disk")) == 1
        attach_step = f"Attaching disk '{disk.cid}' to VM '{vm.cid}'"
        assert event_sink.step_states(attach_step) == [EventState.STARTED, EventState.SKIPPED]
        assert event_sink.events[-1].message == ALREADY_ATTACHED

    def test_size_change_migrates_to_new_disk(
        self,
        cloud: FakeCloud,
        store: DeploymentRecordStore,
        vm: VM,
        stage: Stage,
    ) -> None:
        manager = DiskManager(cloud, store)
        old = manager.converge(vm, 1024, {}, stage)
        assert old is not None

        new = manager.converge(vm, 2048, {}, stage)

        assert new is not None
        assert new.cid != old.cid
        assert new.size == 2048
        assert store.load().disk == new
        assert cloud.disks == {new.cid}
        assert cloud.attachments == {new.cid: vm.cid}
        assert vm.agent_client.mounted == [new.cid]
        names = vm.agent_client.method_names()
        assert names.index("migrate_disk") < names.index("unmount_disk")

    def test_zero_size_leaves_disks_alone(
        self,
        cloud: FakeCloud,
        store: DeploymentRecordStore,
        vm: VM,
        stage: Stage,
    ) -> None:
        assert DiskManager(cloud, store).converge(vm, 0, {}, stage) is None
        assert cloud.method_calls("create_disk") == []

    def test_create_failure_fails_step_and_records_nothing(
        self,
        cloud: FakeCloud,
        store: DeploymentRecordStore,
        vm: VM,
        stage: Stage,
        event_sink: RecordingEventSink,
    ) -> None:
        cloud.errors["create_disk"] = CPIError(
            "create_disk", "Bosh::Clouds::CloudError", "fake-disk-error"
        )

        with pytest.raises(CPIError):
            DiskManager(cloud, store).converge(vm, 1024, {}, stage)

        assert store.load().disk is None
        assert event_sink.step_states("Creating disk") == [EventState.STARTED, EventState.FAILED]
