"""Persistent disk convergence.

The desired disk is described by a size and cloud properties. Converging
against the recorded disk does one of:

- no disk recorded: create and attach a new one
- same size and properties: make sure it is attached
- anything else: migrate to a new disk and delete the old one
"""

from __future__ import annotations

from typing import Any

from microdeploy.cpi.cloud import Cloud
from microdeploy.deploy.state import DeploymentRecordStore
from microdeploy.deploy.vm import VM
from microdeploy.eventlog.logger import Stage, StepSkipped
from microdeploy.lib.errors import leaf_message
from microdeploy.lib.logging_config import get_logger
from microdeploy.models.deployment_state import DiskRecord

logger = get_logger(__name__)

ALREADY_ATTACHED = "Disk already attached"


class DiskManager:
    """Create, attach and migrate the deployment's persistent disk."""

    def __init__(self, cloud: Cloud, store: DeploymentRecordStore) -> None:
        self._cloud = cloud
        self._store = store

    def find_current(self) -> DiskRecord | None:
        return self._store.load().disk

    def create(self, vm: VM, size: int, cloud_properties: dict[str, Any]) -> DiskRecord:
        """Create a disk near ``vm``; the record is not saved until attached."""
        cid = self._cloud.create_disk(size, cloud_properties, vm.cid)
        logger.info(f"Created disk {cid} ({size} MiB)")
        return DiskRecord(cid=cid, size=size, cloud_properties=cloud_properties)

    def attach(self, vm: VM, disk: DiskRecord) -> None:
        """Attach ``disk`` unless the agent already reports it; raise StepSkipped if so."""
        if disk.cid in vm.disk_cids():
            raise StepSkipped(ALREADY_ATTACHED)
        vm.attach_disk(disk)

    def delete(self, disk: DiskRecord) -> None:
        self._cloud.delete_disk(disk.cid)
        logger.info(f"Deleted disk {disk.cid}")

    def converge(
        self,
        vm: VM,
        size: int,
        cloud_properties: dict[str, Any],
        stage: Stage,
    ) -> DiskRecord | None:
        """Bring the VM's persistent disk to ``size``, reporting steps on ``stage``.

        A size of 0 means no persistent disk is wanted; an existing disk is left alone.

        Returns:
            The disk now attached, or None.
        """
        current = self.find_current()
        if size == 0:
            return current

        if current is None:
            disk = self._create_step(vm, size, cloud_properties, stage)
            self._store.update(disk=disk)
            self._attach(vm, disk, stage)
            return disk

        if current.size == size and current.cloud_properties == cloud_properties:
            self._attach(vm, current, stage)
            return current

        self._attach(vm, current, stage)
        new_disk = self._create_step(vm, size, cloud_properties, stage)
        self._attach(vm, new_disk, stage)
        stage.perform(
            f"Migrating disk '{current.cid}' to '{new_disk.cid}'", vm.migrate_disk
        )
        self._store.update(disk=new_disk)
        stage.perform(
            f"Detaching disk '{current.cid}'", lambda: vm.detach_disk(current)
        )
        stage.perform(f"Deleting disk '{current.cid}'", lambda: self.delete(current))
        return new_disk

    def _attach(self, vm: VM, disk: DiskRecord, stage: Stage) -> None:
        stage.perform(
            f"Attaching disk '{disk.cid}' to VM '{vm.cid}'", lambda: self.attach(vm, disk)
        )

    def _create_step(
        self,
        vm: VM,
        size: int,
        cloud_properties: dict[str, Any],
        stage: Stage,
    ) -> DiskRecord:
        step = stage.new_step("Creating disk")
        step.start()
        try:
            disk = self.create(vm, size, cloud_properties)
        except Exception as exc:
            step.fail(leaf_message(exc))
            raise
        step.finish()
        return disk
