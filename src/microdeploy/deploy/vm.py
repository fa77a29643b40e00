"""VM lifecycle through the CPI and the in-VM agent."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

from microdeploy.cpi.cloud import Cloud
from microdeploy.deploy.agent_client import AgentClient
from microdeploy.deploy.state import DeploymentRecordStore
from microdeploy.lib.errors import AgentError
from microdeploy.lib.logging_config import get_logger
from microdeploy.models.deployment import DeploymentManifest
from microdeploy.models.deployment_state import DiskRecord, VMRecord
from microdeploy.models.stemcell import CloudStemcell

logger = get_logger(__name__)

AgentClientFactory = Callable[[str], AgentClient]


class VM:
    """A created VM and the agent running on it."""

    def __init__(
        self,
        record: VMRecord,
        cloud: Cloud,
        agent_client: AgentClient,
        store: DeploymentRecordStore,
    ) -> None:
        self.record = record
        self.agent_client = agent_client
        self._cloud = cloud
        self._store = store

    @property
    def cid(self) -> str:
        return self.record.cid

    def wait_until_ready(self, timeout: float, delay: float) -> None:
        self.agent_client.wait_until_ready(timeout, delay)

    def apply(self, spec: dict[str, Any]) -> None:
        """Stop the job, then hand the new spec to the agent."""
        self.agent_client.stop()
        self.agent_client.apply(spec)

    def start(self) -> None:
        self.agent_client.start()

    def wait_to_be_running(self, timeout: float, delay: float) -> None:
        self.agent_client.wait_until_running(timeout, delay)

    def disk_cids(self) -> list[str]:
        """Disks the agent reports as attached."""
        return self.agent_client.list_disk()

    def attach_disk(self, disk: DiskRecord) -> None:
        self._cloud.attach_disk(self.cid, disk.cid)
        self.agent_client.mount_disk(disk.cid)

    def detach_disk(self, disk: DiskRecord) -> None:
        self.agent_client.unmount_disk(disk.cid)
        self._cloud.detach_disk(self.cid, disk.cid)

    def migrate_disk(self) -> None:
        self.agent_client.migrate_disk()

    def delete(self, disk: DiskRecord | None = None) -> None:
        """Stop the job, detach ``disk`` and delete the VM in the cloud.

        The agent calls are best effort: a VM whose agent no longer answers
        is still detached and deleted.
        """
        try:
            self.agent_client.stop()
        except AgentError as exc:
            logger.warning(f"Could not stop the job on VM {self.cid}: {exc}")
        if disk is not None:
            try:
                self.agent_client.unmount_disk(disk.cid)
            except AgentError as exc:
                logger.warning(f"Could not unmount disk {disk.cid} on VM {self.cid}: {exc}")
            self._cloud.detach_disk(self.cid, disk.cid)
        self._cloud.delete_vm(self.cid)
        self._store.update(vm=None)
        logger.info(f"Deleted VM {self.cid}")


class VMManager:
    """Create and look up the deployment's VM."""

    def __init__(
        self,
        cloud: Cloud,
        store: DeploymentRecordStore,
        agent_client_factory: AgentClientFactory,
    ) -> None:
        self._cloud = cloud
        self._store = store
        self._agent_client_factory = agent_client_factory

    def find_current(self) -> VM | None:
        """Return the recorded VM if the cloud still has it."""
        record = self._store.load().vm
        if record is None:
            return None
        if not self._cloud.has_vm(record.cid):
            logger.info(f"Recorded VM {record.cid} no longer exists")
            self._store.update(vm=None)
            return None
        return self._new_vm(record)

    def create(
        self,
        stemcell: CloudStemcell,
        manifest: DeploymentManifest,
        config_hash: str,
    ) -> VM:
        """Create a VM from ``stemcell`` and record it.

        Raises:
            CPIError: If ``create_vm`` fails
        """
        agent_id = str(uuid.uuid4())
        cid = self._cloud.create_vm(
            agent_id,
            stemcell.cid,
            manifest.resource_pool.cloud_properties,
            manifest.network_settings(),
            manifest.resource_pool.env,
        )
        record = VMRecord(
            cid=cid, agent_id=agent_id, stemcell_cid=stemcell.cid, config_hash=config_hash
        )
        self._store.update(vm=record)
        logger.info(f"Created VM {cid} from stemcell {stemcell.cid}")
        return self._new_vm(record)

    def _new_vm(self, record: VMRecord) -> VM:
        return VM(record, self._cloud, self._agent_client_factory(record.agent_id), self._store)
