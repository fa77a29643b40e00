"""Converge the single deployment VM.

Sequence, inside one "deploying" stage:

1. start the registry server (before any VM exists)
2. create the VM, or skip when the recorded VM matches stemcell and manifest
3. start the SSH tunnel in the background
4. wait for the agent, converge the persistent disk
5. upload compiled blobs and send the apply spec, start the job, wait until running
   (all skipped when the recorded deployment fingerprint still matches)

The registry server and tunnel are torn down on every exit path. Steps that
already converged are not rolled back when a later step fails.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import ExitStack
from typing import Any

from microdeploy.compile.release_compiler import CompiledRelease
from microdeploy.config.defaults import AGENT_RUNNING_TIMEOUT
from microdeploy.cpi.cloud import Cloud
from microdeploy.deploy.applyspec import ApplySpecFactory, required_packages
from microdeploy.deploy.disk import DiskManager
from microdeploy.deploy.registry import RegistryServer
from microdeploy.deploy.sshtunnel import SSHTunnelFactory, SSHTunnelOptions
from microdeploy.deploy.state import (
    DeploymentRecordStore,
    compute_config_hash,
    compute_deployment_fingerprint,
)
from microdeploy.deploy.vm import VM, AgentClientFactory, VMManager
from microdeploy.eventlog.logger import EventLogger, Stage
from microdeploy.lib.blobstore import Blobstore
from microdeploy.lib.errors import leaf_message
from microdeploy.lib.logging_config import get_logger
from microdeploy.models.deployment import DeploymentManifest
from microdeploy.models.stemcell import ApplySpec, CloudStemcell

logger = get_logger(__name__)

STAGE_NAME = "deploying"
CREATE_VM_STEP = "Creating VM from stemcell"
WAIT_AGENT_STEP = "Waiting for the agent"
APPLY_STEP = "Applying micro BOSH spec"
START_STEP = "Starting the agent processes"
WAIT_RUNNING_STEP = "Waiting for the job to be running"
VM_ALREADY_CREATED = "VM already created"
JOB_ALREADY_APPLIED = "Job already applied"

RegistryServerFactory = Callable[[str, str], RegistryServer]


class Deployer:
    """Run the deploy sequence for one manifest."""

    def __init__(
        self,
        store: DeploymentRecordStore,
        blobstore: Blobstore,
        agent_client_factory: AgentClientFactory,
        event_logger: EventLogger,
        apply_spec_factory: ApplySpecFactory | None = None,
        registry_server_factory: RegistryServerFactory = RegistryServer,
        ssh_tunnel_factory: SSHTunnelFactory | None = None,
        running_timeout: float = AGENT_RUNNING_TIMEOUT,
    ) -> None:
        self._store = store
        self._blobstore = blobstore
        self._agent_client_factory = agent_client_factory
        self._event_logger = event_logger
        self._apply_spec_factory = apply_spec_factory or ApplySpecFactory()
        self._registry_server_factory = registry_server_factory
        self._ssh_tunnel_factory = ssh_tunnel_factory or SSHTunnelFactory()
        self._running_timeout = running_timeout

    def deploy(
        self,
        cloud: Cloud,
        manifest: DeploymentManifest,
        stemcell: CloudStemcell,
        compiled: CompiledRelease,
        base_apply_spec: ApplySpec | None = None,
    ) -> VM:
        """Converge the VM described by ``manifest``.

        Raises:
            RegistryError: If the registry server cannot start
            CPIError: If a cloud operation fails
            AgentError: If the agent rejects a request or does not answer in time
        """
        config_hash = compute_config_hash(manifest)
        vm_manager = VMManager(cloud, self._store, self._agent_client_factory)
        disk_manager = DiskManager(cloud, self._store)
        provider = manifest.cloud_provider

        with ExitStack() as stack:
            if provider.registry is not None:
                registry = stack.enter_context(
                    self._registry_server_factory(
                        provider.registry.username, provider.registry.password
                    )
                )
                registry.start(provider.registry.host, provider.registry.port)

            stage = self._event_logger.new_stage(STAGE_NAME)
            stage.start()
            try:
                vm = self._converge_vm(stage, vm_manager, stemcell, manifest, config_hash)

                if provider.ssh_tunnel is not None and provider.registry is not None:
                    tunnel = stack.enter_context(
                        self._ssh_tunnel_factory.new_ssh_tunnel(
                            SSHTunnelOptions(
                                host=provider.ssh_tunnel.host,
                                port=provider.ssh_tunnel.port,
                                user=provider.ssh_tunnel.user,
                                private_key=provider.ssh_tunnel.private_key,
                                password=provider.ssh_tunnel.password,
                                local_forward_port=provider.registry.port,
                                remote_forward_port=provider.registry.port,
                            )
                        )
                    )
                    tunnel.start()

                stage.perform(
                    WAIT_AGENT_STEP,
                    lambda: vm.wait_until_ready(
                        provider.agent.ping_timeout, provider.agent.ping_delay
                    ),
                )
                disk_manager.converge(
                    vm, manifest.disk_size(), manifest.disk_cloud_properties(), stage
                )
                blobs = self._required_blobs(manifest, compiled)
                fingerprint = compute_deployment_fingerprint(
                    config_hash, stemcell.cid, vm.cid, [blob_id for blob_id, _ in blobs]
                )
                if self._store.load().deployment_fingerprint == fingerprint:
                    stage.skip_step(APPLY_STEP, JOB_ALREADY_APPLIED)
                    stage.skip_step(START_STEP, JOB_ALREADY_APPLIED)
                    stage.skip_step(WAIT_RUNNING_STEP, JOB_ALREADY_APPLIED)
                else:
                    self._store.update(deployment_fingerprint=None)
                    spec = self._apply_spec_factory.create(
                        manifest, compiled, config_hash, base_apply_spec
                    )
                    stage.perform(APPLY_STEP, lambda: self._apply(vm, blobs, spec))
                    stage.perform(START_STEP, vm.start)
                    stage.perform(
                        WAIT_RUNNING_STEP,
                        lambda: vm.wait_to_be_running(
                            self._running_timeout, provider.agent.ping_delay
                        ),
                    )
            except Exception as exc:
                stage.fail(leaf_message(exc))
                raise
            stage.finish()

        self._store.update(deployment_fingerprint=fingerprint)
        return vm

    def _converge_vm(
        self,
        stage: Stage,
        vm_manager: VMManager,
        stemcell: CloudStemcell,
        manifest: DeploymentManifest,
        config_hash: str,
    ) -> VM:
        existing = vm_manager.find_current()
        if existing is not None:
            if (
                existing.record.stemcell_cid == stemcell.cid
                and existing.record.config_hash == config_hash
            ):
                stage.skip_step(CREATE_VM_STEP, VM_ALREADY_CREATED)
                return existing
            disk = self._store.load().disk
            stage.perform(f"Deleting VM '{existing.cid}'", lambda: existing.delete(disk))

        step = stage.new_step(CREATE_VM_STEP)
        step.start()
        try:
            vm = vm_manager.create(stemcell, manifest, config_hash)
        except Exception as exc:
            step.fail(leaf_message(exc))
            raise
        step.finish()
        return vm

    @staticmethod
    def _required_blobs(
        manifest: DeploymentManifest, compiled: CompiledRelease
    ) -> list[tuple[str, str]]:
        """Blob id and sha1 of every job template and package the VM needs."""
        job_names = [template.name for template in manifest.job.templates]
        blobs = [
            (compiled.templates[name].blob_id, compiled.templates[name].blob_sha1)
            for name in job_names
        ]
        for name in required_packages(compiled.release, job_names):
            blobs.append((compiled.packages[name].blob_id, compiled.packages[name].blob_sha1))
        return blobs

    def _apply(self, vm: VM, blobs: list[tuple[str, str]], spec: dict[str, Any]) -> None:
        for blob_id, sha1 in blobs:
            local_path = self._blobstore.get(blob_id, sha1)
            try:
                vm.agent_client.upload_blob(blob_id, local_path)
            finally:
                local_path.unlink(missing_ok=True)
        vm.apply(spec)
