"""Wire the deploy pipeline together for one workspace and manifest."""

from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from microdeploy.compile.dependency import DependencyAnalysis
from microdeploy.compile.package_compiler import PackageCompiler
from microdeploy.compile.release_compiler import CompiledRelease, ReleaseCompiler
from microdeploy.compile.release_packages import ReleasePackagesCompiler
from microdeploy.compile.repo import CompiledPackageRepo
from microdeploy.config.loader import load_deployment_manifest
from microdeploy.config.workspace import Workspace
from microdeploy.cpi.cloud import Cloud, CloudFactory
from microdeploy.cpi.installer import CpiInstaller
from microdeploy.cpi.job_installer import JobInstaller
from microdeploy.deploy.agent_client import AgentClient
from microdeploy.deploy.deployer import Deployer
from microdeploy.deploy.state import DeploymentRecordStore
from microdeploy.deploy.stemcell.manager import StemcellManager
from microdeploy.deploy.stemcell.reader import StemcellReader
from microdeploy.deploy.stemcell.repo import StemcellRepo
from microdeploy.deploy.vm import AgentClientFactory, VMManager
from microdeploy.eventlog.logger import EventLogger, Stage
from microdeploy.index.file_index import FileIndex
from microdeploy.lib.blobstore import Blobstore, LocalBlobstore
from microdeploy.lib.errors import ArchiveError, DeploymentError, leaf_message
from microdeploy.lib.logging_config import get_logger
from microdeploy.lib.runner import CommandRunner
from microdeploy.models.deployment import DeploymentManifest
from microdeploy.models.stemcell import ApplySpec, CloudStemcell
from microdeploy.release.reader import ReleaseReader
from microdeploy.release.validation import CpiReleaseValidator, ReleaseValidator
from microdeploy.templates.compiler import TemplatesCompiler
from microdeploy.templates.renderer import JobRenderer
from microdeploy.templates.repo import TemplatesRepo

logger = get_logger(__name__)

DELETE_STAGE_NAME = "deleting deployment"


@dataclass
class DeployResult:
    """What a finished deploy produced."""

    deployment_name: str
    vm_cid: str
    stemcell_cid: str
    disk_cid: str | None


class DeploymentRunner:
    """Run the deploy and delete commands against a workspace.

    Each run works in the workspace directory of the deployment's UUID, so
    caches and installed CPI jobs are never shared between deployments.
    """

    def __init__(
        self,
        workspace: Workspace,
        event_logger: EventLogger,
        command_runner: CommandRunner | None = None,
    ) -> None:
        self.workspace = workspace
        self.event_logger = event_logger
        self.command_runner = command_runner or CommandRunner()

    def deploy(
        self,
        manifest_path: Path,
        cpi_release_path: Path,
        stemcell_path: Path,
        release_path: Path,
    ) -> DeployResult:
        """Install the CPI, upload the stemcell, compile the release and converge the VM.

        Raises:
            ConfigError: If the manifest is invalid
            MicroDeployError: If any stage fails
        """
        manifest = load_deployment_manifest(manifest_path)
        store = DeploymentRecordStore(self.workspace.deployment_state_path, manifest.name)
        record = store.update(manifest_path=str(Path(manifest_path).resolve()))
        workspace = self.workspace.for_deployment(record.deployment_uuid)
        logger.info(f"Deploying '{manifest.name}' (deployment {record.deployment_uuid})")

        blobstore = LocalBlobstore(workspace.blobstore_path)
        release_compiler = self._release_compiler(workspace, blobstore)
        cloud = self._install_cpi(
            workspace,
            manifest,
            release_compiler,
            blobstore,
            cpi_release_path,
            record.deployment_uuid,
        )
        cloud_stemcell, apply_spec = self._upload_stemcell(
            workspace, store, cloud, stemcell_path
        )
        compiled = self._compile_release(workspace, manifest, release_compiler, release_path)

        deployer = Deployer(
            store=store,
            blobstore=blobstore,
            agent_client_factory=self._agent_client_factory(manifest, record.deployment_uuid),
            event_logger=self.event_logger,
        )
        vm = deployer.deploy(cloud, manifest, cloud_stemcell, compiled, apply_spec)

        disk = store.load().disk
        return DeployResult(
            deployment_name=manifest.name,
            vm_cid=vm.cid,
            stemcell_cid=cloud_stemcell.cid,
            disk_cid=disk.cid if disk else None,
        )

    def delete(self, manifest_path: Path, cpi_release_path: Path) -> None:
        """Delete the VM, disk and stemcells recorded for the manifest's deployment."""
        manifest = load_deployment_manifest(manifest_path)
        store = DeploymentRecordStore(self.workspace.deployment_state_path, manifest.name)
        record = store.load()
        workspace = self.workspace.for_deployment(record.deployment_uuid)

        blobstore = LocalBlobstore(workspace.blobstore_path)
        release_compiler = self._release_compiler(workspace, blobstore)
        cloud = self._install_cpi(
            workspace,
            manifest,
            release_compiler,
            blobstore,
            cpi_release_path,
            record.deployment_uuid,
        )

        stage = self.event_logger.new_stage(DELETE_STAGE_NAME)
        stage.start()
        try:
            self._delete_resources(
                stage,
                store,
                cloud,
                self._agent_client_factory(manifest, record.deployment_uuid),
            )
        except Exception as exc:
            stage.fail(leaf_message(exc))
            raise
        stage.finish()

    def _release_compiler(self, workspace: Workspace, blobstore: Blobstore) -> ReleaseCompiler:
        packages_compiler = ReleasePackagesCompiler(
            DependencyAnalysis(),
            PackageCompiler(self.command_runner, workspace.compile_packages_path, blobstore),
            CompiledPackageRepo(FileIndex(workspace.compiled_packages_index_path)),
            self.event_logger,
        )
        templates_compiler = TemplatesCompiler(
            JobRenderer(),
            TemplatesRepo(FileIndex(workspace.templates_index_path)),
            blobstore,
            self.event_logger,
        )
        return ReleaseCompiler(packages_compiler, templates_compiler)

    def _install_cpi(
        self,
        workspace: Workspace,
        manifest: DeploymentManifest,
        release_compiler: ReleaseCompiler,
        blobstore: Blobstore,
        cpi_release_path: Path,
        deployment_uuid: str,
    ) -> Cloud:
        installer = CpiInstaller(
            ReleaseReader(),
            CpiReleaseValidator(manifest.cloud_provider.job),
            release_compiler,
            JobInstaller(
                blobstore, workspace.jobs_path, workspace.packages_path, self.event_logger
            ),
            CloudFactory(self.command_runner),
            workspace.tmp_path,
        )
        return installer.install(cpi_release_path, manifest, deployment_uuid)

    def _upload_stemcell(
        self,
        workspace: Workspace,
        store: DeploymentRecordStore,
        cloud: Cloud,
        stemcell_path: Path,
    ) -> tuple[CloudStemcell, ApplySpec]:
        extract_dir = self._temp_dir(workspace, "stemcell-")
        try:
            try:
                extracted = StemcellReader().read(stemcell_path, extract_dir)
            except ArchiveError as exc:
                raise DeploymentError(
                    "upload stemcell", f"Extracting stemcell {stemcell_path}"
                ) from exc
            manager = StemcellManager(StemcellRepo(store), cloud, self.event_logger)
            cloud_stemcell = manager.upload(extracted)
            return cloud_stemcell, extracted.apply_spec
        finally:
            shutil.rmtree(extract_dir, ignore_errors=True)

    def _compile_release(
        self,
        workspace: Workspace,
        manifest: DeploymentManifest,
        release_compiler: ReleaseCompiler,
        release_path: Path,
    ) -> CompiledRelease:
        extract_dir = self._temp_dir(workspace, "release-")
        try:
            try:
                release = ReleaseReader().read(release_path, extract_dir)
            except ArchiveError as exc:
                raise DeploymentError(
                    "compile release", f"Extracting release {release_path}"
                ) from exc
            ReleaseValidator().validate(release)
            job_names = [template.name for template in manifest.job.templates]
            return release_compiler.compile(
                release, manifest.name, manifest.job_properties(), job_names
            )
        finally:
            shutil.rmtree(extract_dir, ignore_errors=True)

    def _delete_resources(
        self,
        stage: Stage,
        store: DeploymentRecordStore,
        cloud: Cloud,
        agent_client_factory: AgentClientFactory,
    ) -> None:
        record = store.load()
        vm = VMManager(cloud, store, agent_client_factory).find_current()
        if vm is not None:
            stage.perform(f"Deleting VM '{vm.cid}'", lambda: vm.delete(record.disk))
        if record.disk is not None:
            disk_cid = record.disk.cid
            stage.perform(f"Deleting disk '{disk_cid}'", lambda: cloud.delete_disk(disk_cid))
            store.update(disk=None)
        for stemcell in record.stemcells:
            stage.perform(
                f"Deleting stemcell '{stemcell.cid}'",
                lambda cid=stemcell.cid: cloud.delete_stemcell(cid),
            )
        StemcellRepo(store).delete_all()
        store.update(deployment_fingerprint=None)

    @staticmethod
    def _agent_client_factory(
        manifest: DeploymentManifest, deployment_uuid: str
    ) -> AgentClientFactory:
        mbus_url = manifest.cloud_provider.mbus
        return lambda agent_id: AgentClient(mbus_url, deployment_uuid)

    @staticmethod
    def _temp_dir(workspace: Workspace, prefix: str) -> Path:
        workspace.tmp_path.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=prefix, dir=workspace.tmp_path))
