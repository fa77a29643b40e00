"""Upload stemcells to the cloud at most once per stemcell identity."""

from __future__ import annotations

from microdeploy.cpi.cloud import Cloud
from microdeploy.deploy.stemcell.repo import StemcellRepository
from microdeploy.eventlog.logger import EventLogger
from microdeploy.lib.errors import leaf_message
from microdeploy.lib.logging_config import get_logger
from microdeploy.models.stemcell import CloudStemcell, ExtractedStemcell

logger = get_logger(__name__)

STAGE_NAME = "uploading stemcell"
STEP_NAME = "Uploading"
ALREADY_UPLOADED = "Stemcell already uploaded"


class StemcellManager:
    """Upload a stemcell unless an identical one is already recorded."""

    def __init__(
        self,
        repo: StemcellRepository,
        cloud: Cloud,
        event_logger: EventLogger,
    ) -> None:
        self._repo = repo
        self._cloud = cloud
        self._event_logger = event_logger

    def upload(self, stemcell: ExtractedStemcell) -> CloudStemcell:
        """Return the cloud stemcell for ``stemcell``, uploading it if needed.

        Raises:
            CPIError: If ``create_stemcell`` fails
            DeploymentError: If the record cannot be read or saved
        """
        stage = self._event_logger.new_stage(STAGE_NAME)
        stage.start()
        manifest = stemcell.manifest

        try:
            existing, found = self._repo.find(manifest)
        except Exception as exc:
            stage.new_step(STEP_NAME).fail(leaf_message(exc))
            stage.fail(leaf_message(exc))
            raise

        if found and existing is not None:
            logger.info(f"Stemcell {manifest.name} already uploaded as {existing.cid}")
            stage.skip_step(STEP_NAME, ALREADY_UPLOADED)
            stage.finish()
            return existing

        step = stage.new_step(STEP_NAME)
        step.start()
        try:
            cid = self._cloud.create_stemcell(manifest.image_path, manifest.cloud_properties)
            cloud_stemcell = CloudStemcell(cid=cid, name=manifest.name, version=manifest.version)
            self._repo.save(manifest, cloud_stemcell)
        except Exception as exc:
            step.fail(leaf_message(exc))
            stage.fail(leaf_message(exc))
            raise
        step.finish()
        stage.finish()
        logger.info(f"Uploaded stemcell {manifest.name} as {cid}")
        return cloud_stemcell
