"""Render, archive and cache the templates of a release's jobs."""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Any

from microdeploy.eventlog.logger import EventLogger
from microdeploy.lib.archive import compress_dir
from microdeploy.lib.blobstore import Blobstore
from microdeploy.lib.errors import ArchiveError, BlobstoreError, CompileError, leaf_message
from microdeploy.lib.logging_config import get_logger
from microdeploy.models.release import Job, TemplateRecord
from microdeploy.templates.renderer import JobRenderer, resolve_job_properties
from microdeploy.templates.repo import TemplatesRepository

logger = get_logger(__name__)

STAGE_NAME = "compiling templates"
ALREADY_RENDERED = "Templates already rendered"


def instance_spec(deployment_name: str, job: Job) -> dict[str, Any]:
    """The ``spec`` value visible to a single-instance job's templates."""
    return {
        "deployment": deployment_name,
        "job": {"name": job.name},
        "name": job.name,
        "index": 0,
    }


class TemplatesCompiler:
    """Cache-or-render each job's templates into a blob."""

    def __init__(
        self,
        renderer: JobRenderer,
        repo: TemplatesRepository,
        blobstore: Blobstore,
        event_logger: EventLogger,
    ) -> None:
        self._renderer = renderer
        self._repo = repo
        self._blobstore = blobstore
        self._event_logger = event_logger

    def compile(
        self,
        jobs: list[Job],
        deployment_name: str,
        properties: dict[str, Any],
    ) -> dict[str, TemplateRecord]:
        """Render every job in ``jobs`` with the given manifest properties.

        Returns:
            Template records keyed by job name.

        Raises:
            CompileError, CacheError: On the first job that fails
        """
        stage = self._event_logger.new_stage(STAGE_NAME)
        stage.start()
        records: dict[str, TemplateRecord] = {}
        for job in jobs:
            step_name = f"{job.name}/{job.version}"
            context = {
                "properties": resolve_job_properties(job, properties),
                "spec": instance_spec(deployment_name, job),
            }
            try:
                record, found = self._repo.find(job, context)
            except Exception as exc:
                stage.new_step(step_name).fail(leaf_message(exc))
                stage.fail(leaf_message(exc))
                raise

            if found and record is not None:
                stage.skip_step(step_name, ALREADY_RENDERED)
                records[job.name] = record
                continue

            step = stage.new_step(step_name)
            step.start()
            try:
                record = self._render_and_store(job, context)
                self._repo.save(job, context, record)
            except Exception as exc:
                step.fail(leaf_message(exc))
                stage.fail(leaf_message(exc))
                raise
            step.finish()
            records[job.name] = record

        stage.finish()
        return records

    def _render_and_store(self, job: Job, context: dict[str, Any]) -> TemplateRecord:
        work_dir = Path(tempfile.mkdtemp(prefix=f"render-{job.name}-"))
        try:
            rendered = self._renderer.render(
                job, context["properties"], context["spec"], work_dir / job.name
            )
            try:
                archive = compress_dir(rendered, work_dir)
                blob_id, sha1 = self._blobstore.create(archive)
            except (ArchiveError, BlobstoreError) as exc:
                raise CompileError(job.name, "Storing rendered templates") from exc
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
        logger.debug(f"Rendered job {job.name} stored as blob {blob_id}")
        return TemplateRecord(blob_id=blob_id, blob_sha1=sha1)
