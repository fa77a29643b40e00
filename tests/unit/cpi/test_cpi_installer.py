"""Tests for installing a CPI release end to end."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import pytest

from fakes import FakeRunner, build_release_tarball, make_job, make_release
from microdeploy.compile.dependency import DependencyAnalysis
from microdeploy.compile.package_compiler import PackageCompiler
from microdeploy.compile.release_compiler import CompiledRelease, ReleaseCompiler
from microdeploy.compile.release_packages import ReleasePackagesCompiler
from microdeploy.compile.repo import CompiledPackageRepo
from microdeploy.cpi.cloud import CloudFactory
from microdeploy.cpi.installer import CpiInstaller
from microdeploy.cpi.job_installer import JobInstaller
from microdeploy.eventlog.logger import EventLogger, EventState
from microdeploy.eventlog.sinks import RecordingEventSink
from microdeploy.index.file_index import MemoryIndex
from microdeploy.lib.blobstore import LocalBlobstore
from microdeploy.lib.errors import DeploymentError, ValidationError
from microdeploy.lib.runner import CommandResult
from microdeploy.models.deployment import DeploymentManifest
from microdeploy.models.release import TemplateRecord
from microdeploy.release.reader import ReleaseReader
from microdeploy.release.validation import CpiReleaseValidator
from microdeploy.templates.compiler import TemplatesCompiler
from microdeploy.templates.renderer import JobRenderer
from microdeploy.templates.repo import TemplatesRepo

CPI_JOB = {
    "spec": {
        "name": "cpi",
        "templates": {"cpi.sh": "bin/cpi"},
        "packages": ["cpi-runtime"],
        "properties": {"cpi.region": {"default": "local"}},
    },
    "templates": {"cpi.sh": "#!/bin/sh\nexec cpi-runtime --region {{ p('cpi.region') }}\n"},
}


def _handle(**call: Any) -> CommandResult:
    """Packaging scripts write a marker; the CPI answers has_vm with false."""
    if call["args"][0] == "bash":
        install_target = Path(call["env"]["BOSH_INSTALL_TARGET"])
        (install_target / "marker").write_text(call["env"]["BOSH_PACKAGE_NAME"], encoding="utf-8")
        return CommandResult(stdout="", stderr="", exit_status=0)
    payload = {"result": False, "error": None, "log": ""}
    return CommandResult(stdout=json.dumps(payload), stderr="", exit_status=0)


@pytest.fixture
def work(tmp_path: Path) -> Path:
    return tmp_path / "work"


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner(handler=_handle)


def _installer(
    work: Path, runner: FakeRunner, blobstore: LocalBlobstore, event_logger: EventLogger
) -> CpiInstaller:
    packages = ReleasePackagesCompiler(
        DependencyAnalysis(),
        PackageCompiler(runner, work / "packages", blobstore),
        CompiledPackageRepo(MemoryIndex()),
        event_logger,
    )
    templates = TemplatesCompiler(
        JobRenderer(), TemplatesRepo(MemoryIndex()), blobstore, event_logger
    )
    return CpiInstaller(
        ReleaseReader(),
        CpiReleaseValidator(),
        ReleaseCompiler(packages, templates),
        JobInstaller(blobstore, work / "jobs", work / "packages", event_logger),
        CloudFactory(runner),
        work / "tmp",
    )


class TestCpiInstaller:
    def test_installs_cpi_job_and_packages(
        self,
        tmp_path: Path,
        work: Path,
        runner: FakeRunner,
        blobstore: LocalBlobstore,
        event_logger: EventLogger,
        event_sink: RecordingEventSink,
        manifest: DeploymentManifest,
    ) -> None:
        tarball = build_release_tarball(
            tmp_path / "build", {"cpi-runtime": ["libyaml"], "libyaml": []}, {"cpi": CPI_JOB}
        )

        cloud = _installer(work, runner, blobstore, event_logger).install(
            tarball, manifest, "deployment-uuid"
        )

        cpi = work / "jobs" / "cpi" / "bin" / "cpi"
        assert cpi.read_text(encoding="utf-8") == (
            "#!/bin/sh\nexec cpi-runtime --region local\n"
        )
        assert os.access(cpi, os.X_OK)
        marker = work / "packages" / "cpi-runtime" / "marker"
        assert marker.read_text(encoding="utf-8") == "cpi-runtime"
        assert list((work / "tmp").iterdir()) == []

        assert cloud.has_vm("vm-cid") is False
        assert runner.calls[-1]["args"] == [str(cpi)]

        stages = [e.stage for e in event_sink.events if e.step is None]
        assert "installing CPI jobs" in stages
        assert event_sink.step_states("cpi") == [EventState.STARTED, EventState.FINISHED]

    def test_manifest_properties_reach_cpi_templates(
        self,
        tmp_path: Path,
        work: Path,
        runner: FakeRunner,
        blobstore: LocalBlobstore,
        event_logger: EventLogger,
        manifest_data: dict[str, Any],
    ) -> None:
        manifest_data["cloud_provider"]["properties"] = {"cpi": {"region": "eu-west"}}
        manifest = DeploymentManifest.model_validate(manifest_data)
        tarball = build_release_tarball(
            tmp_path / "build", {"cpi-runtime": [], "libyaml": []}, {"cpi": CPI_JOB}
        )

        _installer(work, runner, blobstore, event_logger).install(tarball, manifest, "uuid")

        cpi = work / "jobs" / "cpi" / "bin" / "cpi"
        assert "--region eu-west" in cpi.read_text(encoding="utf-8")

    def test_invalid_release_fails_before_compiling(
        self,
        tmp_path: Path,
        work: Path,
        runner: FakeRunner,
        blobstore: LocalBlobstore,
        event_logger: EventLogger,
        manifest: DeploymentManifest,
    ) -> None:
        web_job = {"spec": {"name": "web", "templates": {}}, "templates": {}}
        tarball = build_release_tarball(tmp_path / "build", {"ruby": []}, {"web": web_job})

        with pytest.raises(ValidationError, match="CPI release must contain a job named 'cpi'"):
            _installer(work, runner, blobstore, event_logger).install(tarball, manifest, "uuid")

        assert runner.calls == []

    def test_unreadable_tarball(
        self,
        tmp_path: Path,
        work: Path,
        runner: FakeRunner,
        blobstore: LocalBlobstore,
        event_logger: EventLogger,
        manifest: DeploymentManifest,
    ) -> None:
        bogus = tmp_path / "cpi.tgz"
        bogus.write_text("nope", encoding="utf-8")

        with pytest.raises(DeploymentError, match="Extracting CPI release"):
            _installer(work, runner, blobstore, event_logger).install(bogus, manifest, "uuid")


class TestJobInstaller:
    def test_missing_template_record_fails_step(
        self,
        tmp_path: Path,
        blobstore: LocalBlobstore,
        event_logger: EventLogger,
        event_sink: RecordingEventSink,
    ) -> None:
        job = make_job("cpi")
        compiled = CompiledRelease(release=make_release([], [job]))
        installer = JobInstaller(blobstore, tmp_path / "jobs", tmp_path / "packages", event_logger)

        with pytest.raises(DeploymentError, match="Templates of job 'cpi' are not rendered"):
            installer.install(job, compiled)

        assert event_sink.step_states("cpi") == [EventState.STARTED, EventState.FAILED]

    def test_corrupt_blob_fails(
        self,
        tmp_path: Path,
        blobstore: LocalBlobstore,
        event_logger: EventLogger,
    ) -> None:
        source = tmp_path / "blob"
        source.write_bytes(b"templates")
        blob_id, _ = blobstore.create(source)
        job = make_job("cpi")
        compiled = CompiledRelease(
            release=make_release([], [job]),
            templates={"cpi": TemplateRecord(blob_id=blob_id, blob_sha1="0" * 40)},
        )
        installer = JobInstaller(blobstore, tmp_path / "jobs", tmp_path / "packages", event_logger)

        with pytest.raises(DeploymentError, match=f"Extracting blob '{blob_id}'"):
            installer.install(job, compiled)
