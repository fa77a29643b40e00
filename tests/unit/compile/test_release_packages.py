"""Tests for compiling every package of a release with the cache.

Covers re-run idempotence, cache invalidation through dependency
fingerprints and failure propagation.
"""

from __future__ import annotations

import pytest

from fakes import FakeCompiler, make_package, make_release
from microdeploy.compile.dependency import DependencyAnalysis
from microdeploy.compile.release_packages import (
    ALREADY_COMPILED,
    STAGE_NAME,
    ReleasePackagesCompiler,
)
from microdeploy.compile.repo import CompiledPackageRepo
from microdeploy.eventlog.logger import EventLogger, EventState
from microdeploy.eventlog.sinks import RecordingEventSink
from microdeploy.index.file_index import MemoryIndex
from microdeploy.lib.errors import CompileError, CycleError


def _compiler(
    compiler: FakeCompiler, repo: CompiledPackageRepo, event_logger: EventLogger
) -> ReleasePackagesCompiler:
    return ReleasePackagesCompiler(DependencyAnalysis(), compiler, repo, event_logger)


@pytest.fixture
def repo() -> CompiledPackageRepo:
    return CompiledPackageRepo(MemoryIndex())


class TestReleasePackagesCompiler:
    def test_compiles_in_dependency_order(
        self, repo: CompiledPackageRepo, event_logger: EventLogger
    ) -> None:
        release = make_release(
            [
                make_package("app", ["ruby"]),
                make_package("ruby", ["libyaml"]),
                make_package("libyaml"),
            ]
        )
        compiler = FakeCompiler()

        records = _compiler(compiler, repo, event_logger).compile(release)

        assert compiler.compiled == ["libyaml", "ruby", "app"]
        assert compiler.dependencies_seen["app"] == ["libyaml", "ruby"]
        assert set(records) == {"app", "ruby", "libyaml"}

    def test_two_packages_sharing_a_dependency(
        self,
        repo: CompiledPackageRepo,
        event_logger: EventLogger,
        event_sink: RecordingEventSink,
    ) -> None:
        """pkg-1 and pkg-2 both depend on pkg-3, which is compiled first."""
        release = make_release(
            [
                make_package("pkg-1", ["pkg-3"]),
                make_package("pkg-2", ["pkg-3"]),
                make_package("pkg-3"),
            ]
        )
        compiler = FakeCompiler()

        _compiler(compiler, repo, event_logger).compile(release)

        assert compiler.compiled == ["pkg-3", "pkg-1", "pkg-2"]
        steps = [e.step for e in event_sink.events if e.state == EventState.STARTED and e.step]
        assert steps == ["pkg-3/1.0", "pkg-1/1.0", "pkg-2/1.0"]
        assert event_sink.events[0].stage == STAGE_NAME
        assert event_sink.events[-1].state == EventState.FINISHED

    def test_second_run_compiles_nothing(
        self, repo: CompiledPackageRepo, event_logger: EventLogger
    ) -> None:
        release = make_release([make_package("ruby", ["libyaml"]), make_package("libyaml")])
        first_compiler = FakeCompiler()
        first = _compiler(first_compiler, repo, event_logger).compile(release)

        sink = RecordingEventSink()
        second_compiler = FakeCompiler()
        second = _compiler(second_compiler, repo, EventLogger(sink)).compile(release)

        assert second_compiler.compiled == []
        assert second == first
        assert sink.step_states("ruby/1.0") == [EventState.SKIPPED]
        skipped = [e for e in sink.events if e.state == EventState.SKIPPED]
        assert {e.message for e in skipped} == {ALREADY_COMPILED}

    def test_redeploy_of_unchanged_release(
        self, repo: CompiledPackageRepo, event_logger: EventLogger
    ) -> None:
        """B depends on A: two builds in order, then none on the second run."""
        release = make_release([make_package("A"), make_package("B", ["A"])])
        compiler = FakeCompiler()
        _compiler(compiler, repo, event_logger).compile(release)

        sink = RecordingEventSink()
        _compiler(compiler, repo, EventLogger(sink)).compile(release)

        assert compiler.compiled == ["A", "B"]
        assert sink.step_states("A/1.0") == [EventState.SKIPPED]
        assert sink.step_states("B/1.0") == [EventState.SKIPPED]

    def test_changed_dependency_recompiles_dependents(
        self, repo: CompiledPackageRepo, event_logger: EventLogger
    ) -> None:
        """A new dependency blob changes the dependency fingerprint of its dependents."""
        release = make_release([make_package("ruby", ["libyaml"]), make_package("libyaml")])
        _compiler(FakeCompiler(), repo, event_logger).compile(release)

        changed = make_release(
            [
                make_package("ruby", ["libyaml"]),
                make_package("libyaml").model_copy(update={"fingerprint": "fp-libyaml-2"}),
            ]
        )

        class NewBlobCompiler(FakeCompiler):
            def compile(self, package, dependencies):  # type: ignore[no-untyped-def]
                record = super().compile(package, dependencies)
                return record.model_copy(update={"blob_id": f"{record.blob_id}-v2"})

        compiler = NewBlobCompiler()
        _compiler(compiler, repo, event_logger).compile(changed)

        assert compiler.compiled == ["libyaml", "ruby"]

    def test_failure_aborts_and_reports_leaf_message(
        self,
        repo: CompiledPackageRepo,
        event_logger: EventLogger,
        event_sink: RecordingEventSink,
    ) -> None:
        release = make_release(
            [make_package("app", ["ruby"]), make_package("ruby"), make_package("other")]
        )
        compiler = FakeCompiler(errors={"ruby": CompileError("ruby", "fake-compile-error")})

        with pytest.raises(CompileError):
            _compiler(compiler, repo, event_logger).compile(release)

        assert compiler.compiled == ["ruby"]
        assert event_sink.step_states("ruby/1.0") == [EventState.STARTED, EventState.FAILED]
        failed_step = [e for e in event_sink.events if e.step == "ruby/1.0"][-1]
        assert failed_step.message == "Compiling 'ruby': fake-compile-error"
        assert event_sink.events[-1].step is None
        assert event_sink.events[-1].state == EventState.FAILED

    def test_failed_package_is_not_cached(
        self, repo: CompiledPackageRepo, event_logger: EventLogger
    ) -> None:
        release = make_release([make_package("ruby")])
        failing = FakeCompiler(errors={"ruby": CompileError("ruby", "boom")})
        with pytest.raises(CompileError):
            _compiler(failing, repo, event_logger).compile(release)

        compiler = FakeCompiler()
        _compiler(compiler, repo, event_logger).compile(release)

        assert compiler.compiled == ["ruby"]

    def test_cycle_fails_before_compiling(
        self, repo: CompiledPackageRepo, event_logger: EventLogger
    ) -> None:
        release = make_release([make_package("a", ["b"]), make_package("b", ["a"])])
        compiler = FakeCompiler()

        with pytest.raises(CycleError):
            _compiler(compiler, repo, event_logger).compile(release)

        assert compiler.compiled == []
