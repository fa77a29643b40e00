"""Tests for the microdeploy exception hierarchy and chain helpers."""

import pytest

from microdeploy.lib.errors import (
    AgentError,
    AgentTimeoutError,
    CacheError,
    CompileError,
    ConfigError,
    CPIError,
    CycleError,
    DeploymentError,
    IntegrityError,
    MicroDeployError,
    ValidationError,
    WriteError,
    format_error_chain,
    leaf_message,
)


class TestErrorHierarchy:
    """Every microdeploy error is catchable as MicroDeployError."""

    @pytest.mark.parametrize(
        "error",
        [
            ConfigError("name", "missing"),
            ValidationError("release", ["bad"]),
            DeploymentError("deploy", "failed"),
            CompileError("ruby", "failed"),
            CycleError(["a", "b", "a"]),
            WriteError("disk full"),
            IntegrityError("blob", "a", "b"),
            CPIError("create_vm", "Bosh::Clouds::CloudError", "boom"),
            AgentTimeoutError("no answer"),
        ],
    )
    def test_is_microdeploy_error(self, error: MicroDeployError) -> None:
        assert isinstance(error, MicroDeployError)

    def test_write_error_is_cache_error(self) -> None:
        assert isinstance(WriteError("x"), CacheError)

    def test_agent_timeout_is_agent_error(self) -> None:
        assert isinstance(AgentTimeoutError("x"), AgentError)


class TestErrorMessages:
    def test_config_error_message(self) -> None:
        error = ConfigError("job.name", "is required")

        assert error.field == "job.name"
        assert str(error) == "Configuration error in 'job.name': is required"

    def test_validation_error_lists_every_failure(self) -> None:
        error = ValidationError("release", ["first", "second"])

        assert error.errors == ["first", "second"]
        assert "  - first" in str(error)
        assert "  - second" in str(error)

    def test_cycle_error_names_path(self) -> None:
        assert "a -> b -> a" in str(CycleError(["a", "b", "a"]))

    def test_compile_error_includes_output(self) -> None:
        error = CompileError("ruby", "Packaging script exited with status 1", "Stderr:\nboom")

        assert "Compiling 'ruby'" in str(error)
        assert "boom" in str(error)

    def test_cpi_error_fields(self) -> None:
        error = CPIError("create_vm", "Bosh::Clouds::VMCreationFailed", "quota", True)

        assert error.ok_to_retry is True
        assert "Bosh::Clouds::VMCreationFailed: quota" in str(error)


class TestErrorChain:
    """Tests for wrapped cause rendering."""

    def _chained(self) -> Exception:
        try:
            try:
                raise OSError("disk full")
            except OSError as exc:
                raise WriteError("Writing index file") from exc
        except WriteError as exc:
            try:
                raise CacheError("Saving compiled package record for 'ruby'") from exc
            except CacheError as outer:
                return outer

    def test_format_error_chain(self) -> None:
        assert format_error_chain(self._chained()) == (
            "Saving compiled package record for 'ruby': Writing index file: disk full"
        )

    def test_leaf_message_is_innermost_cause(self) -> None:
        assert leaf_message(self._chained()) == "disk full"

    def test_leaf_message_without_cause(self) -> None:
        assert leaf_message(RuntimeError("fake-create-error")) == "fake-create-error"
