"""Cloud operations backed by an installed CPI executable.

The CPI is a separate program. Each call runs it once, writes a JSON request
to its stdin and reads a JSON response from its stdout::

    request:  {"method": ..., "arguments": [...], "context": {"director_uuid": ...}}
    response: {"result": ..., "error": {"type", "message", "ok_to_retry"} | null, "log": ...}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from microdeploy.config.defaults import CPI_EXECUTABLE
from microdeploy.lib.errors import CPIError
from microdeploy.lib.logging_config import get_logger
from microdeploy.lib.runner import CommandRunner

logger = get_logger(__name__)

GENERIC_CPI_ERROR = "Bosh::Clouds::CpiError"


@runtime_checkable
class Cloud(Protocol):
    """IaaS operations used by the deployer."""

    def create_stemcell(self, image_path: str, cloud_properties: dict[str, Any]) -> str: ...

    def delete_stemcell(self, stemcell_cid: str) -> None: ...

    def create_vm(
        self,
        agent_id: str,
        stemcell_cid: str,
        cloud_properties: dict[str, Any],
        networks: dict[str, Any],
        env: dict[str, Any],
    ) -> str: ...

    def delete_vm(self, vm_cid: str) -> None: ...

    def has_vm(self, vm_cid: str) -> bool: ...

    def create_disk(
        self, size: int, cloud_properties: dict[str, Any], vm_cid: str
    ) -> str: ...

    def attach_disk(self, vm_cid: str, disk_cid: str) -> None: ...

    def detach_disk(self, vm_cid: str, disk_cid: str) -> None: ...

    def delete_disk(self, disk_cid: str) -> None: ...


class CpiCmdRunner:
    """Invoke CPI methods through the CPI executable."""

    def __init__(self, runner: CommandRunner, cpi_path: Path, deployment_uuid: str) -> None:
        self._runner = runner
        self._cpi_path = Path(cpi_path)
        self._deployment_uuid = deployment_uuid

    def run(self, method: str, *arguments: Any) -> Any:
        """Call ``method`` and return its ``result``.

        Raises:
            CPIError: If the CPI reports an error, exits non-zero or writes
                an unparsable response
        """
        request = json.dumps(
            {
                "method": method,
                "arguments": list(arguments),
                "context": {"director_uuid": self._deployment_uuid},
            }
        )
        logger.debug(f"CPI request: {request}")
        try:
            result = self._runner.run([str(self._cpi_path)], stdin=request)
        except OSError as exc:
            raise CPIError(method, GENERIC_CPI_ERROR, f"Executing CPI: {exc}") from exc

        if not result.succeeded:
            raise CPIError(
                method,
                GENERIC_CPI_ERROR,
                f"CPI exited with status {result.exit_status}: {result.stderr.strip()}",
            )

        try:
            response = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise CPIError(method, GENERIC_CPI_ERROR, "Unmarshaling CPI response") from exc
        if not isinstance(response, dict):
            raise CPIError(method, GENERIC_CPI_ERROR, "CPI response is not an object")

        if response.get("log"):
            logger.debug(f"CPI log for {method}:\n{response['log']}")

        error = response.get("error")
        if error is None:
            return response.get("result")
        if not isinstance(error, dict):
            raise CPIError(method, GENERIC_CPI_ERROR, str(error))
        raise CPIError(
            method,
            error.get("type") or GENERIC_CPI_ERROR,
            error.get("message") or "",
            bool(error.get("ok_to_retry", False)),
        )


class CpiCloud:
    """:class:`Cloud` implementation delegating to a :class:`CpiCmdRunner`."""

    def __init__(self, cmd_runner: CpiCmdRunner) -> None:
        self._cmd_runner = cmd_runner

    def create_stemcell(self, image_path: str, cloud_properties: dict[str, Any]) -> str:
        return str(self._cmd_runner.run("create_stemcell", image_path, cloud_properties))

    def delete_stemcell(self, stemcell_cid: str) -> None:
        self._cmd_runner.run("delete_stemcell", stemcell_cid)

    def create_vm(
        self,
        agent_id: str,
        stemcell_cid: str,
        cloud_properties: dict[str, Any],
        networks: dict[str, Any],
        env: dict[str, Any],
    ) -> str:
        return str(
            self._cmd_runner.run(
                "create_vm", agent_id, stemcell_cid, cloud_properties, networks, [], env
            )
        )

    def delete_vm(self, vm_cid: str) -> None:
        self._cmd_runner.run("delete_vm", vm_cid)

    def has_vm(self, vm_cid: str) -> bool:
        return bool(self._cmd_runner.run("has_vm", vm_cid))

    def create_disk(self, size: int, cloud_properties: dict[str, Any], vm_cid: str) -> str:
        return str(self._cmd_runner.run("create_disk", size, cloud_properties, vm_cid))

    def attach_disk(self, vm_cid: str, disk_cid: str) -> None:
        self._cmd_runner.run("attach_disk", vm_cid, disk_cid)

    def detach_disk(self, vm_cid: str, disk_cid: str) -> None:
        self._cmd_runner.run("detach_disk", vm_cid, disk_cid)

    def delete_disk(self, disk_cid: str) -> None:
        self._cmd_runner.run("delete_disk", disk_cid)


class CloudFactory:
    """Build a :class:`Cloud` for an installed CPI job."""

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def new_cloud(self, job_path: Path, deployment_uuid: str) -> Cloud:
        cpi_path = Path(job_path) / CPI_EXECUTABLE
        logger.debug(f"Using CPI executable {cpi_path}")
        return CpiCloud(CpiCmdRunner(self._runner, cpi_path, deployment_uuid))
