"""CLI commands for selecting, deploying and deleting a deployment.

Implements 'microdeploy deployment', 'microdeploy deploy' and
'microdeploy delete'.
"""

from __future__ import annotations

import sys
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

import click

from microdeploy.config.loader import load_deployment_manifest
from microdeploy.config.workspace import Workspace
from microdeploy.deploy.runner import DeploymentRunner
from microdeploy.deploy.state import load_state, set_current_deployment
from microdeploy.eventlog.logger import EventLogger
from microdeploy.eventlog.sinks import ConsoleEventSink
from microdeploy.lib.errors import (
    ConfigError,
    MicroDeployError,
    ValidationError,
    format_error_chain,
)
from microdeploy.lib.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


@contextmanager
def handle_deployment_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in deployment commands.

    Exit codes:
        2: Configuration or validation error
        3: Deployment/execution error
    """
    try:
        yield
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.field}: {e.message}", err=True)
        sys.exit(2)
    except ValidationError as e:
        logger.error(f"Validation error: {e}")
        click.secho(f"Error: Invalid {e.subject}", fg="red", err=True)
        for error in e.errors:
            click.echo(f"  - {error}", err=True)
        sys.exit(2)
    except MicroDeployError as e:
        logger.error(f"Deployment error: {format_error_chain(e)}")
        click.secho("Error: Deployment failed", fg="red", err=True)
        click.echo(f"  {format_error_chain(e)}", err=True)
        sys.exit(3)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)


def _workspace(workspace_dir: str | None) -> Workspace:
    return Workspace.from_env(workspace_dir)


def _resolve_manifest(workspace: Workspace, manifest: str | None) -> Path:
    if manifest:
        return Path(manifest)
    state = load_state(workspace.deployment_state_path)
    current = state.current_deployment
    record = state.deployments.get(current) if current else None
    if record is None or not record.manifest_path:
        raise ConfigError(
            field="deployment",
            message="No deployment set. Run 'microdeploy deployment MANIFEST' "
            "or pass --manifest",
        )
    return Path(record.manifest_path)


workspace_option = click.option(
    "--workspace",
    "workspace_dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Workspace directory (default: $MICRODEPLOY_HOME or ~/.microdeploy)",
)
verbose_option = click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose debug logging"
)
quiet_option = click.option("--quiet", "-q", is_flag=True, help="Suppress progress output")
manifest_option = click.option(
    "--manifest",
    "-m",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Deployment manifest (default: the one set with 'microdeploy deployment')",
)


@click.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False))
@workspace_option
@verbose_option
@quiet_option
def deployment(manifest: str, workspace_dir: str | None, verbose: bool, quiet: bool) -> None:
    """Set the deployment manifest used by later commands."""
    setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        workspace = _workspace(workspace_dir)
        parsed = load_deployment_manifest(manifest)
        record = set_current_deployment(
            workspace.deployment_state_path, parsed.name, Path(manifest)
        )
        if not quiet:
            click.echo(f"Deployment set to '{record.manifest_path}'")


@click.command()
@click.argument("cpi_release", type=click.Path(exists=True, dir_okay=False))
@click.argument("stemcell", type=click.Path(exists=True, dir_okay=False))
@click.argument("release", type=click.Path(exists=True, dir_okay=False))
@manifest_option
@workspace_option
@verbose_option
@quiet_option
def deploy(
    cpi_release: str,
    stemcell: str,
    release: str,
    manifest: str | None,
    workspace_dir: str | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """Deploy RELEASE on a VM created from STEMCELL with the CPI in CPI_RELEASE."""
    setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        workspace = _workspace(workspace_dir)
        manifest_path = _resolve_manifest(workspace, manifest)
        runner = DeploymentRunner(workspace, EventLogger(ConsoleEventSink(quiet=quiet)))
        result = runner.deploy(
            manifest_path, Path(cpi_release), Path(stemcell), Path(release)
        )

        if quiet:
            click.echo(result.vm_cid)
            return

        click.echo()
        click.secho("Deployment Successful!", fg="green", bold=True)
        click.echo(f"  Deployment: {result.deployment_name}")
        click.echo(f"  VM:         {result.vm_cid}")
        click.echo(f"  Stemcell:   {result.stemcell_cid}")
        click.echo(f"  Disk:       {result.disk_cid or '(none)'}")
        click.echo()


@click.command()
@click.argument("cpi_release", type=click.Path(exists=True, dir_okay=False))
@manifest_option
@workspace_option
@verbose_option
@quiet_option
def delete(
    cpi_release: str,
    manifest: str | None,
    workspace_dir: str | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """Delete the VM, disk and stemcells of the current deployment."""
    setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        workspace = _workspace(workspace_dir)
        manifest_path = _resolve_manifest(workspace, manifest)
        runner = DeploymentRunner(workspace, EventLogger(ConsoleEventSink(quiet=quiet)))
        runner.delete(manifest_path, Path(cpi_release))

        if not quiet:
            click.secho("Deployment Deleted", fg="green", bold=True)
