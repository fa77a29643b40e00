"""microdeploy command line entry point."""

from __future__ import annotations

import click

from microdeploy import __version__
from microdeploy.cli.commands.deploy import delete, deploy, deployment


@click.group()
@click.version_option(__version__, prog_name="microdeploy")
def main() -> None:
    """Deploy a single VM running a compiled release onto a pluggable cloud.

    Example:

        microdeploy deployment manifest.yml

        microdeploy deploy cpi-release.tgz stemcell.tgz release.tgz
    """


main.add_command(deployment)
main.add_command(deploy)
main.add_command(delete)


if __name__ == "__main__":
    main()
