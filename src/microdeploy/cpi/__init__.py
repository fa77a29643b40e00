"""CPI installation and the Cloud interface it provides."""

from microdeploy.cpi.cloud import Cloud, CloudFactory, CpiCloud, CpiCmdRunner
from microdeploy.cpi.installer import CpiInstaller
from microdeploy.cpi.job_installer import InstalledJob, JobInstaller

__all__ = [
    "Cloud",
    "CloudFactory",
    "CpiCloud",
    "CpiCmdRunner",
    "CpiInstaller",
    "InstalledJob",
    "JobInstaller",
]
