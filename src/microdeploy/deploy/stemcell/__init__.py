"""Stemcell extraction, records and upload."""

from microdeploy.deploy.stemcell.manager import StemcellManager
from microdeploy.deploy.stemcell.reader import StemcellReader
from microdeploy.deploy.stemcell.repo import StemcellRepo, StemcellRepository

__all__ = ["StemcellManager", "StemcellReader", "StemcellRepo", "StemcellRepository"]
