"""Uploaded stemcell records, kept in the deployment state file."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from microdeploy.deploy.state import DeploymentRecordStore
from microdeploy.models.deployment_state import StemcellRecord
from microdeploy.models.stemcell import CloudStemcell, StemcellManifest


@runtime_checkable
class StemcellRepository(Protocol):
    def find(self, manifest: StemcellManifest) -> tuple[CloudStemcell | None, bool]: ...

    def save(self, manifest: StemcellManifest, stemcell: CloudStemcell) -> None: ...


class StemcellRepo:
    """Stemcell records keyed by manifest fingerprint."""

    def __init__(self, store: DeploymentRecordStore) -> None:
        self._store = store

    def find(self, manifest: StemcellManifest) -> tuple[CloudStemcell | None, bool]:
        fingerprint = manifest.fingerprint
        for record in self._store.load().stemcells:
            if record.fingerprint == fingerprint:
                return (
                    CloudStemcell(cid=record.cid, name=record.name, version=record.version),
                    True,
                )
        return None, False

    def save(self, manifest: StemcellManifest, stemcell: CloudStemcell) -> None:
        fingerprint = manifest.fingerprint
        record = self._store.load()
        stemcells = [s for s in record.stemcells if s.fingerprint != fingerprint]
        stemcells.append(
            StemcellRecord(
                fingerprint=fingerprint,
                name=manifest.name,
                version=manifest.version,
                cid=stemcell.cid,
            )
        )
        self._store.save(record.model_copy(update={"stemcells": stemcells}))

    def delete_all(self) -> list[CloudStemcell]:
        """Forget every recorded stemcell and return what was recorded."""
        record = self._store.load()
        removed = [
            CloudStemcell(cid=s.cid, name=s.name, version=s.version) for s in record.stemcells
        ]
        self._store.save(record.model_copy(update={"stemcells": []}))
        return removed
