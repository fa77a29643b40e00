"""Repository of compiled package records."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import ValidationError as PydanticValidationError

from microdeploy.index.file_index import Index
from microdeploy.lib.errors import CacheError
from microdeploy.models.release import CompiledPackageRecord, Package


@runtime_checkable
class CompiledPackageRepository(Protocol):
    """Lookup of compiled packages by package identity and dependency fingerprint."""

    def save(
        self, package: Package, dependency_fingerprint: str, record: CompiledPackageRecord
    ) -> None: ...

    def find(
        self, package: Package, dependency_fingerprint: str
    ) -> tuple[CompiledPackageRecord | None, bool]: ...


def package_key(package: Package, dependency_fingerprint: str) -> dict[str, str]:
    """Cache key for a compiled package."""
    return {
        "name": package.name,
        "version": package.version,
        "fingerprint": package.fingerprint,
        "dependency_fingerprint": dependency_fingerprint,
    }


class CompiledPackageRepo:
    """Compiled package records stored in an :class:`Index`."""

    def __init__(self, index: Index) -> None:
        self._index = index

    def save(
        self, package: Package, dependency_fingerprint: str, record: CompiledPackageRecord
    ) -> None:
        try:
            self._index.add(package_key(package, dependency_fingerprint), record)
        except CacheError as exc:
            raise CacheError(f"Saving compiled package record for '{package.name}'") from exc

    def find(
        self, package: Package, dependency_fingerprint: str
    ) -> tuple[CompiledPackageRecord | None, bool]:
        try:
            value, found = self._index.find(package_key(package, dependency_fingerprint))
        except CacheError as exc:
            raise CacheError(f"Finding compiled package record for '{package.name}'") from exc
        if not found:
            return None, False
        try:
            return CompiledPackageRecord.model_validate(value), True
        except PydanticValidationError as exc:
            raise CacheError(
                f"Unmarshaling compiled package record for '{package.name}'"
            ) from exc
