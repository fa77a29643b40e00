"""Repository of rendered job template records."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError as PydanticValidationError

from microdeploy.index.canonical import fingerprint
from microdeploy.index.file_index import Index
from microdeploy.lib.errors import CacheError
from microdeploy.models.release import Job, TemplateRecord


@runtime_checkable
class TemplatesRepository(Protocol):
    """Lookup of rendered template archives by job identity and bound inputs."""

    def save(self, job: Job, context: dict[str, Any], record: TemplateRecord) -> None: ...

    def find(self, job: Job, context: dict[str, Any]) -> tuple[TemplateRecord | None, bool]: ...


def template_key(job: Job, context: dict[str, Any]) -> dict[str, Any]:
    """Cache key for a rendered job: template sources, packages and bound values."""
    return {
        "name": job.name,
        "version": job.version,
        "fingerprint": job.fingerprint,
        "packages": sorted(job.packages),
        "context_fingerprint": fingerprint(context),
    }


class TemplatesRepo:
    """Template records stored in an :class:`Index`."""

    def __init__(self, index: Index) -> None:
        self._index = index

    def save(self, job: Job, context: dict[str, Any], record: TemplateRecord) -> None:
        try:
            self._index.add(template_key(job, context), record)
        except CacheError as exc:
            raise CacheError(f"Saving template record for job '{job.name}'") from exc

    def find(self, job: Job, context: dict[str, Any]) -> tuple[TemplateRecord | None, bool]:
        try:
            value, found = self._index.find(template_key(job, context))
        except CacheError as exc:
            raise CacheError(f"Finding template record for job '{job.name}'") from exc
        if not found:
            return None, False
        try:
            return TemplateRecord.model_validate(value), True
        except PydanticValidationError as exc:
            raise CacheError(f"Unmarshaling template record for job '{job.name}'") from exc
