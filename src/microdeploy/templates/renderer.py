"""Job template rendering with Jinja2.

Templates see three names:

- ``properties``: the job's declared properties, resolved from the manifest
  with the job spec defaults filling the gaps (nested by dotted name)
- ``p(name, default)``: dotted-name lookup into the same values
- ``spec``: deployment name, job name, index and networks
"""

from __future__ import annotations

import shutil
import stat
from pathlib import Path
from typing import Any

from jinja2 import Environment, StrictUndefined, TemplateError

from microdeploy.lib.errors import CompileError
from microdeploy.lib.logging_config import get_logger
from microdeploy.models.release import Job

logger = get_logger(__name__)

_MISSING = object()


def lookup(properties: dict[str, Any], dotted_name: str, default: Any = _MISSING) -> Any:
    """Look up ``a.b.c`` in nested dictionaries."""
    current: Any = properties
    for part in dotted_name.split("."):
        if not isinstance(current, dict) or part not in current:
            if default is _MISSING:
                raise KeyError(dotted_name)
            return default
        current = current[part]
    return current


def _assign(target: dict[str, Any], dotted_name: str, value: Any) -> None:
    parts = dotted_name.split(".")
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def resolve_job_properties(job: Job, manifest_properties: dict[str, Any]) -> dict[str, Any]:
    """Resolve a job's declared properties against manifest properties.

    Properties the job does not declare are not visible to its templates.
    Declared properties with neither a manifest value nor a default are left out.
    """
    resolved: dict[str, Any] = {}
    for name, declared in sorted(job.properties.items()):
        value = lookup(manifest_properties, name, _MISSING)
        if value is _MISSING:
            value = declared.default
        if value is None:
            continue
        _assign(resolved, name, value)
    return resolved


class JobRenderer:
    """Render a job's templates into a directory tree."""

    def __init__(self) -> None:
        self._env = Environment(  # nosec B701
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def render(
        self,
        job: Job,
        properties: dict[str, Any],
        spec: dict[str, Any],
        dest_dir: Path,
    ) -> Path:
        """Render ``job`` into ``dest_dir``.

        Args:
            job: Job with an extracted ``path``
            properties: Resolved job properties
            spec: Instance spec exposed to templates as ``spec``
            dest_dir: Output directory, replaced if it exists

        Returns:
            The output directory.

        Raises:
            CompileError: If a template is missing or fails to render
        """
        if job.path is None:
            raise CompileError(job.name, "Job directory is not set")

        shutil.rmtree(dest_dir, ignore_errors=True)
        dest_dir.mkdir(parents=True)

        def p(name: str, default: Any = _MISSING) -> Any:
            try:
                return lookup(properties, name, default)
            except KeyError as exc:
                raise CompileError(job.name, f"Can't find property '{name}'") from exc

        context = {"properties": properties, "spec": spec, "p": p}

        sources = dict(job.templates)
        if (job.path / "monit").is_file():
            sources["__monit__"] = "monit"

        for source, destination in sources.items():
            template_path = (
                job.path / "monit" if source == "__monit__" else job.path / "templates" / source
            )
            rendered = self._render_file(job, template_path, context)
            output = dest_dir / destination
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(rendered, encoding="utf-8")
            if destination.startswith("bin/"):
                output.chmod(output.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            logger.debug(f"Rendered {job.name}/{source} -> {destination}")

        return dest_dir

    def _render_file(self, job: Job, template_path: Path, context: dict[str, Any]) -> str:
        try:
            source = template_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CompileError(job.name, f"Reading template {template_path.name}") from exc
        try:
            return self._env.from_string(source).render(**context)
        except TemplateError as exc:
            raise CompileError(
                job.name, f"Rendering template {template_path.name}: {exc}"
            ) from exc
