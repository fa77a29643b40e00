"""Job template rendering and caching."""

from microdeploy.templates.compiler import TemplatesCompiler, instance_spec
from microdeploy.templates.renderer import JobRenderer, lookup, resolve_job_properties
from microdeploy.templates.repo import TemplatesRepo, TemplatesRepository, template_key

__all__ = [
    "JobRenderer",
    "TemplatesCompiler",
    "TemplatesRepo",
    "TemplatesRepository",
    "instance_spec",
    "lookup",
    "resolve_job_properties",
    "template_key",
]
