"""microdeploy - compile a release and deploy it onto a single VM.

microdeploy installs a Cloud Provider Interface (CPI) from a release, uploads
a stemcell, compiles the deployed release with a content-addressable cache
and converges one VM through the CPI and the agent running inside it.

Main features:
- Dependency-ordered package compilation with cached, fingerprinted results
- Jinja2 job template rendering
- Idempotent re-runs driven by a persisted deployment record
- Transient registry server and SSH tunnel for VM bootstrap
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
