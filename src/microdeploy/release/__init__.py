"""Release reading and validation."""

from microdeploy.release.reader import ReleaseReader
from microdeploy.release.validation import CpiReleaseValidator, ReleaseValidator

__all__ = ["CpiReleaseValidator", "ReleaseReader", "ReleaseValidator"]
