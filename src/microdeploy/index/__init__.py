"""Content-addressable index used by the compiled package and template caches."""

from microdeploy.index.canonical import canonical_json, fingerprint
from microdeploy.index.file_index import FileIndex, Index, MemoryIndex

__all__ = ["FileIndex", "Index", "MemoryIndex", "canonical_json", "fingerprint"]
