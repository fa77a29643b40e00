"""Release compilation: dependency ordering, package builds and caching."""

from microdeploy.compile.dependency import DependencyAnalysis
from microdeploy.compile.package_compiler import Compiler, PackageCompiler
from microdeploy.compile.release_compiler import CompiledRelease, ReleaseCompiler
from microdeploy.compile.release_packages import (
    ReleasePackagesCompiler,
    dependency_fingerprint,
)
from microdeploy.compile.repo import (
    CompiledPackageRepo,
    CompiledPackageRepository,
    package_key,
)

__all__ = [
    "CompiledPackageRepo",
    "CompiledPackageRepository",
    "CompiledRelease",
    "Compiler",
    "DependencyAnalysis",
    "PackageCompiler",
    "ReleaseCompiler",
    "ReleasePackagesCompiler",
    "dependency_fingerprint",
    "package_key",
]
