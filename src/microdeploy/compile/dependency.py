"""Compilation order over a release's package dependency graph."""

from __future__ import annotations

from collections.abc import Iterable

from microdeploy.lib.errors import CycleError, ValidationError
from microdeploy.models.release import Package


class DependencyAnalysis:
    """Topologically order packages so dependencies always come first."""

    def determine_compile_order(self, packages: Iterable[Package]) -> list[Package]:
        """Return packages ordered after all of their transitive dependencies.

        Packages that do not depend on one another keep their input order.

        Raises:
            ValidationError: If a package depends on a package not in the input
            CycleError: If the dependency graph contains a cycle
        """
        by_name: dict[str, Package] = {}
        for package in packages:
            by_name.setdefault(package.name, package)

        missing = [
            f"Package '{p.name}' depends on missing package '{dep}'"
            for p in by_name.values()
            for dep in p.dependencies
            if dep not in by_name
        ]
        if missing:
            raise ValidationError("package dependencies", missing)

        ordered: list[Package] = []
        done: set[str] = set()
        for root in by_name:
            if root in done:
                continue
            path = [root]
            on_path = {root}
            pending = [iter(by_name[root].dependencies)]
            while pending:
                dependency = next(pending[-1], None)
                if dependency is None:
                    name = path.pop()
                    on_path.discard(name)
                    pending.pop()
                    done.add(name)
                    ordered.append(by_name[name])
                elif dependency in on_path:
                    raise CycleError(path[path.index(dependency) :] + [dependency])
                elif dependency not in done:
                    path.append(dependency)
                    on_path.add(dependency)
                    pending.append(iter(by_name[dependency].dependencies))
        return ordered
