from __future__ import annotations

"""
Dependency graph resolution over module records.

WHY THIS FILE EXISTS:
Every lifecycle decision (install gating, enable gating, removal safety, boot
ordering) is a question about the "requires" graph. The graph is rebuilt in
memory for each call from the records passed in; nothing here touches disk.

Optional dependencies only add ordering edges when their target is part of the
subset and active, and never when the edge would close a cycle.
"""

import heapq
import logging
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple, Union

from modhost.core.errors import DependencyCycleError
from modhost.core.modules.models import INSTALLED_STATES, ModuleRecord, ModuleState
from modhost.core.modules.versions import satisfies


Records = Union[Mapping[str, ModuleRecord], Iterable[ModuleRecord]]

# states whose optional edges are ignored for ordering
_INACTIVE_STATES = frozenset({ModuleState.DISABLED, ModuleState.REMOVED})


def as_record_map(modules: Records) -> Dict[str, ModuleRecord]:
    if isinstance(modules, Mapping):
        return dict(modules)
    return {m.name: m for m in modules}


def _reaches(edges: Mapping[str, Set[str]], start: str, target: str) -> bool:
    stack = [start]
    seen: Set[str] = set()
    while stack:
        cur = stack.pop()
        if cur == target:
            return True
        if cur in seen:
            continue
        seen.add(cur)
        stack.extend(edges.get(cur, ()))
    return False


class DependencyResolver:
    def __init__(self, *, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("modhost.modules.resolver")

    # ---- validation ----
    def validate_dependencies(self, module: ModuleRecord, available: Union[Records, Iterable[str]]) -> List[str]:
        """Required dependency names absent from `available` (empty means satisfiable)."""
        names = set(available.keys()) if isinstance(available, Mapping) else {getattr(a, "name", a) for a in available}
        return [d for d in module.dependency_names if d not in names]

    def validate_constraints(self, module: ModuleRecord, available: Records) -> List[Tuple[str, str, str]]:
        """(name, constraint, found_version) for present dependencies whose version violates the constraint."""
        mods = as_record_map(available)
        out: List[Tuple[str, str, str]] = []
        for dep in module.dependencies:
            target = mods.get(dep.name)
            if target is None or not dep.constraint:
                continue
            found = target.effective_version
            if not satisfies(found, dep.constraint):
                out.append((dep.name, dep.constraint, found))
        return out

    def find_conflicts(self, module: ModuleRecord, active: Records) -> List[str]:
        """Active modules that `module` conflicts with, declared on either side."""
        out: List[str] = []
        for other in as_record_map(active).values():
            if other.name == module.name:
                continue
            if module.conflicts_with(other.name) or other.conflicts_with(module.name):
                out.append(other.name)
        return sorted(out)

    # ---- cycles ----
    def has_circular_dependency(self, module: ModuleRecord, modules: Records) -> bool:
        return bool(self.find_cycle(module.name, {**as_record_map(modules), module.name: module}))

    def find_cycle(self, start: str, modules: Records) -> List[str]:
        """
        DFS over required edges from `start`. Returns the first cycle found as a
        path [a, b, ..., a], or [] when none is reachable.
        """
        mods = as_record_map(modules)
        if start not in mods:
            return []
        # explicit stack: dependency chains may be deeper than the recursion limit
        on_stack: List[str] = [start]
        on_stack_set: Set[str] = {start}
        pending: List[Iterator[str]] = [iter(mods[start].dependency_names)]
        done: Set[str] = set()
        while pending:
            dep = next(pending[-1], None)
            if dep is None:
                finished = on_stack.pop()
                on_stack_set.discard(finished)
                done.add(finished)
                pending.pop()
                continue
            if dep in on_stack_set:
                return on_stack[on_stack.index(dep):] + [dep]
            if dep in done or dep not in mods:
                continue
            on_stack.append(dep)
            on_stack_set.add(dep)
            pending.append(iter(mods[dep].dependency_names))
        return []

    # ---- graph ----
    def required_edges(self, modules: Records) -> Dict[str, Set[str]]:
        """name -> required deps, restricted to the subset."""
        mods = as_record_map(modules)
        return {n: {d for d in m.dependency_names if d in mods} for n, m in mods.items()}

    def ordering_edges(self, modules: Records) -> Dict[str, Set[str]]:
        """Required edges plus every admissible optional edge (target present, active, acyclic)."""
        mods = as_record_map(modules)
        edges = self.required_edges(mods)
        for name in sorted(mods):
            for dep in sorted(mods[name].optional_dependency_names):
                target = mods.get(dep)
                if target is None or dep == name or target.state in _INACTIVE_STATES:
                    continue
                if dep in edges[name]:
                    continue
                if _reaches(edges, dep, name):
                    self.logger.debug("optional edge %s -> %s skipped (would close a cycle)", name, dep)
                    continue
                edges[name].add(dep)
        return edges

    def partial_order(self, modules: Records) -> Tuple[List[str], List[str]]:
        mods = as_record_map(modules)
        edges = self.ordering_edges(mods)
        indegree = {n: len(deps) for n, deps in edges.items()}
        dependents: Dict[str, List[str]] = {n: [] for n in mods}
        for n, deps in edges.items():
            for d in deps:
                dependents[d].append(n)
        ready = [n for n, k in indegree.items() if k == 0]
        heapq.heapify(ready)
        order: List[str] = []
        while ready:
            n = heapq.heappop(ready)
            order.append(n)
            for m in dependents[n]:
                indegree[m] -= 1
                if indegree[m] == 0:
                    heapq.heappush(ready, m)
        placed = set(order)
        leftover = sorted(n for n in mods if n not in placed)
        return order, leftover

    def _cycle_error(self, mods: Dict[str, ModuleRecord], leftover: List[str]) -> DependencyCycleError:
        for name in leftover:
            cycle = self.find_cycle(name, {n: mods[n] for n in leftover})
            if cycle:
                return DependencyCycleError(cycle[0], " -> ".join(cycle), cycle=cycle)
        return DependencyCycleError(leftover[0])

    def get_install_order(self, modules: Records) -> List[str]:
        """
        Topological order (dependencies first) of the subset; ties broken by name.
        Raises DependencyCycleError naming one participant when nodes are left over.
        """
        mods = as_record_map(modules)
        order, leftover = self.partial_order(mods)
        if leftover:
            raise self._cycle_error(mods, leftover)
        return order

    def resolve(self, modules: Records) -> List[str]:
        return self.get_install_order(modules)

    def layered(self, modules: Records) -> Tuple[List[List[str]], List[str]]:
        """
        (waves, unresolved). Wave 0 holds modules with no in-subset dependencies;
        wave n holds modules whose deepest dependency sits in wave n-1.
        Modules on or behind a cycle are returned as unresolved.
        """
        mods = as_record_map(modules)
        order, leftover = self.partial_order(mods)
        edges = self.ordering_edges(mods)
        depth: Dict[str, int] = {}
        for n in order:
            depth[n] = 1 + max((depth[d] for d in edges[n]), default=-1)
        waves: List[List[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for n in order:
            waves[depth[n]].append(n)
        return [sorted(w) for w in waves], leftover

    def compute_waves(self, modules: Records) -> List[List[str]]:
        mods = as_record_map(modules)
        waves, leftover = self.layered(mods)
        if leftover:
            raise self._cycle_error(mods, leftover)
        return waves

    # ---- removal / impact ----
    def get_dependents(self, name: str, modules: Records) -> List[str]:
        return sorted(m.name for m in as_record_map(modules).values() if m.name != name and m.has_dependency(name))

    def get_transitive_dependents(self, name: str, modules: Records) -> List[str]:
        mods = as_record_map(modules)
        seen: Set[str] = set()
        frontier = [name]
        while frontier:
            cur = frontier.pop()
            for dep in self.get_dependents(cur, mods):
                if dep not in seen and dep != name:
                    seen.add(dep)
                    frontier.append(dep)
        return sorted(seen)

    def can_remove(self, name: str, modules: Records) -> bool:
        """False while any installed, enabled or disabled module requires `name`."""
        mods = as_record_map(modules)
        return not [d for d in self.get_dependents(name, mods) if mods[d].state in INSTALLED_STATES]
