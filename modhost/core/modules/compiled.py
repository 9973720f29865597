from __future__ import annotations

"""
Compiled module registry.

WHY THIS FILE EXISTS:
Every boot path needs the resolved module topology (load order, waves,
context maps, service/route manifests). Re-running discovery and resolution on
each boot is wasteful, so the result is compiled into a snapshot, published as
<storage>/compiled_registry.json and read back with O(1) lookups.

The snapshot is immutable. Writers replace it wholesale (publish = write new
file + os.replace + in-memory swap); readers keep whatever snapshot they last
loaded and never take a lock.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from modhost.core.config.io import atomic_write_json, read_json_file
from modhost.core.modules.discovery import ModuleDiscovery
from modhost.core.modules.fingerprints import current_checksum, generation_checksum, list_manifest_entries
from modhost.core.modules.models import ModuleRecord, ModuleState, StateStoreFile
from modhost.core.modules.resolver import DependencyResolver
from modhost.core.modules.state_store import ModuleStateStore


SERVICE_SECTIONS = ("bindings", "singletons", "aliases")


class RegistrySnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    schema_version: int = 1
    checksum: str
    store_revision: int = 0
    built_at: float = Field(default_factory=lambda: time.time())
    order: List[str] = Field(default_factory=list)
    waves: List[List[str]] = Field(default_factory=list)
    modules: Dict[str, ModuleRecord] = Field(default_factory=dict)
    adjacency: Dict[str, List[str]] = Field(default_factory=dict)
    optional_adjacency: Dict[str, List[str]] = Field(default_factory=dict)
    dependents: Dict[str, List[str]] = Field(default_factory=dict)
    contexts: Dict[str, List[str]] = Field(default_factory=dict)
    services: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    routes: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    # on or behind a dependency cycle; excluded from order and waves
    unresolved: List[str] = Field(default_factory=list)
    # module -> required dependencies with no module on disk
    missing: Dict[str, List[str]] = Field(default_factory=dict)
    failures: List[Dict[str, str]] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)

    def wave_of(self, name: str) -> Optional[int]:
        for i, wave in enumerate(self.waves):
            if name in wave:
                return i
        return None


class RegistryCompiler:
    """
    Builds a RegistrySnapshot from disk manifests + a state store file.
    Pure with respect to persisted state: it never writes.
    """

    def __init__(
        self,
        *,
        discovery: ModuleDiscovery,
        resolver: DependencyResolver,
        state_store: ModuleStateStore,
        default_contexts: Optional[List[str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.discovery = discovery
        self.resolver = resolver
        self.state_store = state_store
        contexts = default_contexts if default_contexts is not None else ["api", "web"]
        # lookups are case-insensitive; manifest contexts are lowercased at validation
        self.default_contexts = sorted({str(c).strip().lower() for c in contexts if str(c).strip()})
        self.logger = logger or logging.getLogger("modhost.modules.compiler")

    def _closure(self, name: str, adjacency: Dict[str, List[str]]) -> List[str]:
        seen: List[str] = []
        stack = [name]
        while stack:
            cur = stack.pop()
            if cur in seen:
                continue
            seen.append(cur)
            stack.extend(adjacency.get(cur, []))
        return seen

    def compile(self, store: Optional[StateStoreFile] = None) -> RegistrySnapshot:
        """
        Compile from `store` (staged, not yet committed state) or, by default,
        the persisted store.
        """
        store = store if store is not None else self.state_store.load()
        entries = list_manifest_entries(self.discovery.modules_root, self.discovery.manifest_filename)
        report = self.discovery.discover(store=store)
        mods = report.modules

        order, unresolved = self.resolver.partial_order(mods)
        waves, _ = self.resolver.layered(mods)
        required = self.resolver.required_edges(mods)
        ordering = self.resolver.ordering_edges(mods)
        adjacency = {n: sorted(required[n]) for n in sorted(mods)}
        optional_adjacency = {n: sorted(ordering[n] - required[n]) for n in sorted(mods) if ordering[n] - required[n]}
        dependents = {n: self.resolver.get_dependents(n, mods) for n in sorted(mods)}
        missing: Dict[str, List[str]] = {}
        for n in sorted(mods):
            absent = self.resolver.validate_dependencies(mods[n], mods)
            if absent:
                missing[n] = absent

        contexts: Dict[str, List[str]] = {}
        for name in order:
            tags = mods[name].contexts or self.default_contexts
            for tag in tags:
                bucket = contexts.setdefault(tag, [])
                for member in self._closure(name, adjacency):
                    if member not in bucket and member not in unresolved:
                        bucket.append(member)
        position = {n: i for i, n in enumerate(order)}
        contexts = {tag: sorted(names, key=lambda n: position.get(n, len(position))) for tag, names in sorted(contexts.items())}

        if unresolved:
            self.logger.warning("modules excluded from load order (dependency cycle): %s", ", ".join(unresolved))
        for name, deps in missing.items():
            self.logger.warning("module %s requires unknown module(s): %s", name, ", ".join(deps))

        return RegistrySnapshot(
            checksum=generation_checksum(manifest_entries=entries, store_revision=store.revision),
            store_revision=int(store.revision),
            order=order,
            waves=waves,
            modules=mods,
            adjacency=adjacency,
            optional_adjacency=optional_adjacency,
            dependents=dependents,
            contexts=contexts,
            services={n: dict(mods[n].services) for n in order if mods[n].services},
            routes={n: dict(mods[n].routes) for n in order if mods[n].routes},
            unresolved=unresolved,
            missing=missing,
            failures=[{"name": f.name, "path": f.path, "reason": f.reason} for f in report.failures],
            removed=sorted(report.removed),
        )


class CompiledRegistry:
    """
    Read side of the compiled registry: loads the published artifact and serves lookups.

    Reads never lock. On first access the artifact is loaded; when it is missing,
    unreadable or stale the snapshot is recompiled in memory (publishing is left
    to writers holding the publish lock).
    """

    def __init__(
        self,
        *,
        artifact_path: str,
        compiler: RegistryCompiler,
        max_backups: int = 0,
        logger: Optional[logging.Logger] = None,
    ):
        self.artifact_path = str(artifact_path)
        self.compiler = compiler
        self.max_backups = int(max_backups)
        self.logger = logger or logging.getLogger("modhost.modules.registry")
        self._snapshot: Optional[RegistrySnapshot] = None

    # ---- lifecycle ----
    def current_checksum(self) -> str:
        return current_checksum(
            modules_root=self.compiler.discovery.modules_root,
            manifest_filename=self.compiler.discovery.manifest_filename,
            store_revision=self.compiler.state_store.revision(),
        )

    def load(self) -> Optional[RegistrySnapshot]:
        """Read the published artifact and swap it in. Returns None when absent or unreadable."""
        rr = read_json_file(self.artifact_path)
        if not rr.ok:
            if rr.error != "missing":
                self.logger.warning("compiled registry unreadable (%s)", rr.error)
            return None
        try:
            snap = RegistrySnapshot.model_validate(rr.data)
        except ValidationError as e:
            self.logger.warning("compiled registry failed validation: %s", str(e)[:200])
            return None
        self._snapshot = snap
        return snap

    def is_valid(self) -> bool:
        snap = self._snapshot if self._snapshot is not None else self.load()
        return snap is not None and snap.checksum == self.current_checksum()

    def refresh(self) -> RegistrySnapshot:
        """Recompute from current disk + state and swap in the new snapshot."""
        snap = self.compiler.compile()
        self._snapshot = snap
        self.logger.info("compiled registry refreshed (%d modules, revision %d)", len(snap.modules), snap.store_revision)
        return snap

    def publish(self, snapshot: RegistrySnapshot) -> None:
        """
        Swap in memory, then write the artifact atomically. Callers must hold the
        publish lock. A failed write leaves this process serving `snapshot`; other
        readers see a stale checksum and recompile.
        """
        self._snapshot = snapshot
        atomic_write_json(self.artifact_path, snapshot.model_dump(mode="json"), max_backups=self.max_backups)

    def ensure_fresh(self) -> RegistrySnapshot:
        """Reload (or recompile) when another writer has moved state on since our snapshot."""
        if self._snapshot is not None and self._snapshot.checksum == self.current_checksum():
            return self._snapshot
        snap = self.load()
        if snap is not None and snap.checksum == self.current_checksum():
            return snap
        return self.refresh()

    def _ensure_loaded(self) -> RegistrySnapshot:
        if self._snapshot is not None:
            return self._snapshot
        snap = self.load()
        if snap is None or snap.checksum != self.current_checksum():
            snap = self.refresh()
        return snap

    @property
    def snapshot(self) -> RegistrySnapshot:
        return self._ensure_loaded()

    # ---- lookups ----
    def _records(self, snap: RegistrySnapshot, names: List[str]) -> List[ModuleRecord]:
        return [snap.modules[n] for n in names if n in snap.modules]

    def get_all_modules(self) -> List[ModuleRecord]:
        snap = self._ensure_loaded()
        return self._records(snap, snap.order + snap.unresolved)

    def get_enabled_modules(self) -> List[ModuleRecord]:
        snap = self._ensure_loaded()
        return [m for m in self._records(snap, snap.order) if m.state is ModuleState.ENABLED]

    def get_modules_by_context(self, context: str) -> List[ModuleRecord]:
        snap = self._ensure_loaded()
        return self._records(snap, snap.contexts.get(str(context).lower(), []))

    def get_module(self, name: str) -> Optional[ModuleRecord]:
        return self._ensure_loaded().modules.get(name)

    def get_modules_by_wave(self, wave: int) -> List[ModuleRecord]:
        snap = self._ensure_loaded()
        if wave < 0 or wave >= len(snap.waves):
            return []
        return self._records(snap, snap.waves[wave])

    def get_install_order(self) -> List[str]:
        return list(self._ensure_loaded().order)

    def get_dependency_graph(self) -> Dict[str, Any]:
        snap = self._ensure_loaded()
        return {
            "order": list(snap.order),
            "waves": [list(w) for w in snap.waves],
            "adjacency": {k: list(v) for k, v in snap.adjacency.items()},
            "optional_adjacency": {k: list(v) for k, v in snap.optional_adjacency.items()},
            "dependents": {k: list(v) for k, v in snap.dependents.items()},
            "unresolved": list(snap.unresolved),
            "missing": {k: list(v) for k, v in snap.missing.items()},
        }

    def get_service_bindings(self, name: str) -> Dict[str, Any]:
        services = self._ensure_loaded().services.get(name, {})
        return {section: dict(services.get(section) or {}) for section in SERVICE_SECTIONS}

    def get_route_manifest(self, name: str) -> Dict[str, Any]:
        routes = self._ensure_loaded().routes.get(name, {})
        return {
            "routes": routes.get("routes") or [],
            "middleware": dict(routes.get("middleware") or {}),
            "patterns": dict(routes.get("patterns") or {}),
        }

    def get_metadata(self) -> Dict[str, Any]:
        snap = self._ensure_loaded()
        return {
            "checksum": snap.checksum,
            "store_revision": snap.store_revision,
            "built_at": snap.built_at,
            "artifact_path": self.artifact_path,
            "modules_count": len(snap.modules),
            "enabled_count": sum(1 for m in snap.modules.values() if m.state is ModuleState.ENABLED),
            "waves_count": len(snap.waves),
            "unresolved": list(snap.unresolved),
            "missing": {k: list(v) for k, v in snap.missing.items()},
            "failures": [dict(f) for f in snap.failures],
            "removed": list(snap.removed),
        }
