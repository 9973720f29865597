from __future__ import annotations

"""
ModuleManager: guarded lifecycle state machine over discovered modules.

WHY THIS FILE EXISTS:
This is the single public API for module lifecycle operations. It ensures:
- transitions only happen from the states that allow them
- dependency contracts are checked against authoritative (on-disk) state
- every committed change is followed by a freshly published compiled registry
- rejections leave persisted state and the registry untouched

Every mutating call runs under the publish lock:
reload state -> validate -> hook -> stage -> compile -> persist -> swap -> publish.
"""

import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from modhost.core.errors import (
    DependencyConflictError,
    DependencyCycleError,
    DependencyInUseError,
    DependencyMissingError,
    DependencyVersionError,
    InvalidTransitionError,
    LifecycleHookError,
    ManifestMalformedError,
    ModhostError,
    UnknownModuleError,
)
from modhost.core.events.models import BaseEvent, EventSeverity, SourceSubsystem
from modhost.core.modules.compiled import CompiledRegistry, RegistryCompiler, RegistrySnapshot
from modhost.core.modules.discovery import DiscoveryReport, ModuleDiscovery
from modhost.core.modules.hooks import LifecycleHooks
from modhost.core.modules.locking import PublishLock
from modhost.core.modules.models import ALLOWED_FROM, INSTALLED_STATES, ModuleRecord, ModuleState, StateEntry, StateStoreFile
from modhost.core.modules.redaction import redact_module_payload
from modhost.core.modules.resolver import DependencyResolver
from modhost.core.modules.state_store import ModuleStateStore, iso_now
from modhost.core.modules.versions import Version, VersionError


@dataclass
class _Plan:
    """A validated transition waiting to be applied."""

    action: str
    record: ModuleRecord
    entry: StateEntry
    payload: Dict[str, Any] = field(default_factory=dict)
    hook: Optional[Callable[[ModuleRecord], None]] = None


class ModuleManager:
    def __init__(
        self,
        *,
        discovery: ModuleDiscovery,
        resolver: DependencyResolver,
        state_store: ModuleStateStore,
        registry: CompiledRegistry,
        lock: PublishLock,
        removed_dir: str,
        artifacts_dir: str,
        archive_removed: bool = True,
        hooks: Optional[LifecycleHooks] = None,
        event_bus: Any = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.discovery = discovery
        self.resolver = resolver
        self.state_store = state_store
        self.registry = registry
        self.lock = lock
        self.removed_dir = str(removed_dir)
        self.artifacts_dir = str(artifacts_dir)
        self.archive_removed = bool(archive_removed)
        self.hooks = hooks or LifecycleHooks()
        self.event_bus = event_bus
        self.logger = logger or logging.getLogger("modhost.modules.manager")

    @property
    def compiler(self) -> RegistryCompiler:
        return self.registry.compiler

    # ---- helpers ----
    def _emit(self, trace_id: str, event_type: str, payload: Dict[str, Any], *, severity: EventSeverity = EventSeverity.INFO) -> None:
        if self.event_bus is None:
            return
        try:
            self.event_bus.publish_nowait(
                BaseEvent(
                    event_type=event_type,
                    trace_id=trace_id,
                    source_subsystem=SourceSubsystem.modules,
                    severity=severity,
                    payload=redact_module_payload(payload),
                )
            )
        except Exception as e:  # noqa: BLE001
            self.logger.warning("failed to publish %s: %s", event_type, e)

    def _require(self, name: str, report: DiscoveryReport) -> ModuleRecord:
        rec = report.modules.get(name) or report.removed.get(name)
        if rec is not None:
            return rec
        for failure in report.failures:
            if failure.name == name:
                raise ManifestMalformedError(name, failure.reason, path=failure.path)
        if name in report.missing_on_disk:
            raise UnknownModuleError(name, "module folder is missing on disk")
        raise UnknownModuleError(name)

    @staticmethod
    def _check_transition(action: str, rec: ModuleRecord) -> None:
        if rec.state not in ALLOWED_FROM[action]:
            allowed = ", ".join(sorted(s.value for s in ALLOWED_FROM[action]))
            raise InvalidTransitionError(
                rec.name,
                action,
                rec.state.value,
                reason=f"cannot {action} from state '{rec.state.value}' (allowed from: {allowed})",
            )

    def _check_requirements(self, rec: ModuleRecord, mods: Dict[str, ModuleRecord], *, need: frozenset) -> None:
        """Cycle, presence, state and version checks for `rec`'s required dependencies."""
        cycle = self.resolver.find_cycle(rec.name, mods)
        if cycle:
            raise DependencyCycleError(rec.name, " -> ".join(cycle), cycle=cycle)
        missing = self.resolver.validate_dependencies(rec, mods)
        if missing:
            raise DependencyMissingError(rec.name, missing)
        not_ready = [d for d in rec.dependency_names if mods[d].state not in need]
        if not_ready:
            wanted = "enabled" if need == frozenset({ModuleState.ENABLED}) else "installed"
            detail = ", ".join(f"{d} ({mods[d].state.value})" for d in not_ready)
            raise DependencyMissingError(rec.name, not_ready, reason=f"dependencies not {wanted}: {detail}")
        mismatches = self.resolver.validate_constraints(rec, mods)
        if mismatches:
            raise DependencyVersionError(rec.name, mismatches)

    # ---- transaction ----
    def _run(self, action: str, name: str, trace_id: str, planner: Callable[[StateStoreFile, DiscoveryReport], _Plan]) -> ModuleRecord:
        try:
            with self.lock.hold(modules=[name]):
                store = self.state_store.load()
                report = self.discovery.discover(store=store)
                plan = planner(store, report)
                self._apply(plan, store)
        except ModhostError as e:
            self.logger.warning("module %s denied for %s: %s", action, name, e.reason)
            self._emit(
                trace_id,
                f"module.{action}_denied",
                {"module": name, "action": action, "reason": e.reason, "error_code": e.code, "modules": e.modules},
                severity=EventSeverity.WARN,
            )
            raise
        except Exception as e:
            self.logger.error("module %s failed for %s: %s", action, name, e)
            self._emit(
                trace_id,
                f"module.{action}_failed",
                {"module": name, "action": action, "reason": f"{type(e).__name__}: {e}"[:300]},
                severity=EventSeverity.ERROR,
            )
            raise
        self.logger.info("module %s: %s -> %s", name, action, plan.record.state.value)
        self._emit(trace_id, f"module.{action}", {"module": name, "action": action, "state": plan.record.state.value, **plan.payload})
        return plan.record

    def _apply(self, plan: _Plan, store: StateStoreFile) -> None:
        name = plan.record.name
        if plan.hook is not None:
            try:
                plan.hook(plan.record)
            except Exception as e:  # noqa: BLE001
                raise LifecycleHookError(name, plan.action, f"{type(e).__name__}: {e}") from e

        staged = self.state_store.staged(store, name, plan.entry)
        removing = plan.entry.state is ModuleState.REMOVED
        archived_to = None
        if removing:
            archived_to = self._archive_module_dir(name, plan.record.path)
        try:
            snapshot = self.compiler.compile(staged)
            self.state_store.commit(staged)
        except Exception:
            if archived_to:
                shutil.move(archived_to, plan.record.path)
            raise

        if removing:
            self._finish_removal(name, archived_to)
            if self.archive_removed and archived_to:
                plan.payload["archived_to"] = archived_to
        plan.payload["store_revision"] = staged.revision
        self._publish(snapshot)

    def _publish(self, snapshot: RegistrySnapshot) -> None:
        try:
            self.registry.publish(snapshot)
        except OSError as e:
            # state is committed and swapped in memory; other readers see a stale checksum and recompile
            self.logger.error("compiled registry artifact write failed: %s", e)

    def _archive_module_dir(self, name: str, path: str) -> Optional[str]:
        if not path or not os.path.isdir(path):
            return None
        os.makedirs(self.removed_dir, exist_ok=True)
        dest = os.path.join(self.removed_dir, f"{name}.{time.strftime('%Y%m%d_%H%M%S', time.gmtime())}.{time.time_ns()}")
        shutil.move(path, dest)
        return dest

    def _finish_removal(self, name: str, archived_to: Optional[str]) -> None:
        if archived_to and not self.archive_removed:
            shutil.rmtree(archived_to, ignore_errors=True)
        shutil.rmtree(os.path.join(self.artifacts_dir, name), ignore_errors=True)

    # ---- lifecycle operations ----
    def install(self, name: str, *, trace_id: str = "modules") -> ModuleRecord:
        def plan(store: StateStoreFile, report: DiscoveryReport) -> _Plan:
            rec = self._require(name, report)
            self._check_transition("install", rec)
            self._check_requirements(rec, report.modules, need=INSTALLED_STATES)
            now = iso_now()
            after = rec.model_copy(update={"state": ModuleState.INSTALLED, "installed_version": rec.version})
            entry = StateEntry(state=ModuleState.INSTALLED, version=rec.version, installed_at=now, enabled_at=None, updated_at=now)
            return _Plan("install", after, entry, {"version": rec.version}, self.hooks.on_install)

        return self._run("install", name, trace_id, plan)

    def enable(self, name: str, *, trace_id: str = "modules") -> ModuleRecord:
        def plan(store: StateStoreFile, report: DiscoveryReport) -> _Plan:
            rec = self._require(name, report)
            self._check_transition("enable", rec)
            self._check_requirements(rec, report.modules, need=frozenset({ModuleState.ENABLED}))
            active = {n: m for n, m in report.modules.items() if m.state is ModuleState.ENABLED}
            conflicts = self.resolver.find_conflicts(rec, active)
            if conflicts:
                raise DependencyConflictError(name, conflicts)
            now = iso_now()
            entry = store.modules[name].model_copy(update={"state": ModuleState.ENABLED, "enabled_at": now, "updated_at": now})
            return _Plan("enable", rec.with_state(ModuleState.ENABLED), entry, {"previous_state": rec.state.value}, self.hooks.on_enable)

        return self._run("enable", name, trace_id, plan)

    def disable(self, name: str, *, trace_id: str = "modules") -> ModuleRecord:
        def plan(store: StateStoreFile, report: DiscoveryReport) -> _Plan:
            rec = self._require(name, report)
            self._check_transition("disable", rec)
            mods = report.modules
            enabled_dependents = [d for d in self.resolver.get_dependents(name, mods) if mods[d].state is ModuleState.ENABLED]
            if enabled_dependents:
                raise DependencyInUseError(name, enabled_dependents, "disable", reason="required by enabled module(s): " + ", ".join(enabled_dependents))
            entry = store.modules[name].model_copy(update={"state": ModuleState.DISABLED, "enabled_at": None, "updated_at": iso_now()})
            return _Plan("disable", rec.with_state(ModuleState.DISABLED), entry, {"previous_state": rec.state.value}, self.hooks.on_disable)

        return self._run("disable", name, trace_id, plan)

    def update(self, name: str, new_version: Optional[str] = None, *, trace_id: str = "modules") -> ModuleRecord:
        """
        Move an installed module to the version its manifest now declares.

        The on-disk manifest is re-read; `new_version`, when given, must match it.
        Enablement is preserved. Any failed check aborts with nothing persisted.
        """

        def plan(store: StateStoreFile, report: DiscoveryReport) -> _Plan:
            rec = self._require(name, report)
            self._check_transition("update", rec)
            manifest, _ = self.discovery.load_manifest(name)
            current = store.modules[name].version
            target = str(new_version or manifest.version).strip()
            try:
                target_v, current_v = Version.parse(target), Version.parse(current)
            except VersionError as e:
                raise InvalidTransitionError(name, "update", rec.state.value, reason=str(e)) from e
            if target_v <= current_v:
                raise InvalidTransitionError(name, "update", rec.state.value, reason=f"version {target} is not newer than installed {current}")
            if target_v != Version.parse(manifest.version):
                raise InvalidTransitionError(
                    name, "update", rec.state.value, reason=f"manifest on disk declares {manifest.version}, not {target}"
                )

            after = rec.model_copy(update={"installed_version": manifest.version})
            mods = {**report.modules, name: after}
            need = frozenset({ModuleState.ENABLED}) if rec.state is ModuleState.ENABLED else INSTALLED_STATES
            self._check_requirements(after, mods, need=need)

            broken = []
            for dep_name in self.resolver.get_dependents(name, mods):
                dependent = mods[dep_name]
                if dependent.state not in INSTALLED_STATES:
                    continue
                for n, constraint, found in self.resolver.validate_constraints(dependent, mods):
                    if n == name:
                        broken.append(f"{dep_name} requires {name} {constraint}")
            if broken:
                blockers = [b.split(" ", 1)[0] for b in broken]
                raise DependencyInUseError(name, blockers, "update", reason="; ".join(broken) + f" (target {target})")

            if rec.state is ModuleState.ENABLED:
                active = {n: m for n, m in mods.items() if m.state is ModuleState.ENABLED and n != name}
                conflicts = self.resolver.find_conflicts(after, active)
                if conflicts:
                    raise DependencyConflictError(name, conflicts, version=manifest.version)

            major_bump = target_v.major > current_v.major
            if major_bump:
                self.logger.warning("module %s major version bump %s -> %s", name, current, target)
            entry = store.modules[name].model_copy(update={"version": manifest.version, "updated_at": iso_now()})
            payload = {"version": manifest.version, "previous_version": current, "major_bump": major_bump}
            return _Plan("update", after, entry, payload, self.hooks.on_update)

        return self._run("update", name, trace_id, plan)

    def remove(self, name: str, *, trace_id: str = "modules") -> ModuleRecord:
        def plan(store: StateStoreFile, report: DiscoveryReport) -> _Plan:
            if name in report.missing_on_disk:
                # folder already gone: only the persisted record is left to purge
                entry = store.modules[name]
                rec = ModuleRecord(name=name, version=entry.version, display_name=name, state=entry.state, installed_version=entry.version)
            else:
                rec = self._require(name, report)
            self._check_transition("remove", rec)
            mods = report.modules
            if not self.resolver.can_remove(name, mods):
                blockers = [d for d in self.resolver.get_dependents(name, mods) if mods[d].state in INSTALLED_STATES]
                detail = ", ".join(f"{d} ({mods[d].state.value})" for d in blockers)
                raise DependencyInUseError(name, blockers, "remove", reason=f"still required by: {detail}")
            # the entry stays as a tombstone: removed is terminal
            entry = store.modules[name].model_copy(update={"state": ModuleState.REMOVED, "enabled_at": None, "updated_at": iso_now()})
            return _Plan("remove", rec.with_state(ModuleState.REMOVED), entry, {"previous_state": rec.state.value}, self.hooks.on_remove)

        return self._run("remove", name, trace_id, plan)

    def rebuild_registry(self, *, trace_id: str = "modules") -> RegistrySnapshot:
        """Recompile from persisted state and publish (boot path when the artifact is missing or stale)."""
        with self.lock.hold():
            snapshot = self.compiler.compile(self.state_store.load())
            self._publish(snapshot)
        self._emit(trace_id, "registry.published", {"store_revision": snapshot.store_revision, "checksum": snapshot.checksum})
        return snapshot

    # ---- reads ----
    def scan(self) -> DiscoveryReport:
        return self.discovery.discover()

    def list_modules(self) -> List[ModuleRecord]:
        report = self.scan()
        return [report.modules[n] for n in sorted(report.modules)]

    def get_info(self, name: str) -> ModuleRecord:
        rec = self.discovery.find_module(name)
        if rec is None:
            raise UnknownModuleError(name)
        return rec

    def get_state(self, name: str) -> ModuleState:
        return self.get_info(name).state

    def is_installed(self, name: str) -> bool:
        rec = self.discovery.find_module(name)
        return rec is not None and rec.state in INSTALLED_STATES

    def is_enabled(self, name: str) -> bool:
        rec = self.discovery.find_module(name)
        return rec is not None and rec.state is ModuleState.ENABLED

    def get_dependencies(self, name: str) -> List[str]:
        return list(self.get_info(name).dependency_names)

    def get_dependents(self, name: str) -> List[str]:
        report = self.scan()
        self._require(name, report)
        return self.resolver.get_dependents(name, report.modules)

    def install_plan(self, name: str) -> List[str]:
        """Install order for `name` plus every required dependency not installed yet."""
        report = self.scan()
        mods = report.modules
        self._require(name, report)
        closure: Dict[str, ModuleRecord] = {}
        stack = [name]
        while stack:
            cur = stack.pop()
            if cur in closure:
                continue
            rec = mods.get(cur)
            if rec is None:
                continue
            missing = self.resolver.validate_dependencies(rec, mods)
            if missing:
                raise DependencyMissingError(cur, missing)
            closure[cur] = rec
            stack.extend(rec.dependency_names)
        order = self.resolver.get_install_order(closure)
        return [n for n in order if closure[n].state not in INSTALLED_STATES]
