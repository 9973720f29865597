from __future__ import annotations

"""
Module discovery (no-import scanning).

WHY THIS FILE EXISTS:
The host must detect modules on disk without importing or executing their code.
Discovery reads only manifest text and filesystem metadata, validates each
manifest against the fixed schema, and overlays persisted lifecycle state.
One bad manifest never prevents the others from loading.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from modhost.core.errors import ManifestMalformedError
from modhost.core.modules.import_guard import ManifestScanImportGuard
from modhost.core.modules.models import ModuleManifest, ModuleRecord, ModuleState, StateStoreFile
from modhost.core.modules.state_store import ModuleStateStore


@dataclass(frozen=True)
class DiscoveryFailure:
    name: str
    path: str
    reason: str


@dataclass
class DiscoveryReport:
    modules: Dict[str, ModuleRecord] = field(default_factory=dict)
    failures: List[DiscoveryFailure] = field(default_factory=list)
    # persisted in the state store but no folder on disk
    missing_on_disk: List[str] = field(default_factory=list)
    # tombstones: removed modules, never part of `modules`
    removed: Dict[str, ModuleRecord] = field(default_factory=dict)

    @property
    def loaded(self) -> int:
        return len(self.modules)

    @property
    def total(self) -> int:
        return len(self.modules) + len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        return f"{self.loaded} of {self.total} modules loaded successfully"


def _validation_reason(e: ValidationError) -> str:
    parts = []
    for err in e.errors()[:5]:
        loc = ".".join(str(x) for x in err.get("loc", ()) if x != "__root__") or "manifest"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


class ModuleDiscovery:
    def __init__(
        self,
        *,
        modules_root: str,
        manifest_filename: str = "manifest.json",
        state_store: Optional[ModuleStateStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.modules_root = str(modules_root)
        self.manifest_filename = str(manifest_filename)
        self.state_store = state_store
        self.logger = logger or logging.getLogger("modhost.modules.discovery")

    def module_dir(self, name: str) -> str:
        return os.path.join(self.modules_root, name)

    def manifest_path(self, name: str) -> str:
        return os.path.join(self.module_dir(name), self.manifest_filename)

    def _candidate_dirs(self) -> List[str]:
        if not os.path.isdir(self.modules_root):
            return []
        out: List[str] = []
        for name in sorted(os.listdir(self.modules_root)):
            if name.startswith(".") or name.startswith("_"):
                continue
            if os.path.isdir(os.path.join(self.modules_root, name)):
                out.append(name)
        return out

    def load_manifest(self, name: str) -> Tuple[ModuleManifest, int]:
        """
        Strict load of one module's manifest.

        Returns (manifest, manifest_mtime_ns). Raises ManifestMalformedError on a
        missing/unparsable/invalid manifest or when the declared name differs from the folder.
        """
        path = self.manifest_path(name)
        if not os.path.isfile(path):
            raise ManifestMalformedError(name, f"{self.manifest_filename} missing", path=path)
        try:
            with open(path, "rb") as f:
                raw = json.loads(f.read().decode("utf-8"))
            mtime_ns = os.stat(path).st_mtime_ns
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ManifestMalformedError(name, f"unreadable manifest: {e}", path=path) from e
        if not isinstance(raw, dict):
            raise ManifestMalformedError(name, "manifest is not an object", path=path)
        try:
            manifest = ModuleManifest.model_validate(raw)
        except ValidationError as e:
            raise ManifestMalformedError(name, _validation_reason(e), path=path) from e
        if manifest.name != name:
            raise ManifestMalformedError(name, f"manifest name '{manifest.name}' does not match folder name", path=path)
        return manifest, int(mtime_ns)

    def _record(self, name: str, store: StateStoreFile) -> ModuleRecord:
        manifest, mtime_ns = self.load_manifest(name)
        entry = store.modules.get(name)
        state = entry.state if entry is not None else ModuleState.DISCOVERED
        return ModuleRecord.from_manifest(
            manifest,
            path=self.module_dir(name),
            state=state,
            manifest_mtime_ns=mtime_ns,
            installed_version=entry.version if entry is not None else None,
        )

    def _tombstone(self, name: str, store: StateStoreFile) -> ModuleRecord:
        entry = store.modules[name]
        return ModuleRecord(
            name=name,
            version=entry.version,
            display_name=name,
            path=self.module_dir(name),
            state=ModuleState.REMOVED,
            installed_version=entry.version,
        )

    def _load_store(self) -> StateStoreFile:
        return self.state_store.load() if self.state_store is not None else StateStoreFile()

    def discover(self, *, store: Optional[StateStoreFile] = None) -> DiscoveryReport:
        """
        Scan the modules root. `store` overrides the persisted state (used when
        compiling from staged, not yet committed, state).
        """
        store = store if store is not None else self._load_store()
        report = DiscoveryReport()
        for name, entry in store.modules.items():
            if entry.state is ModuleState.REMOVED:
                report.removed[name] = self._tombstone(name, store)
        with ManifestScanImportGuard(modules_root=self.modules_root):
            for name in self._candidate_dirs():
                if name in report.removed:
                    continue
                try:
                    report.modules[name] = self._record(name, store)
                except ManifestMalformedError as e:
                    report.failures.append(DiscoveryFailure(name=name, path=self.module_dir(name), reason=e.reason))
                    self.logger.warning("skipping module %s: %s", name, e.reason)
        on_disk = set(self._candidate_dirs())
        report.missing_on_disk = sorted(n for n in store.modules if n not in on_disk and n not in report.removed)
        for name in report.missing_on_disk:
            self.logger.warning("module %s has persisted state but no folder on disk", name)
        self.logger.info(report.summary())
        return report

    def find_module(self, name: str, *, store: Optional[StateStoreFile] = None) -> Optional[ModuleRecord]:
        if not name or name.startswith(".") or name.startswith("_") or os.sep in name or (os.altsep and os.altsep in name):
            return None
        store = store if store is not None else self._load_store()
        entry = store.modules.get(name)
        if entry is not None and entry.state is ModuleState.REMOVED:
            return self._tombstone(name, store)
        if not os.path.isdir(self.module_dir(name)):
            return None
        try:
            with ManifestScanImportGuard(modules_root=self.modules_root):
                return self._record(name, store)
        except ManifestMalformedError as e:
            self.logger.warning("module %s has a malformed manifest: %s", name, e.reason)
            return None
