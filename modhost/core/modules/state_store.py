from __future__ import annotations

"""
Durable lifecycle state store (storage/modhost/module_state.json).

Keyed by module name -> {state, installed_at, enabled_at, updated_at, version}.
Every committed change bumps `revision`; the compiled registry folds the
revision into its generation checksum, so any commit invalidates older snapshots.
"""

import logging
import time
from typing import Dict, Optional

from pydantic import ValidationError

from modhost.core.config.io import atomic_write_json, read_json_file, recover_from_corrupt, snapshot_last_known_good
from modhost.core.modules.models import ModuleState, StateEntry, StateStoreFile


def iso_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class ModuleStateStore:
    def __init__(
        self,
        *,
        path: str,
        backups_dir: str,
        last_known_good_path: str,
        max_backups: int = 10,
        logger: Optional[logging.Logger] = None,
    ):
        self.path = str(path)
        self.backups_dir = str(backups_dir)
        self.last_known_good_path = str(last_known_good_path)
        self.max_backups = int(max_backups)
        self.logger = logger or logging.getLogger("modhost.modules.state")

    def load(self) -> StateStoreFile:
        """Read the store from disk (never cached: other processes may have committed)."""
        rr = read_json_file(self.path)
        if not rr.ok and rr.error == "missing":
            return StateStoreFile()
        raw = rr.data if rr.ok else None
        if raw is not None:
            try:
                return StateStoreFile.model_validate(raw)
            except ValidationError as e:
                self.logger.warning("module state store failed validation: %s", str(e)[:200])
        else:
            self.logger.warning("module state store unreadable: %s", rr.error)
        data, recovered = recover_from_corrupt(self.path, self.backups_dir, self.last_known_good_path, max_backups=self.max_backups)
        if recovered:
            self.logger.warning("module state store restored from last-known-good")
            try:
                return StateStoreFile.model_validate(data)
            except ValidationError:
                pass
        self.logger.error("module state store reset to empty (no usable last-known-good)")
        return StateStoreFile()

    def revision(self) -> int:
        rr = read_json_file(self.path)
        if not rr.ok:
            return 0
        try:
            return int(rr.data.get("revision") or 0)
        except (TypeError, ValueError):
            return 0

    def entries(self) -> Dict[str, StateEntry]:
        return dict(self.load().modules)

    def get(self, name: str) -> Optional[StateEntry]:
        return self.load().modules.get(name)

    def get_state(self, name: str) -> Optional[ModuleState]:
        entry = self.get(name)
        return entry.state if entry is not None else None

    # ---- staging (pure) ----
    @staticmethod
    def staged(current: StateStoreFile, name: str, entry: Optional[StateEntry]) -> StateStoreFile:
        """
        Return a new store file with `name` set to `entry` (or deleted when None)
        and the revision bumped. `current` is left untouched.
        """
        modules = {k: v.model_copy() for k, v in current.modules.items()}
        if entry is None:
            modules.pop(name, None)
        else:
            modules[name] = entry
        return StateStoreFile(
            schema_version=current.schema_version,
            revision=int(current.revision) + 1,
            updated_at=iso_now(),
            modules=modules,
        )

    def commit(self, data: StateStoreFile) -> None:
        atomic_write_json(self.path, data.model_dump(mode="json"), self.backups_dir, max_backups=self.max_backups)
        snapshot_last_known_good(self.path, self.last_known_good_path)
