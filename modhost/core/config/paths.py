from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class HostFsPaths:
    """
    Filesystem layout of a module host rooted at `root`.

    `modules_dir`/`storage_dir` are relative to root unless absolute.
    """

    root: str = "."
    modules_dir: str = "modules"
    storage_dir: str = "storage/modhost"

    def _under_root(self, p: str) -> str:
        return p if os.path.isabs(p) else os.path.join(self.root, p)

    @property
    def config_dir(self) -> str:
        return os.path.join(self.root, "config")

    @property
    def backups_dir(self) -> str:
        return os.path.join(self.config_dir, "backups")

    @property
    def last_known_good_dir(self) -> str:
        return os.path.join(self.backups_dir, "last_known_good")

    @property
    def host_config(self) -> str:
        return os.path.join(self.config_dir, "modhost.json")

    # Module tree
    @property
    def modules_root(self) -> str:
        return self._under_root(self.modules_dir)

    # Storage
    @property
    def storage_root(self) -> str:
        return self._under_root(self.storage_dir)

    @property
    def state_store(self) -> str:
        return os.path.join(self.storage_root, "module_state.json")

    @property
    def state_backups_dir(self) -> str:
        return os.path.join(self.storage_root, "backups")

    @property
    def state_last_known_good(self) -> str:
        return os.path.join(self.state_backups_dir, "last_known_good", "module_state.json")

    @property
    def compiled_registry(self) -> str:
        return os.path.join(self.storage_root, "compiled_registry.json")

    @property
    def publish_lock(self) -> str:
        return os.path.join(self.storage_root, "registry.lock")

    @property
    def module_artifacts_dir(self) -> str:
        return os.path.join(self.storage_root, "modules")

    @property
    def removed_modules_dir(self) -> str:
        return os.path.join(self.storage_root, "removed")

    def module_storage(self, name: str) -> str:
        return os.path.join(self.module_artifacts_dir, name)
