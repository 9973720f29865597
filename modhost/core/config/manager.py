from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from pydantic import ValidationError

from modhost.core.config.io import atomic_write_json, read_json_file, recover_from_corrupt, snapshot_last_known_good
from modhost.core.config.models import HostConfig
from modhost.core.config.paths import HostFsPaths
from modhost.core.errors import ModhostError, Severity


class ConfigError(ModhostError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class ConfigManager:
    """
    Loads and persists config/modhost.json.

    Missing file -> defaults are written (unless read_only).
    Corrupt file -> moved to backups and restored from last-known-good when available.
    Schema violations are fatal: a host must not run against a config it cannot interpret.
    """

    def __init__(self, *, fs: Optional[HostFsPaths] = None, logger: Optional[logging.Logger] = None, read_only: bool = False):
        self.fs = fs or HostFsPaths(".")
        self.logger = logger or logging.getLogger("modhost.config")
        self.read_only = read_only
        self._cfg: Optional[HostConfig] = None

    @property
    def _lkg_path(self) -> str:
        return os.path.join(self.fs.last_known_good_dir, os.path.basename(self.fs.host_config))

    def load(self) -> HostConfig:
        path = self.fs.host_config
        rr = read_json_file(path)
        raw: Dict[str, Any]
        if rr.ok:
            raw = rr.data
        elif rr.error == "missing":
            raw = HostConfig().model_dump()
            if not self.read_only:
                atomic_write_json(path, raw)
                self.logger.info("wrote default host config to %s", path)
        else:
            self.logger.warning("host config unreadable (%s); attempting recovery", rr.error)
            if self.read_only:
                raise ConfigError("Host config is corrupt.", path=path, error=str(rr.error))
            raw, recovered = recover_from_corrupt(path, self.fs.backups_dir, self._lkg_path)
            if not recovered:
                raw = HostConfig().model_dump()
                atomic_write_json(path, raw)
                self.logger.warning("no last-known-good host config; defaults restored")

        try:
            cfg = HostConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigError("Host config failed validation.", path=path, error=str(e)[:300]) from e

        if not self.read_only:
            snapshot_last_known_good(path, self._lkg_path)
        self._cfg = cfg
        return cfg

    def get(self) -> HostConfig:
        if self._cfg is None:
            return self.load()
        return self._cfg

    def save(self, cfg: HostConfig) -> None:
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        cfg = HostConfig.model_validate(cfg.model_dump())
        atomic_write_json(self.fs.host_config, cfg.model_dump(), self.fs.backups_dir, max_backups=cfg.max_backups)
        self._cfg = cfg

    def host_paths(self) -> HostFsPaths:
        cfg = self.get()
        return HostFsPaths(root=self.fs.root, modules_dir=cfg.modules_dir, storage_dir=cfg.storage_dir)
