from __future__ import annotations

"""
Explicit wiring of the module host.

WHY THIS FILE EXISTS:
There is no framework-global registry. Every component is constructed here
from HostConfig and injected into the next, so tests and embedding hosts can
swap any piece (event bus, hooks, logger) without monkeypatching.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from modhost.core.config.io import ensure_dirs
from modhost.core.config.manager import ConfigManager
from modhost.core.config.models import HostConfig
from modhost.core.config.paths import HostFsPaths
from modhost.core.events.bus import EventBus
from modhost.core.logger import get_logger, setup_logging
from modhost.core.modules.compiled import CompiledRegistry, RegistryCompiler, RegistrySnapshot
from modhost.core.modules.discovery import ModuleDiscovery
from modhost.core.modules.hooks import LifecycleHooks
from modhost.core.modules.locking import PublishLock
from modhost.core.modules.manager import ModuleManager
from modhost.core.modules.resolver import DependencyResolver
from modhost.core.modules.state_store import ModuleStateStore


@dataclass
class ModuleHost:
    config: HostConfig
    paths: HostFsPaths
    discovery: ModuleDiscovery
    resolver: DependencyResolver
    state_store: ModuleStateStore
    compiler: RegistryCompiler
    registry: CompiledRegistry
    lock: PublishLock
    manager: ModuleManager
    event_bus: Any
    logger: logging.Logger

    def boot(self) -> RegistrySnapshot:
        """
        Boot path: serve the published artifact when it is current, otherwise
        recompile and publish it under the writer lock.
        """
        snap = self.registry.load()
        if snap is not None and snap.checksum == self.registry.current_checksum():
            self.logger.info("compiled registry loaded (%d modules)", len(snap.modules))
            return snap
        self.logger.info("compiled registry %s; rebuilding", "stale" if snap is not None else "missing")
        return self.manager.rebuild_registry(trace_id="boot")


def build_module_host(
    root: str = ".",
    *,
    config: Optional[HostConfig] = None,
    hooks: Optional[LifecycleHooks] = None,
    event_bus: Any = None,
    logger: Optional[logging.Logger] = None,
    configure_logging: bool = False,
) -> ModuleHost:
    """
    Build a ModuleHost rooted at `root`.

    `config` bypasses config/modhost.json (nothing is written); otherwise the file
    is loaded, or created with defaults.
    """
    if config is None:
        config = ConfigManager(fs=HostFsPaths(root=root), logger=get_logger("config")).load()
    paths = HostFsPaths(root=root, modules_dir=config.modules_dir, storage_dir=config.storage_dir)
    if configure_logging:
        setup_logging(os.path.join(root, config.log_dir))
    log = logger or get_logger("")
    ensure_dirs(paths.modules_root, paths.storage_root)

    bus = event_bus if event_bus is not None else EventBus(logger=get_logger("events"))
    state_store = ModuleStateStore(
        path=paths.state_store,
        backups_dir=paths.state_backups_dir,
        last_known_good_path=paths.state_last_known_good,
        max_backups=config.max_backups,
        logger=get_logger("modules.state"),
    )
    discovery = ModuleDiscovery(
        modules_root=paths.modules_root,
        manifest_filename=config.manifest_filename,
        state_store=state_store,
        logger=get_logger("modules.discovery"),
    )
    resolver = DependencyResolver(logger=get_logger("modules.resolver"))
    compiler = RegistryCompiler(
        discovery=discovery,
        resolver=resolver,
        state_store=state_store,
        default_contexts=config.default_contexts,
        logger=get_logger("modules.compiler"),
    )
    registry = CompiledRegistry(artifact_path=paths.compiled_registry, compiler=compiler, logger=get_logger("modules.registry"))
    lock = PublishLock(
        lock_path=paths.publish_lock,
        timeout_seconds=config.lock_timeout_seconds,
        poll_interval_seconds=config.lock_poll_interval_seconds,
        stale_seconds=config.lock_stale_seconds,
        logger=get_logger("modules.lock"),
    )
    manager = ModuleManager(
        discovery=discovery,
        resolver=resolver,
        state_store=state_store,
        registry=registry,
        lock=lock,
        removed_dir=paths.removed_modules_dir,
        artifacts_dir=paths.module_artifacts_dir,
        archive_removed=config.archive_removed_modules,
        hooks=hooks,
        event_bus=bus,
        logger=get_logger("modules.manager"),
    )
    return ModuleHost(
        config=config,
        paths=paths,
        discovery=discovery,
        resolver=resolver,
        state_store=state_store,
        compiler=compiler,
        registry=registry,
        lock=lock,
        manager=manager,
        event_bus=bus,
        logger=log,
    )
