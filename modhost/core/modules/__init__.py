"""
Module lifecycle infrastructure: discovery, dependency resolution, guarded
state transitions and the compiled registry read on every boot.

WHY THIS PACKAGE EXISTS:
The host must be able to find modules on disk without importing their code,
decide safely when they may be installed, enabled, disabled, updated or
removed, and hand boot paths a precomputed topology instead of re-resolving it.
"""

from modhost.core.modules.compiled import CompiledRegistry, RegistryCompiler, RegistrySnapshot
from modhost.core.modules.discovery import DiscoveryFailure, DiscoveryReport, ModuleDiscovery
from modhost.core.modules.hooks import LifecycleHooks
from modhost.core.modules.locking import PublishLock
from modhost.core.modules.manager import ModuleManager
from modhost.core.modules.models import DependencySpec, ModuleManifest, ModuleRecord, ModuleState
from modhost.core.modules.resolver import DependencyResolver
from modhost.core.modules.state_store import ModuleStateStore

__all__ = [
    "CompiledRegistry",
    "DependencyResolver",
    "DependencySpec",
    "DiscoveryFailure",
    "DiscoveryReport",
    "LifecycleHooks",
    "ModuleDiscovery",
    "ModuleManager",
    "ModuleManifest",
    "ModuleRecord",
    "ModuleState",
    "ModuleStateStore",
    "PublishLock",
    "RegistryCompiler",
    "RegistrySnapshot",
]
