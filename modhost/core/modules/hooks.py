from __future__ import annotations

from modhost.core.modules.models import ModuleRecord


class LifecycleHooks:
    """
    Module-specific side effects (migrations, seeding, asset publishing) run by
    the manager inside a transition, before state is persisted.

    Raising from a hook aborts the transition with LifecycleHookError; nothing is
    persisted. Hooks receive the record as it will be after the transition.
    """

    def on_install(self, record: ModuleRecord) -> None:
        return None

    def on_enable(self, record: ModuleRecord) -> None:
        return None

    def on_disable(self, record: ModuleRecord) -> None:
        return None

    def on_update(self, record: ModuleRecord) -> None:
        return None

    def on_remove(self, record: ModuleRecord) -> None:
        return None
