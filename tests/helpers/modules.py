from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

from modhost.core.config.models import HostConfig
from modhost.core.host import ModuleHost, build_module_host
from modhost.core.modules.hooks import LifecycleHooks
from modhost.core.modules.models import DependencySpec, ModuleRecord, ModuleState


class DummyLogger:
    def debug(self, *_a, **_k): ...
    def info(self, *_a, **_k): ...
    def warning(self, *_a, **_k): ...
    def error(self, *_a, **_k): ...


class EventBusCapture:
    def __init__(self) -> None:
        self.events: list[object] = []

    def publish_nowait(self, ev) -> None:  # noqa: ANN001
        self.events.append(ev)

    def types(self) -> List[str]:
        return [e.event_type for e in self.events]


class RecordingHooks(LifecycleHooks):
    def __init__(self, fail_on: Optional[str] = None) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail_on = fail_on

    def _hit(self, action: str, record: ModuleRecord) -> None:
        self.calls.append((action, record.name))
        if self.fail_on == action:
            raise RuntimeError(f"{action} exploded")

    def on_install(self, record: ModuleRecord) -> None:
        self._hit("install", record)

    def on_enable(self, record: ModuleRecord) -> None:
        self._hit("enable", record)

    def on_disable(self, record: ModuleRecord) -> None:
        self._hit("disable", record)

    def on_update(self, record: ModuleRecord) -> None:
        self._hit("update", record)

    def on_remove(self, record: ModuleRecord) -> None:
        self._hit("remove", record)


def write_manifest(modules_root: str, name: str, version: str = "1.0.0", /, **fields: Any) -> str:
    mod_dir = os.path.join(str(modules_root), name)
    os.makedirs(mod_dir, exist_ok=True)
    obj: Dict[str, Any] = {"name": name, "version": version}
    obj.update(fields)
    path = os.path.join(mod_dir, "manifest.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
        f.write("\n")
    return mod_dir


def write_raw_manifest(modules_root: str, name: str, text: str) -> str:
    mod_dir = os.path.join(str(modules_root), name)
    os.makedirs(mod_dir, exist_ok=True)
    with open(os.path.join(mod_dir, "manifest.json"), "w", encoding="utf-8") as f:
        f.write(text)
    return mod_dir


def make_record(
    name: str,
    deps: Optional[List[str]] = None,
    *,
    optional: Optional[List[str]] = None,
    conflicts: Optional[List[str]] = None,
    state: ModuleState = ModuleState.DISCOVERED,
    version: str = "1.0.0",
) -> ModuleRecord:
    return ModuleRecord(
        name=name,
        version=version,
        display_name=name,
        dependencies=[DependencySpec.coerce(d) for d in (deps or [])],
        optional_dependencies=[DependencySpec.coerce(d) for d in (optional or [])],
        conflicts=list(conflicts or []),
        state=state,
    )


def make_host(tmp_path, *, hooks: Optional[LifecycleHooks] = None, **cfg: Any) -> ModuleHost:
    cfg.setdefault("lock_timeout_seconds", 2.0)
    config = HostConfig(**cfg)
    return build_module_host(str(tmp_path), config=config, hooks=hooks, event_bus=EventBusCapture(), logger=DummyLogger())
