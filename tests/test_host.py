from __future__ import annotations

import json
import os

from modhost.core.host import build_module_host
from modhost.core.modules.models import ModuleState
from tests.helpers.modules import EventBusCapture, write_manifest


def test_build_writes_default_config(tmp_path):
    host = build_module_host(str(tmp_path), event_bus=EventBusCapture())
    cfg_path = os.path.join(str(tmp_path), "config", "modhost.json")
    with open(cfg_path, encoding="utf-8") as f:
        raw = json.load(f)
    assert raw["modules_dir"] == "modules"
    assert os.path.isdir(host.paths.modules_root)
    assert os.path.isdir(host.paths.storage_root)


def test_boot_publishes_once_then_loads(tmp_path):
    bus = EventBusCapture()
    host = build_module_host(str(tmp_path), event_bus=bus)
    write_manifest(host.paths.modules_root, "A")
    first = host.boot()
    assert os.path.exists(host.paths.compiled_registry)
    assert bus.types() == ["registry.published"]

    second = host.boot()
    assert second.checksum == first.checksum
    assert bus.types() == ["registry.published"]

    other_bus = EventBusCapture()
    other = build_module_host(str(tmp_path), event_bus=other_bus)
    assert other.boot().checksum == first.checksum
    assert other_bus.types() == []


def test_hosts_share_state_through_disk(tmp_path):
    writer = build_module_host(str(tmp_path), event_bus=EventBusCapture())
    write_manifest(writer.paths.modules_root, "A")
    writer.boot()
    reader = build_module_host(str(tmp_path), event_bus=EventBusCapture())
    reader.boot()

    writer.manager.install("A")
    writer.manager.enable("A")
    assert reader.registry.get_module("A").state is ModuleState.DISCOVERED
    assert reader.registry.ensure_fresh().modules["A"].state is ModuleState.ENABLED
    assert reader.manager.is_enabled("A")
