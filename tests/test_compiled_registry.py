from __future__ import annotations

import os

from modhost.core.modules.compiled import CompiledRegistry, RegistryCompiler
from modhost.core.modules.models import ModuleState
from tests.helpers.modules import DummyLogger, write_manifest, write_raw_manifest


def _abc(modules_root):
    write_manifest(modules_root, "A", contexts=["api"])
    write_manifest(modules_root, "B", dependencies=["A"], services={"bindings": {"PaymentGateway": "StripeGateway"}})
    write_manifest(
        modules_root,
        "C",
        dependencies=["B"],
        contexts=["cli"],
        routes={"routes": [{"path": "/c", "method": "GET"}], "middleware": {"auth": "token"}},
    )


def _touch_forward(path: str) -> None:
    st = os.stat(path)
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 5_000_000_000))


def test_boot_compiles_and_publishes(host, modules_root):
    _abc(modules_root)
    snap = host.boot()

    assert os.path.exists(host.paths.compiled_registry)
    assert snap.order == ["A", "B", "C"]
    assert snap.waves == [["A"], ["B"], ["C"]]
    assert host.registry.is_valid()
    assert [m.name for m in host.registry.get_all_modules()] == ["A", "B", "C"]
    assert host.registry.get_enabled_modules() == []
    assert host.registry.get_module("B").dependency_names == ["A"]
    assert host.registry.get_module("nope") is None
    assert [m.name for m in host.registry.get_modules_by_wave(1)] == ["B"]
    assert host.registry.get_modules_by_wave(9) == []
    assert host.registry.get_install_order() == ["A", "B", "C"]


def test_contexts_expand_with_dependencies(host, modules_root):
    _abc(modules_root)
    host.boot()
    by_ctx = lambda tag: [m.name for m in host.registry.get_modules_by_context(tag)]  # noqa: E731
    assert by_ctx("api") == ["A", "B"]
    assert by_ctx("web") == ["A", "B"]
    assert by_ctx("CLI") == ["A", "B", "C"]
    assert by_ctx("unknown") == []


def test_service_and_route_manifests(host, modules_root):
    _abc(modules_root)
    host.boot()
    assert host.registry.get_service_bindings("B") == {
        "bindings": {"PaymentGateway": "StripeGateway"},
        "singletons": {},
        "aliases": {},
    }
    assert host.registry.get_service_bindings("A") == {"bindings": {}, "singletons": {}, "aliases": {}}
    routes = host.registry.get_route_manifest("C")
    assert routes["routes"] == [{"path": "/c", "method": "GET"}]
    assert routes["middleware"] == {"auth": "token"}
    assert routes["patterns"] == {}


def test_dependency_graph_and_metadata(host, modules_root):
    _abc(modules_root)
    host.boot()
    graph = host.registry.get_dependency_graph()
    assert graph["adjacency"] == {"A": [], "B": ["A"], "C": ["B"]}
    assert graph["dependents"] == {"A": ["B"], "B": ["C"], "C": []}
    meta = host.registry.get_metadata()
    assert meta["modules_count"] == 3
    assert meta["enabled_count"] == 0
    assert meta["waves_count"] == 3
    assert meta["store_revision"] == 0


def test_refresh_is_idempotent(host, modules_root):
    _abc(modules_root)
    first = host.registry.refresh()
    second = host.registry.refresh()
    assert first is not second
    assert first.checksum == second.checksum
    assert first.order == second.order
    assert first.waves == second.waves
    assert first.modules == second.modules
    assert first.contexts == second.contexts


def test_manifest_change_invalidates(host, modules_root):
    _abc(modules_root)
    host.boot()
    write_manifest(modules_root, "A", "1.1.0", contexts=["api"])
    _touch_forward(os.path.join(modules_root, "A", "manifest.json"))
    assert host.registry.is_valid() is False
    fresh = host.registry.ensure_fresh()
    assert fresh.modules["A"].version == "1.1.0"
    assert host.registry.is_valid() is True


def test_new_module_folder_invalidates(host, modules_root):
    _abc(modules_root)
    host.boot()
    write_manifest(modules_root, "D")
    assert host.registry.is_valid() is False


def test_other_reader_sees_writer_publication(host, modules_root):
    _abc(modules_root)
    host.boot()
    reader = CompiledRegistry(artifact_path=host.paths.compiled_registry, compiler=host.compiler, logger=DummyLogger())
    assert reader.get_module("A").state is ModuleState.DISCOVERED

    host.manager.install("A")

    # reads stay on the loaded snapshot until the reader re-checks
    assert reader.get_module("A").state is ModuleState.DISCOVERED
    assert reader.is_valid() is False
    assert reader.ensure_fresh().modules["A"].state is ModuleState.INSTALLED
    assert reader.is_valid() is True


def test_cycles_missing_and_malformed_do_not_break_boot(host, modules_root):
    write_manifest(modules_root, "ok")
    write_manifest(modules_root, "x", dependencies=["y"])
    write_manifest(modules_root, "y", dependencies=["x"])
    write_manifest(modules_root, "z", dependencies=["ghost"])
    write_raw_manifest(modules_root, "broken", "{")

    snap = host.boot()
    assert snap.unresolved == ["x", "y"]
    assert snap.order == ["ok", "z"]
    assert snap.missing == {"z": ["ghost"]}
    assert [f["name"] for f in snap.failures] == ["broken"]
    assert [m.name for m in host.registry.get_all_modules()] == ["ok", "z", "x", "y"]


def test_corrupt_artifact_recompiled_in_memory(host, modules_root):
    _abc(modules_root)
    host.boot()
    with open(host.paths.compiled_registry, "w", encoding="utf-8") as f:
        f.write("not json")
    reader = CompiledRegistry(artifact_path=host.paths.compiled_registry, compiler=host.compiler, logger=DummyLogger())
    assert reader.get_install_order() == ["A", "B", "C"]
    # readers never publish
    with open(host.paths.compiled_registry, "r", encoding="utf-8") as f:
        assert f.read() == "not json"


def test_default_contexts_are_case_insensitive(host, modules_root):
    write_manifest(modules_root, "A")
    compiler = RegistryCompiler(
        discovery=host.discovery,
        resolver=host.resolver,
        state_store=host.state_store,
        default_contexts=["API", " Web "],
        logger=DummyLogger(),
    )
    assert compiler.default_contexts == ["api", "web"]
    registry = CompiledRegistry(artifact_path=host.paths.compiled_registry, compiler=compiler, logger=DummyLogger())
    assert [m.name for m in registry.get_modules_by_context("API")] == ["A"]
    assert [m.name for m in registry.get_modules_by_context("web")] == ["A"]
