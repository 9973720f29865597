from __future__ import annotations

import pytest

from modhost.core.errors import DependencyCycleError
from modhost.core.modules.models import ModuleState
from modhost.core.modules.resolver import DependencyResolver
from tests.helpers.modules import make_record


def _mods(*records):
    return {r.name: r for r in records}


def test_install_order_respects_every_edge():
    r = DependencyResolver()
    mods = _mods(
        make_record("web", ["users", "billing"]),
        make_record("billing", ["users"]),
        make_record("users"),
        make_record("audit"),
    )
    order = r.get_install_order(mods)
    assert sorted(order) == sorted(mods)
    for name, rec in mods.items():
        for dep in rec.dependency_names:
            assert order.index(dep) < order.index(name)


def test_install_order_lexical_tie_break():
    r = DependencyResolver()
    mods = _mods(make_record("c"), make_record("a"), make_record("b"))
    assert r.get_install_order(mods) == ["a", "b", "c"]


def test_abc_chain_order():
    r = DependencyResolver()
    mods = _mods(make_record("C", ["B"]), make_record("B", ["A"]), make_record("A"))
    assert r.get_install_order(mods) == ["A", "B", "C"]
    assert r.resolve(list(mods.values())) == ["A", "B", "C"]


def test_self_reference_is_a_cycle():
    r = DependencyResolver()
    a = make_record("A", ["A"])
    assert r.has_circular_dependency(a, _mods(a)) is True
    with pytest.raises(DependencyCycleError) as ei:
        r.get_install_order(_mods(a))
    assert ei.value.modules == ["A"]


def test_find_cycle_handles_chains_deeper_than_recursion_limit():
    r = DependencyResolver()
    names = [f"m{i:04d}" for i in range(3000)]
    chain = [make_record(n, [names[i + 1]] if i + 1 < len(names) else []) for i, n in enumerate(names)]
    mods = _mods(*chain)
    assert r.find_cycle(names[0], mods) == []
    assert r.get_install_order(mods)[0] == names[-1]

    mods[names[-1]] = make_record(names[-1], [names[0]])
    cycle = r.find_cycle(names[0], mods)
    assert cycle[0] == cycle[-1] == names[0]
    assert len(cycle) == len(names) + 1


def test_transitive_cycle_detected():
    r = DependencyResolver()
    mods = _mods(make_record("A", ["B"]), make_record("B", ["C"]), make_record("C", ["A"]))
    assert r.has_circular_dependency(mods["A"], mods) is True
    assert r.find_cycle("A", mods) == ["A", "B", "C", "A"]
    with pytest.raises(DependencyCycleError) as ei:
        r.get_install_order(mods)
    assert ei.value.code == "dependency_cycle"
    assert ei.value.modules[0] in {"A", "B", "C"}


def test_same_size_dag_has_no_cycle():
    r = DependencyResolver()
    mods = _mods(make_record("A", ["B"]), make_record("B", ["C"]), make_record("C"))
    assert r.has_circular_dependency(mods["A"], mods) is False
    assert r.get_install_order(mods) == ["C", "B", "A"]


def test_validate_dependencies_and_constraints():
    r = DependencyResolver()
    users = make_record("users", version="1.4.0")
    orders = make_record("orders", ["users>=2.0.0", "billing"])
    assert r.validate_dependencies(orders, _mods(users, orders)) == ["billing"]
    assert r.validate_dependencies(orders, ["users", "billing"]) == []
    assert r.validate_constraints(orders, _mods(users)) == [("users", ">=2.0.0", "1.4.0")]


def test_find_conflicts_either_direction():
    r = DependencyResolver()
    a = make_record("a", conflicts=["b"])
    b = make_record("b")
    c = make_record("c", conflicts=["d"])
    d = make_record("d")
    assert r.find_conflicts(a, _mods(b, c)) == ["b"]
    assert r.find_conflicts(d, _mods(a, c)) == ["c"]
    assert r.find_conflicts(b, _mods(c, d)) == []


def test_can_remove_semantics():
    r = DependencyResolver()
    base = make_record("base", state=ModuleState.ENABLED)
    # only optional dependents: removable
    mods = _mods(base, make_record("x", optional=["base"], state=ModuleState.ENABLED))
    assert r.can_remove("base", mods) is True
    # discovered-only dependent does not block
    mods = _mods(base, make_record("y", ["base"], state=ModuleState.DISCOVERED))
    assert r.can_remove("base", mods) is True
    for state in (ModuleState.INSTALLED, ModuleState.ENABLED, ModuleState.DISABLED):
        mods = _mods(base, make_record("z", ["base"], state=state))
        assert r.can_remove("base", mods) is False
    assert r.can_remove("base", _mods(base)) is True


def test_dependents_and_transitive_dependents():
    r = DependencyResolver()
    mods = _mods(make_record("A"), make_record("B", ["A"]), make_record("C", ["B"]), make_record("D", optional=["A"]))
    assert r.get_dependents("A", mods) == ["B"]
    assert r.get_transitive_dependents("A", mods) == ["B", "C"]


def test_optional_edge_orders_only_when_present_and_active():
    r = DependencyResolver()
    # "a" optionally wants "z"; without the edge lexical order would put a first
    mods = _mods(make_record("a", optional=["z"]), make_record("z", state=ModuleState.ENABLED))
    assert r.get_install_order(mods) == ["z", "a"]

    mods = _mods(make_record("a", optional=["z"]), make_record("z", state=ModuleState.DISABLED))
    assert r.get_install_order(mods) == ["a", "z"]

    mods = _mods(make_record("a", optional=["z"]))
    assert r.get_install_order(mods) == ["a"]


def test_optional_edge_never_creates_cycle():
    r = DependencyResolver()
    mods = _mods(make_record("a", ["b"]), make_record("b", optional=["a"]))
    assert r.get_install_order(mods) == ["b", "a"]


def test_required_cycle_still_raises_with_optional_edges():
    r = DependencyResolver()
    mods = _mods(make_record("a", ["b"]), make_record("b", ["a"]), make_record("c", optional=["a"]))
    with pytest.raises(DependencyCycleError):
        r.get_install_order(mods)


def test_waves_and_layering():
    r = DependencyResolver()
    mods = _mods(
        make_record("A"),
        make_record("B", ["A"]),
        make_record("C", ["B"]),
        make_record("D", ["A"]),
        make_record("E"),
    )
    assert r.compute_waves(mods) == [["A", "E"], ["B", "D"], ["C"]]

    mods = _mods(make_record("ok"), make_record("x", ["y"]), make_record("y", ["x"]), make_record("behind", ["x"]))
    waves, unresolved = r.layered(mods)
    assert waves == [["ok"]]
    assert unresolved == ["behind", "x", "y"]
