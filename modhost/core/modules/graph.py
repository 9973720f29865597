from __future__ import annotations

"""
Text renderings of the compiled dependency graph (Graphviz DOT, Mermaid) and
impact analysis for a single module. Reads a RegistrySnapshot only.
"""

import re
from typing import Any, Dict, List

from modhost.core.errors import UnknownModuleError
from modhost.core.modules.compiled import RegistrySnapshot
from modhost.core.modules.models import ModuleState


_STATE_COLORS = {
    ModuleState.ENABLED: "palegreen",
    ModuleState.INSTALLED: "lightblue",
    ModuleState.DISABLED: "lightgrey",
    ModuleState.DISCOVERED: "white",
}


def _mermaid_id(name: str) -> str:
    return "m_" + re.sub(r"[^A-Za-z0-9_]", "_", name)


def _sorted_names(snapshot: RegistrySnapshot) -> List[str]:
    return list(snapshot.order) + [n for n in snapshot.unresolved if n not in snapshot.order]


def to_dot(snapshot: RegistrySnapshot, *, name: str = "modules") -> str:
    lines = [f'digraph "{name}" {{', "  rankdir=LR;", "  node [shape=box, style=filled];"]
    for mod in _sorted_names(snapshot):
        rec = snapshot.modules[mod]
        color = "salmon" if mod in snapshot.unresolved else _STATE_COLORS.get(rec.state, "white")
        lines.append(f'  "{mod}" [label="{mod}\\n{rec.effective_version}\\n{rec.state.value}", fillcolor={color}];')
    for mod in _sorted_names(snapshot):
        for dep in snapshot.adjacency.get(mod, []):
            lines.append(f'  "{mod}" -> "{dep}";')
        for dep in snapshot.optional_adjacency.get(mod, []):
            lines.append(f'  "{mod}" -> "{dep}" [style=dashed];')
        for dep in snapshot.missing.get(mod, []):
            lines.append(f'  "{dep}" [style=dashed, fillcolor=white, label="{dep}\\n(missing)"];')
            lines.append(f'  "{mod}" -> "{dep}" [color=red];')
    lines.append("}")
    return "\n".join(lines) + "\n"


def to_mermaid(snapshot: RegistrySnapshot) -> str:
    lines = ["graph TD"]
    for mod in _sorted_names(snapshot):
        rec = snapshot.modules[mod]
        lines.append(f'  {_mermaid_id(mod)}["{mod} {rec.effective_version}"]:::{rec.state.value}')
    for mod in _sorted_names(snapshot):
        for dep in snapshot.adjacency.get(mod, []):
            lines.append(f"  {_mermaid_id(mod)} --> {_mermaid_id(dep)}")
        for dep in snapshot.optional_adjacency.get(mod, []):
            lines.append(f"  {_mermaid_id(mod)} -.-> {_mermaid_id(dep)}")
    for state, color in _STATE_COLORS.items():
        lines.append(f"  classDef {state.value} fill:{color}")
    return "\n".join(lines) + "\n"


def dependency_impact(name: str, snapshot: RegistrySnapshot) -> Dict[str, Any]:
    """
    What breaks if `name` goes away: direct and transitive dependents (required
    edges only) and the enabled subset of those.
    """
    if name not in snapshot.modules:
        raise UnknownModuleError(name)
    direct = list(snapshot.dependents.get(name, []))
    seen: List[str] = []
    frontier = list(direct)
    while frontier:
        cur = frontier.pop(0)
        if cur in seen or cur == name:
            continue
        seen.append(cur)
        frontier.extend(snapshot.dependents.get(cur, []))
    transitive = sorted(seen)
    return {
        "module": name,
        "dependencies": list(snapshot.adjacency.get(name, [])),
        "direct_dependents": direct,
        "transitive_dependents": transitive,
        "enabled_dependents": [n for n in transitive if snapshot.modules[n].state is ModuleState.ENABLED],
        "impact_radius": len(transitive),
    }
