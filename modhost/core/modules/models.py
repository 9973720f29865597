from __future__ import annotations

"""
Module contract models (manifest + lifecycle records + persisted state).

WHY THIS FILE EXISTS:
The manifest is the contract-of-record for a module. It is validated against a
fixed schema at load time so that every later decision (ordering, gating,
compilation) works on typed records instead of probing raw dicts.
"""

import re
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from modhost.core.modules.versions import VersionConstraint, VersionError, is_valid_version


_NAME_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]{0,127}")
# name, then an operator-led constraint, "@constraint", or a whitespace-separated bare version
_DEP_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]{0,127}?)(?:\s*([\^~<>=!*].*)|\s*@\s*(.+)|\s+(\d.*))?\s*$")


class ModuleState(str, Enum):
    DISCOVERED = "discovered"
    INSTALLED = "installed"
    ENABLED = "enabled"
    DISABLED = "disabled"
    REMOVED = "removed"

    @property
    def is_installed(self) -> bool:
        return self in INSTALLED_STATES

    @property
    def is_active(self) -> bool:
        return self is ModuleState.ENABLED


INSTALLED_STATES: FrozenSet[ModuleState] = frozenset({ModuleState.INSTALLED, ModuleState.ENABLED, ModuleState.DISABLED})

# action -> states it may start from
ALLOWED_FROM: Dict[str, FrozenSet[ModuleState]] = {
    "install": frozenset({ModuleState.DISCOVERED}),
    "enable": frozenset({ModuleState.INSTALLED, ModuleState.DISABLED}),
    "disable": frozenset({ModuleState.ENABLED}),
    "update": frozenset({ModuleState.INSTALLED, ModuleState.ENABLED}),
    "remove": frozenset({ModuleState.INSTALLED, ModuleState.DISABLED}),
}


def check_module_name(v: Any) -> str:
    v = str(v or "").strip()
    if not v:
        raise ValueError("module name required")
    if not _NAME_RE.fullmatch(v):
        raise ValueError(f"module name contains invalid characters: {v!r}")
    return v


class DependencySpec(BaseModel):
    """
    A required or optional dependency: module name + optional version constraint.

    Accepted manifest forms: "billing", "billing>=1.2.0", "billing ^1.2",
    "billing@~1.4", {"name": "billing", "version": "^1.2"}.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    constraint: str = ""

    @field_validator("name")
    @classmethod
    def _name_ok(cls, v: str) -> str:
        return check_module_name(v)

    @field_validator("constraint")
    @classmethod
    def _constraint_ok(cls, v: str) -> str:
        v = str(v or "").strip()
        try:
            VersionConstraint.parse(v)
        except VersionError as e:
            raise ValueError(str(e)) from e
        return "" if v == "*" else v

    @classmethod
    def coerce(cls, v: Any) -> "DependencySpec":
        if isinstance(v, DependencySpec):
            return v
        if isinstance(v, dict):
            return cls(name=v.get("name"), constraint=str(v.get("version") or v.get("constraint") or ""))
        m = _DEP_RE.match(str(v or ""))
        if not m:
            raise ValueError(f"invalid dependency declaration: {v!r}")
        return cls(name=m.group(1), constraint=(m.group(2) or m.group(3) or m.group(4) or "").strip())

    def __str__(self) -> str:
        return f"{self.name} {self.constraint}".strip()


def _coerce_dep_list(v: Any) -> List[DependencySpec]:
    if v is None:
        return []
    if isinstance(v, (str, dict)):
        v = [v]
    if not isinstance(v, list):
        raise ValueError("dependencies must be a list")
    out: List[DependencySpec] = []
    seen: set[str] = set()
    for item in v:
        spec = DependencySpec.coerce(item)
        if spec.name in seen:
            continue
        seen.add(spec.name)
        out.append(spec)
    return out


def _coerce_str_list(v: Any) -> List[str]:
    if v is None:
        return []
    if isinstance(v, str):
        v = [v]
    if not isinstance(v, list):
        raise ValueError("expected a list of strings")
    out: List[str] = []
    for x in v:
        if not isinstance(x, str):
            raise ValueError("expected a list of strings")
        s = x.strip()
        if s and s not in out:
            out.append(s)
    return out


class ModuleManifest(BaseModel):
    """
    manifest.json schema. `name` and `version` are required; everything else defaults.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    version: str
    display_name: str = Field(default="", max_length=255, validation_alias=AliasChoices("display_name", "displayName"))
    description: str = Field(default="", max_length=1000)
    author: str = Field(default="", max_length=255)
    dependencies: List[DependencySpec] = Field(default_factory=list)
    optional_dependencies: List[DependencySpec] = Field(
        default_factory=list, validation_alias=AliasChoices("optional_dependencies", "optionalDependencies")
    )
    conflicts: List[str] = Field(default_factory=list)
    provides: List[str] = Field(default_factory=list)
    contexts: List[str] = Field(default_factory=list)
    services: Dict[str, Any] = Field(default_factory=dict)
    routes: Dict[str, Any] = Field(default_factory=dict)
    config: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _name_ok(cls, v: str) -> str:
        return check_module_name(v)

    @field_validator("version")
    @classmethod
    def _semver(cls, v: str) -> str:
        v = str(v or "").strip()
        if not is_valid_version(v):
            raise ValueError(f"version must be a semantic version (got {v!r})")
        return v

    @field_validator("dependencies", "optional_dependencies", mode="before")
    @classmethod
    def _deps(cls, v: Any) -> List[DependencySpec]:
        return _coerce_dep_list(v)

    @field_validator("conflicts", "provides", mode="before")
    @classmethod
    def _str_lists(cls, v: Any) -> List[str]:
        return _coerce_str_list(v)

    @field_validator("contexts", mode="before")
    @classmethod
    def _contexts(cls, v: Any) -> List[str]:
        return sorted({c.lower() for c in _coerce_str_list(v)})


class ModuleRecord(BaseModel):
    """
    Typed, immutable view of one module: manifest contract + location + lifecycle state.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    version: str
    display_name: str = ""
    description: str = ""
    author: str = ""
    dependencies: List[DependencySpec] = Field(default_factory=list)
    optional_dependencies: List[DependencySpec] = Field(default_factory=list)
    conflicts: List[str] = Field(default_factory=list)
    provides: List[str] = Field(default_factory=list)
    contexts: List[str] = Field(default_factory=list)
    services: Dict[str, Any] = Field(default_factory=dict)
    routes: Dict[str, Any] = Field(default_factory=dict)
    config: Dict[str, Any] = Field(default_factory=dict)
    path: str = ""
    state: ModuleState = ModuleState.DISCOVERED
    manifest_mtime_ns: int = 0
    # version recorded at install/update time; None until installed
    installed_version: Optional[str] = None

    @classmethod
    def from_manifest(
        cls,
        manifest: ModuleManifest,
        *,
        path: str,
        state: ModuleState,
        manifest_mtime_ns: int = 0,
        installed_version: Optional[str] = None,
    ) -> "ModuleRecord":
        data = manifest.model_dump()
        data["display_name"] = data.get("display_name") or manifest.name
        return cls(**data, path=path, state=state, manifest_mtime_ns=int(manifest_mtime_ns), installed_version=installed_version)

    @property
    def effective_version(self) -> str:
        """Version other modules see: the installed one when installed, else the manifest's."""
        return self.installed_version or self.version

    @property
    def update_pending(self) -> bool:
        return bool(self.installed_version) and self.installed_version != self.version

    @property
    def dependency_names(self) -> List[str]:
        return [d.name for d in self.dependencies]

    @property
    def optional_dependency_names(self) -> List[str]:
        return [d.name for d in self.optional_dependencies]

    def has_dependency(self, name: str) -> bool:
        return any(d.name == name for d in self.dependencies)

    def has_optional_dependency(self, name: str) -> bool:
        return any(d.name == name for d in self.optional_dependencies)

    def conflicts_with(self, name: str) -> bool:
        return name in self.conflicts

    def provides_capability(self, capability: str) -> bool:
        return capability in self.provides

    def is_installed(self) -> bool:
        return self.state.is_installed

    def is_enabled(self) -> bool:
        return self.state is ModuleState.ENABLED

    def with_state(self, state: ModuleState) -> "ModuleRecord":
        return self.model_copy(update={"state": state})


class StateEntry(BaseModel):
    """
    One persisted lifecycle record (state store is the single source of truth across restarts).
    """

    model_config = ConfigDict(extra="forbid")

    state: ModuleState
    version: str
    installed_at: str = ""
    enabled_at: Optional[str] = None
    updated_at: str = ""


class StateStoreFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(default=1, ge=1, le=10)
    revision: int = Field(default=0, ge=0)
    updated_at: str = ""
    modules: Dict[str, StateEntry] = Field(default_factory=dict)
