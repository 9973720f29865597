from __future__ import annotations

import pytest
from pydantic import ValidationError

from modhost.core.modules.models import ALLOWED_FROM, DependencySpec, ModuleManifest, ModuleRecord, ModuleState


@pytest.mark.parametrize(
    "raw,name,constraint",
    [
        ("billing", "billing", ""),
        ("billing>=1.2.0", "billing", ">=1.2.0"),
        ("billing ^1.2", "billing", "^1.2"),
        ("billing@~1.4", "billing", "~1.4"),
        ("mod2", "mod2", ""),
        ("mod2 2.0.0", "mod2", "2.0.0"),
        ({"name": "billing", "version": "^1.2"}, "billing", "^1.2"),
    ],
)
def test_dependency_spec_forms(raw, name, constraint):
    spec = DependencySpec.coerce(raw)
    assert spec.name == name
    assert spec.constraint == constraint


def test_dependency_spec_rejects_bad_constraint():
    with pytest.raises(ValidationError):
        DependencySpec.coerce("billing >=nope")


def test_manifest_requires_name_and_semver():
    with pytest.raises(ValidationError):
        ModuleManifest.model_validate({"name": "a"})
    with pytest.raises(ValidationError):
        ModuleManifest.model_validate({"name": "a", "version": "1.0"})
    with pytest.raises(ValidationError):
        ModuleManifest.model_validate({"name": "a b", "version": "1.0.0"})


def test_manifest_rejects_unknown_fields():
    with pytest.raises(ValidationError):
        ModuleManifest.model_validate({"name": "a", "version": "1.0.0", "entrypoint": "x:y"})


def test_manifest_aliases_and_normalization():
    m = ModuleManifest.model_validate(
        {
            "name": "orders",
            "version": "2.1.0",
            "displayName": "Orders",
            "dependencies": ["billing>=1.0.0", "billing", "users"],
            "optionalDependencies": "audit",
            "contexts": ["Web", "api", "web"],
        }
    )
    assert m.display_name == "Orders"
    assert [d.name for d in m.dependencies] == ["billing", "users"]
    assert m.dependencies[0].constraint == ">=1.0.0"
    assert [d.name for d in m.optional_dependencies] == ["audit"]
    assert m.contexts == ["api", "web"]


def test_record_from_manifest_defaults_display_name():
    m = ModuleManifest.model_validate({"name": "users", "version": "1.0.0", "provides": ["auth"], "conflicts": ["legacy"]})
    rec = ModuleRecord.from_manifest(m, path="/x/users", state=ModuleState.INSTALLED, installed_version="1.0.0")
    assert rec.display_name == "users"
    assert rec.provides_capability("auth")
    assert rec.conflicts_with("legacy")
    assert rec.is_installed() and not rec.is_enabled()
    assert rec.update_pending is False
    assert rec.with_state(ModuleState.ENABLED).is_enabled()


def test_transition_table():
    assert ALLOWED_FROM["install"] == {ModuleState.DISCOVERED}
    assert ModuleState.ENABLED not in ALLOWED_FROM["remove"]
    assert ModuleState.REMOVED not in ALLOWED_FROM["enable"]
    for states in ALLOWED_FROM.values():
        assert ModuleState.REMOVED not in states
