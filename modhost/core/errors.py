from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List

from modhost.core.events import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class ModhostError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.user_message)

    def __str__(self) -> str:
        return self.user_message

    @property
    def modules(self) -> List[str]:
        return list(self.context.get("modules") or [])

    @property
    def reason(self) -> str:
        return str(self.context.get("reason") or "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


def _ctx(modules: Iterable[str], reason: str, extra: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {"modules": [str(m) for m in modules], "reason": str(reason)}
    out.update(extra)
    return out


# ---- Module lifecycle taxonomy ----
class UnknownModuleError(ModhostError):
    def __init__(self, module: str, reason: str = "unknown module", **ctx: Any):
        super().__init__(
            "not_found",
            f"Module '{module}' not found: {reason}.",
            severity=Severity.WARN,
            recoverable=False,
            context=_ctx([module], reason, ctx),
        )


class ManifestMalformedError(ModhostError):
    def __init__(self, module: str, reason: str, **ctx: Any):
        super().__init__(
            "malformed",
            f"Manifest for module '{module}' is malformed: {reason}",
            severity=Severity.WARN,
            recoverable=True,
            context=_ctx([module], reason, ctx),
        )


class DependencyMissingError(ModhostError):
    error_code = "dependency_missing"

    def __init__(self, module: str, missing: Iterable[str], reason: str = "", **ctx: Any):
        missing = [str(m) for m in missing]
        reason = reason or ("missing dependencies: " + ", ".join(missing))
        super().__init__(
            self.error_code,
            f"Module '{module}' has unsatisfied dependencies: {reason}.",
            severity=Severity.WARN,
            recoverable=True,
            context=_ctx([module, *missing], reason, {"missing": missing, **ctx}),
        )

    @property
    def missing(self) -> List[str]:
        return list(self.context.get("missing") or [])


class DependencyVersionError(DependencyMissingError):
    """A dependency is present but its version violates the declared constraint."""

    error_code = "dependency_version"

    def __init__(self, module: str, mismatches: Iterable[tuple[str, str, str]], **ctx: Any):
        mismatches = list(mismatches)
        names = [m[0] for m in mismatches]
        reason = "; ".join(f"{n} {c} (found {v})" for n, c, v in mismatches)
        super().__init__(module, names, reason=f"version constraints not met: {reason}", **ctx)


class DependencyCycleError(ModhostError):
    def __init__(self, module: str, reason: str = "", **ctx: Any):
        reason = reason or f"circular dependency involving '{module}'"
        super().__init__(
            "dependency_cycle",
            f"Circular dependency detected: {reason}.",
            severity=Severity.ERROR,
            recoverable=False,
            context=_ctx([module], reason, ctx),
        )


class DependencyConflictError(ModhostError):
    def __init__(self, module: str, conflicts: Iterable[str], **ctx: Any):
        conflicts = [str(c) for c in conflicts]
        reason = "conflicts with active module(s): " + ", ".join(conflicts)
        super().__init__(
            "dependency_conflict",
            f"Module '{module}' {reason}.",
            severity=Severity.WARN,
            recoverable=True,
            context=_ctx([module, *conflicts], reason, {"conflicts": conflicts, **ctx}),
        )


class DependencyInUseError(ModhostError):
    """Other modules still rely on this one (disable/remove blocked, or an update would break them)."""

    def __init__(self, module: str, dependents: Iterable[str], action: str, reason: str = "", **ctx: Any):
        dependents = [str(d) for d in dependents]
        reason = reason or ("required by: " + ", ".join(dependents))
        super().__init__(
            "dependency_in_use",
            f"Cannot {action} module '{module}': {reason}.",
            severity=Severity.WARN,
            recoverable=True,
            context=_ctx([module, *dependents], reason, {"dependents": dependents, "action": action, **ctx}),
        )

    @property
    def dependents(self) -> List[str]:
        return list(self.context.get("dependents") or [])


class InvalidTransitionError(ModhostError):
    def __init__(self, module: str, action: str, state: str, reason: str = "", **ctx: Any):
        reason = reason or f"cannot {action} from state '{state}'"
        super().__init__(
            "invalid_transition",
            f"Cannot {action} module '{module}': {reason}.",
            severity=Severity.WARN,
            recoverable=False,
            context=_ctx([module], reason, {"action": action, "state": state, **ctx}),
        )


class LockTimeoutError(ModhostError):
    def __init__(self, lock_path: str, waited_seconds: float, modules: Iterable[str] = (), **ctx: Any):
        reason = f"publish lock busy after {waited_seconds:.2f}s"
        super().__init__(
            "lock_timeout",
            f"Could not acquire registry publish lock: {reason}.",
            severity=Severity.ERROR,
            recoverable=True,
            context=_ctx(modules, reason, {"lock_path": lock_path, **ctx}),
        )


class LifecycleHookError(ModhostError):
    def __init__(self, module: str, action: str, error: str, **ctx: Any):
        reason = f"{action} hook failed: {error}"[:300]
        super().__init__(
            "hook_failed",
            f"Module '{module}' {reason}.",
            severity=Severity.ERROR,
            recoverable=True,
            context=_ctx([module], reason, {"action": action, **ctx}),
        )
