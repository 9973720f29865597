from __future__ import annotations

"""
Semantic versions and dependency version constraints.

Versions: MAJOR.MINOR.PATCH[-prerelease][+build]. Build metadata is ignored for
ordering; a pre-release sorts before its release.

Constraints: "*" or "" (any), "1.2.3" / "=1.2.3" / "==1.2.3" (exact),
">", ">=", "<", "<=", "!=", "^1.2" (same left-most non-zero component),
"~1.2" (same major.minor), joined by commas or whitespace (all must hold).
Partial versions inside constraints are zero-filled ("1.2" -> "1.2.0").
"""

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import List, Tuple


_VERSION_RE = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)
_PARTIAL_RE = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:-([0-9A-Za-z.-]+))?$")
_TERM_RE = re.compile(r"^(\^|~|>=|<=|==|!=|>|<|=)?\s*(.+)$")


class VersionError(ValueError):
    pass


@total_ordering
@dataclass(frozen=True)
class Version:
    major: int
    minor: int
    patch: int
    prerelease: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> "Version":
        m = _VERSION_RE.match(str(text or "").strip())
        if not m:
            raise VersionError(f"invalid semantic version: {text!r}")
        pre = tuple(m.group(4).split(".")) if m.group(4) else ()
        return cls(int(m.group(1)), int(m.group(2)), int(m.group(3)), pre)

    @classmethod
    def parse_partial(cls, text: str) -> Tuple["Version", int]:
        """Parse "1", "1.2" or "1.2.3"; returns (zero-filled version, number of given components)."""
        m = _PARTIAL_RE.match(str(text or "").strip())
        if not m:
            raise VersionError(f"invalid version in constraint: {text!r}")
        parts = [m.group(1), m.group(2), m.group(3)]
        given = sum(1 for p in parts if p is not None)
        pre = tuple(m.group(4).split(".")) if m.group(4) else ()
        return cls(int(parts[0]), int(parts[1] or 0), int(parts[2] or 0), pre), given

    @staticmethod
    def _pre_key(pre: Tuple[str, ...]) -> tuple:
        # release (no prerelease) sorts after any prerelease
        if not pre:
            return (1,)
        ids = []
        for ident in pre:
            if ident.isdigit():
                ids.append((0, int(ident), ""))
            else:
                ids.append((1, 0, ident))
        return (0, tuple(ids))

    def _key(self) -> tuple:
        return (self.major, self.minor, self.patch, self._pre_key(self.prerelease))

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        return base + ("-" + ".".join(self.prerelease) if self.prerelease else "")


def is_valid_version(text: str) -> bool:
    try:
        Version.parse(text)
        return True
    except VersionError:
        return False


@dataclass(frozen=True)
class _Term:
    op: str
    version: Version
    given: int

    def allows(self, v: Version) -> bool:
        op, base = self.op, self.version
        if op in {"", "=", "=="}:
            if self.given < 3:
                return _Term("~" if self.given == 2 else "^", base, self.given).allows(v) if self.given else True
            return v == base
        if op == "!=":
            return v != base
        if op == ">":
            return v > base
        if op == ">=":
            return v >= base
        if op == "<":
            return v < base
        if op == "<=":
            return v <= base
        if op == "~":
            upper = Version(base.major + 1, 0, 0) if self.given == 1 else Version(base.major, base.minor + 1, 0)
            return base <= v < upper
        if op == "^":
            if base.major > 0 or self.given == 1:
                upper = Version(base.major + 1, 0, 0)
            elif base.minor > 0 or self.given == 2:
                upper = Version(0, base.minor + 1, 0)
            else:
                upper = Version(0, 0, base.patch + 1)
            return base <= v < upper
        raise VersionError(f"unknown operator {op!r}")


@dataclass(frozen=True)
class VersionConstraint:
    text: str
    terms: Tuple[_Term, ...]

    @classmethod
    def parse(cls, text: str) -> "VersionConstraint":
        raw = str(text or "").strip()
        if raw in {"", "*"}:
            return cls(text=raw or "*", terms=())
        # "<2.0 >=1.2" and ">=1.2, <2.0" are both accepted
        chunks = [c for c in re.split(r"[,\s]+", re.sub(r"(\^|~|>=|<=|==|!=|>|<|=)\s+", r"\1", raw)) if c]
        terms: List[_Term] = []
        for chunk in chunks:
            m = _TERM_RE.match(chunk)
            if not m:
                raise VersionError(f"invalid constraint: {text!r}")
            op = m.group(1) or ""
            if m.group(2) == "*":
                continue
            version, given = Version.parse_partial(m.group(2))
            terms.append(_Term(op=op, version=version, given=given))
        return cls(text=raw, terms=tuple(terms))

    def allows(self, version: "Version | str") -> bool:
        v = version if isinstance(version, Version) else Version.parse(str(version))
        return all(t.allows(v) for t in self.terms)

    def __str__(self) -> str:
        return self.text


def satisfies(version: str, constraint: str) -> bool:
    """True when `version` parses and meets `constraint`; unparsable versions never satisfy a real constraint."""
    c = VersionConstraint.parse(constraint)
    if not c.terms:
        return True
    try:
        return c.allows(version)
    except VersionError:
        return False
