"""Semantic versions and version-range constraints.

Versions follow semver 2.0.0 precedence (major.minor.patch, then pre-release
identifiers; build metadata is ignored). Parsing is lenient the way most
tooling is: a leading ``v`` and missing minor/patch components are accepted,
so ``v1.2`` parses as ``1.2.0``.

Constraint syntax::

    1.2.3  =1.2.3  !=1.2.3  >1.2  >=1.2.3  <2  <=1.4
    ~1.2.3   >=1.2.3 <1.3.0
    ^1.2.3   >=1.2.3 <2.0.0   (^0.2.3 -> <0.3.0, ^0.0.3 -> <0.0.4)
    1.2.x  1.*  *            wildcards
    1.2 - 1.4.5              inclusive hyphen range
    >=1.0, <2.0              AND (comma or whitespace)
    ^1.0 || ^2.0             OR

A pre-release version only satisfies a comparator whose own version carries a
pre-release, so ``>=1.0.0`` does not match ``1.1.0-beta``.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass, field

_VERSION_RE = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)"
    r"(?:\.(?P<minor>0|[1-9]\d*))?"
    r"(?:\.(?P<patch>0|[1-9]\d*))?"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

_WILDCARDS = ("x", "X", "*")


class InvalidVersion(ValueError):
    pass


class InvalidConstraint(ValueError):
    pass


def _pre_key(pre: tuple[str, ...]) -> tuple:
    if not pre:
        return (1,)
    ids = tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in pre)
    return (0, ids)


@functools.total_ordering
@dataclass(frozen=True)
class Version:
    major: int
    minor: int = 0
    patch: int = 0
    prerelease: tuple[str, ...] = ()
    build: str = ""
    original: str = field(default="", compare=False)

    @classmethod
    def parse(cls, text: str) -> Version:
        if not isinstance(text, str):
            raise InvalidVersion(f"invalid semantic version: {text!r}")
        m = _VERSION_RE.match(text.strip())
        if not m:
            raise InvalidVersion(f"invalid semantic version: {text!r}")
        pre = tuple(m.group("pre").split(".")) if m.group("pre") else ()
        for ident in pre:
            if ident.isdigit() and len(ident) > 1 and ident.startswith("0"):
                raise InvalidVersion(f"invalid semantic version: {text!r} (leading zero)")
        return cls(
            major=int(m.group("major")),
            minor=int(m.group("minor") or 0),
            patch=int(m.group("patch") or 0),
            prerelease=pre,
            build=m.group("build") or "",
            original=text,
        )

    @property
    def _key(self) -> tuple:
        return (self.major, self.minor, self.patch, _pre_key(self.prerelease))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key == other._key

    def __lt__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key < other._key

    def __hash__(self) -> int:
        return hash(self._key)

    def __str__(self) -> str:
        s = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            s += "-" + ".".join(self.prerelease)
        if self.build:
            s += "+" + self.build
        return s


def parse_version(text: str) -> Version:
    return Version.parse(text)


def is_valid_version(text: str) -> bool:
    try:
        Version.parse(text)
    except InvalidVersion:
        return False
    return True


def coerce(value: Version | str) -> Version:
    return value if isinstance(value, Version) else Version.parse(value)


# ── Constraints ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class _Range:
    """One comparator, expressed as an interval (optionally negated)."""

    lower: Version | None = None
    lower_inclusive: bool = True
    upper: Version | None = None
    upper_inclusive: bool = False
    negate: bool = False
    allows_prerelease: bool = False

    def check(self, v: Version) -> bool:
        if v.prerelease and not self.allows_prerelease:
            return False
        inside = True
        if self.lower is not None:
            inside = v >= self.lower if self.lower_inclusive else v > self.lower
        if inside and self.upper is not None:
            inside = v <= self.upper if self.upper_inclusive else v < self.upper
        return not inside if self.negate else inside


_OPS = ("!=", ">=", "=>", "<=", "=<", "~>", ">", "<", "=", "~", "^")


def _split_partial(text: str) -> tuple[list[int | None], tuple[str, ...], bool]:
    """Parse a possibly partial/wildcard version.

    Returns ``(parts, prerelease, explicit)`` where ``parts`` has three
    entries, ``None`` marking a missing or wildcard component.
    """
    raw = text.strip()
    if raw.startswith("v"):
        raw = raw[1:]
    raw = raw.split("+", 1)[0]
    pre: tuple[str, ...] = ()
    if "-" in raw:
        raw, pre_s = raw.split("-", 1)
        if not pre_s:
            raise InvalidConstraint(f"invalid version in constraint: {text!r}")
        pre = tuple(pre_s.split("."))
    pieces = raw.split(".")
    if not raw or len(pieces) > 3:
        raise InvalidConstraint(f"invalid version in constraint: {text!r}")
    parts: list[int | None] = []
    wild = False
    for piece in pieces:
        if piece in _WILDCARDS or wild:
            if piece not in _WILDCARDS:
                raise InvalidConstraint(f"invalid version in constraint: {text!r}")
            wild = True
            parts.append(None)
        elif piece.isdigit():
            parts.append(int(piece))
        else:
            raise InvalidConstraint(f"invalid version in constraint: {text!r}")
    while len(parts) < 3:
        parts.append(None)
    explicit = all(p is not None for p in parts)
    if pre and not explicit:
        raise InvalidConstraint(f"pre-release requires a full version: {text!r}")
    return parts, pre, explicit


def _floor(parts: list[int | None], pre: tuple[str, ...] = ()) -> Version:
    return Version(parts[0] or 0, parts[1] or 0, parts[2] or 0, pre)


def _next_after(parts: list[int | None]) -> Version | None:
    """Smallest version above every version the partial version covers."""
    major, minor, patch = parts
    if major is None:
        return None
    if minor is None:
        return Version(major + 1)
    if patch is None:
        return Version(major, minor + 1)
    return Version(major, minor, patch + 1)


def _comparator(op: str, ver: str) -> _Range:
    parts, pre, explicit = _split_partial(ver)
    allow_pre = bool(pre)
    floor = _floor(parts, pre)
    if parts[0] is None:
        # "*" matches everything (no pre-releases), whatever the operator.
        return _Range() if op not in ("!=", "<", ">") else _Range(negate=True)
    ceiling = _next_after(parts)

    if op in ("", "="):
        if explicit:
            return _Range(floor, True, floor, True, allows_prerelease=allow_pre)
        return _Range(floor, True, ceiling, False)
    if op == "!=":
        if explicit:
            return _Range(floor, True, floor, True, negate=True, allows_prerelease=allow_pre)
        return _Range(floor, True, ceiling, False, negate=True)
    if op == ">":
        if explicit:
            return _Range(floor, False, allows_prerelease=allow_pre)
        return _Range(ceiling, True)
    if op in (">=", "=>"):
        return _Range(floor, True, allows_prerelease=allow_pre)
    if op == "<":
        return _Range(upper=floor, upper_inclusive=False, allows_prerelease=allow_pre)
    if op in ("<=", "=<"):
        if explicit:
            return _Range(upper=floor, upper_inclusive=True, allows_prerelease=allow_pre)
        return _Range(upper=ceiling, upper_inclusive=False)
    if op in ("~", "~>"):
        major, minor, _ = parts
        upper = Version(major + 1) if minor is None else Version(major, minor + 1)
        return _Range(floor, True, upper, False, allows_prerelease=allow_pre)
    if op == "^":
        major, minor, patch = parts
        if major > 0:
            upper = Version(major + 1)
        elif minor is None:
            upper = Version(1)
        elif minor > 0:
            upper = Version(0, minor + 1)
        elif patch is None:
            upper = Version(0, 1)
        else:
            upper = Version(0, 0, patch + 1)
        return _Range(floor, True, upper, False, allows_prerelease=allow_pre)
    raise InvalidConstraint(f"unknown operator {op!r}")


_HYPHEN_RE = re.compile(r"^\s*(\S+)\s+-\s+(\S+)\s*$")
_TOKEN_RE = re.compile(r"(!=|>=|=>|<=|=<|~>|>|<|=|~|\^)?\s*([^\s,]+)")


def _parse_group(text: str) -> list[_Range]:
    m = _HYPHEN_RE.match(text)
    if m:
        low, high = m.group(1), m.group(2)
        lo = _comparator(">=", low)
        hi = _comparator("<=", high)
        return [lo, hi]
    ranges: list[_Range] = []
    pos = 0
    text = text.strip()
    while pos < len(text):
        if text[pos] in " ,":
            pos += 1
            continue
        tm = _TOKEN_RE.match(text, pos)
        if not tm or not tm.group(2):
            raise InvalidConstraint(f"invalid constraint: {text!r}")
        op = tm.group(1) or ""
        ver = tm.group(2)
        if any(ver.startswith(o) for o in _OPS):
            raise InvalidConstraint(f"invalid constraint: {text!r}")
        ranges.append(_comparator(op, ver))
        pos = tm.end()
    if not ranges:
        raise InvalidConstraint(f"empty constraint group in {text!r}")
    return ranges


class Constraint:
    """A parsed version range. ``check`` answers whether a version satisfies it."""

    def __init__(self, text: str):
        if not isinstance(text, str) or not text.strip():
            raise InvalidConstraint("constraint cannot be empty")
        self.text = text.strip()
        self._groups = [_parse_group(g) for g in self.text.split("||")]

    @classmethod
    def parse(cls, text: str) -> Constraint:
        return cls(text)

    def check(self, version: Version | str) -> bool:
        v = coerce(version)
        return any(all(r.check(v) for r in group) for group in self._groups)

    def __contains__(self, version: Version | str) -> bool:
        return self.check(version)

    def __str__(self) -> str:
        return self.text

    def __repr__(self) -> str:
        return f"Constraint({self.text!r})"


def parse_constraint(text: str) -> Constraint:
    return Constraint(text)


def is_valid_constraint(text: str) -> bool:
    try:
        Constraint(text)
    except InvalidConstraint:
        return False
    return True


def satisfies(version: Version | str, constraint: Constraint | str) -> bool:
    c = constraint if isinstance(constraint, Constraint) else Constraint(constraint)
    return c.check(version)
