"""Semantic versions and version-range constraints with loose parsing rules."""

from __future__ import annotations

import functools
import itertools
import re
from collections.abc import Callable
from dataclasses import dataclass

_UINT64_MAX = 2**64 - 1

_VERSION = re.compile(
    r"v?([0-9]+)(\.[0-9]+)?(\.[0-9]+)?"
    r"(?:-([0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*))?"
    r"(?:\+([0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*))?"
)

_CV = (
    r"v?[0-9|x|X|\*]+(?:\.[0-9|x|X|\*]+)?(?:\.[0-9|x|X|\*]+)?"
    r"(?:-[0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*)?"
    r"(?:\+[0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*)?"
)
_CV_NAMED = (
    r"v?(?P<major>[0-9|x|X|\*]+)(?P<minor>\.[0-9|x|X|\*]+)?(?P<patch>\.[0-9|x|X|\*]+)?"
    r"(?P<pre>-[0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*)?"
    r"(?:\+[0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*)?"
)

_OPERATORS = ("!=", ">=", "=>", "<=", "=<", "~>", ">", "<", "=", "~", "^", "")
_OPS = "|".join(re.escape(op) for op in _OPERATORS)

_TERM = re.compile(rf"\s*(?P<op>{_OPS})\s*(?P<ver>{_CV_NAMED})\s*")
_FIND = re.compile(rf"(?:{_OPS})\s*(?:{_CV})")
_VALID = re.compile(
    rf"\s*(?:{_OPS})\s*(?:{_CV})\s*(?:(?:\s+|,\s*)(?:{_OPS})\s*(?:{_CV})\s*)*"
)
_RANGE = re.compile(rf"\s*({_CV})\s+-\s+({_CV})\s*")


class SemverError(ValueError):
    """Raised for malformed versions or constraints."""


def _is_numeric(part: str) -> bool:
    return part.isascii() and part.isdigit() and int(part) <= _UINT64_MAX


def _compare_pre_part(a: str, b: str) -> int:
    if a == b:
        return 0
    if a == "":
        return -1
    if b == "":
        return 1
    a_num, b_num = _is_numeric(a), _is_numeric(b)
    if not a_num and not b_num:
        return 1 if a > b else -1
    if not a_num:
        return 1
    if not b_num:
        return -1
    return 1 if int(a) > int(b) else -1


def _compare_prerelease(a: str, b: str) -> int:
    for x, y in itertools.zip_longest(a.split("."), b.split("."), fillvalue=""):
        result = _compare_pre_part(x, y)
        if result:
            return result
    return 0


def _validate_prerelease(pre: str) -> None:
    for part in pre.split("."):
        if part.isascii() and part.isdigit() and len(part) > 1 and part[0] == "0":
            raise SemverError(f"version segment starts with 0: {pre!r}")


def _number(text: str, original: str) -> int:
    value = int(text)
    if value > _UINT64_MAX:
        raise SemverError(f"version segment too large in {original!r}")
    return value


@functools.total_ordering
class Version:
    """A parsed version; missing minor or patch numbers count as zero."""

    __slots__ = ("major", "minor", "patch", "prerelease", "metadata", "original")

    def __init__(self, text: str) -> None:
        match = _VERSION.fullmatch(text)
        if match is None:
            raise SemverError(f"invalid semantic version: {text!r}")
        major, minor, patch, pre, meta = match.groups()
        self.original = text
        self.major = _number(major, text)
        self.minor = _number(minor[1:], text) if minor else 0
        self.patch = _number(patch[1:], text) if patch else 0
        self.prerelease = pre or ""
        self.metadata = meta or ""
        if self.prerelease:
            _validate_prerelease(self.prerelease)

    def compare(self, other: Version) -> int:
        """Return -1, 0 or 1; build metadata is ignored."""
        for mine, theirs in (
            (self.major, other.major),
            (self.minor, other.minor),
            (self.patch, other.patch),
        ):
            if mine != theirs:
                return 1 if mine > theirs else -1
        if not self.prerelease and not other.prerelease:
            return 0
        if not self.prerelease:
            return 1
        if not other.prerelease:
            return -1
        return _compare_prerelease(self.prerelease, other.prerelease)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) < 0

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, self.prerelease))

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.metadata:
            text += f"+{self.metadata}"
        return text

    def __repr__(self) -> str:
        return f"Version({str(self)!r})"


def _is_x(text: str) -> bool:
    return text in ("x", "X", "*")


@dataclass(frozen=True)
class _Term:
    op: str
    version: Version
    dirty: bool
    minor_dirty: bool
    patch_dirty: bool

    def check(self, v: Version) -> bool:
        return _CHECKS[self.op](v, self)


def _parse_term(text: str) -> _Term:
    match = _TERM.fullmatch(text)
    if match is None:
        raise SemverError(f"improper constraint: {text}")
    major, minor, patch = match["major"], match["minor"], match["patch"]
    pre = match["pre"] or ""
    dirty = minor_dirty = patch_dirty = False
    if _is_x(major):
        ver, dirty = f"0.0.0{pre}", True
    elif minor is None or _is_x(minor[1:]):
        ver, dirty, minor_dirty = f"{major}.0.0{pre}", True, True
    elif patch is None or _is_x(patch[1:]):
        ver, dirty, patch_dirty = f"{major}{minor}.0{pre}", True, True
    else:
        ver = match["ver"]
    return _Term(match["op"], Version(ver), dirty, minor_dirty, patch_dirty)


def _pre_blocked(v: Version, c: _Term) -> bool:
    # A prerelease only satisfies constraints that mention prereleases themselves.
    return bool(v.prerelease) and not c.version.prerelease


def _not_equal(v: Version, c: _Term) -> bool:
    con = c.version
    if c.dirty:
        if _pre_blocked(v, c):
            return False
        if con.major != v.major:
            return True
        if con.minor != v.minor and not c.minor_dirty:
            return True
        if c.minor_dirty:
            return False
        if con.patch != v.patch and not c.patch_dirty:
            return True
        if c.patch_dirty:
            if v.prerelease or con.prerelease:
                return _compare_prerelease(v.prerelease, con.prerelease) != 0
            return False
    return v != con


def _greater_than(v: Version, c: _Term) -> bool:
    con = c.version
    if _pre_blocked(v, c):
        return False
    if not c.dirty:
        return v.compare(con) == 1
    if v.major > con.major:
        return True
    if v.major < con.major:
        return False
    if c.minor_dirty:
        return False
    if c.patch_dirty:
        return v.minor > con.minor
    return v.compare(con) == 1


def _less_than(v: Version, c: _Term) -> bool:
    return not _pre_blocked(v, c) and v.compare(c.version) < 0


def _greater_equal(v: Version, c: _Term) -> bool:
    return not _pre_blocked(v, c) and v.compare(c.version) >= 0


def _less_equal(v: Version, c: _Term) -> bool:
    con = c.version
    if _pre_blocked(v, c):
        return False
    if not c.dirty:
        return v.compare(con) <= 0
    if v.major > con.major:
        return False
    if v.major == con.major and v.minor > con.minor and not c.minor_dirty:
        return False
    return True


def _tilde(v: Version, c: _Term) -> bool:
    con = c.version
    if _pre_blocked(v, c):
        return False
    if v < con:
        return False
    if (con.major, con.minor, con.patch) == (0, 0, 0) and not c.minor_dirty and not c.patch_dirty:
        return True
    if v.major != con.major:
        return False
    if v.minor != con.minor and not c.minor_dirty:
        return False
    return True


def _tilde_or_equal(v: Version, c: _Term) -> bool:
    if _pre_blocked(v, c):
        return False
    if c.dirty:
        return _tilde(v, c)
    return v == c.version


def _caret(v: Version, c: _Term) -> bool:
    con = c.version
    if _pre_blocked(v, c):
        return False
    if v < con:
        return False
    if con.major > 0 or c.minor_dirty:
        return v.major == con.major
    if v.major > 0:
        return False
    if con.minor > 0 or c.patch_dirty:
        return v.minor == con.minor
    if v.minor > 0:
        return False
    return con.patch == v.patch


_CHECKS: dict[str, Callable[[Version, _Term], bool]] = {
    "": _tilde_or_equal,
    "=": _tilde_or_equal,
    "!=": _not_equal,
    ">": _greater_than,
    "<": _less_than,
    ">=": _greater_equal,
    "=>": _greater_equal,
    "<=": _less_equal,
    "=<": _less_equal,
    "~": _tilde,
    "~>": _tilde,
    "^": _caret,
}


def _rewrite_ranges(text: str) -> str:
    for match in _RANGE.finditer(text):
        text = text.replace(match.group(0), f">= {match.group(1)}, <= {match.group(2)} ", 1)
    return text


class Constraint:
    """A set of ranges: ``||`` separates alternatives, commas or spaces join terms."""

    def __init__(self, text: str) -> None:
        self.text = text
        self._groups: list[list[_Term]] = []
        for segment in _rewrite_ranges(text).split("||"):
            if not _VALID.fullmatch(segment):
                raise SemverError(f"improper constraint: {segment}")
            parts = [m.group(0) for m in _FIND.finditer(segment)] or [segment]
            self._groups.append([_parse_term(part) for part in parts])

    def check(self, version: Version | str) -> bool:
        """Whether the version satisfies any alternative of the constraint."""
        if isinstance(version, str):
            version = Version(version)
        return any(all(term.check(version) for term in group) for group in self._groups)

    def __str__(self) -> str:
        return self.text

    def __repr__(self) -> str:
        return f"Constraint({self.text!r})"