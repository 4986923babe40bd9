"""Semantic version requirements.

Requirements are written the way device fleets usually write them::

    ">= 1.0.0"
    ">= 1.0.0 and < 2.0.0"
    "~> 1.4"              # >= 1.4.0 and < 2.0.0-0
    "~> 1.4.2"            # >= 1.4.2 and < 1.5.0-0
    "^0.3.1"              # >= 0.3.1 and < 0.4.0-0
    "~1.2.3"              # >= 1.2.3 and < 1.3.0-0
    "1.2.3 or >= 2.0.0"

A comma is accepted as a synonym for ``and``. Versions must be full
``MAJOR.MINOR.PATCH[-pre][+build]`` strings and are compared with
``semver`` precedence. Only the range operators take a shortened operand.
Their upper bound is the ``-0`` pre-release of the next release, so
``~> 1.0`` does not admit ``2.0.0-rc.1``.
"""

from __future__ import annotations

import operator
import re
from functools import lru_cache
from typing import Callable

import semver

Comparator = tuple[Callable[[semver.Version, semver.Version], bool], semver.Version]
Clause = tuple[Comparator, ...]

_TERM_RE = re.compile(r"^(==|!=|>=|<=|~>|>|<|=|\^|~)?\s*(\S+)$")
_OR_RE = re.compile(r"\s+or\s+|\s*\|\|\s*")
_AND_RE = re.compile(r"\s+and\s+|\s*,\s*")
_RANGE_OPERAND_RE = re.compile(r"^\d+(\.\d+){0,2}$")

_OPERATORS: dict[str, Callable[[semver.Version, semver.Version], bool]] = {
    "==": operator.eq,
    "=": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


class InvalidRequirement(ValueError):
    """Raised when a version or a version requirement cannot be parsed."""


def parse_version(value: str) -> semver.Version:
    try:
        return semver.Version.parse(value.strip())
    except (ValueError, TypeError, AttributeError) as exc:
        raise InvalidRequirement(f"Invalid version: {value!r}") from exc


def _range_operand(value: str) -> tuple[semver.Version, int]:
    """Parses ``X``, ``X.Y`` or ``X.Y.Z`` and reports how many parts were given."""
    if _RANGE_OPERAND_RE.match(value) is None:
        raise InvalidRequirement(f"Invalid range operand: {value!r}")
    parts = [int(part) for part in value.split(".")]
    given = len(parts)
    parts.extend([0] * (3 - given))
    return semver.Version(*parts), given


def _upper_bound(target: semver.Version, index: int) -> semver.Version:
    # The "-0" pre-release sorts below every other pre-release of that release.
    if index == 0:
        return semver.Version(target.major + 1, 0, 0, prerelease="0")
    if index == 1:
        return semver.Version(target.major, target.minor + 1, 0, prerelease="0")
    return semver.Version(target.major, target.minor, target.patch + 1, prerelease="0")


def _range(target: semver.Version, index: int) -> Clause:
    return ((operator.ge, target), (operator.lt, _upper_bound(target, index)))


def _pessimistic(raw: str) -> Clause:
    target, given = _range_operand(raw)
    return _range(target, max(0, given - 2))


def _caret(raw: str) -> Clause:
    target, _ = _range_operand(raw)
    # First non-zero component among major/minor, otherwise patch.
    index = next(
        (i for i, part in enumerate((target.major, target.minor)) if part != 0), 2
    )
    return _range(target, index)


def _tilde(raw: str) -> Clause:
    target, given = _range_operand(raw)
    return _range(target, 0 if given == 1 else 1)


def _parse_term(text: str) -> Clause:
    match = _TERM_RE.match(text.strip())
    if match is None:
        raise InvalidRequirement(f"Invalid requirement term: {text!r}")
    op, raw_version = match.groups()
    if op == "~>":
        return _pessimistic(raw_version)
    if op == "^":
        return _caret(raw_version)
    if op == "~":
        return _tilde(raw_version)
    return ((_OPERATORS[op or "=="], parse_version(raw_version)),)


@lru_cache(maxsize=1024)
def parse_requirement(requirement: str) -> tuple[Clause, ...]:
    text = requirement.strip()
    if not text:
        raise InvalidRequirement("Empty requirement")
    clauses: list[Clause] = []
    for alternative in _OR_RE.split(text):
        terms = [term for term in _AND_RE.split(alternative.strip()) if term.strip()]
        if not terms:
            raise InvalidRequirement(f"Invalid requirement: {requirement!r}")
        comparators: list[Comparator] = []
        for term in terms:
            comparators.extend(_parse_term(term))
        clauses.append(tuple(comparators))
    return tuple(clauses)


def is_valid_requirement(requirement: str) -> bool:
    if requirement == "":
        return True
    try:
        parse_requirement(requirement)
    except InvalidRequirement:
        return False
    return True


def satisfies(version: str, requirement: str) -> bool:
    """Raises InvalidRequirement when either side is malformed."""
    parsed = parse_version(version)
    for clause in parse_requirement(requirement):
        if all(compare(parsed, bound) for compare, bound in clause):
            return True
    return False
