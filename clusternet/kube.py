"""In-memory store of Kubernetes-style objects with label selector support.

Objects are plain dictionaries shaped like Kubernetes resources::

    {"kind": "Pod", "metadata": {"name": "...", "namespace": "...", "labels": {...}}, ...}

Cluster-scoped objects use an empty namespace.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping


class ApiError(Exception):
    """An error reported by the object store."""


class NotFoundError(ApiError):
    """The requested object does not exist."""


class AlreadyExistsError(ApiError):
    """An object with the same kind, namespace and name already exists."""


class ConflictError(ApiError):
    """The object was modified since it was read."""


_NAME = r"[A-Za-z0-9](?:[-A-Za-z0-9_.]*[A-Za-z0-9])?"
_DNS_LABEL = r"[a-z0-9](?:[-a-z0-9]*[a-z0-9])?"
_KEY = rf"(?:{_DNS_LABEL}(?:\.{_DNS_LABEL})*/)?{_NAME}"

_SET_TERM = re.compile(rf"^({_KEY})\s+(in|notin)\s*\(([^()]*)\)$")
_COMPARE_TERM = re.compile(rf"^({_KEY})\s*(==|!=|=)\s*((?:{_NAME})?)$")
_EXISTS_TERM = re.compile(rf"^(!?)\s*({_KEY})$")
_VALUE = re.compile(rf"^(?:{_NAME})?$")


class _Operator(Enum):
    EQUALS = "="
    NOT_EQUALS = "!="
    IN = "in"
    NOT_IN = "notin"
    EXISTS = "exists"
    NOT_EXISTS = "!"


@dataclass(frozen=True)
class _Requirement:
    key: str
    operator: _Operator
    values: frozenset[str] = frozenset()

    def matches(self, labels: Mapping[str, str]) -> bool:
        present = self.key in labels
        if self.operator is _Operator.EXISTS:
            return present
        if self.operator is _Operator.NOT_EXISTS:
            return not present
        if self.operator in (_Operator.EQUALS, _Operator.IN):
            return present and labels[self.key] in self.values
        return not present or labels[self.key] not in self.values


@dataclass(frozen=True)
class LabelSelector:
    """A conjunction of label requirements; an empty selector matches everything."""

    requirements: tuple[_Requirement, ...] = ()

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        """Return True if the given labels satisfy every requirement."""
        labels = labels or {}
        return all(requirement.matches(labels) for requirement in self.requirements)


def _split_terms(text: str) -> list[str]:
    terms: list[str] = []
    current: list[str] = []
    depth = 0
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            terms.append("".join(current))
            current = []
        else:
            current.append(char)
    terms.append("".join(current))
    return terms


def _parse_term(term: str) -> _Requirement:
    if match := _SET_TERM.match(term):
        key, operator, raw_values = match.groups()
        values = [value.strip() for value in raw_values.split(",")]
        if not raw_values.strip():
            raise ValueError(f"values set can't be empty for {operator!r} in {term!r}")
        for value in values:
            if not _VALUE.match(value):
                raise ValueError(f"invalid label value {value!r} in {term!r}")
        op = _Operator.IN if operator == "in" else _Operator.NOT_IN
        return _Requirement(key, op, frozenset(values))
    if match := _COMPARE_TERM.match(term):
        key, operator, value = match.groups()
        op = _Operator.NOT_EQUALS if operator == "!=" else _Operator.EQUALS
        return _Requirement(key, op, frozenset([value]))
    if match := _EXISTS_TERM.match(term):
        negated, key = match.groups()
        return _Requirement(key, _Operator.NOT_EXISTS if negated else _Operator.EXISTS)
    raise ValueError(f"unable to parse label requirement {term!r}")


def parse_label_selector(text: str) -> LabelSelector:
    """Parse a selector such as ``app=web,tier!=db,env in (a,b),!legacy``."""
    if not text.strip():
        return LabelSelector()
    requirements = []
    for term in _split_terms(text):
        term = term.strip()
        if not term:
            raise ValueError(f"empty requirement in label selector {text!r}")
        requirements.append(_parse_term(term))
    return LabelSelector(tuple(requirements))


def _metadata(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    return obj.get("metadata") or {}


def _key_of(obj: Mapping[str, Any]) -> tuple[str, str, str]:
    kind = obj.get("kind")
    name = _metadata(obj).get("name")
    if not kind or not name:
        raise ValueError("an object needs a kind and a metadata.name")
    return kind, _metadata(obj).get("namespace") or "", name


class MemoryClient:
    """A client that keeps objects in memory, with get, list, create, update and delete."""

    def __init__(self, objects: Iterable[Mapping[str, Any]] | None = None) -> None:
        self._objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self._create_failures: dict[str, BaseException] = {}
        self._version = 0
        for obj in objects or ():
            self.create(obj)

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _store(self, key: tuple[str, str, str], obj: Mapping[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(dict(obj))
        stored["metadata"] = dict(stored.get("metadata") or {})
        stored["metadata"].setdefault("namespace", key[1])
        stored["metadata"]["resourceVersion"] = self._next_version()
        self._objects[key] = stored
        return copy.deepcopy(stored)

    def get(self, kind: str, namespace: str | None, name: str) -> dict[str, Any]:
        """Return a copy of the named object or raise NotFoundError."""
        try:
            return copy.deepcopy(self._objects[(kind, namespace or "", name)])
        except KeyError:
            raise NotFoundError(f'{kind} "{name}" not found') from None

    def list(
        self,
        kind: str,
        namespace: str | None = None,
        label_selector: str | LabelSelector | None = None,
    ) -> list[dict[str, Any]]:
        """Return copies of the objects of a kind, optionally filtered, ordered by namespace and name."""
        if isinstance(label_selector, str):
            label_selector = parse_label_selector(label_selector)
        selector = label_selector or LabelSelector()
        found = [
            obj
            for (obj_kind, obj_namespace, _), obj in self._objects.items()
            if obj_kind == kind
            and (not namespace or obj_namespace == namespace)
            and selector.matches(_metadata(obj).get("labels"))
        ]
        found.sort(key=lambda obj: (_metadata(obj).get("namespace", ""), _metadata(obj)["name"]))
        return copy.deepcopy(found)

    def create(self, obj: Mapping[str, Any]) -> dict[str, Any]:
        """Store a new object and return a copy of it as stored."""
        key = _key_of(obj)
        failure = self._create_failures.get(key[0])
        if failure is not None:
            raise failure
        if key in self._objects:
            raise AlreadyExistsError(f'{key[0]} "{key[2]}" already exists')
        return self._store(key, obj)

    def update(self, obj: Mapping[str, Any]) -> dict[str, Any]:
        """Replace an existing object, refusing stale resource versions."""
        key = _key_of(obj)
        existing = self._objects.get(key)
        if existing is None:
            raise NotFoundError(f'{key[0]} "{key[2]}" not found')
        version = _metadata(obj).get("resourceVersion")
        if version and version != existing["metadata"]["resourceVersion"]:
            raise ConflictError(
                f'Operation cannot be fulfilled on {key[0]} "{key[2]}": '
                "the object has been modified; please apply your changes to the latest version and try again"
            )
        return self._store(key, obj)

    def delete(self, kind: str, namespace: str | None, name: str) -> None:
        """Remove the named object or raise NotFoundError."""
        try:
            del self._objects[(kind, namespace or "", name)]
        except KeyError:
            raise NotFoundError(f'{kind} "{name}" not found') from None

    def fail_on_create(self, kind: str, error: BaseException) -> MemoryClient:
        """Make every later create of the given kind raise the given error."""
        self._create_failures[kind] = error
        return self