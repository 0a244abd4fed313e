"""Canonical domain types shared by the prober and the action registry."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from sysmaint.core.errors import PreconditionUnmet

# str, bool, optional bool (None), ordered strings, or absent (None).
FactValue = str | bool | tuple[str, ...] | None

FactQuery = Callable[[], object]
Operation = Callable[..., object]


@dataclass(frozen=True, slots=True)
class Fact:
    """One named piece of queried system information."""

    key: str
    value: FactValue = None
    error: str | None = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if self.value is not None and self.error is not None:
            raise ValueError(f"Fact '{self.key}' cannot carry both a value and an error")

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        value: Any = list(self.value) if isinstance(self.value, tuple) else self.value
        return {
            "key": self.key,
            "value": value,
            "error": self.error,
            "fetched_at": self.fetched_at.isoformat(),
        }


class Snapshot(Mapping[str, Fact]):
    """Immutable, complete set of facts produced by one probe cycle."""

    __slots__ = ("_facts", "_captured_at")

    def __init__(self, facts: Iterable[Fact], captured_at: datetime | None = None) -> None:
        self._facts = MappingProxyType({fact.key: fact for fact in facts})
        self._captured_at = captured_at or datetime.now(UTC)

    @property
    def captured_at(self) -> datetime:
        return self._captured_at

    def __getitem__(self, key: str) -> Fact:
        return self._facts[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._facts)

    def __len__(self) -> int:
        return len(self._facts)

    def __repr__(self) -> str:
        return f"Snapshot(keys={sorted(self._facts)!r}, captured_at={self._captured_at.isoformat()})"

    def value(self, key: str, default: FactValue = None) -> FactValue:
        """Return a fact value, or ``default`` when missing or failed."""
        fact = self._facts.get(key)
        if fact is None or fact.error is not None:
            return default
        return fact.value

    def failures(self) -> dict[str, str]:
        return {key: fact.error for key, fact in self._facts.items() if fact.error is not None}

    def to_dict(self) -> dict[str, Any]:
        return {
            "captured_at": self._captured_at.isoformat(),
            "facts": {key: self._facts[key].to_dict() for key in sorted(self._facts)},
        }


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Snapshot published by the cache, stamped with a monotonic capture time."""

    snapshot: Snapshot
    captured_at: float
    ttl: float

    def age(self, now: float) -> float:
        return now - self.captured_at

    def is_fresh(self, now: float, ttl: float | None = None) -> bool:
        limit = self.ttl if ttl is None else ttl
        return self.age(now) <= limit


@dataclass(frozen=True, slots=True)
class Precondition:
    """Predicate over one snapshot fact gating whether an action may run."""

    fact: str
    predicate: Callable[[FactValue], bool]
    description: str = ""

    @classmethod
    def equals(cls, fact: str, expected: FactValue) -> Precondition:
        return cls(fact, lambda value: value == expected, f"{fact} == {expected!r}")

    @classmethod
    def one_of(cls, fact: str, allowed: Iterable[FactValue]) -> Precondition:
        options = tuple(allowed)
        return cls(fact, lambda value: value in options, f"{fact} in {list(options)!r}")

    @classmethod
    def present(cls, fact: str) -> Precondition:
        return cls(fact, lambda value: value is not None and value != (), f"{fact} is present")

    def check(self, snapshot: Snapshot) -> PreconditionUnmet | None:
        """Return the unmet reason, or ``None`` when the predicate holds."""
        fact = snapshot.get(self.fact)
        if fact is None:
            return PreconditionUnmet(self.fact, "fact was not probed")
        if fact.error is not None:
            return PreconditionUnmet(self.fact, f"fact unavailable ({fact.error})")
        try:
            holds = bool(self.predicate(fact.value))
        except Exception as exc:
            return PreconditionUnmet(self.fact, f"predicate raised {type(exc).__name__}: {exc}")
        if holds:
            return None
        expectation = self.description or "predicate"
        return PreconditionUnmet(self.fact, f"expected {expectation}, got {fact.value!r}")


@dataclass(frozen=True, slots=True)
class StateCheck:
    """Read operation whose result shows a sub-step is already in effect.

    ``value_arg`` names the mutation argument the read corresponds to; the
    value read before the mutation is written back through it on revert.
    """

    operation: str
    args: Mapping[str, object] = field(default_factory=dict)
    expected: object = None
    value_arg: str | None = None


@dataclass(frozen=True, slots=True)
class SubStep:
    """One idempotent unit of an action, bound to a named OS operation.

    On a revert step, ``restores`` names the apply step it undoes.
    """

    name: str
    operation: str
    args: Mapping[str, object] = field(default_factory=dict)
    guard: StateCheck | None = None
    restores: str | None = None


@dataclass(frozen=True, slots=True)
class ActionSpec:
    """Static, declarative description of a system-modifying operation."""

    id: str
    description: str
    preconditions: tuple[Precondition, ...] = ()
    apply: tuple[SubStep, ...] = ()
    revert: tuple[SubStep, ...] = ()
    category: str = "general"


@dataclass(frozen=True, slots=True)
class RestorePlan:
    """Emergency-restore pseudo-action composed from other actions' reverts."""

    id: str
    description: str
    sequence: tuple[str, ...]


class SubStepStatus(str, Enum):
    OK = "ok"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class ActionStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED_PRECONDITION = "skipped_precondition"
    PARTIAL_FAILURE = "partial_failure"
    FAILURE = "failure"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class SubStepResult:
    name: str
    status: SubStepStatus
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is not SubStepStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "status": self.status.value, "detail": self.detail}


@dataclass(frozen=True, slots=True)
class ActionResult:
    """Outcome of one action execution or revert."""

    action_id: str
    status: ActionStatus
    sub_step_results: tuple[SubStepResult, ...] = ()
    detail: str = ""
    phase: str = "apply"

    @property
    def succeeded(self) -> bool:
        return self.status is ActionStatus.SUCCESS

    def failures(self) -> list[SubStepResult]:
        return [item for item in self.sub_step_results if not item.succeeded]

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_id": self.action_id,
            "phase": self.phase,
            "status": self.status.value,
            "detail": self.detail,
            "sub_steps": [item.to_dict() for item in self.sub_step_results],
        }


@dataclass(frozen=True, slots=True)
class BatchResult:
    """Ordered results of a batch; one per requested action."""

    results: tuple[ActionResult, ...] = ()
    cancelled: bool = False

    def __iter__(self) -> Iterator[ActionResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def statuses(self) -> dict[str, ActionStatus]:
        return {result.action_id: result.status for result in self.results}

    def to_dict(self) -> dict[str, Any]:
        return {
            "cancelled": self.cancelled,
            "results": [result.to_dict() for result in self.results],
        }
