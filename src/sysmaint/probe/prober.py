"""Fact prober: concurrent, individually time-boxed system fact queries."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from sysmaint.core.errors import ProbeFailure, ProbeTimeout
from sysmaint.core.types import Fact, FactQuery, FactValue, Snapshot

logger = logging.getLogger(__name__)

UNKNOWN_FACT = "unknown fact"
STILL_RUNNING = "previous query still running"


@dataclass(frozen=True, slots=True)
class DerivedFact:
    """Fact computed synchronously from already-resolved input facts."""

    key: str
    inputs: tuple[str, ...]
    compute: Callable[[Mapping[str, FactValue]], object]


def normalize_value(key: str, raw: object) -> FactValue:
    """Coerce a query result into one of the supported fact value shapes."""
    if raw is None or isinstance(raw, (str, bool)):
        return raw
    if isinstance(raw, (list, tuple)):
        if not all(isinstance(item, str) for item in raw):
            raise ProbeFailure(key, "sequence values must contain only strings")
        return tuple(raw)
    raise ProbeFailure(key, f"unsupported value type {type(raw).__name__}")


class _ProbeUnit:
    """One fact query running on its own worker thread."""

    __slots__ = ("key", "_query", "_completions", "done", "value", "error", "fetched_at")

    def __init__(self, key: str, query: FactQuery, completions: queue.SimpleQueue[_ProbeUnit]) -> None:
        self.key = key
        self._query = query
        self._completions = completions
        self.done = False
        self.value: FactValue = None
        self.error: str | None = None
        self.fetched_at: datetime | None = None

    def start(self) -> None:
        worker = threading.Thread(target=self._run, name=f"fact-probe-{self.key}", daemon=True)
        worker.start()

    def _run(self) -> None:
        try:
            self.value = normalize_value(self.key, self._query())
        except ProbeFailure as exc:
            self.error = str(exc)
        except Exception as exc:
            self.error = str(ProbeFailure(self.key, exc))
        finally:
            self.fetched_at = datetime.now(UTC)
            self.done = True
            self._completions.put(self)

    def to_fact(self) -> Fact:
        if self.error is not None:
            return Fact(self.key, error=self.error, fetched_at=self.fetched_at or datetime.now(UTC))
        return Fact(self.key, value=self.value, fetched_at=self.fetched_at or datetime.now(UTC))


class FactProber:
    """Runs fact queries concurrently and assembles one immutable snapshot.

    Every requested key gets its own worker. At most ``max_workers`` run at
    once and the rest wait in FIFO order, but one deadline covers the whole
    call: whatever is still queued or running when it passes is recorded as a
    timeout. A worker that misses the deadline is abandoned (its thread is a
    daemon and its late result is discarded). While an abandoned worker is
    still alive its key is not queried again.
    """

    def __init__(
        self,
        sources: Mapping[str, FactQuery],
        derived: Iterable[DerivedFact] = (),
        *,
        max_workers: int = 8,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._sources = dict(sources)
        self._derived = {item.key: item for item in derived}
        self._max_workers = max_workers
        self._abandoned: dict[str, _ProbeUnit] = {}
        self._abandoned_lock = threading.Lock()

    @property
    def known_keys(self) -> frozenset[str]:
        return frozenset(self._sources) | frozenset(self._derived)

    def probe(self, fact_keys: Iterable[str], individual_timeout: float) -> Snapshot:
        """Resolve every requested fact, each bounded by ``individual_timeout``."""
        if individual_timeout <= 0:
            raise ValueError("individual_timeout must be greater than zero")

        requested = sorted(set(fact_keys))
        derived_keys = [key for key in requested if key in self._derived]
        query_keys: list[str] = []
        facts: dict[str, Fact] = {}
        for key in requested:
            if key in self._sources:
                query_keys.append(key)
            elif key not in self._derived:
                facts[key] = Fact(key, error=UNKNOWN_FACT)
        for key in derived_keys:
            for dependency in self._derived[key].inputs:
                if dependency in self._sources and dependency not in query_keys:
                    query_keys.append(dependency)

        started = time.monotonic()
        facts.update(self._run_concurrently(query_keys, individual_timeout))
        for key in derived_keys:
            facts[key] = self._derive(self._derived[key], facts)

        snapshot = Snapshot(facts.values())
        failures = snapshot.failures()
        logger.info(
            "probe_completed keys=%d failed=%d elapsed_ms=%d",
            len(snapshot),
            len(failures),
            int((time.monotonic() - started) * 1000),
        )
        return snapshot

    def _run_concurrently(self, keys: list[str], timeout: float) -> dict[str, Fact]:
        deadline = time.monotonic() + timeout
        completions: queue.SimpleQueue[_ProbeUnit] = queue.SimpleQueue()
        pending: deque[str] = deque()
        running: dict[str, _ProbeUnit] = {}
        resolved: dict[str, Fact] = {}

        for key in keys:
            if self._still_running(key):
                logger.warning("probe_skipped key=%s reason=previous_query_running", key)
                resolved[key] = Fact(key, error=STILL_RUNNING)
            else:
                pending.append(key)

        while pending or running:
            while pending and len(running) < self._max_workers:
                key = pending.popleft()
                unit = _ProbeUnit(key, self._sources[key], completions)
                unit.start()
                running[key] = unit

            try:
                finished = completions.get(timeout=max(0.0, deadline - time.monotonic()))
            except queue.Empty:
                finished = None
            if finished is not None:
                self._accept(finished, running, resolved)

            if time.monotonic() >= deadline:
                while True:
                    try:
                        self._accept(completions.get_nowait(), running, resolved)
                    except queue.Empty:
                        break
                for key, unit in running.items():
                    self._abandon(unit)
                    resolved[key] = self._timed_out(key, timeout)
                for key in pending:
                    resolved[key] = self._timed_out(key, timeout)
                break

        return resolved

    @staticmethod
    def _accept(finished: _ProbeUnit, running: dict[str, _ProbeUnit], resolved: dict[str, Fact]) -> None:
        # Late results from abandoned workers are ignored.
        if running.get(finished.key) is not finished:
            return
        del running[finished.key]
        fact = finished.to_fact()
        if fact.error is not None:
            logger.warning("probe_failed key=%s error=%s", fact.key, fact.error)
        resolved[fact.key] = fact

    @staticmethod
    def _timed_out(key: str, timeout: float) -> Fact:
        logger.warning("probe_timeout key=%s timeout_s=%.2f", key, timeout)
        return Fact(key, error=str(ProbeTimeout(key)))

    def _abandon(self, unit: _ProbeUnit) -> None:
        with self._abandoned_lock:
            self._abandoned[unit.key] = unit

    def _still_running(self, key: str) -> bool:
        with self._abandoned_lock:
            unit = self._abandoned.get(key)
            if unit is None:
                return False
            if unit.done:
                del self._abandoned[key]
                return False
            return True

    @staticmethod
    def _derive(spec: DerivedFact, facts: Mapping[str, Fact]) -> Fact:
        inputs: dict[str, FactValue] = {}
        for dependency in spec.inputs:
            fact = facts.get(dependency)
            if fact is None:
                return Fact(spec.key, error=f"missing input '{dependency}'")
            if fact.error is not None:
                return Fact(spec.key, error=f"input '{dependency}' unavailable ({fact.error})")
            if fact.value is None:
                return Fact(spec.key, error=f"input '{dependency}' is absent")
            inputs[dependency] = fact.value
        try:
            return Fact(spec.key, value=normalize_value(spec.key, spec.compute(inputs)))
        except ProbeFailure as exc:
            return Fact(spec.key, error=str(exc))
        except Exception as exc:
            return Fact(spec.key, error=str(ProbeFailure(spec.key, exc)))
