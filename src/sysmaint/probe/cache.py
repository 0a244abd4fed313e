"""Process-wide snapshot cache with TTL freshness and single-flight refresh."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future

from sysmaint.core.types import CacheEntry, Snapshot
from sysmaint.probe.prober import FactProber

logger = logging.getLogger(__name__)


class FactCache:
    """Holds the single published cache entry and collapses concurrent refreshes.

    The entry is replaced by one reference assignment, so readers either see
    the previous snapshot or the new one. While a refresh is in flight every
    caller that finds the cache stale waits on that refresh instead of
    launching its own probe.
    """

    def __init__(
        self,
        prober: FactProber,
        individual_timeout: float,
        *,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._prober = prober
        self._individual_timeout = individual_timeout
        self._default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entry: CacheEntry | None = None
        self._known_keys: frozenset[str] = frozenset()
        self._inflight: Future[Snapshot] | None = None

    @property
    def entry(self) -> CacheEntry | None:
        return self._entry

    @property
    def known_keys(self) -> frozenset[str]:
        return self._known_keys

    def get_cached(
        self,
        fact_keys: Iterable[str],
        ttl: float | None = None,
        *,
        force: bool = False,
    ) -> Snapshot:
        """Return the cached snapshot when fresh, otherwise refresh it once."""
        requested = frozenset(fact_keys)
        limit = self._default_ttl if ttl is None else ttl

        while True:
            with self._lock:
                entry = self._entry
                if (
                    not force
                    and entry is not None
                    and entry.is_fresh(self._clock(), limit)
                    and requested.issubset(entry.snapshot)
                ):
                    return entry.snapshot

                flight = self._inflight
                leader = flight is None
                if leader:
                    flight = Future()
                    self._inflight = flight
                    keys = self._known_keys | requested
                else:
                    # The next refresh covers keys that joined this one late.
                    self._known_keys = self._known_keys | requested

            if leader:
                break
            logger.debug("cache_refresh_joined keys=%d", len(requested))
            snapshot = flight.result()
            if requested.issubset(snapshot):
                return snapshot

        try:
            snapshot = self._prober.probe(keys, self._individual_timeout)
        except BaseException as exc:
            flight.set_exception(exc)
            with self._lock:
                self._inflight = None
            raise

        with self._lock:
            self._entry = CacheEntry(snapshot=snapshot, captured_at=self._clock(), ttl=limit)
            self._known_keys = self._known_keys | keys
            self._inflight = None
        flight.set_result(snapshot)
        logger.info("cache_refreshed keys=%d ttl_s=%.1f", len(keys), limit)
        return snapshot

    def invalidate(self) -> None:
        """Drop the published entry; the next read re-probes every known key."""
        with self._lock:
            self._entry = None
