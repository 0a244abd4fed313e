"""Composition root wiring settings, fact prober, snapshot cache and action registry."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping

from sysmaint.actions.catalog import Catalog, build_registry, load_catalog
from sysmaint.core.config import Settings
from sysmaint.core.errors import UnknownActionError
from sysmaint.core.types import ActionResult, BatchResult, FactQuery, Operation, Snapshot
from sysmaint.probe.cache import FactCache
from sysmaint.probe.patterns import default_derived_facts
from sysmaint.probe.prober import DerivedFact, FactProber

logger = logging.getLogger(__name__)


class MaintenanceRuntime:
    """Single entry point used by the CLI and the HTTP API.

    OS sources default to the Windows implementations; tests and other hosts
    inject their own mappings.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        fact_sources: Mapping[str, FactQuery] | None = None,
        operations: Mapping[str, Operation] | None = None,
        derived: Iterable[DerivedFact] | None = None,
        catalog: Catalog | None = None,
    ) -> None:
        self.settings = settings or Settings()
        if fact_sources is None or operations is None:
            from sysmaint.platform.windows import windows_sources

            default_facts, default_operations = windows_sources()
            fact_sources = default_facts if fact_sources is None else fact_sources
            operations = default_operations if operations is None else operations

        self.prober = FactProber(
            fact_sources,
            default_derived_facts() if derived is None else derived,
            max_workers=self.settings.max_probe_workers,
        )
        self.cache = FactCache(
            self.prober,
            self.settings.probe_timeout_s,
            default_ttl=self.settings.cache_ttl_s,
        )
        self.catalog = catalog or load_catalog(self.settings.catalog_path)
        missing = sorted(self.catalog.operations() - set(operations))
        if missing:
            logger.warning("catalog_operations_unavailable operations=%s", ",".join(missing))
        self.registry = build_registry(self.catalog, operations, restore_mode=self.settings.restore_mode)

    def facts(self, keys: Iterable[str] | None = None, *, refresh: bool = False) -> Snapshot:
        requested = self.prober.known_keys if keys is None else frozenset(keys)
        return self.cache.get_cached(requested, self.settings.cache_ttl_s, force=refresh)

    def list_actions(self) -> list[dict[str, str]]:
        return [{"id": action_id, "description": text} for action_id, text in self.registry.describe()]

    def run(
        self,
        action_ids: Iterable[str],
        *,
        cancel: threading.Event | None = None,
        refresh: bool = False,
    ) -> BatchResult:
        ids = list(action_ids)
        for action_id in ids:
            if action_id not in self.registry:
                raise UnknownActionError(action_id)
        snapshot = self.facts(refresh=refresh)
        return self.registry.execute_batch(ids, snapshot, cancel=cancel)

    def revert(self, action_id: str, *, cancel: threading.Event | None = None) -> ActionResult:
        return self.registry.revert(action_id, cancel=cancel)

    def restore(self, *, cancel: threading.Event | None = None) -> ActionResult:
        plan = self.catalog.restore
        if plan is None:
            raise UnknownActionError("emergency_restore")
        # Restore has no preconditions, so it does not wait on a probe.
        return self.registry.execute(plan.id, Snapshot(()), cancel=cancel)
