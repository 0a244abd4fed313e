"""sysmaint package."""

from sysmaint.actions.registry import ActionRegistry
from sysmaint.core.types import (
    ActionResult,
    ActionSpec,
    ActionStatus,
    BatchResult,
    Fact,
    Precondition,
    Snapshot,
    SubStep,
)
from sysmaint.probe.cache import FactCache
from sysmaint.probe.prober import DerivedFact, FactProber

__all__ = [
    "ActionRegistry",
    "ActionResult",
    "ActionSpec",
    "ActionStatus",
    "BatchResult",
    "DerivedFact",
    "Fact",
    "FactCache",
    "FactProber",
    "Precondition",
    "Snapshot",
    "SubStep",
]
