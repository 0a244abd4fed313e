"""Declarative action table loader.

The table is a JSON file validated against ``catalog.schema.json``. Each
entry becomes an :class:`ActionSpec`; the optional ``restore`` block becomes
the emergency-restore pseudo-action. Configuration errors surface here, at
load time, as :class:`CatalogError`.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator

from sysmaint.actions.registry import ActionRegistry
from sysmaint.core.errors import CatalogError
from sysmaint.core.types import ActionSpec, Operation, Precondition, RestorePlan, StateCheck, SubStep

BUNDLED_CATALOG_PATH = Path(__file__).with_name("catalog.json")
SCHEMA_PATH = Path(__file__).with_name("catalog.schema.json")


@dataclass(frozen=True, slots=True)
class Catalog:
    actions: tuple[ActionSpec, ...]
    restore: RestorePlan | None = None

    def operations(self) -> frozenset[str]:
        """Every operation name the table's sub-steps and guards refer to."""
        names: set[str] = set()
        for spec in self.actions:
            for step in (*spec.apply, *spec.revert):
                names.add(step.operation)
                if step.guard is not None:
                    names.add(step.guard.operation)
        return frozenset(names)


def _read_json(path: Path) -> dict[str, Any]:
    try:
        raw_content = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise CatalogError(f"Action catalog not found: {path}") from exc

    try:
        payload = json.loads(raw_content)
    except json.JSONDecodeError as exc:
        raise CatalogError(f"Invalid JSON in action catalog: {path}") from exc

    if not isinstance(payload, dict):
        raise CatalogError(f"Action catalog root must be a JSON object: {path}")
    return payload


def _validator() -> Draft202012Validator:
    schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    return Draft202012Validator(schema)


def _build_precondition(raw: Mapping[str, Any]) -> Precondition:
    fact = str(raw["fact"])
    if "equals" in raw:
        return Precondition.equals(fact, _fact_value(raw["equals"]))
    if "not_equals" in raw:
        rejected = _fact_value(raw["not_equals"])
        return Precondition(fact, lambda value: value != rejected, f"{fact} != {rejected!r}")
    if "one_of" in raw:
        return Precondition.one_of(fact, [_fact_value(item) for item in raw["one_of"]])
    return Precondition.present(fact)


def _fact_value(raw: Any) -> Any:
    # Sequence facts are tuples in snapshots; JSON gives lists.
    return tuple(raw) if isinstance(raw, list) else raw


def _build_step(raw: Mapping[str, Any]) -> SubStep:
    guard = None
    raw_guard = raw.get("guard")
    if raw_guard is not None:
        guard = StateCheck(
            operation=str(raw_guard["operation"]),
            args=dict(raw_guard.get("args", {})),
            expected=raw_guard["expected"],
            value_arg=raw_guard.get("value_arg"),
        )
    return SubStep(
        name=str(raw["name"]),
        operation=str(raw["operation"]),
        args=dict(raw.get("args", {})),
        guard=guard,
        restores=raw.get("restores"),
    )


def _check_revert_links(spec: ActionSpec, source: str) -> None:
    apply_steps = {step.name: step for step in spec.apply}
    for step in spec.apply:
        guard = step.guard
        if guard is not None and guard.value_arg is not None and guard.value_arg not in step.args:
            raise CatalogError(
                f"Step '{spec.id}/{step.name}' guard value_arg '{guard.value_arg}' is not one of its args in {source}"
            )
    for step in spec.revert:
        if step.restores is None:
            continue
        target = apply_steps.get(step.restores)
        if target is None or target.guard is None or target.guard.value_arg is None:
            raise CatalogError(
                f"Revert step '{spec.id}/{step.name}' restores '{step.restores}', "
                f"which is not a guarded apply step with a value_arg in {source}"
            )


def parse_catalog(payload: Mapping[str, Any], *, source: str = "<memory>") -> Catalog:
    """Validate a decoded table and convert it into specs."""
    errors = sorted(_validator().iter_errors(payload), key=str)
    if errors:
        details = "; ".join(err.message for err in errors)
        raise CatalogError(f"Invalid action catalog {source}: {details}")

    actions: list[ActionSpec] = []
    seen: set[str] = set()
    for raw in payload["actions"]:
        action_id = str(raw["id"])
        if action_id in seen:
            raise CatalogError(f"Duplicate action id '{action_id}' in {source}")
        seen.add(action_id)
        spec = ActionSpec(
            id=action_id,
            description=str(raw["description"]),
            preconditions=tuple(_build_precondition(item) for item in raw.get("preconditions", [])),
            apply=tuple(_build_step(item) for item in raw["apply"]),
            revert=tuple(_build_step(item) for item in raw.get("revert", [])),
            category=str(raw.get("category", "general")),
        )
        _check_revert_links(spec, source)
        actions.append(spec)

    restore = None
    raw_restore = payload.get("restore")
    if raw_restore is not None:
        restore_id = str(raw_restore["id"])
        if restore_id in seen:
            raise CatalogError(f"Restore id '{restore_id}' collides with an action id in {source}")
        unknown = [item for item in raw_restore["sequence"] if item not in seen]
        if unknown:
            raise CatalogError(f"Restore sequence references unknown actions {unknown} in {source}")
        restore = RestorePlan(
            id=restore_id,
            description=str(raw_restore["description"]),
            sequence=tuple(str(item) for item in raw_restore["sequence"]),
        )

    return Catalog(actions=tuple(actions), restore=restore)


def load_catalog(path: str | Path | None = None) -> Catalog:
    """Load the action table from ``path`` or the bundled default."""
    catalog_path = Path(path) if path else BUNDLED_CATALOG_PATH
    return parse_catalog(_read_json(catalog_path), source=str(catalog_path))


def build_registry(
    catalog: Catalog,
    operations: Mapping[str, Operation],
    *,
    restore_mode: str = "factory",
) -> ActionRegistry:
    """Register every catalog entry against the given OS-mutation source."""
    registry = ActionRegistry(operations, restore_mode=restore_mode)
    for spec in catalog.actions:
        registry.register(spec)
    if catalog.restore is not None:
        registry.register_restore(catalog.restore)
    return registry
