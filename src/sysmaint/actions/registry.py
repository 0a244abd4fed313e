"""Declarative action registry with best-effort, per-sub-step execution."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping, Sequence

from sysmaint.core.errors import DuplicateActionError, SubStepFailure, UnknownActionError
from sysmaint.core.types import (
    ActionResult,
    ActionSpec,
    ActionStatus,
    BatchResult,
    Operation,
    RestorePlan,
    Snapshot,
    SubStep,
    SubStepResult,
    SubStepStatus,
)

logger = logging.getLogger(__name__)

RESTORE_MODES = ("factory", "session")


def summarize(results: Sequence[SubStepResult], *, cancelled: bool = False) -> ActionStatus:
    """Fold sub-step outcomes into one action status."""
    if cancelled:
        return ActionStatus.CANCELLED
    failed = sum(1 for item in results if not item.succeeded)
    if failed == 0:
        return ActionStatus.SUCCESS
    if failed == len(results):
        return ActionStatus.FAILURE
    return ActionStatus.PARTIAL_FAILURE


def _same_state(observed: object, expected: object) -> bool:
    if isinstance(observed, (list, tuple)) and isinstance(expected, (list, tuple)):
        return list(observed) == list(expected)
    return observed == expected


class ActionRegistry:
    """Holds action specs and runs them against an injected OS-mutation source.

    Sub-steps of one action run sequentially and in declared order. A failed
    sub-step is recorded and the next one still runs. Only executing an
    unregistered id or registering a duplicate id raises.
    """

    def __init__(self, operations: Mapping[str, Operation], *, restore_mode: str = "factory") -> None:
        if restore_mode not in RESTORE_MODES:
            raise ValueError(f"restore_mode must be one of {RESTORE_MODES}, got {restore_mode!r}")
        self._operations = dict(operations)
        self._actions: dict[str, ActionSpec] = {}
        self._restores: dict[str, RestorePlan] = {}
        self._order: list[str] = []
        # Session journal: actions that mutated, and values read before each mutation.
        self._applied: set[str] = set()
        self._priors: dict[str, dict[str, object]] = {}
        self._journal_lock = threading.Lock()
        self.restore_mode = restore_mode

    def register(self, spec: ActionSpec) -> None:
        self._claim(spec.id)
        self._actions[spec.id] = spec
        self._order.append(spec.id)

    def register_restore(self, plan: RestorePlan) -> None:
        """Register an emergency-restore pseudo-action over registered actions."""
        for action_id in plan.sequence:
            if action_id not in self._actions:
                raise UnknownActionError(action_id)
        self._claim(plan.id)
        self._restores[plan.id] = plan
        self._order.append(plan.id)

    def get(self, action_id: str) -> ActionSpec:
        spec = self._actions.get(action_id)
        if spec is None:
            raise UnknownActionError(action_id)
        return spec

    def describe(self) -> list[tuple[str, str]]:
        """List ``(id, description)`` pairs in registration order."""
        listing: list[tuple[str, str]] = []
        for action_id in self._order:
            if action_id in self._restores:
                listing.append((action_id, self._restores[action_id].description))
            else:
                listing.append((action_id, self._actions[action_id].description))
        return listing

    def applied_actions(self) -> frozenset[str]:
        """Actions that mutated the system in this process and were not reverted since."""
        with self._journal_lock:
            return frozenset(self._applied)

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._actions or action_id in self._restores

    def __len__(self) -> int:
        return len(self._order)

    def execute(
        self,
        action_id: str,
        snapshot: Snapshot,
        *,
        cancel: threading.Event | None = None,
    ) -> ActionResult:
        """Check preconditions against ``snapshot`` and run the apply sub-steps."""
        if action_id in self._restores:
            return self._run_restore(self._restores[action_id], cancel)
        spec = self.get(action_id)

        unmet = [reason for reason in (item.check(snapshot) for item in spec.preconditions) if reason]
        if unmet:
            detail = "; ".join(str(reason) for reason in unmet)
            logger.info("action_skipped action=%s reason=%s", action_id, detail)
            return ActionResult(action_id, ActionStatus.SKIPPED_PRECONDITION, (), detail=detail)

        results, cancelled = self._run_steps(action_id, spec.apply, cancel, capture=True)
        # Only a sub-step that actually mutated makes the action part of this session.
        if any(item.status is SubStepStatus.OK for item in results):
            with self._journal_lock:
                self._applied.add(action_id)
        status = summarize(results, cancelled=cancelled)
        logger.info("action_completed action=%s status=%s", action_id, status.value)
        return ActionResult(
            action_id,
            status,
            tuple(results),
            detail="cancelled before completion" if cancelled else "",
        )

    def execute_batch(
        self,
        action_ids: Iterable[str],
        snapshot: Snapshot,
        *,
        cancel: threading.Event | None = None,
    ) -> BatchResult:
        """Run each action in order against the same snapshot; never stop on failure."""
        ids = list(action_ids)
        for action_id in ids:
            if action_id not in self:
                raise UnknownActionError(action_id)

        results: list[ActionResult] = []
        cancelled = False
        for action_id in ids:
            if cancelled or (cancel is not None and cancel.is_set()):
                cancelled = True
                results.append(
                    ActionResult(action_id, ActionStatus.CANCELLED, (), detail="batch cancelled before start")
                )
                continue
            results.append(self.execute(action_id, snapshot, cancel=cancel))
        if cancelled:
            skipped = sum(1 for result in results if result.status is ActionStatus.CANCELLED)
            logger.info("batch_cancelled requested=%d cancelled=%d", len(ids), skipped)
        return BatchResult(tuple(results), cancelled=cancelled)

    def revert(self, action_id: str, *, cancel: threading.Event | None = None) -> ActionResult:
        """Run the revert sub-steps, whether or not apply ever ran.

        Values captured before this session's apply are written back in place
        of the declared revert values.
        """
        if action_id in self._restores:
            return ActionResult(action_id, ActionStatus.SUCCESS, (), detail="nothing to revert", phase="revert")
        spec = self.get(action_id)
        results, cancelled = self._run_steps(action_id, self._revert_steps(spec, captured=True), cancel)
        if any(item.succeeded for item in results):
            self._forget(action_id)
        status = summarize(results, cancelled=cancelled)
        logger.info("action_reverted action=%s status=%s", action_id, status.value)
        return ActionResult(
            action_id,
            status,
            tuple(results),
            detail="cancelled before completion" if cancelled else "",
            phase="revert",
        )

    def _run_restore(self, plan: RestorePlan, cancel: threading.Event | None) -> ActionResult:
        session = self.restore_mode == "session"
        if session:
            applied = self.applied_actions()
            sequence = [action_id for action_id in plan.sequence if action_id in applied]
        else:
            sequence = list(plan.sequence)
        if not sequence:
            return ActionResult(plan.id, ActionStatus.SUCCESS, (), detail="no session changes to restore")

        results: list[SubStepResult] = []
        cancelled = False
        for action_id in sequence:
            revert_steps = self._revert_steps(self._actions[action_id], captured=session)
            steps, cancelled = self._run_steps(action_id, revert_steps, cancel)
            results.extend(
                SubStepResult(f"{action_id}/{item.name}", item.status, item.detail) for item in steps
            )
            if any(item.succeeded for item in steps):
                self._forget(action_id)
            if cancelled:
                break

        status = summarize(results, cancelled=cancelled)
        logger.info(
            "restore_completed action=%s mode=%s status=%s", plan.id, self.restore_mode, status.value
        )
        return ActionResult(
            plan.id,
            status,
            tuple(results),
            detail=f"mode={self.restore_mode} actions={','.join(sequence)}",
        )

    def _revert_steps(self, spec: ActionSpec, *, captured: bool) -> tuple[SubStep, ...]:
        if not captured:
            return spec.revert
        with self._journal_lock:
            priors = dict(self._priors.get(spec.id, {}))
        if not priors:
            return spec.revert

        apply_steps = {step.name: step for step in spec.apply}
        steps: list[SubStep] = []
        for step in spec.revert:
            source = apply_steps.get(step.restores or "")
            prior = priors.get(step.restores or "")
            if source is None or source.guard is None or source.guard.value_arg is None or _is_absent(prior):
                steps.append(step)
                continue
            args = {**source.args, source.guard.value_arg: prior}
            steps.append(SubStep(step.name, source.operation, args))
        return tuple(steps)

    def _run_steps(
        self,
        action_id: str,
        steps: Sequence[SubStep],
        cancel: threading.Event | None,
        *,
        capture: bool = False,
    ) -> tuple[list[SubStepResult], bool]:
        results: list[SubStepResult] = []
        for step in steps:
            # Cancellation is honoured between sub-steps, never inside one.
            if cancel is not None and cancel.is_set():
                return results, True
            results.append(self._run_step(action_id, step, capture=capture))
        return results, False

    def _run_step(self, action_id: str, step: SubStep, *, capture: bool = False) -> SubStepResult:
        operation = self._operations.get(step.operation)
        if operation is None:
            failure = SubStepFailure(step.name, step.operation, "operation is not available")
            logger.warning("substep_failed action=%s step=%s error=%s", action_id, step.name, failure)
            return SubStepResult(step.name, SubStepStatus.FAILED, str(failure))

        readable, observed = self._read_state(step)
        if readable and step.guard is not None and _same_state(observed, step.guard.expected):
            if capture:
                self._remember(action_id, step, observed)
            return SubStepResult(step.name, SubStepStatus.UNCHANGED, "already in desired state")

        try:
            outcome = operation(**step.args)
        except Exception as exc:
            failure = SubStepFailure(step.name, step.operation, exc)
            logger.warning("substep_failed action=%s step=%s error=%s", action_id, step.name, failure)
            return SubStepResult(step.name, SubStepStatus.FAILED, str(failure))

        if capture and readable:
            self._remember(action_id, step, observed)
        detail = step.operation if outcome is None else f"{step.operation}: {outcome}"
        return SubStepResult(step.name, SubStepStatus.OK, detail)

    def _read_state(self, step: SubStep) -> tuple[bool, object]:
        guard = step.guard
        if guard is None:
            return False, None
        read = self._operations.get(guard.operation)
        if read is None:
            return False, None
        try:
            return True, read(**guard.args)
        except Exception as exc:
            # An unreadable state falls through to the mutation itself.
            logger.debug("guard_unreadable step=%s operation=%s error=%s", step.name, guard.operation, exc)
            return False, None

    def _remember(self, action_id: str, step: SubStep, observed: object) -> None:
        if step.guard is None or step.guard.value_arg is None:
            return
        with self._journal_lock:
            # The first read of a session is the pre-apply value; re-applies keep it.
            self._priors.setdefault(action_id, {}).setdefault(step.name, observed)

    def _claim(self, action_id: str) -> None:
        if action_id in self:
            raise DuplicateActionError(action_id)

    def _forget(self, action_id: str) -> None:
        with self._journal_lock:
            self._applied.discard(action_id)
            self._priors.pop(action_id, None)


def _is_absent(value: object) -> bool:
    return value is None or (isinstance(value, (list, tuple)) and not value)
