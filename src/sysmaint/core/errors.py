"""Error kinds shared by the prober, the action registry and the platform layer."""

from __future__ import annotations


class MaintenanceError(Exception):
    """Base class for every sysmaint error."""


class ProbeTimeout(MaintenanceError):
    """A fact query did not resolve before its individual deadline."""

    def __init__(self, key: str) -> None:
        super().__init__("timeout")
        self.key = key


class ProbeFailure(MaintenanceError):
    """A fact query raised or produced an unusable value."""

    def __init__(self, key: str, cause: BaseException | str) -> None:
        if isinstance(cause, BaseException):
            description = f"{type(cause).__name__}: {cause}"
        else:
            description = cause
        super().__init__(description)
        self.key = key
        self.cause = cause


class PreconditionUnmet(MaintenanceError):
    """An action precondition does not hold on the snapshot."""

    def __init__(self, fact: str, reason: str) -> None:
        super().__init__(f"{fact}: {reason}")
        self.fact = fact
        self.reason = reason


class SubStepFailure(MaintenanceError):
    """One sub-step of an action failed; carries operation and cause."""

    def __init__(self, step: str, operation: str, cause: BaseException | str) -> None:
        if isinstance(cause, BaseException):
            description = f"{type(cause).__name__}: {cause}"
        else:
            description = cause
        super().__init__(f"{operation} failed: {description}")
        self.step = step
        self.operation = operation
        self.cause = cause


class DuplicateActionError(MaintenanceError):
    """An action id was registered twice."""

    def __init__(self, action_id: str) -> None:
        super().__init__(f"Action '{action_id}' is already registered")
        self.action_id = action_id


class UnknownActionError(MaintenanceError):
    """An action id is not registered."""

    def __init__(self, action_id: str) -> None:
        super().__init__(f"Action '{action_id}' is not registered")
        self.action_id = action_id


class CatalogError(MaintenanceError):
    """The declarative action table could not be loaded."""


class CommandError(MaintenanceError):
    """An OS command could not be started or exited non-zero."""

    def __init__(self, command: list[str], returncode: int | None, output: str = "") -> None:
        excerpt = " ".join(output.split())[:300]
        if returncode is None:
            message = f"{command[0]} could not be started"
        else:
            message = f"{command[0]} exited with status {returncode}"
        if excerpt:
            message = f"{message}: {excerpt}"
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.output = output
