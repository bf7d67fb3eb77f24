"""
Engine-wide exception hierarchy.

Every error the process engine surfaces to a collaborator derives from
``ProcessEngineError`` so callers can register one handler for the whole
family and still branch on the concrete type.

Usage:
    from procflow.errors import AlreadyDecided, RunNotFound

    raise RunNotFound(run_id)
    raise AlreadyDecided(validation_id, status="approved")
"""


class ProcessEngineError(Exception):
    """Base class for all engine errors."""


class GraphMalformed(ProcessEngineError):
    """Raised when a graph definition violates a structural invariant.

    Fatal: a malformed graph is rejected before any run starts.

    Args:
        errors: One human-readable line per violation.
        graph_id: Optional id of the offending graph.
    """

    def __init__(self, errors: list[str] | str, graph_id: str | None = None) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        self.graph_id = graph_id
        prefix = f"Graph '{graph_id}' is malformed" if graph_id else "Graph is malformed"
        super().__init__(f"{prefix}: {'; '.join(self.errors)}")


class GraphEditError(GraphMalformed):
    """Raised when a structural edit cannot be applied (e.g. ambiguous insertion point)."""


class NotFoundError(ProcessEngineError):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Run", "ValidationInstance").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = resource
        if resource_id is not None:
            msg += f" id={resource_id}"
        super().__init__(f"{msg} not found")


class GraphNotFound(NotFoundError):
    def __init__(self, graph_id: str, version: int | None = None) -> None:
        ref = graph_id if version is None else f"{graph_id}@v{version}"
        super().__init__("Graph", ref)


class RunNotFound(NotFoundError):
    def __init__(self, run_id: str) -> None:
        super().__init__("Run", run_id)


class ValidationNotFound(NotFoundError):
    def __init__(self, validation_id: str) -> None:
        super().__init__("ValidationInstance", validation_id)


class AlreadyDecided(ProcessEngineError):
    """Raised when a decision targets a validation instance that is no longer pending.

    Caller error: no state is changed.
    """

    def __init__(self, validation_id: str, status: str) -> None:
        self.validation_id = validation_id
        self.status = status
        super().__init__(f"Validation {validation_id} is already {status}")


class RunNotPaused(ProcessEngineError):
    """Raised when a resume signal does not match anything the run is waiting on.

    Caller error: no state is changed.
    """

    def __init__(self, run_id: str, reason: str) -> None:
        self.run_id = run_id
        self.reason = reason
        super().__init__(f"Run {run_id} cannot be resumed: {reason}")


class RecipientUnresolved(ProcessEngineError):
    """Raised (or logged) when an approver or notification recipient cannot be resolved.

    The engine degrades gracefully by default: the instance is created without
    an approver, or the notification is skipped. Only strict approver resolution
    turns this into a run failure.
    """

    def __init__(self, kind: str, detail: str) -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"Could not resolve {kind}: {detail}")


class EventHandlerFailed(ProcessEngineError):
    """Wraps the exception raised by a domain event handler.

    The message is stored on the event as ``error_message`` and the event stays
    unprocessed until a later sweep retries it.
    """

    def __init__(self, event_id: str, event_type: str, cause: BaseException) -> None:
        self.event_id = event_id
        self.event_type = event_type
        self.cause = cause
        super().__init__(f"Handler for {event_type} failed on event {event_id}: {cause}")
