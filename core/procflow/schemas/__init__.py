"""Persisted records: runs, log entries, validations, events, notifications."""

from procflow.schemas.entities import (
    RequestRecord,
    RequestStatus,
    SubProcessRun,
    SubProcessStatus,
    TaskRecord,
    TaskStatus,
)
from procflow.schemas.event import DomainEvent, EntityType, EventType
from procflow.schemas.notification import (
    NotificationPreference,
    NotificationRecord,
    NotificationStatus,
)
from procflow.schemas.run import (
    BranchPointer,
    ExecutionLogEntry,
    JoinState,
    PointerState,
    Run,
    RunStatus,
)
from procflow.schemas.validation import Decision, ValidationInstance, ValidationStatus

__all__ = [
    "Run",
    "RunStatus",
    "BranchPointer",
    "PointerState",
    "JoinState",
    "ExecutionLogEntry",
    "ValidationInstance",
    "ValidationStatus",
    "Decision",
    "DomainEvent",
    "EventType",
    "EntityType",
    "NotificationRecord",
    "NotificationStatus",
    "NotificationPreference",
    "TaskRecord",
    "TaskStatus",
    "SubProcessRun",
    "SubProcessStatus",
    "RequestRecord",
    "RequestStatus",
]
