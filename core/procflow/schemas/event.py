"""
Domain events - Durable, typed facts about requests, tasks, runs and validations.

Events are persisted before processing. Types in ``IMMEDIATE_EVENT_TYPES``
are processed synchronously after emission; every other type waits for a
sweep. An event is marked processed only after its handler finished without
raising.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """Domain event types."""

    # Requests
    REQUEST_CREATED = "request_created"
    REQUEST_UPDATED = "request_updated"

    # Tasks
    TASK_CREATED = "task_created"
    TASK_ASSIGNED = "task_assigned"
    TASK_TO_ASSIGN = "task_to_assign"
    TASK_STATUS_CHANGED = "task_status_changed"
    TASK_COMPLETED = "task_completed"
    CHECKLIST_ITEM_COMPLETED = "checklist_item_completed"

    # Validations
    VALIDATION_REQUESTED = "validation_requested"
    VALIDATION_DECIDED = "validation_decided"

    # Sub-processes and processes
    SUB_PROCESS_STARTED = "sub_process_started"
    SUB_PROCESS_COMPLETED = "sub_process_completed"
    PROCESS_COMPLETED = "process_completed"

    # Collaboration
    COMMENT_ADDED = "comment_added"
    REMINDER_TRIGGERED = "reminder_triggered"


IMMEDIATE_EVENT_TYPES = frozenset(
    {
        EventType.REQUEST_CREATED,
        EventType.TASK_STATUS_CHANGED,
        EventType.VALIDATION_DECIDED,
        EventType.SUB_PROCESS_COMPLETED,
        EventType.PROCESS_COMPLETED,
    }
)


class EntityType(StrEnum):
    TASK = "task"
    REQUEST = "request"
    WORKFLOW_RUN = "workflow_run"
    VALIDATION = "validation"


class DomainEvent(BaseModel):
    """
    A persisted domain event.

    ``sequence`` is assigned by storage and orders events globally, so sweeps
    process the oldest event first.
    """

    id: str
    sequence: int = 0
    event_type: EventType
    entity_type: EntityType
    entity_id: str
    run_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    triggered_by: str | None = None

    processed: bool = False
    processed_at: datetime | None = None
    error_message: str | None = None
    attempts: int = 0
    next_attempt_at: datetime | None = None
    dead_lettered: bool = False

    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_immediate(self) -> bool:
        return self.event_type in IMMEDIATE_EVENT_TYPES

    def is_due(self, now: datetime) -> bool:
        """True when the event is unprocessed, alive, and past its backoff window."""
        if self.processed or self.dead_lettered:
            return False
        return self.next_attempt_at is None or self.next_attempt_at <= now
