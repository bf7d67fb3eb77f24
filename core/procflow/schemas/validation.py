"""Validation instances: one approval gate reached by one run branch."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class ValidationStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"  # Sibling branch cancelled by a rejection


class Decision(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


class ValidationInstance(BaseModel):
    """
    An approval gate created when a run branch reaches a validation node.

    Exactly one of ``approver_id``, ``approver_department_id`` or
    ``approver_role`` is normally set. All three may be empty when the approver
    could not be resolved; such an instance is still decidable by anyone who
    holds its id.
    """

    id: str
    run_id: str
    node_id: str
    branch_id: str | None = None

    entity_type: str = "request"
    entity_id: str | None = None

    approver_type: str
    approver_id: str | None = None
    approver_department_id: str | None = None
    approver_role: str | None = None

    status: ValidationStatus = ValidationStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.now)
    due_at: datetime | None = None
    sla_hours: float | None = None
    reminder_hours: float | None = None
    on_timeout_action: str | None = None

    decided_by: str | None = None
    decided_at: datetime | None = None
    decision_comment: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == ValidationStatus.PENDING
