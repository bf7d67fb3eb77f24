"""
Records owned by the surrounding application that the engine reads and updates.

The completion cascade walks TaskRecord → SubProcessRun → RequestRecord and
promotes each parent when all of its children are done.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class TaskStatus(StrEnum):
    TO_ASSIGN = "to_assign"
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    PENDING_VALIDATION = "pending-validation"
    VALIDATED = "validated"
    REFUSED = "refused"
    REVIEW = "review"


# Statuses that count as "finished" for sub-process completion
TERMINAL_TASK_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.VALIDATED})


class SubProcessStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"


class RequestStatus(StrEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskRecord(BaseModel):
    id: str
    title: str = ""
    status: TaskStatus = TaskStatus.TODO
    request_id: str | None = None
    sub_process_run_id: str | None = None
    assignee_id: str | None = None
    requester_id: str | None = None
    department_id: str | None = None
    run_id: str | None = None
    node_id: str | None = None
    updated_at: datetime = Field(default_factory=datetime.now)


class SubProcessRun(BaseModel):
    """A sub-process started by a run's sub_process node, or created directly."""

    id: str
    request_id: str | None = None
    sub_process_template_id: str | None = None
    name: str = ""
    status: SubProcessStatus = SubProcessStatus.PENDING
    # Set when a run's sub_process node created this instance
    run_id: str | None = None
    node_id: str | None = None
    completed_at: datetime | None = None


class RequestRecord(BaseModel):
    id: str
    title: str = ""
    requester_id: str | None = None
    status: RequestStatus = RequestStatus.OPEN
    completed_at: datetime | None = None
