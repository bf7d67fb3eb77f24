"""
Run Schema - One execution of a process graph.

A Run holds the live branch pointers, the join bookkeeping, and the context
seeded at start. The execution log is stored separately as an append-only
list of ExecutionLogEntry records so it can grow without rewriting the run.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class RunStatus(StrEnum):
    """Status of a run."""

    RUNNING = "running"  # At least one branch waits on a task
    PAUSED = "paused"  # Every live branch waits on a validation, join or sub-process
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_RUN_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})


class PointerState(StrEnum):
    ACTIVE = "active"  # Will be advanced by the current walk
    WAITING = "waiting"  # Parked on a suspending node


class BranchPointer(BaseModel):
    """The position of one live branch inside a run."""

    id: str
    node_id: str
    branch_id: str | None = None  # None on the main line, set for fork branches
    state: PointerState = PointerState.ACTIVE


class JoinState(BaseModel):
    """Arrivals recorded at one join node."""

    arrived: list[str] = Field(default_factory=list)  # Branch ids, first-arrival order
    fired: bool = False


class Run(BaseModel):
    """
    A complete execution of a process graph.

    ``current_node_id`` is display-only: it mirrors the most recently moved
    pointer and is never read back to drive execution.
    """

    id: str
    graph_id: str
    graph_version: int = 1
    status: RunStatus = RunStatus.RUNNING

    pointers: list[BranchPointer] = Field(default_factory=list)
    current_node_id: str | None = None
    join_states: dict[str, JoinState] = Field(default_factory=dict)

    context: dict[str, Any] = Field(default_factory=dict)
    started_by: str | None = None
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None
    failure_reason: str | None = None

    model_config = {"extra": "allow"}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def get_pointer(self, pointer_id: str) -> BranchPointer | None:
        for pointer in self.pointers:
            if pointer.id == pointer_id:
                return pointer
        return None

    def waiting_at(self, node_id: str) -> list[BranchPointer]:
        """Pointers parked on ``node_id``."""
        return [
            p for p in self.pointers if p.node_id == node_id and p.state == PointerState.WAITING
        ]

    @property
    def entity_type(self) -> str:
        return str(self.context.get("entity_type", "request"))

    @property
    def entity_id(self) -> str | None:
        value = self.context.get("entity_id")
        return str(value) if value is not None else None


class ExecutionLogEntry(BaseModel):
    """One append-only entry of a run's execution log."""

    run_id: str
    sequence: int = 0  # Monotonic per run, assigned by storage
    timestamp: datetime = Field(default_factory=datetime.now)
    node_id: str | None = None
    action: str
    details: dict[str, Any] = Field(default_factory=dict)
