"""
Process Engine - Entry point for collaborators.

Wires storage, the graph store, the validation gate, notifications, the
event bus, the completion cascade and the run executor together, and
exposes the operations the surrounding application calls.

Usage:
    graphs = InMemoryGraphStore([build_linear([TaskSpec(title="Prepare")], graph_id="p")])
    engine = ProcessEngine(graphs=graphs, profiles=StaticProfileDirectory({"alice": "bob"}))

    run_id = await engine.start_run("p", {"entity_id": "req-1", "requester_id": "alice"})
    await engine.complete_task(run_id, "task-1")
    pending = await engine.get_pending_validations("bob")
    await engine.decide_validation(pending[0].id, "approved", decided_by="bob")
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from procflow.config import EngineConfig
from procflow.errors import NotFoundError, RunNotFound, RunNotPaused
from procflow.runtime.cascade import CompletionCascade
from procflow.runtime.collaborators import (
    GraphStore,
    InMemoryGraphStore,
    PreferenceStore,
    ProfileDirectory,
)
from procflow.runtime.event_bus import EventBus, SweepResult
from procflow.runtime.executor import RunExecutor
from procflow.runtime.locks import RunLockManager
from procflow.runtime.notifications import NotificationService
from procflow.runtime.validation_gate import ValidationGate
from procflow.schemas.entities import TERMINAL_TASK_STATUSES, TaskRecord, TaskStatus
from procflow.schemas.event import DomainEvent, EntityType, EventType
from procflow.schemas.run import ExecutionLogEntry, Run
from procflow.schemas.validation import Decision, ValidationInstance
from procflow.storage.backend import InMemoryStorage

logger = logging.getLogger(__name__)


class ProcessEngine:
    def __init__(
        self,
        storage: InMemoryStorage | None = None,
        graphs: GraphStore | None = None,
        profiles: ProfileDirectory | None = None,
        preferences: PreferenceStore | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or EngineConfig()
        self.storage = storage if storage is not None else InMemoryStorage()
        self.graphs = graphs if graphs is not None else InMemoryGraphStore()
        self.locks = RunLockManager()
        self._clock = clock

        self.notifications = NotificationService(
            self.storage, preferences, self.config, clock=clock
        )
        self.gate = ValidationGate(self.storage, profiles, self.config, clock=clock)
        self.bus = EventBus(self.storage, self.notifications, config=self.config, clock=clock)
        self.cascade = CompletionCascade(self.storage, emit=self.bus.emit, clock=clock)
        self.bus.cascade = self.cascade
        self.executor = RunExecutor(
            self.storage,
            self.graphs,
            self.gate,
            self.notifications,
            config=self.config,
            locks=self.locks,
            emit=self.bus.emit,
            clock=clock,
        )

        # Completed sub-processes unpark the run branch that started them
        self.bus.subscribe([EventType.SUB_PROCESS_COMPLETED], self._resume_sub_process)

    async def _resume_sub_process(self, event: DomainEvent) -> None:
        await self.executor.on_sub_process_completed(event.entity_id)

    # === RUNS ===

    async def start_run(
        self,
        graph_id: str,
        context: dict[str, Any],
        started_by: str | None = None,
        version: int | None = None,
    ) -> str:
        """Start a run and return its id."""
        run = await self.executor.start(graph_id, context, started_by=started_by, version=version)
        return run.id

    async def complete_task(self, run_id: str, node_id: str) -> Run:
        return await self.executor.on_task_completed(run_id, node_id)

    async def on_branch_arrived(self, run_id: str, join_node_id: str, branch_id: str) -> Run:
        return await self.executor.on_branch_arrived(run_id, join_node_id, branch_id)

    async def resume_run(self, run_id: str) -> Run:
        return await self.executor.resume_run(run_id)

    async def cancel_run(self, run_id: str, reason: str | None = None) -> Run:
        return await self.executor.cancel(run_id, reason)

    async def get_run(self, run_id: str) -> Run:
        run = await self.storage.get_run(run_id)
        if run is None:
            raise RunNotFound(run_id)
        return run

    async def get_execution_log(self, run_id: str) -> list[ExecutionLogEntry]:
        return await self.storage.get_log(run_id)

    # === VALIDATIONS ===

    async def decide_validation(
        self,
        validation_id: str,
        decision: Decision | str,
        comment: str | None = None,
        decided_by: str | None = None,
    ) -> Run:
        return await self.executor.on_validation_decided(
            validation_id, decision, comment=comment, decided_by=decided_by
        )

    async def get_pending_validations(self, approver_id: str) -> list[ValidationInstance]:
        return await self.gate.get_pending_validations(approver_id)

    async def get_overdue_validations(
        self, now: datetime | None = None
    ) -> list[ValidationInstance]:
        return await self.gate.get_overdue_validations(now)

    # === TASKS AND EVENTS ===

    async def report_task_status(
        self,
        task_id: str,
        status: TaskStatus | str,
        changed_by: str | None = None,
    ) -> TaskRecord:
        """
        Record a task status change and emit ``task_status_changed``.

        When the task was created for a run's task node and reaches done or
        validated, the branch parked on that node is resumed as well.

        Raises:
            NotFoundError: Unknown task
        """
        status = TaskStatus(status)
        task = await self.storage.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        if task.status == status:
            return task

        from_status = task.status
        task.status = status
        task.updated_at = self._clock()
        await self.storage.save_task(task)
        await self.bus.emit(
            EventType.TASK_STATUS_CHANGED,
            EntityType.TASK,
            task.id,
            {"from_status": from_status.value, "to_status": status.value},
            task.run_id,
            changed_by,
        )

        if status in TERMINAL_TASK_STATUSES and task.run_id and task.node_id:
            try:
                await self.executor.on_task_completed(task.run_id, task.node_id)
            except RunNotPaused as e:
                logger.debug(f"Task {task.id} done but its run does not wait on it: {e}")
        return task

    async def process_pending_events(self, now: datetime | None = None) -> SweepResult:
        return await self.bus.process_all_pending(now)
