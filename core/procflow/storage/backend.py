"""
In-memory storage backend for engine records.

Holds runs, execution log entries, validation instances, domain events,
notification records, and the task / sub-process / request records the
completion cascade reads. All operations are async so a durable backend can
be substituted without changing callers.

Records are copied on the way in and on the way out: a caller mutating a
loaded model never changes stored state until it saves again.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import TypeVar

from pydantic import BaseModel

from procflow.schemas.entities import RequestRecord, SubProcessRun, TaskRecord
from procflow.schemas.event import DomainEvent
from procflow.schemas.notification import NotificationRecord
from procflow.schemas.run import ExecutionLogEntry, Run, RunStatus
from procflow.schemas.validation import ValidationInstance, ValidationStatus

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

RUNS = "runs"
VALIDATIONS = "validations"
EVENTS = "events"
NOTIFICATIONS = "notifications"
TASKS = "tasks"
SUB_PROCESSES = "sub_processes"
REQUESTS = "requests"

COLLECTIONS = {
    RUNS: Run,
    VALIDATIONS: ValidationInstance,
    EVENTS: DomainEvent,
    NOTIFICATIONS: NotificationRecord,
    TASKS: TaskRecord,
    SUB_PROCESSES: SubProcessRun,
    REQUESTS: RequestRecord,
}


class InMemoryStorage:
    """
    Async in-process store.

    The execution log is append-only: ``append_log`` assigns the next
    per-run sequence number and never rewrites earlier entries. Appends for
    different runs touch different lists and do not contend.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[str, BaseModel]] = {name: {} for name in COLLECTIONS}
        self._logs: dict[str, list[ExecutionLogEntry]] = defaultdict(list)
        self._event_sequence = 0

    # === GENERIC HELPERS ===

    def _put(self, collection: str, key: str, record: M) -> M:
        stored = record.model_copy(deep=True)
        self._records[collection][key] = stored
        return stored

    def _get(self, collection: str, key: str) -> BaseModel | None:
        record = self._records[collection].get(key)
        return record.model_copy(deep=True) if record is not None else None

    def _all(self, collection: str) -> list:
        return [r.model_copy(deep=True) for r in self._records[collection].values()]

    async def _persist(self, collection: str, record: BaseModel) -> None:
        """Hook for durable subclasses; called after every save."""

    # === RUN OPERATIONS ===

    async def save_run(self, run: Run) -> None:
        stored = self._put(RUNS, run.id, run)
        await self._persist(RUNS, stored)

    async def get_run(self, run_id: str) -> Run | None:
        return self._get(RUNS, run_id)

    async def list_runs(self, status: RunStatus | None = None) -> list[Run]:
        runs = self._all(RUNS)
        if status is not None:
            runs = [r for r in runs if r.status == status]
        return runs

    # === EXECUTION LOG ===

    async def append_log(
        self,
        run_id: str,
        action: str,
        node_id: str | None = None,
        details: dict | None = None,
        timestamp: datetime | None = None,
    ) -> ExecutionLogEntry:
        """Append one entry to a run's log and return it with its sequence number."""
        entries = self._logs[run_id]
        entry = ExecutionLogEntry(
            run_id=run_id,
            sequence=len(entries) + 1,
            timestamp=timestamp or datetime.now(),
            node_id=node_id,
            action=action,
            details=dict(details or {}),
        )
        entries.append(entry)
        await self._persist_log(entry)
        return entry.model_copy(deep=True)

    async def _persist_log(self, entry: ExecutionLogEntry) -> None:
        """Hook for durable subclasses; called after every log append."""

    async def get_log(self, run_id: str) -> list[ExecutionLogEntry]:
        return [e.model_copy(deep=True) for e in self._logs.get(run_id, [])]

    # === VALIDATION OPERATIONS ===

    async def save_validation(self, instance: ValidationInstance) -> None:
        stored = self._put(VALIDATIONS, instance.id, instance)
        await self._persist(VALIDATIONS, stored)

    async def get_validation(self, validation_id: str) -> ValidationInstance | None:
        return self._get(VALIDATIONS, validation_id)

    async def list_validations(
        self,
        run_id: str | None = None,
        status: ValidationStatus | None = None,
    ) -> list[ValidationInstance]:
        instances = self._all(VALIDATIONS)
        if run_id is not None:
            instances = [v for v in instances if v.run_id == run_id]
        if status is not None:
            instances = [v for v in instances if v.status == status]
        return sorted(instances, key=lambda v: v.created_at)

    # === EVENT OPERATIONS ===

    async def save_event(self, event: DomainEvent) -> DomainEvent:
        """Persist an event. New events receive the next global sequence number."""
        if event.sequence == 0:
            self._event_sequence += 1
            event = event.model_copy(update={"sequence": self._event_sequence})
        stored = self._put(EVENTS, event.id, event)
        await self._persist(EVENTS, stored)
        return stored.model_copy(deep=True)

    async def get_event(self, event_id: str) -> DomainEvent | None:
        return self._get(EVENTS, event_id)

    async def list_events(self, processed: bool | None = None) -> list[DomainEvent]:
        events = self._all(EVENTS)
        if processed is not None:
            events = [e for e in events if e.processed == processed]
        return sorted(events, key=lambda e: e.sequence)

    async def list_due_events(self, now: datetime, limit: int | None = None) -> list[DomainEvent]:
        """Unprocessed, non dead-lettered events whose backoff has elapsed, oldest first."""
        due = [e for e in await self.list_events(processed=False) if e.is_due(now)]
        return due[:limit] if limit is not None else due

    # === NOTIFICATION OPERATIONS ===

    async def save_notification(self, record: NotificationRecord) -> None:
        stored = self._put(NOTIFICATIONS, record.id, record)
        await self._persist(NOTIFICATIONS, stored)

    async def get_notification(self, notification_id: str) -> NotificationRecord | None:
        return self._get(NOTIFICATIONS, notification_id)

    async def list_notifications(
        self,
        run_id: str | None = None,
        recipient_id: str | None = None,
        event_id: str | None = None,
    ) -> list[NotificationRecord]:
        records = self._all(NOTIFICATIONS)
        if event_id is not None:
            records = [n for n in records if n.event_id == event_id]
        if run_id is not None:
            records = [n for n in records if n.run_id == run_id]
        if recipient_id is not None:
            records = [n for n in records if n.recipient_id == recipient_id]
        return sorted(records, key=lambda n: n.created_at)

    # === TASKS, SUB-PROCESSES, REQUESTS ===

    async def save_task(self, task: TaskRecord) -> None:
        stored = self._put(TASKS, task.id, task)
        await self._persist(TASKS, stored)

    async def get_task(self, task_id: str) -> TaskRecord | None:
        return self._get(TASKS, task_id)

    async def list_tasks(
        self,
        sub_process_run_id: str | None = None,
        request_id: str | None = None,
    ) -> list[TaskRecord]:
        tasks = self._all(TASKS)
        if sub_process_run_id is not None:
            tasks = [t for t in tasks if t.sub_process_run_id == sub_process_run_id]
        if request_id is not None:
            tasks = [t for t in tasks if t.request_id == request_id]
        return tasks

    async def save_sub_process_run(self, sub_run: SubProcessRun) -> None:
        stored = self._put(SUB_PROCESSES, sub_run.id, sub_run)
        await self._persist(SUB_PROCESSES, stored)

    async def get_sub_process_run(self, sub_run_id: str) -> SubProcessRun | None:
        return self._get(SUB_PROCESSES, sub_run_id)

    async def list_sub_process_runs(self, request_id: str | None = None) -> list[SubProcessRun]:
        sub_runs = self._all(SUB_PROCESSES)
        if request_id is not None:
            sub_runs = [s for s in sub_runs if s.request_id == request_id]
        return sub_runs

    async def find_sub_process_run(self, run_id: str, node_id: str) -> SubProcessRun | None:
        """The sub-process run a given run's sub_process node created, if any."""
        for sub_run in self._records[SUB_PROCESSES].values():
            if sub_run.run_id == run_id and sub_run.node_id == node_id:
                return sub_run.model_copy(deep=True)
        return None

    async def save_request(self, request: RequestRecord) -> None:
        stored = self._put(REQUESTS, request.id, request)
        await self._persist(REQUESTS, stored)

    async def get_request(self, request_id: str) -> RequestRecord | None:
        return self._get(REQUESTS, request_id)
