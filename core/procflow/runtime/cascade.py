"""
Completion Cascade - Propagates "all children done" upwards.

task → sub-process run → request

Each check re-derives completeness from the current children instead of
keeping counters, so calling it twice (or from a retried event) changes
nothing the second time: an already completed parent is neither re-marked
nor re-announced.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from procflow.schemas.entities import (
    TERMINAL_TASK_STATUSES,
    RequestRecord,
    RequestStatus,
    SubProcessRun,
    SubProcessStatus,
)
from procflow.schemas.event import EntityType, EventType
from procflow.storage.backend import InMemoryStorage

logger = logging.getLogger(__name__)

Emitter = Callable[..., Awaitable[Any]]


class CompletionCascade:
    def __init__(
        self,
        storage: InMemoryStorage,
        emit: Emitter | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage = storage
        self.emit = emit
        self._clock = clock

    async def on_task_reached_terminal_status(self, task_id: str) -> SubProcessRun | None:
        """
        Complete the task's sub-process run when all of its tasks are done or validated.

        Returns:
            The sub-process run if this call completed it, else None
        """
        task = await self.storage.get_task(task_id)
        if task is None or not task.sub_process_run_id:
            return None

        sub_run = await self.storage.get_sub_process_run(task.sub_process_run_id)
        if sub_run is None or sub_run.status == SubProcessStatus.COMPLETED:
            return None

        siblings = await self.storage.list_tasks(sub_process_run_id=sub_run.id)
        pending = [t.id for t in siblings if t.status not in TERMINAL_TASK_STATUSES]
        if pending:
            logger.debug(f"Sub-process {sub_run.id} still has {len(pending)} open tasks")
            return None

        sub_run.status = SubProcessStatus.COMPLETED
        sub_run.completed_at = self._clock()
        await self.storage.save_sub_process_run(sub_run)
        logger.info(f"Sub-process {sub_run.id} completed ({len(siblings)} tasks)")

        if self.emit is not None:
            await self.emit(
                EventType.SUB_PROCESS_COMPLETED,
                EntityType.REQUEST,
                sub_run.id,
                {"request_id": sub_run.request_id},
                sub_run.run_id,
            )
        return sub_run

    async def on_sub_process_completed(self, sub_process_run_id: str) -> RequestRecord | None:
        """
        Mark the parent request done when every one of its sub-process runs is completed.

        Returns:
            The request if this call completed it, else None
        """
        sub_run = await self.storage.get_sub_process_run(sub_process_run_id)
        if sub_run is None or not sub_run.request_id:
            return None

        siblings = await self.storage.list_sub_process_runs(request_id=sub_run.request_id)
        if not siblings or any(s.status != SubProcessStatus.COMPLETED for s in siblings):
            return None

        request = await self.storage.get_request(sub_run.request_id)
        if request is None:
            logger.debug(f"Request {sub_run.request_id} not found, cascade stops")
            return None
        if request.status == RequestStatus.DONE:
            return None

        request.status = RequestStatus.DONE
        request.completed_at = self._clock()
        await self.storage.save_request(request)
        logger.info(f"Request {request.id} done ({len(siblings)} sub-processes)")

        if self.emit is not None:
            await self.emit(EventType.PROCESS_COMPLETED, EntityType.REQUEST, request.id, {})
        return request
