"""
Event Bus - Durable domain events with immediate and deferred processing.

Allows the engine and its collaborators to:
- Emit typed events that are persisted before anything reacts to them
- Process immediate event types synchronously, everything else in sweeps
- Subscribe extra handlers to event types
- Retry failed events with capped exponential backoff

Delivery is at-least-once: an event is marked processed only after every
handler for it succeeded, so handlers must be idempotent.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from procflow.config import EngineConfig
from procflow.errors import EventHandlerFailed, NotFoundError
from procflow.observability import set_trace_context
from procflow.runtime.notifications import NotificationService
from procflow.schemas.entities import TERMINAL_TASK_STATUSES, TaskRecord
from procflow.schemas.event import DomainEvent, EntityType, EventType
from procflow.storage.backend import InMemoryStorage

if TYPE_CHECKING:
    from procflow.runtime.cascade import CompletionCascade

logger = logging.getLogger(__name__)

# Type for event handlers
EventHandler = Callable[[DomainEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to domain events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler


@dataclass
class SweepResult:
    processed: int = 0
    errors: int = 0
    failed_event_ids: list[str] = field(default_factory=list)


class EventBus:
    """
    Persisted event log with a fixed handler table.

    Example:
        bus = EventBus(storage, notifications)

        async def audit(event: DomainEvent) -> None:
            ...

        bus.subscribe([EventType.PROCESS_COMPLETED], audit)

        event_id = await bus.emit(
            EventType.TASK_STATUS_CHANGED,
            EntityType.TASK,
            "task-1",
            {"from_status": "todo", "to_status": "done"},
        )

        result = await bus.process_all_pending()
    """

    def __init__(
        self,
        storage: InMemoryStorage,
        notifications: NotificationService,
        cascade: "CompletionCascade | None" = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage = storage
        self.notifications = notifications
        self.cascade = cascade
        self.config = config or EngineConfig()
        self._clock = clock

        self._handlers: dict[EventType, EventHandler] = {
            EventType.REQUEST_CREATED: self._on_request_created,
            EventType.TASK_STATUS_CHANGED: self._on_task_status_changed,
            EventType.TASK_ASSIGNED: self._on_task_assigned,
            EventType.VALIDATION_REQUESTED: self._on_validation_requested,
            EventType.VALIDATION_DECIDED: self._on_validation_decided,
            EventType.SUB_PROCESS_COMPLETED: self._on_sub_process_completed,
            EventType.PROCESS_COMPLETED: self._on_process_completed,
        }
        self._subscriptions: dict[str, Subscription] = {}
        self._subscription_counter = 0

    # === SUBSCRIPTIONS ===

    def subscribe(self, event_types: list[EventType], handler: EventHandler) -> str:
        """
        Register an extra handler, run after the built-in one.

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id, event_types=set(event_types), handler=handler
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    def _handlers_for(self, event_type: EventType) -> list[EventHandler]:
        handlers = []
        if event_type in self._handlers:
            handlers.append(self._handlers[event_type])
        for subscription in self._subscriptions.values():
            if event_type in subscription.event_types:
                handlers.append(subscription.handler)
        return handlers

    # === EMIT / PROCESS ===

    async def emit(
        self,
        event_type: EventType | str,
        entity_type: EntityType | str,
        entity_id: str,
        payload: dict[str, Any] | None = None,
        run_id: str | None = None,
        triggered_by: str | None = None,
    ) -> str:
        """
        Persist an event and process it now if its type is immediate.

        Returns:
            The event id
        """
        event = DomainEvent(
            id=str(uuid.uuid4()),
            event_type=EventType(event_type),
            entity_type=EntityType(entity_type),
            entity_id=entity_id,
            run_id=run_id,
            payload=dict(payload or {}),
            triggered_by=triggered_by,
            created_at=self._clock(),
        )
        event = await self.storage.save_event(event)
        logger.debug(f"Emitted {event.event_type} for {event.entity_type} {entity_id}")

        if event.is_immediate:
            await self.process(event.id)
        return event.id

    async def process(self, event_id: str) -> bool:
        """
        Run every handler for one event.

        On success the event is marked processed. On failure the error is
        recorded, ``attempts`` is incremented and the next attempt is scheduled
        with backoff, or the event is dead-lettered once attempts run out.

        Returns:
            True if the event is processed (now or earlier)

        Raises:
            NotFoundError: Unknown event id
        """
        event = await self.storage.get_event(event_id)
        if event is None:
            raise NotFoundError("DomainEvent", event_id)
        if event.processed:
            return True
        if event.dead_lettered:
            return False

        set_trace_context(event_id=event.id, event_type=event.event_type.value)
        handlers = self._handlers_for(event.event_type)
        if not handlers:
            logger.debug(f"No handler for {event.event_type}, marking processed")

        try:
            for handler in handlers:
                await handler(event)
        except Exception as e:
            failure = EventHandlerFailed(event.id, event.event_type.value, e)
            await self._record_failure(event, failure)
            return False

        event.processed = True
        event.processed_at = self._clock()
        await self.storage.save_event(event)
        return True

    async def _record_failure(self, event: DomainEvent, failure: EventHandlerFailed) -> None:
        event.attempts += 1
        event.error_message = str(failure.cause)
        if event.attempts >= self.config.event_max_attempts:
            event.dead_lettered = True
            event.next_attempt_at = None
            logger.error(f"{failure}; dead-lettered after {event.attempts} attempts")
        else:
            delay = self.config.backoff_seconds(event.attempts)
            event.next_attempt_at = self._clock() + timedelta(seconds=delay)
            logger.warning(f"{failure}; retry {event.attempts} in {delay:.0f}s")
        await self.storage.save_event(event)

    async def process_all_pending(
        self, now: datetime | None = None, limit: int | None = None
    ) -> SweepResult:
        """Process due events oldest first. Events still in backoff are left alone."""
        now = now or self._clock()
        result = SweepResult()
        due = await self.storage.list_due_events(now, limit or self.config.sweep_batch_size)
        for event in due:
            if await self.process(event.id):
                result.processed += 1
            else:
                result.errors += 1
                result.failed_event_ids.append(event.id)
        if due:
            logger.info(f"Sweep: {result.processed} processed, {result.errors} errors")
        return result

    # === BUILT-IN HANDLERS ===

    async def _requester_of_task(self, task: TaskRecord) -> str | None:
        if task.requester_id:
            return task.requester_id
        if task.request_id:
            request = await self.storage.get_request(task.request_id)
            if request is not None:
                return request.requester_id
        return None

    async def _on_request_created(self, event: DomainEvent) -> None:
        requester_id = event.payload.get("requester_id")
        if requester_id is None:
            request = await self.storage.get_request(event.entity_id)
            requester_id = request.requester_id if request else None
        title = event.payload.get("request_title") or "Untitled"
        await self.notifications.notify_user(
            requester_id,
            event,
            "Request created",
            f'Your request "{title}" has been created.',
        )

    async def _on_task_status_changed(self, event: DomainEvent) -> None:
        task = await self.storage.get_task(event.entity_id)
        if task is None:
            logger.debug(f"Task {event.entity_id} not found, nothing to notify")
            return

        from_status = event.payload.get("from_status")
        to_status = event.payload.get("to_status", task.status.value)
        await self.notifications.notify_user(
            await self._requester_of_task(task),
            event,
            "Request progress",
            f'Task "{task.title}" moved from "{from_status}" to "{to_status}".',
        )

        if to_status in TERMINAL_TASK_STATUSES and self.cascade is not None:
            await self.cascade.on_task_reached_terminal_status(task.id)

    async def _on_task_assigned(self, event: DomainEvent) -> None:
        assignee_id = event.payload.get("assignee_id")
        if not assignee_id:
            return
        task = await self.storage.get_task(event.entity_id)
        title = task.title if task and task.title else "Untitled"
        await self.notifications.notify_user(
            assignee_id, event, "New task assigned", f'Task "{title}" has been assigned to you.'
        )

    async def _on_validation_requested(self, event: DomainEvent) -> None:
        approver_id = event.payload.get("approver_id")
        entity = f"{event.payload.get('entity_type', 'request')} {event.payload.get('entity_id')}"
        await self.notifications.notify_user(
            approver_id,
            event,
            "Validation requested",
            f"Your approval is requested for {entity}.",
            entity_type=event.payload.get("entity_type"),
            entity_id=event.payload.get("entity_id"),
        )

    async def _on_validation_decided(self, event: DomainEvent) -> None:
        # Only task validations notify; request validations are covered by the run itself
        if event.payload.get("entity_type") != EntityType.TASK.value:
            return
        task = await self.storage.get_task(str(event.payload.get("entity_id")))
        if task is None or not task.request_id:
            return
        request = await self.storage.get_request(task.request_id)
        if request is None:
            return

        approved = event.payload.get("decision") == "approved"
        if approved:
            subject, body = "Validation approved", f'Task "{task.title}" has been approved.'
        else:
            comment = event.payload.get("comment") or ""
            subject = "Validation rejected"
            body = f'Task "{task.title}" has been rejected. {comment}'.strip()
        await self.notifications.notify_user(
            request.requester_id,
            event,
            subject,
            body,
            entity_type=EntityType.TASK.value,
            entity_id=task.id,
        )

    async def _on_sub_process_completed(self, event: DomainEvent) -> None:
        sub_run = await self.storage.get_sub_process_run(event.entity_id)
        if sub_run is None:
            return
        request = (
            await self.storage.get_request(sub_run.request_id) if sub_run.request_id else None
        )
        if request is not None:
            await self.notifications.notify_user(
                request.requester_id,
                event,
                "Sub-process completed",
                f'Sub-process "{sub_run.name}" of your request "{request.title}" is complete.',
                entity_type=EntityType.REQUEST.value,
                entity_id=request.id,
            )
        if self.cascade is not None:
            await self.cascade.on_sub_process_completed(sub_run.id)

    async def _on_process_completed(self, event: DomainEvent) -> None:
        request = await self.storage.get_request(event.entity_id)
        if request is None:
            return
        await self.notifications.notify_user(
            request.requester_id,
            event,
            "Request closed",
            f'Your request "{request.title}" has been fully processed.',
        )
