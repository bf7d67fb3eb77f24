"""
Notification record creation.

Two callers create records:
1. Notification nodes: one record per configured channel for the resolved
   recipient, tied to the run and the node.
2. Event handlers: one record per channel the recipient enabled for the
   event type (``in_app`` when the recipient has no preference rows), with
   ``run_id=None`` and ``node_id="system"``.

Records are only created here. Delivery belongs to an external sender.
"""

import logging
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from procflow.config import EngineConfig
from procflow.errors import RecipientUnresolved
from procflow.graph.conditions import resolve_field
from procflow.graph.node import NotificationConfig, RecipientType
from procflow.runtime.collaborators import PreferenceStore
from procflow.schemas.event import DomainEvent
from procflow.schemas.notification import NotificationRecord
from procflow.schemas.run import Run
from procflow.storage.backend import InMemoryStorage

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")

# Always substituted, with "" when the context lacks them
STANDARD_VARIABLES = ("entity_type", "entity_id", "requester_id", "assignee_id", "department_id")


def render_template(template: str | None, context: dict[str, Any]) -> str:
    """
    Substitute ``{name}`` placeholders from a run context.

    Standard variables always resolve (empty when missing). Any other
    placeholder is filled from ``custom_fields`` or the context when present
    and left untouched otherwise.
    """
    if not template:
        return ""

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        value = resolve_field(context, name)
        if value is None:
            return "" if name in STANDARD_VARIABLES else match.group(0)
        return str(value)

    return _PLACEHOLDER.sub(_replace, template)


@dataclass
class Recipient:
    recipient_id: str | None = None
    recipient_email: str | None = None


def resolve_node_recipients(
    config: NotificationConfig,
    context: dict[str, Any],
    approver_ids: list[str] | None = None,
) -> list[Recipient]:
    """
    Resolve the recipients of a notification node.

    Raises:
        RecipientUnresolved: If the configured recipient type yields nobody
    """
    kind = config.recipient_type
    recipients: list[Recipient] = []

    if kind == RecipientType.REQUESTER:
        value = context.get("requester_id")
        if value:
            recipients.append(Recipient(recipient_id=str(value)))
    elif kind == RecipientType.ASSIGNEE:
        value = context.get("assignee_id")
        if value:
            recipients.append(Recipient(recipient_id=str(value)))
    elif kind in (RecipientType.USER, RecipientType.GROUP):
        if config.recipient_id:
            recipients.append(Recipient(recipient_id=config.recipient_id))
    elif kind == RecipientType.DEPARTMENT:
        value = config.recipient_id or context.get("department_id")
        if value:
            recipients.append(Recipient(recipient_id=str(value)))
    elif kind == RecipientType.EMAIL:
        if config.recipient_email:
            recipients.append(Recipient(recipient_email=config.recipient_email))
    elif kind == RecipientType.APPROVERS:
        for approver_id in dict.fromkeys(approver_ids or []):
            recipients.append(Recipient(recipient_id=approver_id))

    if not recipients:
        raise RecipientUnresolved(f"{kind} recipient", "no matching value in config or context")
    return recipients


class NotificationService:
    """Creates pending NotificationRecords in storage."""

    def __init__(
        self,
        storage: InMemoryStorage,
        preferences: PreferenceStore | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage = storage
        self.preferences = preferences
        self.config = config or EngineConfig()
        self._clock = clock

    async def create_for_node(
        self,
        run: Run,
        node_id: str,
        config: NotificationConfig,
        approver_ids: list[str] | None = None,
    ) -> list[NotificationRecord]:
        """
        Create one record per channel per recipient for a notification node.

        Raises:
            RecipientUnresolved: If nobody can receive the notification
        """
        recipients = resolve_node_recipients(config, run.context, approver_ids)

        subject = render_template(config.subject_template, run.context)
        body = render_template(config.body_template, run.context)
        action_url = (
            render_template(config.action_url_template, run.context)
            if config.action_url_template
            else None
        )

        records = []
        for channel in config.channels:
            for recipient in recipients:
                record = NotificationRecord(
                    id=str(uuid.uuid4()),
                    run_id=run.id,
                    node_id=node_id,
                    channel=channel.value,
                    recipient_type=config.recipient_type.value,
                    recipient_id=recipient.recipient_id,
                    recipient_email=recipient.recipient_email,
                    subject=subject,
                    body=body,
                    action_url=action_url,
                    entity_type=run.entity_type,
                    entity_id=run.entity_id,
                    created_at=self._clock(),
                )
                await self.storage.save_notification(record)
                records.append(record)
        return records

    async def enabled_channels(self, user_id: str, event_type: str) -> list[str]:
        """Channels a user wants for an event type; default channel when no rows exist."""
        if self.preferences is None:
            return [self.config.default_channel]
        rows = await self.preferences.get_preferences(user_id, event_type)
        if not rows:
            return [self.config.default_channel]
        return [row.channel for row in rows if row.enabled]

    async def notify_user(
        self,
        user_id: str | None,
        event: DomainEvent,
        subject: str,
        body: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> list[NotificationRecord]:
        """
        Create event-driven records for one user according to their preferences.

        Record ids are derived from the event, recipient, channel and subject,
        so a retried event finds the records its earlier attempt already saved
        instead of creating them again.
        """
        if not user_id:
            logger.debug(f"No recipient for {event.event_type} on {event.entity_id}, skipping")
            return []

        channels = await self.enabled_channels(user_id, event.event_type.value)
        if not channels:
            logger.debug(f"User {user_id} disabled every channel for {event.event_type}")
            return []

        records = []
        for channel in channels:
            record_id = str(
                uuid.uuid5(uuid.NAMESPACE_URL, f"{event.id}|{user_id}|{channel}|{subject}")
            )
            existing = await self.storage.get_notification(record_id)
            if existing is not None:
                logger.debug(f"Notification {record_id} for event {event.id} already exists")
                records.append(existing)
                continue

            record = NotificationRecord(
                id=record_id,
                run_id=None,
                node_id="system",
                channel=channel,
                recipient_type=RecipientType.USER.value,
                recipient_id=user_id,
                subject=subject,
                body=body,
                event_id=event.id,
                event_type=event.event_type.value,
                entity_type=entity_type or event.entity_type.value,
                entity_id=entity_id or event.entity_id,
                created_at=self._clock(),
            )
            await self.storage.save_notification(record)
            records.append(record)
        return records
