"""
Validation Gate - Approval instances for validation nodes.

The gate:
1. Resolves who must approve (user, manager, department, or role)
2. Creates a pending ValidationInstance with its SLA metadata
3. Records a decision exactly once
4. Answers "what is waiting for me" and "what is overdue" queries

The gate never moves a run. The executor calls it and then advances or
terminates the owning run itself.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from procflow.config import EngineConfig
from procflow.errors import AlreadyDecided, RecipientUnresolved, ValidationNotFound
from procflow.graph.node import ApproverType, ValidationConfig
from procflow.runtime.collaborators import ProfileDirectory
from procflow.schemas.run import Run
from procflow.schemas.validation import Decision, ValidationInstance, ValidationStatus
from procflow.storage.backend import InMemoryStorage

logger = logging.getLogger(__name__)


@dataclass
class ApproverAssignment:
    """Outcome of approver resolution. All fields empty means unresolved."""

    approver_id: str | None = None
    department_id: str | None = None
    role: str | None = None

    @property
    def resolved(self) -> bool:
        return bool(self.approver_id or self.department_id or self.role)


class ValidationGate:
    def __init__(
        self,
        storage: InMemoryStorage,
        profiles: ProfileDirectory | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage = storage
        self.profiles = profiles
        self.config = config or EngineConfig()
        self._clock = clock

    async def resolve_approver(
        self, config: ValidationConfig, context: dict[str, Any]
    ) -> ApproverAssignment:
        """
        Resolve the approver of a validation node against a run context.

        - fixed_user: the configured approver_id
        - requester_manager: manager of context["requester_id"] via the profile directory
        - target_manager: context["manager_id"]
        - department: configured approver_id, else context["department_id"]
        - role: the configured approver_role

        Raises:
            RecipientUnresolved: Only with strict approver resolution enabled
        """
        kind = config.approver_type
        assignment = ApproverAssignment()

        if kind == ApproverType.FIXED_USER:
            assignment.approver_id = config.approver_id
        elif kind == ApproverType.REQUESTER_MANAGER:
            requester_id = context.get("requester_id")
            if requester_id and self.profiles is not None:
                assignment.approver_id = await self.profiles.get_manager_id(str(requester_id))
        elif kind == ApproverType.TARGET_MANAGER:
            manager_id = context.get("manager_id")
            assignment.approver_id = str(manager_id) if manager_id else None
        elif kind == ApproverType.DEPARTMENT:
            department_id = config.approver_id or context.get("department_id")
            assignment.department_id = str(department_id) if department_id else None
        elif kind == ApproverType.ROLE:
            assignment.role = config.approver_role

        if not assignment.resolved:
            error = RecipientUnresolved(
                f"{kind} approver", "no matching value in config or context"
            )
            if self.config.strict_approver_resolution:
                raise error
            logger.warning(f"{error}; creating an unassigned validation instance")
        return assignment

    async def create_instance(
        self,
        run: Run,
        node_id: str,
        config: ValidationConfig,
        branch_id: str | None = None,
    ) -> ValidationInstance:
        """Create and persist a pending instance for a run branch entering a validation node."""
        assignment = await self.resolve_approver(config, run.context)
        now = self._clock()
        instance = ValidationInstance(
            id=str(uuid.uuid4()),
            run_id=run.id,
            node_id=node_id,
            branch_id=branch_id,
            entity_type=run.entity_type,
            entity_id=run.entity_id,
            approver_type=config.approver_type.value,
            approver_id=assignment.approver_id,
            approver_department_id=assignment.department_id,
            approver_role=assignment.role,
            created_at=now,
            due_at=now + timedelta(hours=config.sla_hours) if config.sla_hours else None,
            sla_hours=config.sla_hours,
            reminder_hours=config.reminder_hours,
            on_timeout_action=config.on_timeout_action,
        )
        await self.storage.save_validation(instance)
        return instance

    async def get(self, validation_id: str) -> ValidationInstance:
        instance = await self.storage.get_validation(validation_id)
        if instance is None:
            raise ValidationNotFound(validation_id)
        return instance

    async def decide(
        self,
        validation_id: str,
        decision: Decision | str,
        comment: str | None = None,
        decided_by: str | None = None,
    ) -> ValidationInstance:
        """
        Record a decision on a pending instance.

        Raises:
            ValidationNotFound: Unknown id
            AlreadyDecided: The instance is no longer pending; nothing is written
        """
        decision = Decision(decision)
        instance = await self.get(validation_id)
        if not instance.is_pending:
            raise AlreadyDecided(validation_id, instance.status.value)

        instance.status = ValidationStatus(decision.value)
        instance.decided_by = decided_by
        instance.decided_at = self._clock()
        instance.decision_comment = comment
        await self.storage.save_validation(instance)
        logger.info(f"Validation {validation_id} {decision} by {decided_by or 'unknown'}")
        return instance

    async def skip_pending(
        self,
        run_id: str,
        exclude_id: str | None = None,
        node_id: str | None = None,
        branch_id: str | None = None,
    ) -> list[str]:
        """
        Mark pending instances of a run as skipped. Returns their ids.

        With ``node_id`` only the instance parked on that node for ``branch_id``
        is skipped; otherwise every pending instance except ``exclude_id``.
        """
        skipped = []
        for instance in await self.storage.list_validations(
            run_id=run_id, status=ValidationStatus.PENDING
        ):
            if instance.id == exclude_id:
                continue
            if node_id is not None and (
                instance.node_id != node_id or instance.branch_id != branch_id
            ):
                continue
            instance.status = ValidationStatus.SKIPPED
            instance.decided_at = self._clock()
            await self.storage.save_validation(instance)
            skipped.append(instance.id)
        return skipped

    async def get_pending_validations(self, approver_id: str) -> list[ValidationInstance]:
        """
        Pending instances a user may decide.

        Includes instances assigned to the user directly, plus unassigned
        department or role instances matching the user's department or roles.
        """
        department_id = None
        roles: list[str] = []
        if self.profiles is not None:
            department_id = await self.profiles.get_department_id(approver_id)
            roles = await self.profiles.get_roles(approver_id)

        result = []
        for instance in await self.storage.list_validations(status=ValidationStatus.PENDING):
            if instance.approver_id == approver_id:
                result.append(instance)
            elif instance.approver_id is None and (
                (department_id and instance.approver_department_id == department_id)
                or (instance.approver_role and instance.approver_role in roles)
            ):
                result.append(instance)
        return result

    async def get_overdue_validations(
        self, now: datetime | None = None
    ) -> list[ValidationInstance]:
        """Pending instances past their due date, for an external SLA sweeper."""
        now = now or self._clock()
        return [
            v
            for v in await self.storage.list_validations(status=ValidationStatus.PENDING)
            if v.due_at is not None and v.due_at <= now
        ]
