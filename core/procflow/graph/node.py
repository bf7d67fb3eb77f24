"""
Node Protocol - Typed steps of a process graph.

Every node has a type and a configuration whose shape is fixed by that type.
The configuration is a tagged union: the ``type`` tag inside the config must
match the node's own type, and the pair is checked when the graph is loaded
rather than when the node is reached at run time.

Node Types:
- start: entry point, advances immediately
- task: waits for an external "task completed" signal
- validation: creates an approval gate and waits for a decision
- notification: creates notification records, advances immediately
- condition: evaluates (field, operator, value) and follows "true"/"false"
- fork: spawns one branch per outgoing edge
- join: waits until required_count branches have arrived
- sub_process: starts a sub-process run and waits for its completion
- end: completes the run
"""

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, model_validator


class NodeType(StrEnum):
    """Closed set of node types."""

    START = "start"
    TASK = "task"
    VALIDATION = "validation"
    NOTIFICATION = "notification"
    CONDITION = "condition"
    FORK = "fork"
    JOIN = "join"
    SUB_PROCESS = "sub_process"
    END = "end"


# Nodes that park a branch until an external signal arrives
SUSPENDING_NODE_TYPES = frozenset(
    {NodeType.TASK, NodeType.VALIDATION, NodeType.JOIN, NodeType.SUB_PROCESS}
)


class ApproverType(StrEnum):
    """Who is expected to decide a validation."""

    FIXED_USER = "fixed_user"
    REQUESTER_MANAGER = "requester_manager"
    TARGET_MANAGER = "target_manager"
    DEPARTMENT = "department"
    ROLE = "role"


class ConditionOperator(StrEnum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class NotificationChannel(StrEnum):
    IN_APP = "in_app"
    EMAIL = "email"
    TEAMS = "teams"


class RecipientType(StrEnum):
    REQUESTER = "requester"
    ASSIGNEE = "assignee"
    APPROVERS = "approvers"
    USER = "user"
    GROUP = "group"
    DEPARTMENT = "department"
    EMAIL = "email"


# ---------------------------------------------------------------------------
# Per-type configuration variants
# ---------------------------------------------------------------------------


class _NodeConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}


class StartConfig(_NodeConfig):
    type: Literal["start"] = "start"
    trigger: Literal["manual", "on_create", "on_status_change"] = "manual"


class EndConfig(_NodeConfig):
    type: Literal["end"] = "end"
    final_status: Literal["completed", "cancelled"] = "completed"


class TaskConfig(_NodeConfig):
    type: Literal["task"] = "task"
    task_template_id: str | None = None
    task_title: str = ""
    duration_days: int | None = Field(default=None, ge=0)


class ValidationConfig(_NodeConfig):
    type: Literal["validation"] = "validation"
    approver_type: ApproverType = ApproverType.REQUESTER_MANAGER
    approver_id: str | None = None
    approver_role: str | None = None
    sla_hours: float | None = Field(default=None, gt=0)
    reminder_hours: float | None = Field(default=None, gt=0)
    on_timeout_action: Literal["auto_approve", "auto_reject", "escalate", "notify"] | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_user_alias(cls, data: Any) -> Any:
        # "user" is the legacy spelling of fixed_user
        if isinstance(data, dict) and data.get("approver_type") == "user":
            data = {**data, "approver_type": ApproverType.FIXED_USER.value}
        return data


class NotificationConfig(_NodeConfig):
    type: Literal["notification"] = "notification"
    channels: list[NotificationChannel] = Field(
        default_factory=lambda: [NotificationChannel.IN_APP], min_length=1
    )
    recipient_type: RecipientType = RecipientType.REQUESTER
    recipient_id: str | None = None
    recipient_email: str | None = None
    subject_template: str = ""
    body_template: str = ""
    action_url_template: str | None = None


class ConditionConfig(_NodeConfig):
    type: Literal["condition"] = "condition"
    field: str
    operator: ConditionOperator
    value: str | int | float | bool | None = None
    true_label: str = "Yes"
    false_label: str = "No"


class ForkConfig(_NodeConfig):
    type: Literal["fork"] = "fork"
    branch_count: int = Field(ge=1)
    branch_labels: list[str] = Field(default_factory=list)


class JoinConfig(_NodeConfig):
    type: Literal["join"] = "join"
    required_count: int = Field(ge=1)


class SubProcessConfig(_NodeConfig):
    type: Literal["sub_process"] = "sub_process"
    sub_process_template_id: str | None = None
    sub_process_name: str = ""


NodeConfig = Annotated[
    StartConfig
    | EndConfig
    | TaskConfig
    | ValidationConfig
    | NotificationConfig
    | ConditionConfig
    | ForkConfig
    | JoinConfig
    | SubProcessConfig,
    Field(discriminator="type"),
]


class NodeSpec(BaseModel):
    """
    Specification of one node in a process graph.

    Examples:
        NodeSpec(id="start", type=NodeType.START)

        NodeSpec(
            id="manager-approval",
            type=NodeType.VALIDATION,
            config=ValidationConfig(approver_type="requester_manager", sla_hours=48),
        )

        # Dict configs are accepted; the type tag is filled in from the node
        NodeSpec(
            id="amount-check",
            type="condition",
            config={"field": "amount", "operator": "greater_than", "value": 1000},
        )
    """

    id: str = Field(min_length=1)
    type: NodeType
    label: str = ""
    config: NodeConfig
    linked_task_template_id: str | None = None

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _default_config(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        node_type = data.get("type")
        if node_type is None:
            return data
        node_type = str(node_type.value if isinstance(node_type, NodeType) else node_type)
        config = data.get("config")
        if config is None:
            return {**data, "config": {"type": node_type}}
        if isinstance(config, dict) and "type" not in config:
            return {**data, "config": {**config, "type": node_type}}
        return data

    @model_validator(mode="after")
    def _config_matches_type(self) -> "NodeSpec":
        if self.config.type != self.type.value:
            raise ValueError(
                f"Node '{self.id}' of type '{self.type}' carries a '{self.config.type}' config"
            )
        return self

    @property
    def suspends(self) -> bool:
        return self.type in SUSPENDING_NODE_TYPES
