"""Graph structures: typed nodes, handled edges, and condition evaluation."""

from procflow.graph.conditions import branch_handle, evaluate_condition, resolve_field
from procflow.graph.edge import EdgeSpec, GraphSpec
from procflow.graph.node import (
    ApproverType,
    ConditionConfig,
    ConditionOperator,
    EndConfig,
    ForkConfig,
    JoinConfig,
    NodeConfig,
    NodeSpec,
    NodeType,
    NotificationChannel,
    NotificationConfig,
    RecipientType,
    StartConfig,
    SubProcessConfig,
    TaskConfig,
    ValidationConfig,
)

__all__ = [
    # Graph
    "GraphSpec",
    "EdgeSpec",
    # Node
    "NodeSpec",
    "NodeType",
    "NodeConfig",
    "StartConfig",
    "EndConfig",
    "TaskConfig",
    "ValidationConfig",
    "NotificationConfig",
    "ConditionConfig",
    "ForkConfig",
    "JoinConfig",
    "SubProcessConfig",
    # Enums
    "ApproverType",
    "ConditionOperator",
    "NotificationChannel",
    "RecipientType",
    # Conditions
    "evaluate_condition",
    "resolve_field",
    "branch_handle",
]
