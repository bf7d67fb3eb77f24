"""Graph builder: standard shapes and structural edits."""

from procflow.builder.shapes import (
    BranchSpec,
    TaskSpec,
    build_fork_join,
    build_linear,
    insert_task_before,
    remove_node,
)

__all__ = [
    "TaskSpec",
    "BranchSpec",
    "build_linear",
    "build_fork_join",
    "insert_task_before",
    "remove_node",
]
