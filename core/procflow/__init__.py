"""
procflow - Graph-based process execution engine.

Runs business processes described as directed graphs of typed steps
(tasks, approvals, notifications, conditions, fork/join sections and
sub-processes), pausing at gates, resuming on external signals, and
emitting domain events that drive notifications and completion cascades.

Usage:
    from procflow import ProcessEngine, InMemoryGraphStore, TaskSpec, build_linear

    graphs = InMemoryGraphStore([build_linear([TaskSpec(title="Prepare")], graph_id="p")])
    engine = ProcessEngine(graphs=graphs)
    run_id = await engine.start_run("p", {"entity_id": "req-1", "requester_id": "alice"})
"""

from procflow.builder import (
    BranchSpec,
    TaskSpec,
    build_fork_join,
    build_linear,
    insert_task_before,
    remove_node,
)
from procflow.config import EngineConfig
from procflow.errors import (
    AlreadyDecided,
    EventHandlerFailed,
    GraphEditError,
    GraphMalformed,
    GraphNotFound,
    NotFoundError,
    ProcessEngineError,
    RecipientUnresolved,
    RunNotFound,
    RunNotPaused,
    ValidationNotFound,
)
from procflow.graph import EdgeSpec, GraphSpec, NodeSpec, NodeType
from procflow.runtime import (
    CompletionCascade,
    EventBus,
    InMemoryGraphStore,
    InMemoryPreferenceStore,
    ProcessEngine,
    RunExecutor,
    StaticProfileDirectory,
    ValidationGate,
)
from procflow.schemas import Decision, EventType, Run, RunStatus, ValidationStatus
from procflow.storage import FileStorage, InMemoryStorage

__version__ = "0.1.0"

__all__ = [
    # Graph
    "GraphSpec",
    "NodeSpec",
    "EdgeSpec",
    "NodeType",
    # Builder
    "TaskSpec",
    "BranchSpec",
    "build_linear",
    "build_fork_join",
    "insert_task_before",
    "remove_node",
    # Runtime
    "ProcessEngine",
    "RunExecutor",
    "ValidationGate",
    "EventBus",
    "CompletionCascade",
    "InMemoryGraphStore",
    "StaticProfileDirectory",
    "InMemoryPreferenceStore",
    # Storage
    "InMemoryStorage",
    "FileStorage",
    # Schemas
    "Run",
    "RunStatus",
    "Decision",
    "ValidationStatus",
    "EventType",
    # Config
    "EngineConfig",
    # Errors
    "ProcessEngineError",
    "GraphMalformed",
    "GraphEditError",
    "NotFoundError",
    "GraphNotFound",
    "RunNotFound",
    "ValidationNotFound",
    "AlreadyDecided",
    "RunNotPaused",
    "RecipientUnresolved",
    "EventHandlerFailed",
]
