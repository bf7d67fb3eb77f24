"""Runtime: executor, validation gate, event bus, completion cascade and engine façade."""

from procflow.runtime.cascade import CompletionCascade
from procflow.runtime.collaborators import (
    GraphStore,
    InMemoryGraphStore,
    InMemoryPreferenceStore,
    PreferenceStore,
    ProfileDirectory,
    StaticProfileDirectory,
)
from procflow.runtime.engine import ProcessEngine
from procflow.runtime.event_bus import EventBus, SweepResult
from procflow.runtime.executor import RunExecutor
from procflow.runtime.locks import RunLockManager
from procflow.runtime.notifications import NotificationService, render_template
from procflow.runtime.validation_gate import ValidationGate

__all__ = [
    "ProcessEngine",
    "RunExecutor",
    "ValidationGate",
    "EventBus",
    "SweepResult",
    "CompletionCascade",
    "NotificationService",
    "render_template",
    "RunLockManager",
    "GraphStore",
    "ProfileDirectory",
    "PreferenceStore",
    "InMemoryGraphStore",
    "StaticProfileDirectory",
    "InMemoryPreferenceStore",
]
