"""Shared fixtures for engine tests.

Every engine built here gets an explicit EngineConfig, so a developer's
~/.procflow/configuration.json never changes test behaviour, and a
controllable clock, so SLA and backoff arithmetic is exact.
"""

from datetime import datetime, timedelta

import pytest

from procflow.config import EngineConfig
from procflow.graph import GraphSpec
from procflow.observability import clear_trace_context
from procflow.runtime import (
    InMemoryGraphStore,
    InMemoryPreferenceStore,
    ProcessEngine,
    StaticProfileDirectory,
)

FIXED_NOW = datetime(2026, 3, 2, 9, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


def make_config(**overrides) -> EngineConfig:
    values = {
        "max_steps": 200,
        "cancel_branches_on_rejection": False,
        "strict_approver_resolution": False,
        "event_max_attempts": 3,
        "event_backoff_base_seconds": 10.0,
        "event_backoff_max_seconds": 60.0,
        "sweep_batch_size": 100,
        "default_channel": "in_app",
    }
    values.update(overrides)
    return EngineConfig(**values)


# --- Fixtures ---


@pytest.fixture(autouse=True)
def _reset_trace_context():
    yield
    clear_trace_context()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> EngineConfig:
    return make_config()


@pytest.fixture
def make_engine(clock: FakeClock):
    """Factory building a ProcessEngine over the given graphs."""

    def _make(
        *graphs: GraphSpec,
        managers: dict[str, str] | None = None,
        departments: dict[str, str] | None = None,
        roles: dict[str, list[str]] | None = None,
        preferences: InMemoryPreferenceStore | None = None,
        config: EngineConfig | None = None,
        storage=None,
    ) -> ProcessEngine:
        return ProcessEngine(
            storage=storage,
            graphs=InMemoryGraphStore(list(graphs)),
            profiles=StaticProfileDirectory(managers, departments, roles),
            preferences=preferences,
            config=config or make_config(),
            clock=clock,
        )

    return _make
