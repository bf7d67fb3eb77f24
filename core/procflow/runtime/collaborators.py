"""
Interfaces the engine consumes from surrounding services, with in-memory
implementations for embedding and tests.

- GraphStore: graph definitions by id and version
- ProfileDirectory: manager, department and role lookups for users
- PreferenceStore: per-user notification channel preferences
"""

import logging
from typing import Protocol

from procflow.errors import GraphNotFound
from procflow.graph.edge import GraphSpec
from procflow.schemas.notification import NotificationPreference

logger = logging.getLogger(__name__)


class GraphStore(Protocol):
    async def get_graph(self, graph_id: str, version: int | None = None) -> GraphSpec: ...


class ProfileDirectory(Protocol):
    async def get_manager_id(self, user_id: str) -> str | None: ...

    async def get_department_id(self, user_id: str) -> str | None: ...

    async def get_roles(self, user_id: str) -> list[str]: ...


class PreferenceStore(Protocol):
    async def get_preferences(
        self, user_id: str, event_type: str
    ) -> list[NotificationPreference]: ...


class InMemoryGraphStore:
    """
    Graph definitions keyed by (id, version).

    Graphs are validated on registration, so a malformed definition is
    rejected before any run can start against it.
    """

    def __init__(self, graphs: list[GraphSpec] | None = None):
        self._graphs: dict[str, dict[int, GraphSpec]] = {}
        for graph in graphs or []:
            self.add(graph)

    def add(self, graph: GraphSpec) -> None:
        graph.ensure_valid()
        self._graphs.setdefault(graph.id, {})[graph.version] = graph
        logger.debug(f"Registered graph {graph.id} v{graph.version}")

    async def get_graph(self, graph_id: str, version: int | None = None) -> GraphSpec:
        """Return the requested version, or the latest when version is None."""
        versions = self._graphs.get(graph_id)
        if not versions:
            raise GraphNotFound(graph_id, version)
        if version is None:
            return versions[max(versions)]
        if version not in versions:
            raise GraphNotFound(graph_id, version)
        return versions[version]


class StaticProfileDirectory:
    """Profile lookups backed by plain dicts."""

    def __init__(
        self,
        managers: dict[str, str] | None = None,
        departments: dict[str, str] | None = None,
        roles: dict[str, list[str]] | None = None,
    ):
        self.managers = dict(managers or {})
        self.departments = dict(departments or {})
        self.roles = {user: list(r) for user, r in (roles or {}).items()}

    async def get_manager_id(self, user_id: str) -> str | None:
        return self.managers.get(user_id)

    async def get_department_id(self, user_id: str) -> str | None:
        return self.departments.get(user_id)

    async def get_roles(self, user_id: str) -> list[str]:
        return list(self.roles.get(user_id, []))


class InMemoryPreferenceStore:
    """Preference rows keyed by (user_id, event_type)."""

    def __init__(self, preferences: list[NotificationPreference] | None = None):
        self._rows: list[NotificationPreference] = list(preferences or [])

    def set(self, user_id: str, event_type: str, channel: str, enabled: bool = True) -> None:
        self._rows = [
            p
            for p in self._rows
            if not (p.user_id == user_id and p.event_type == event_type and p.channel == channel)
        ]
        self._rows.append(
            NotificationPreference(
                user_id=user_id, event_type=event_type, channel=channel, enabled=enabled
            )
        )

    async def get_preferences(self, user_id: str, event_type: str) -> list[NotificationPreference]:
        return [p for p in self._rows if p.user_id == user_id and p.event_type == event_type]
