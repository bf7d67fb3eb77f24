"""
Edge Protocol - How nodes connect in a process graph.

Edges define:
1. Source and target nodes
2. Optional handles selecting among a node's outputs or inputs

Handles matter for three node types:
- condition: outgoing edges carry source_handle "true" or "false"
- fork: outgoing edges carry one distinct handle per branch ("fork-out-i")
- join: incoming edges carry one distinct handle per branch ("join-in-i")

When several outgoing edges match, the engine takes them in declaration
order, so the order of ``GraphSpec.edges`` is significant.
"""

from typing import Any

from pydantic import BaseModel, Field

from procflow.errors import GraphMalformed
from procflow.graph.node import ConditionConfig, ForkConfig, JoinConfig, NodeSpec, NodeType

CONDITION_HANDLES = ("true", "false")


class EdgeSpec(BaseModel):
    """
    Specification for a directed edge between two nodes.

    Examples:
        EdgeSpec(id="e-start-review", source="start", target="review")

        # Condition branch
        EdgeSpec(id="e-check-big", source="amount-check", target="cfo", source_handle="true")

        # Fork/join branch
        EdgeSpec(id="e-fork-1", source="fork", target="it", source_handle="fork-out-1")
    """

    id: str
    source: str = Field(description="Source node ID")
    target: str = Field(description="Target node ID")
    source_handle: str | None = None
    target_handle: str | None = None
    label: str = ""

    model_config = {"frozen": True}


class GraphSpec(BaseModel):
    """
    Immutable definition of a process graph, owned by a process template.

    Example:
        GraphSpec(
            id="purchase-approval",
            version=1,
            nodes=[NodeSpec(id="start", type="start"), ..., NodeSpec(id="end", type="end")],
            edges=[EdgeSpec(id="e1", source="start", target="review"), ...],
        )
    """

    id: str
    version: int = 1
    name: str = ""
    description: str = ""
    process_template_id: str | None = None

    nodes: list[NodeSpec] = Field(default_factory=list)
    edges: list[EdgeSpec] = Field(default_factory=list)

    model_config = {"frozen": True}

    def get_node(self, node_id: str) -> NodeSpec | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_start_node(self) -> NodeSpec | None:
        for node in self.nodes:
            if node.type == NodeType.START:
                return node
        return None

    def get_outgoing_edges(self, node_id: str, handle: str | None = None) -> list[EdgeSpec]:
        """Get edges leaving a node in declaration order, optionally filtered by source handle."""
        edges = [e for e in self.edges if e.source == node_id]
        if handle is not None:
            edges = [e for e in edges if e.source_handle == handle]
        return edges

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges entering a node."""
        return [e for e in self.edges if e.target == node_id]

    def reachable_from(self, node_id: str) -> set[str]:
        """Ids of every node reachable from ``node_id`` (inclusive)."""
        reachable: set[str] = set()
        to_visit = [node_id]
        while to_visit:
            current = to_visit.pop()
            if current in reachable:
                continue
            reachable.add(current)
            for edge in self.get_outgoing_edges(current):
                to_visit.append(edge.target)
        return reachable

    def with_changes(self, nodes: list[NodeSpec], edges: list[EdgeSpec]) -> "GraphSpec":
        """Return a copy with new nodes/edges; identity fields are kept."""
        return self.model_copy(update={"nodes": nodes, "edges": edges})

    def validate(self) -> list[str]:
        """Validate the graph structure. Returns one message per violation."""
        errors: list[str] = []

        # Node ids
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen.add(node.id)

        # Exactly one start
        starts = [n.id for n in self.nodes if n.type == NodeType.START]
        if not starts:
            errors.append("Graph has no start node")
        elif len(starts) > 1:
            errors.append(f"Graph has {len(starts)} start nodes: {starts}")

        # Edge references
        for edge in self.edges:
            if edge.source not in seen:
                errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
            if edge.target not in seen:
                errors.append(f"Edge '{edge.id}' references missing target '{edge.target}'")

        for node in self.nodes:
            outgoing = self.get_outgoing_edges(node.id)
            incoming = self.get_incoming_edges(node.id)

            if node.type != NodeType.END and not outgoing:
                errors.append(f"Node '{node.id}' ({node.type}) has no outgoing edge")
            if node.type != NodeType.START and not incoming:
                errors.append(f"Node '{node.id}' ({node.type}) has no incoming edge")
            if node.type == NodeType.START and incoming:
                errors.append(f"Start node '{node.id}' must not have incoming edges")

            config = node.config
            if isinstance(config, ForkConfig) and len(outgoing) != config.branch_count:
                errors.append(
                    f"Fork '{node.id}' declares {config.branch_count} branches "
                    f"but has {len(outgoing)} outgoing edges"
                )
            if isinstance(config, ForkConfig):
                handles = [e.source_handle for e in outgoing if e.source_handle]
                if len(handles) != len(set(handles)):
                    errors.append(f"Fork '{node.id}' reuses a branch handle: {handles}")
            if isinstance(config, JoinConfig) and len(incoming) != config.required_count:
                errors.append(
                    f"Join '{node.id}' requires {config.required_count} branches "
                    f"but has {len(incoming)} incoming edges"
                )
            if isinstance(config, ConditionConfig):
                bad = [e.id for e in outgoing if e.source_handle not in CONDITION_HANDLES]
                if bad:
                    errors.append(
                        f"Condition '{node.id}' has edges without a true/false handle: {bad}"
                    )

        # Reachability from start
        if len(starts) == 1:
            reachable = self.reachable_from(starts[0])
            for node in self.nodes:
                if node.id not in reachable:
                    errors.append(f"Node '{node.id}' is unreachable from start")

        return errors

    def ensure_valid(self) -> "GraphSpec":
        """Raise GraphMalformed if ``validate()`` reports anything."""
        errors = self.validate()
        if errors:
            raise GraphMalformed(errors, graph_id=self.id)
        return self

    def summary(self) -> dict[str, Any]:
        counts: dict[str, int] = {}
        for node in self.nodes:
            counts[node.type.value] = counts.get(node.type.value, 0) + 1
        return {
            "id": self.id,
            "version": self.version,
            "nodes": len(self.nodes),
            "edges": len(self.edges),
            "node_types": counts,
        }
