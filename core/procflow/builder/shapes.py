"""
Graph Builder - Standard process shapes and structural edits.

Shapes:
1. Linear pipeline: start → task* → validation → notification → end
2. Fork/join: start → fork → {branch₁ … branchₙ} → join → end, introduced
   only when there is more than one branch

Edits (each returns a new graph, the input is never mutated):
- insert_task_before: splice a task in front of an anchor node
- remove_node: drop a node and reconnect every predecessor to every successor

Usage:
    graph = build_linear(
        [TaskSpec(title="Collect quotes"), TaskSpec(title="Compare offers")],
        approver=ValidationConfig(approver_type="requester_manager", sla_hours=48),
    )
    graph = insert_task_before(graph, "validation", TaskSpec(title="Budget check"))
    graph = remove_node(graph, "task-1")
"""

import logging
import uuid

from pydantic import BaseModel, Field

from procflow.errors import GraphEditError
from procflow.graph.edge import EdgeSpec, GraphSpec
from procflow.graph.node import (
    ForkConfig,
    JoinConfig,
    NodeSpec,
    NodeType,
    NotificationConfig,
    SubProcessConfig,
    TaskConfig,
    ValidationConfig,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_TASK_TITLE = "Task to define"


class TaskSpec(BaseModel):
    """Input for a task node created by the builder."""

    id: str | None = None
    title: str = ""
    task_template_id: str | None = None
    duration_days: int | None = Field(default=None, ge=0)

    def to_node(self, node_id: str) -> NodeSpec:
        return NodeSpec(
            id=node_id,
            type=NodeType.TASK,
            label=self.title,
            config=TaskConfig(
                task_template_id=self.task_template_id,
                task_title=self.title,
                duration_days=self.duration_days,
            ),
            linked_task_template_id=self.task_template_id,
        )


class BranchSpec(BaseModel):
    """Input for one parallel branch (a sub-process) of a fork/join graph."""

    id: str | None = None
    name: str = ""
    sub_process_template_id: str | None = None

    def to_node(self, node_id: str) -> NodeSpec:
        return NodeSpec(
            id=node_id,
            type=NodeType.SUB_PROCESS,
            label=self.name,
            config=SubProcessConfig(
                sub_process_template_id=self.sub_process_template_id,
                sub_process_name=self.name,
            ),
        )


def _edge(source: str, target: str, **handles: str | None) -> EdgeSpec:
    return EdgeSpec(id=f"e-{source}-{target}", source=source, target=target, **handles)


def _unique_edge_id(base: str, taken: set[str]) -> str:
    candidate = base
    suffix = 2
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    taken.add(candidate)
    return candidate


def _chain(node_ids: list[str]) -> list[EdgeSpec]:
    return [_edge(a, b) for a, b in zip(node_ids, node_ids[1:], strict=False)]


# ---------------------------------------------------------------------------
# Shapes
# ---------------------------------------------------------------------------


def build_linear(
    steps: list[TaskSpec],
    approver: ValidationConfig | None = None,
    *,
    graph_id: str | None = None,
    version: int = 1,
    name: str = "",
    notification: NotificationConfig | None = None,
) -> GraphSpec:
    """
    Build ``start → task* → validation → notification → end``.

    Args:
        steps: Task nodes in execution order; an empty list yields one
            placeholder task so the pipeline is never empty before validation
        approver: Validation node configuration (defaults to requester's manager)
        graph_id: Graph id (generated when omitted)
        version: Graph version
        name: Display name, also used in the default notification subject
        notification: Notification node configuration (defaults to an in-app
            notice to the requester)

    Returns:
        A validated GraphSpec
    """
    if not steps:
        steps = [TaskSpec(title=PLACEHOLDER_TASK_TITLE)]

    nodes = [NodeSpec(id="start", type=NodeType.START, label="Start")]
    for index, step in enumerate(steps, start=1):
        nodes.append(step.to_node(step.id or f"task-{index}"))

    nodes.append(
        NodeSpec(
            id="validation",
            type=NodeType.VALIDATION,
            label="Approval",
            config=approver or ValidationConfig(),
        )
    )
    title = name or "Request"
    nodes.append(
        NodeSpec(
            id="notification",
            type=NodeType.NOTIFICATION,
            label="Closure notice",
            config=notification
            or NotificationConfig(
                subject_template=f"[{title}] Request {{entity_id}} approved",
                body_template="Your request {entity_id} has been approved.",
            ),
        )
    )
    nodes.append(NodeSpec(id="end", type=NodeType.END, label="End"))

    graph = GraphSpec(
        id=graph_id or f"linear-{uuid.uuid4().hex[:8]}",
        version=version,
        name=name,
        nodes=nodes,
        edges=_chain([n.id for n in nodes]),
    )
    return graph.ensure_valid()


def build_fork_join(
    branches: list[BranchSpec],
    *,
    graph_id: str | None = None,
    version: int = 1,
    name: str = "",
) -> GraphSpec:
    """
    Build a parallel section over sub-process branches.

    With more than one branch the graph is
    ``start → fork → {branch₁ … branchₙ} → join → end`` where fork edges carry
    ``fork-out-i`` and join edges carry ``join-in-i`` (1-based). With zero or
    one branch no synchronization point is introduced: the branches form a
    plain chain between start and end.

    Returns:
        A validated GraphSpec
    """
    branch_ids = [b.id or f"branch-{i}" for i, b in enumerate(branches, start=1)]
    branch_nodes = [b.to_node(node_id) for b, node_id in zip(branches, branch_ids, strict=True)]

    start = NodeSpec(id="start", type=NodeType.START, label="Start")
    end = NodeSpec(id="end", type=NodeType.END, label="End")

    if len(branches) <= 1:
        nodes = [start, *branch_nodes, end]
        edges = _chain([n.id for n in nodes])
    else:
        count = len(branches)
        fork = NodeSpec(
            id="fork",
            type=NodeType.FORK,
            label="Fork",
            config=ForkConfig(branch_count=count, branch_labels=[b.name for b in branches]),
        )
        join = NodeSpec(
            id="join",
            type=NodeType.JOIN,
            label="Join",
            config=JoinConfig(required_count=count),
        )
        nodes = [start, fork, *branch_nodes, join, end]
        edges = [_edge("start", "fork")]
        for i, node_id in enumerate(branch_ids, start=1):
            edges.append(_edge("fork", node_id, source_handle=f"fork-out-{i}"))
        for i, node_id in enumerate(branch_ids, start=1):
            edges.append(_edge(node_id, "join", target_handle=f"join-in-{i}"))
        edges.append(_edge("join", "end"))

    graph = GraphSpec(
        id=graph_id or f"forkjoin-{uuid.uuid4().hex[:8]}",
        version=version,
        name=name,
        nodes=nodes,
        edges=edges,
    )
    return graph.ensure_valid()


# ---------------------------------------------------------------------------
# Structural edits
# ---------------------------------------------------------------------------


def insert_task_before(
    graph: GraphSpec,
    anchor_node_id: str,
    task: TaskSpec,
    target_handle: str | None = None,
) -> GraphSpec:
    """
    Splice a new task node immediately before ``anchor_node_id``.

    The single edge entering the anchor is redirected to the new node and a
    new edge links the new node to the anchor, keeping the original target
    handle on that last hop.

    Args:
        graph: Graph to edit
        anchor_node_id: Node the task must precede
        task: Task to insert
        target_handle: Selects among several incoming edges (e.g. "join-in-2")

    Raises:
        GraphEditError: unknown anchor, no incoming edge, or more than one
            candidate edge (ambiguous insertion point)
    """
    if graph.get_node(anchor_node_id) is None:
        raise GraphEditError(f"Anchor node '{anchor_node_id}' not found", graph_id=graph.id)

    incoming = graph.get_incoming_edges(anchor_node_id)
    if target_handle is not None:
        incoming = [e for e in incoming if e.target_handle == target_handle]

    if not incoming:
        raise GraphEditError(
            f"No incoming edge into '{anchor_node_id}'"
            + (f" with handle '{target_handle}'" if target_handle else ""),
            graph_id=graph.id,
        )
    if len(incoming) > 1:
        raise GraphEditError(
            f"Ambiguous insertion point: '{anchor_node_id}' has {len(incoming)} incoming "
            "edges, specify a target handle",
            graph_id=graph.id,
        )

    new_id = task.id or f"task-{uuid.uuid4().hex[:8]}"
    if graph.get_node(new_id) is not None:
        raise GraphEditError(f"Node ID '{new_id}' already exists", graph_id=graph.id)

    entering = incoming[0]
    taken = {e.id for e in graph.edges}
    redirected = entering.model_copy(update={"target": new_id, "target_handle": None})
    bridge = EdgeSpec(
        id=_unique_edge_id(f"e-{new_id}-{anchor_node_id}", taken),
        source=new_id,
        target=anchor_node_id,
        target_handle=entering.target_handle,
    )

    edges: list[EdgeSpec] = []
    for edge in graph.edges:
        if edge.id == entering.id:
            edges.extend([redirected, bridge])
        else:
            edges.append(edge)

    # Keep the new node next to its anchor in declaration order
    nodes: list[NodeSpec] = []
    for node in graph.nodes:
        if node.id == anchor_node_id:
            nodes.append(task.to_node(new_id))
        nodes.append(node)

    logger.debug(f"Inserted task '{new_id}' before '{anchor_node_id}' in graph {graph.id}")
    return graph.with_changes(nodes, edges)


def remove_node(graph: GraphSpec, node_id: str) -> GraphSpec:
    """
    Remove a node, reconnecting each predecessor to each successor.

    For every (incoming, outgoing) pair a direct edge is created that keeps the
    incoming edge's source handle and the outgoing edge's target handle, so
    fork/join and condition handles survive. Duplicate reconnections and
    self-loops are dropped.

    Raises:
        GraphEditError: unknown node, or node is the start or an end node
    """
    node = graph.get_node(node_id)
    if node is None:
        raise GraphEditError(f"Node '{node_id}' not found", graph_id=graph.id)
    if node.type in (NodeType.START, NodeType.END):
        raise GraphEditError(f"Cannot remove {node.type} node '{node_id}'", graph_id=graph.id)

    incoming = [e for e in graph.get_incoming_edges(node_id) if e.source != node_id]
    outgoing = [e for e in graph.get_outgoing_edges(node_id) if e.target != node_id]

    kept = [e for e in graph.edges if e.source != node_id and e.target != node_id]
    taken = {e.id for e in kept}
    existing = {(e.source, e.target, e.source_handle, e.target_handle) for e in kept}

    reconnections: dict[str, list[EdgeSpec]] = {}
    for inc in incoming:
        for out in outgoing:
            key = (inc.source, out.target, inc.source_handle, out.target_handle)
            if key in existing:
                continue
            existing.add(key)
            reconnections.setdefault(inc.id, []).append(
                EdgeSpec(
                    id=_unique_edge_id(f"e-{inc.source}-{out.target}", taken),
                    source=inc.source,
                    target=out.target,
                    source_handle=inc.source_handle,
                    target_handle=out.target_handle,
                )
            )

    # Reconnections take the place of the edge they replace
    edges: list[EdgeSpec] = []
    for edge in graph.edges:
        if edge.id in reconnections:
            edges.extend(reconnections[edge.id])
        elif edge.source != node_id and edge.target != node_id:
            edges.append(edge)

    nodes = [n for n in graph.nodes if n.id != node_id]
    logger.debug(
        f"Removed node '{node_id}' from graph {graph.id} "
        f"({sum(len(v) for v in reconnections.values())} reconnections)"
    )
    return graph.with_changes(nodes, edges)
