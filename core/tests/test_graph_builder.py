"""Tests for the graph builder - standard shapes and structural edits."""

import pytest

from procflow.builder import (
    BranchSpec,
    TaskSpec,
    build_fork_join,
    build_linear,
    insert_task_before,
    remove_node,
)
from procflow.builder.shapes import PLACEHOLDER_TASK_TITLE
from procflow.errors import GraphEditError, GraphMalformed
from procflow.graph import (
    ApproverType,
    EdgeSpec,
    ForkConfig,
    GraphSpec,
    JoinConfig,
    NodeSpec,
    NodeType,
    NotificationConfig,
    ValidationConfig,
)

# === HELPER FUNCTIONS ===


def node_ids(graph: GraphSpec) -> list[str]:
    return [n.id for n in graph.nodes]


def path(graph: GraphSpec) -> list[str]:
    """Follow first outgoing edges from start; only meaningful for chains."""
    current = graph.get_start_node().id
    visited = [current]
    while True:
        edges = graph.get_outgoing_edges(current)
        if not edges:
            return visited
        current = edges[0].target
        visited.append(current)


def three_branch_graph() -> GraphSpec:
    return build_fork_join(
        [BranchSpec(name="IT"), BranchSpec(name="HR"), BranchSpec(name="Facilities")],
        graph_id="onboarding",
    )


def condition_graph() -> GraphSpec:
    return GraphSpec(
        id="routing",
        nodes=[
            NodeSpec(id="start", type="start"),
            NodeSpec(
                id="check",
                type="condition",
                config={"field": "amount", "operator": "greater_than", "value": 1000},
            ),
            NodeSpec(id="big", type="task"),
            NodeSpec(id="small", type="task"),
            NodeSpec(id="end", type="end"),
        ],
        edges=[
            EdgeSpec(id="e1", source="start", target="check"),
            EdgeSpec(id="e2", source="check", target="big", source_handle="true"),
            EdgeSpec(id="e3", source="check", target="small", source_handle="false"),
            EdgeSpec(id="e4", source="big", target="end"),
            EdgeSpec(id="e5", source="small", target="end"),
        ],
    )


# === SHAPES ===


class TestBuildLinear:
    """start → task* → validation → notification → end"""

    def test_pipeline_order(self):
        graph = build_linear(
            [TaskSpec(title="Collect quotes"), TaskSpec(title="Compare offers")],
            graph_id="purchase",
        )

        assert path(graph) == ["start", "task-1", "task-2", "validation", "notification", "end"]
        assert graph.get_node("task-1").label == "Collect quotes"
        assert graph.get_node("task-2").config.task_title == "Compare offers"
        assert graph.validate() == []

    def test_empty_steps_get_placeholder_task(self):
        graph = build_linear([], graph_id="empty")

        tasks = [n for n in graph.nodes if n.type == NodeType.TASK]
        assert len(tasks) == 1
        assert tasks[0].label == PLACEHOLDER_TASK_TITLE
        assert path(graph) == ["start", "task-1", "validation", "notification", "end"]

    def test_explicit_task_ids_and_templates(self):
        graph = build_linear(
            [TaskSpec(id="quotes", title="Quotes", task_template_id="tpl-7", duration_days=3)]
        )

        node = graph.get_node("quotes")
        assert node.linked_task_template_id == "tpl-7"
        assert node.config.duration_days == 3
        assert graph.id.startswith("linear-")

    def test_approver_config_is_used(self):
        approver = ValidationConfig(approver_type="role", approver_role="finance", sla_hours=24)
        graph = build_linear([TaskSpec(title="Prepare")], approver, graph_id="p")

        config = graph.get_node("validation").config
        assert config.approver_type == ApproverType.ROLE
        assert config.approver_role == "finance"
        assert config.sla_hours == 24

    def test_default_approver_is_requester_manager(self):
        graph = build_linear([TaskSpec(title="Prepare")], graph_id="p")
        assert graph.get_node("validation").config.approver_type == ApproverType.REQUESTER_MANAGER

    def test_custom_notification(self):
        notice = NotificationConfig(recipient_type="approvers", channels=["email", "in_app"])
        graph = build_linear([TaskSpec(title="Prepare")], graph_id="p", notification=notice)
        assert graph.get_node("notification").config == notice

    def test_version_and_name(self):
        graph = build_linear([TaskSpec(title="x")], graph_id="p", version=4, name="Purchase")
        assert graph.version == 4
        assert graph.name == "Purchase"
        assert "[Purchase]" in graph.get_node("notification").config.subject_template


class TestBuildForkJoin:
    def test_three_branches(self):
        graph = three_branch_graph()

        assert node_ids(graph) == [
            "start",
            "fork",
            "branch-1",
            "branch-2",
            "branch-3",
            "join",
            "end",
        ]
        fork = graph.get_node("fork")
        assert isinstance(fork.config, ForkConfig)
        assert fork.config.branch_count == 3
        assert fork.config.branch_labels == ["IT", "HR", "Facilities"]
        assert graph.get_node("join").config == JoinConfig(required_count=3)

        assert [e.source_handle for e in graph.get_outgoing_edges("fork")] == [
            "fork-out-1",
            "fork-out-2",
            "fork-out-3",
        ]
        assert [e.target_handle for e in graph.get_incoming_edges("join")] == [
            "join-in-1",
            "join-in-2",
            "join-in-3",
        ]
        assert graph.validate() == []

    def test_branch_nodes_are_sub_processes(self):
        graph = build_fork_join(
            [BranchSpec(id="it", name="IT", sub_process_template_id="sp-it"), BranchSpec(name="HR")]
        )

        it = graph.get_node("it")
        assert it.type == NodeType.SUB_PROCESS
        assert it.config.sub_process_template_id == "sp-it"
        assert graph.get_node("branch-2").config.sub_process_name == "HR"

    def test_single_branch_has_no_fork(self):
        graph = build_fork_join([BranchSpec(name="IT")], graph_id="solo")

        assert [n.type for n in graph.nodes] == [NodeType.START, NodeType.SUB_PROCESS, NodeType.END]
        assert path(graph) == ["start", "branch-1", "end"]

    def test_no_branches(self):
        graph = build_fork_join([], graph_id="nothing")
        assert path(graph) == ["start", "end"]


# === EDITS ===


class TestInsertTaskBefore:
    def test_insert_before_validation(self):
        graph = build_linear([TaskSpec(title="Prepare")], graph_id="p")

        edited = insert_task_before(graph, "validation", TaskSpec(id="review", title="Review"))

        assert path(edited) == ["start", "task-1", "review", "validation", "notification", "end"]
        assert node_ids(edited).index("review") == node_ids(edited).index("validation") - 1
        assert edited.validate() == []

    def test_original_graph_unchanged(self):
        graph = build_linear([TaskSpec(title="Prepare")], graph_id="p")

        insert_task_before(graph, "validation", TaskSpec(id="review", title="Review"))

        assert graph.get_node("review") is None
        assert [e.source for e in graph.get_incoming_edges("validation")] == ["task-1"]

    def test_redirected_edge_keeps_its_id(self):
        graph = build_linear([TaskSpec(title="Prepare")], graph_id="p")
        entering = graph.get_incoming_edges("validation")[0]

        edited = insert_task_before(graph, "validation", TaskSpec(id="review"))

        redirected = next(e for e in edited.edges if e.id == entering.id)
        assert redirected.source == "task-1"
        assert redirected.target == "review"

    def test_generated_id(self):
        graph = build_linear([TaskSpec(title="Prepare")], graph_id="p")

        edited = insert_task_before(graph, "notification", TaskSpec(title="Archive"))

        new_nodes = set(node_ids(edited)) - set(node_ids(graph))
        assert len(new_nodes) == 1
        assert new_nodes.pop().startswith("task-")

    def test_ambiguous_insertion_point(self):
        with pytest.raises(GraphEditError, match="Ambiguous"):
            insert_task_before(three_branch_graph(), "join", TaskSpec(id="check"))

    def test_target_handle_disambiguates(self):
        graph = three_branch_graph()

        edited = insert_task_before(graph, "join", TaskSpec(id="check"), target_handle="join-in-2")

        into_check = edited.get_incoming_edges("check")
        assert [(e.source, e.target_handle) for e in into_check] == [("branch-2", None)]
        bridge = edited.get_outgoing_edges("check")[0]
        assert bridge.target == "join"
        assert bridge.target_handle == "join-in-2"
        assert edited.validate() == []

    def test_unknown_anchor(self):
        graph = build_linear([TaskSpec(title="Prepare")], graph_id="p")
        with pytest.raises(GraphEditError, match="not found"):
            insert_task_before(graph, "nowhere", TaskSpec(id="x"))

    def test_anchor_without_incoming_edge(self):
        graph = build_linear([TaskSpec(title="Prepare")], graph_id="p")
        with pytest.raises(GraphEditError, match="No incoming edge"):
            insert_task_before(graph, "start", TaskSpec(id="x"))

    def test_duplicate_node_id(self):
        graph = build_linear([TaskSpec(title="Prepare")], graph_id="p")
        with pytest.raises(GraphEditError, match="already exists"):
            insert_task_before(graph, "validation", TaskSpec(id="task-1"))

    def test_edit_error_is_a_malformed_graph_error(self):
        graph = build_linear([TaskSpec(title="Prepare")], graph_id="p")
        with pytest.raises(GraphMalformed):
            insert_task_before(graph, "nowhere", TaskSpec(id="x"))


class TestRemoveNode:
    def test_remove_task_from_chain(self):
        graph = build_linear([TaskSpec(title="A"), TaskSpec(title="B")], graph_id="p")

        edited = remove_node(graph, "task-1")

        assert path(edited) == ["start", "task-2", "validation", "notification", "end"]
        assert edited.validate() == []

    def test_branch_removal_keeps_fork_and_join_handles(self):
        edited = remove_node(three_branch_graph(), "branch-2")

        bypass = [e for e in edited.edges if e.source == "fork" and e.target == "join"]
        assert len(bypass) == 1
        assert bypass[0].source_handle == "fork-out-2"
        assert bypass[0].target_handle == "join-in-2"
        assert edited.validate() == []

    def test_remove_condition_reconnects_both_branches(self):
        edited = remove_node(condition_graph(), "check")

        assert {e.target for e in edited.get_outgoing_edges("start")} == {"big", "small"}

    def test_reconnection_takes_place_of_replaced_edge(self):
        graph = build_linear([TaskSpec(title="A"), TaskSpec(title="B")], graph_id="p")

        edited = remove_node(graph, "task-1")

        assert edited.edges[0].source == "start"
        assert edited.edges[0].target == "task-2"

    def test_duplicate_reconnections_are_dropped(self):
        graph = GraphSpec(
            id="diamond",
            nodes=[
                NodeSpec(id="start", type="start"),
                NodeSpec(id="middle", type="task"),
                NodeSpec(id="end", type="end"),
            ],
            edges=[
                EdgeSpec(id="e1", source="start", target="middle"),
                EdgeSpec(id="e2", source="start", target="end"),
                EdgeSpec(id="e3", source="middle", target="end"),
            ],
        )

        edited = remove_node(graph, "middle")

        assert [(e.source, e.target) for e in edited.edges] == [("start", "end")]

    def test_cannot_remove_start_or_end(self):
        graph = build_linear([TaskSpec(title="A")], graph_id="p")
        with pytest.raises(GraphEditError):
            remove_node(graph, "start")
        with pytest.raises(GraphEditError):
            remove_node(graph, "end")

    def test_unknown_node(self):
        graph = build_linear([TaskSpec(title="A")], graph_id="p")
        with pytest.raises(GraphEditError, match="not found"):
            remove_node(graph, "ghost")

    @pytest.mark.parametrize(
        "graph",
        [
            build_linear([TaskSpec(title="A"), TaskSpec(title="B")], graph_id="linear"),
            build_fork_join(
                [BranchSpec(name="IT"), BranchSpec(name="HR"), BranchSpec(name="Ops")],
                graph_id="forkjoin",
            ),
            condition_graph(),
        ],
        ids=["linear", "fork-join", "condition"],
    )
    def test_removal_preserves_reachability(self, graph: GraphSpec):
        """Everything reachable from start before removal stays reachable after."""
        start = graph.get_start_node().id
        for node in graph.nodes:
            if node.type in (NodeType.START, NodeType.END):
                continue
            before = graph.reachable_from(start) - {node.id}
            after = remove_node(graph, node.id).reachable_from(start)
            assert before <= after, f"removing {node.id} lost {before - after}"
