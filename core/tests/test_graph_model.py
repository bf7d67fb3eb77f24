"""Tests for the graph model - typed node configs, edges and structural validation."""

import pytest
from pydantic import ValidationError

from procflow.errors import GraphMalformed
from procflow.graph import (
    ApproverType,
    ConditionConfig,
    EdgeSpec,
    ForkConfig,
    GraphSpec,
    JoinConfig,
    NodeSpec,
    NodeType,
    NotificationConfig,
    TaskConfig,
    ValidationConfig,
)

# === HELPER FUNCTIONS ===


def edge(source: str, target: str, **handles) -> EdgeSpec:
    suffix = "".join(f"-{v}" for v in handles.values() if v)
    return EdgeSpec(id=f"{source}->{target}{suffix}", source=source, target=target, **handles)


def make_graph(nodes: list[NodeSpec], edges: list[EdgeSpec]) -> GraphSpec:
    return GraphSpec(id="g", nodes=nodes, edges=edges)


def simple_graph() -> GraphSpec:
    return make_graph(
        [
            NodeSpec(id="start", type="start"),
            NodeSpec(id="work", type="task"),
            NodeSpec(id="end", type="end"),
        ],
        [edge("start", "work"), edge("work", "end")],
    )


def fork_graph(branch_count: int = 2, required_count: int = 2) -> GraphSpec:
    return make_graph(
        [
            NodeSpec(id="start", type="start"),
            NodeSpec(id="fork", type="fork", config=ForkConfig(branch_count=branch_count)),
            NodeSpec(id="a", type="task"),
            NodeSpec(id="b", type="task"),
            NodeSpec(id="join", type="join", config=JoinConfig(required_count=required_count)),
            NodeSpec(id="end", type="end"),
        ],
        [
            edge("start", "fork"),
            edge("fork", "a", source_handle="fork-out-1"),
            edge("fork", "b", source_handle="fork-out-2"),
            edge("a", "join", target_handle="join-in-1"),
            edge("b", "join", target_handle="join-in-2"),
            edge("join", "end"),
        ],
    )


# === NODE CONFIG TESTS ===


class TestNodeConfig:
    """Each node type carries exactly its own config variant."""

    def test_config_defaults_from_type(self):
        node = NodeSpec(id="t", type=NodeType.TASK)
        assert isinstance(node.config, TaskConfig)
        assert node.config.type == "task"

    def test_dict_config_gets_type_tag(self):
        node = NodeSpec(
            id="check",
            type="condition",
            config={"field": "amount", "operator": "greater_than", "value": 1000},
        )
        assert isinstance(node.config, ConditionConfig)
        assert node.config.field == "amount"
        assert node.config.value == 1000

    def test_mismatched_config_rejected(self):
        with pytest.raises(ValidationError):
            NodeSpec(id="t", type="task", config=ValidationConfig())

    def test_condition_requires_field_and_operator(self):
        with pytest.raises(ValidationError):
            NodeSpec(id="check", type="condition")

    def test_unknown_config_key_rejected(self):
        with pytest.raises(ValidationError):
            NodeSpec(id="t", type="task", config={"assignee": "bob"})

    def test_unknown_node_type_rejected(self):
        with pytest.raises(ValidationError):
            NodeSpec(id="x", type="webhook")

    def test_user_is_alias_for_fixed_user(self):
        config = ValidationConfig(approver_type="user", approver_id="u-1")
        assert config.approver_type == ApproverType.FIXED_USER

    def test_notification_needs_a_channel(self):
        with pytest.raises(ValidationError):
            NotificationConfig(channels=[])

    def test_fork_needs_positive_branch_count(self):
        with pytest.raises(ValidationError):
            ForkConfig(branch_count=0)

    def test_nodes_are_immutable(self):
        node = NodeSpec(id="t", type="task")
        with pytest.raises(ValidationError):
            node.label = "changed"

    def test_suspending_types(self):
        assert NodeSpec(id="t", type="task").suspends
        assert NodeSpec(id="j", type="join", config=JoinConfig(required_count=2)).suspends
        assert not NodeSpec(id="n", type="notification").suspends
        assert not NodeSpec(id="s", type="start").suspends

    def test_round_trips_through_json(self):
        graph = fork_graph()
        restored = GraphSpec.model_validate_json(graph.model_dump_json())
        assert restored == graph
        assert isinstance(restored.get_node("join").config, JoinConfig)


# === GRAPH VALIDATION TESTS ===


class TestGraphValidation:
    """Structural checks run before any run starts."""

    def test_valid_graph_has_no_errors(self):
        assert simple_graph().validate() == []
        assert fork_graph().validate() == []

    def test_missing_start(self):
        graph = make_graph(
            [NodeSpec(id="work", type="task"), NodeSpec(id="end", type="end")],
            [edge("work", "end")],
        )
        errors = graph.validate()
        assert "Graph has no start node" in errors

    def test_two_starts(self):
        graph = make_graph(
            [
                NodeSpec(id="s1", type="start"),
                NodeSpec(id="s2", type="start"),
                NodeSpec(id="end", type="end"),
            ],
            [edge("s1", "end"), edge("s2", "end")],
        )
        assert any("2 start nodes" in e for e in graph.validate())

    def test_duplicate_node_ids(self):
        graph = make_graph(
            [
                NodeSpec(id="start", type="start"),
                NodeSpec(id="start", type="task"),
                NodeSpec(id="end", type="end"),
            ],
            [edge("start", "end")],
        )
        assert any("Duplicate node ID" in e for e in graph.validate())

    def test_dangling_edge(self):
        graph = make_graph(
            [NodeSpec(id="start", type="start"), NodeSpec(id="end", type="end")],
            [edge("start", "end"), edge("start", "ghost")],
        )
        assert any("missing target 'ghost'" in e for e in graph.validate())

    def test_node_without_outgoing_edge(self):
        graph = make_graph(
            [
                NodeSpec(id="start", type="start"),
                NodeSpec(id="work", type="task"),
                NodeSpec(id="end", type="end"),
            ],
            [edge("start", "work"), edge("start", "end")],
        )
        assert any("'work' (task) has no outgoing edge" in e for e in graph.validate())

    def test_start_with_incoming_edge(self):
        graph = make_graph(
            [
                NodeSpec(id="start", type="start"),
                NodeSpec(id="work", type="task"),
                NodeSpec(id="end", type="end"),
            ],
            [edge("start", "work"), edge("work", "start"), edge("work", "end")],
        )
        assert any("must not have incoming edges" in e for e in graph.validate())

    def test_fork_branch_count_must_match_edges(self):
        errors = fork_graph(branch_count=3, required_count=2).validate()
        assert any("declares 3 branches but has 2 outgoing edges" in e for e in errors)

    def test_join_required_count_must_match_edges(self):
        errors = fork_graph(branch_count=2, required_count=3).validate()
        assert any("requires 3 branches but has 2 incoming edges" in e for e in errors)

    def test_fork_handles_must_be_distinct(self):
        graph = make_graph(
            [
                NodeSpec(id="start", type="start"),
                NodeSpec(id="fork", type="fork", config=ForkConfig(branch_count=2)),
                NodeSpec(id="a", type="task"),
                NodeSpec(id="b", type="task"),
                NodeSpec(id="join", type="join", config=JoinConfig(required_count=2)),
                NodeSpec(id="end", type="end"),
            ],
            [
                edge("start", "fork"),
                EdgeSpec(id="f1", source="fork", target="a", source_handle="out"),
                EdgeSpec(id="f2", source="fork", target="b", source_handle="out"),
                edge("a", "join"),
                edge("b", "join"),
                edge("join", "end"),
            ],
        )
        assert any("reuses a branch handle" in e for e in graph.validate())

    def test_condition_edges_need_true_false_handles(self):
        graph = make_graph(
            [
                NodeSpec(id="start", type="start"),
                NodeSpec(
                    id="check",
                    type="condition",
                    config={"field": "amount", "operator": "greater_than", "value": 10},
                ),
                NodeSpec(id="end", type="end"),
            ],
            [edge("start", "check"), edge("check", "end")],
        )
        assert any("without a true/false handle" in e for e in graph.validate())

    def test_unreachable_node(self):
        graph = make_graph(
            [
                NodeSpec(id="start", type="start"),
                NodeSpec(id="island", type="task"),
                NodeSpec(id="end", type="end"),
            ],
            [edge("start", "end"), edge("island", "end")],
        )
        assert "Node 'island' is unreachable from start" in graph.validate()

    def test_ensure_valid_raises_with_every_error(self):
        graph = fork_graph(branch_count=3, required_count=3)
        with pytest.raises(GraphMalformed) as exc_info:
            graph.ensure_valid()
        assert exc_info.value.graph_id == "g"
        assert len(exc_info.value.errors) == 2

    def test_ensure_valid_returns_graph(self):
        graph = simple_graph()
        assert graph.ensure_valid() is graph


# === NAVIGATION TESTS ===


class TestGraphNavigation:
    def test_outgoing_edges_in_declaration_order(self):
        graph = fork_graph()
        assert [e.target for e in graph.get_outgoing_edges("fork")] == ["a", "b"]

    def test_outgoing_edges_filtered_by_handle(self):
        graph = fork_graph()
        edges = graph.get_outgoing_edges("fork", "fork-out-2")
        assert [e.target for e in edges] == ["b"]
        assert graph.get_outgoing_edges("fork", "missing") == []

    def test_incoming_edges(self):
        graph = fork_graph()
        assert {e.source for e in graph.get_incoming_edges("join")} == {"a", "b"}

    def test_reachable_from(self):
        graph = fork_graph()
        assert graph.reachable_from("a") == {"a", "join", "end"}
        assert graph.reachable_from("start") == {n.id for n in graph.nodes}

    def test_summary(self):
        summary = fork_graph().summary()
        assert summary["nodes"] == 6
        assert summary["edges"] == 6
        assert summary["node_types"]["task"] == 2
