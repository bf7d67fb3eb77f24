"""Tests for condition evaluation and condition-node routing."""

import pytest

from procflow.graph import ConditionConfig, EdgeSpec, GraphSpec, NodeSpec
from procflow.graph.conditions import branch_handle, evaluate_condition, resolve_field
from procflow.schemas import RunStatus

# === HELPER FUNCTIONS ===


def cond(field: str, operator: str, value=None) -> ConditionConfig:
    return ConditionConfig(field=field, operator=operator, value=value)


def amount_routing_graph() -> GraphSpec:
    """start → amount > 1000 ? cfo-approval : team-approval → end"""
    return GraphSpec(
        id="amount-routing",
        nodes=[
            NodeSpec(id="start", type="start"),
            NodeSpec(
                id="amount-check",
                type="condition",
                config={"field": "amount", "operator": "greater_than", "value": 1000},
            ),
            NodeSpec(id="cfo-approval", type="task"),
            NodeSpec(id="team-approval", type="task"),
            NodeSpec(id="end", type="end"),
        ],
        edges=[
            EdgeSpec(id="e1", source="start", target="amount-check"),
            EdgeSpec(id="e2", source="amount-check", target="cfo-approval", source_handle="true"),
            EdgeSpec(id="e3", source="amount-check", target="team-approval", source_handle="false"),
            EdgeSpec(id="e4", source="cfo-approval", target="end"),
            EdgeSpec(id="e5", source="team-approval", target="end"),
        ],
    )


# === EVALUATION ===


class TestFieldResolution:
    def test_custom_fields_take_precedence(self):
        context = {"amount": 10, "custom_fields": {"amount": 5000}}
        assert resolve_field(context, "amount") == 5000

    def test_falls_back_to_top_level(self):
        assert resolve_field({"amount": 10, "custom_fields": {}}, "amount") == 10

    def test_missing_field(self):
        assert resolve_field({}, "amount") is None


class TestOperators:
    @pytest.mark.parametrize(
        "operator,value,context,expected",
        [
            ("equals", "urgent", {"priority": "urgent"}, True),
            ("equals", "urgent", {"priority": "low"}, False),
            ("not_equals", "urgent", {"priority": "low"}, True),
            ("not_equals", "urgent", {}, True),
            ("contains", "lap", {"priority": "laptop"}, True),
            ("contains", "desk", {"priority": "laptop"}, False),
            ("contains", "vip", {"priority": ["vip", "new"]}, True),
            ("contains", "x", {}, False),
            ("greater_than", 1000, {"priority": 1500}, True),
            ("greater_than", 1000, {"priority": 1000}, False),
            ("greater_than", 1000, {"priority": "1500"}, True),
            ("greater_than", 1000, {"priority": "a lot"}, False),
            ("greater_than", 1000, {}, False),
            ("less_than", 10, {"priority": 2.5}, True),
            ("less_than", 10, {"priority": 12}, False),
            ("is_empty", None, {"priority": ""}, True),
            ("is_empty", None, {"priority": "   "}, False),
            ("is_not_empty", None, {"priority": "   "}, True),
            ("is_empty", None, {}, True),
            ("is_empty", None, {"priority": []}, True),
            ("is_empty", None, {"priority": "set"}, False),
            ("is_not_empty", None, {"priority": "set"}, True),
            ("is_not_empty", None, {"priority": None}, False),
        ],
    )
    def test_operator(self, operator, value, context, expected):
        assert evaluate_condition(cond("priority", operator, value), context) is expected

    def test_custom_field_drives_comparison(self):
        config = cond("amount", "greater_than", 1000)
        assert evaluate_condition(config, {"amount": 1, "custom_fields": {"amount": 5000}})

    def test_evaluation_is_deterministic(self):
        config = cond("amount", "greater_than", 1000)
        context = {"amount": 1500}
        assert {evaluate_condition(config, context) for _ in range(20)} == {True}

    def test_branch_handle(self):
        assert branch_handle(True) == "true"
        assert branch_handle(False) == "false"


# === ROUTING THROUGH A RUN ===


class TestConditionRouting:
    """A condition node picks exactly one outgoing branch."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "amount,expected_node",
        [(1500, "cfo-approval"), (500, "team-approval")],
    )
    async def test_amount_routing(self, make_engine, amount, expected_node):
        engine = make_engine(amount_routing_graph())

        run_id = await engine.start_run(
            "amount-routing", {"entity_id": "req-1", "custom_fields": {"amount": amount}}
        )

        run = await engine.get_run(run_id)
        assert run.status == RunStatus.RUNNING
        assert [p.node_id for p in run.pointers] == [expected_node]

        log = await engine.get_execution_log(run_id)
        evaluated = [e for e in log if e.action == "condition_evaluated"]
        assert len(evaluated) == 1
        assert evaluated[0].details["result"] is (amount > 1000)
        assert evaluated[0].details["actual"] == amount

    @pytest.mark.asyncio
    async def test_only_chosen_branch_is_visited(self, make_engine):
        engine = make_engine(amount_routing_graph())

        run_id = await engine.start_run("amount-routing", {"custom_fields": {"amount": 1500}})
        await engine.complete_task(run_id, "cfo-approval")

        run = await engine.get_run(run_id)
        assert run.status == RunStatus.COMPLETED
        log = await engine.get_execution_log(run_id)
        entered = [e.node_id for e in log if e.action == "node_entered"]
        assert entered == ["start", "amount-check", "cfo-approval", "end"]
