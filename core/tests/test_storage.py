"""Tests for the storage module - InMemoryStorage and the FileStorage write-through backend."""

import json
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from procflow.schemas import (
    DomainEvent,
    EntityType,
    EventType,
    Run,
    RunStatus,
    SubProcessRun,
    TaskRecord,
    ValidationInstance,
    ValidationStatus,
)
from procflow.storage import FileStorage, InMemoryStorage

# === HELPER FUNCTIONS ===


def create_test_run(run_id: str = "run-1", status: RunStatus = RunStatus.RUNNING) -> Run:
    """Create a test Run object with minimal required fields."""
    return Run(id=run_id, graph_id="purchase", status=status, context={"entity_id": "req-1"})


def create_test_event(event_id: str) -> DomainEvent:
    return DomainEvent(
        id=event_id, event_type=EventType.TASK_CREATED, entity_type=EntityType.TASK, entity_id="t1"
    )


# === IN-MEMORY STORAGE TESTS ===


class TestInMemoryRuns:
    @pytest.mark.asyncio
    async def test_save_and_get(self):
        storage = InMemoryStorage()
        await storage.save_run(create_test_run())

        run = await storage.get_run("run-1")
        assert run.graph_id == "purchase"
        assert await storage.get_run("missing") is None

    @pytest.mark.asyncio
    async def test_loaded_records_are_copies(self):
        storage = InMemoryStorage()
        run = create_test_run()
        await storage.save_run(run)

        run.status = RunStatus.FAILED
        loaded = await storage.get_run("run-1")
        loaded.context["entity_id"] = "changed"

        stored = await storage.get_run("run-1")
        assert stored.status == RunStatus.RUNNING
        assert stored.context["entity_id"] == "req-1"

    @pytest.mark.asyncio
    async def test_list_runs_by_status(self):
        storage = InMemoryStorage()
        await storage.save_run(create_test_run("a", RunStatus.RUNNING))
        await storage.save_run(create_test_run("b", RunStatus.COMPLETED))

        assert [r.id for r in await storage.list_runs(RunStatus.COMPLETED)] == ["b"]
        assert len(await storage.list_runs()) == 2


class TestExecutionLog:
    @pytest.mark.asyncio
    async def test_sequence_is_per_run(self):
        storage = InMemoryStorage()
        await storage.append_log("run-1", "workflow_started", "start")
        await storage.append_log("run-2", "workflow_started", "start")
        entry = await storage.append_log("run-1", "node_entered", "task-1", {"node_type": "task"})

        assert entry.sequence == 2
        log = await storage.get_log("run-1")
        assert [(e.sequence, e.action) for e in log] == [
            (1, "workflow_started"),
            (2, "node_entered"),
        ]
        assert log[1].details == {"node_type": "task"}
        assert [e.sequence for e in await storage.get_log("run-2")] == [1]

    @pytest.mark.asyncio
    async def test_unknown_run_has_empty_log(self):
        assert await InMemoryStorage().get_log("missing") == []


class TestInMemoryEvents:
    @pytest.mark.asyncio
    async def test_new_events_get_increasing_sequence(self):
        storage = InMemoryStorage()

        first = await storage.save_event(create_test_event("e1"))
        second = await storage.save_event(create_test_event("e2"))
        resaved = await storage.save_event(first.model_copy(update={"processed": True}))

        assert (first.sequence, second.sequence) == (1, 2)
        assert resaved.sequence == 1

    @pytest.mark.asyncio
    async def test_due_events_skip_processed_backoff_and_dead_letters(self):
        storage = InMemoryStorage()
        now = datetime(2026, 3, 2, 9, 0)
        await storage.save_event(create_test_event("ready"))
        await storage.save_event(create_test_event("done").model_copy(update={"processed": True}))
        await storage.save_event(
            create_test_event("later").model_copy(
                update={"next_attempt_at": now + timedelta(minutes=1)}
            )
        )
        await storage.save_event(
            create_test_event("dead").model_copy(update={"dead_lettered": True})
        )
        await storage.save_event(
            create_test_event("retry").model_copy(
                update={"next_attempt_at": now - timedelta(minutes=1)}
            )
        )

        due = await storage.list_due_events(now)

        assert [e.id for e in due] == ["ready", "retry"]
        assert [e.id for e in await storage.list_due_events(now, limit=1)] == ["ready"]


class TestInMemoryRecords:
    @pytest.mark.asyncio
    async def test_validations_filtered_by_run_and_status(self):
        storage = InMemoryStorage()
        await storage.save_validation(
            ValidationInstance(id="v1", run_id="run-1", node_id="n", approver_type="role")
        )
        await storage.save_validation(
            ValidationInstance(
                id="v2",
                run_id="run-1",
                node_id="n",
                approver_type="role",
                status=ValidationStatus.APPROVED,
            )
        )
        await storage.save_validation(
            ValidationInstance(id="v3", run_id="run-2", node_id="n", approver_type="role")
        )

        pending = await storage.list_validations(run_id="run-1", status=ValidationStatus.PENDING)
        assert [v.id for v in pending] == ["v1"]

    @pytest.mark.asyncio
    async def test_find_sub_process_run(self):
        storage = InMemoryStorage()
        await storage.save_sub_process_run(
            SubProcessRun(id="sp-1", request_id="req-1", run_id="run-1", node_id="branch-1")
        )

        found = await storage.find_sub_process_run("run-1", "branch-1")
        assert found.id == "sp-1"
        assert await storage.find_sub_process_run("run-1", "branch-2") is None

    @pytest.mark.asyncio
    async def test_list_tasks(self):
        storage = InMemoryStorage()
        await storage.save_task(TaskRecord(id="t1", sub_process_run_id="sp-1", request_id="r"))
        await storage.save_task(TaskRecord(id="t2", sub_process_run_id="sp-2", request_id="r"))

        assert [t.id for t in await storage.list_tasks(sub_process_run_id="sp-1")] == ["t1"]
        assert len(await storage.list_tasks(request_id="r")) == 2


# === FILE STORAGE TESTS ===


class TestFileStorage:
    @pytest.mark.asyncio
    async def test_records_are_written_as_json(self, tmp_path: Path):
        storage = FileStorage(tmp_path)
        await storage.save_run(create_test_run())

        path = tmp_path / "runs" / "run-1.json"
        assert path.exists()
        assert json.loads(path.read_text())["graph_id"] == "purchase"

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, tmp_path: Path):
        storage = FileStorage(tmp_path)
        await storage.save_run(create_test_run())
        await storage.save_run(create_test_run())

        assert sorted(p.name for p in (tmp_path / "runs").iterdir()) == ["run-1.json"]

    @pytest.mark.asyncio
    async def test_log_is_appended_as_jsonl(self, tmp_path: Path):
        storage = FileStorage(tmp_path)
        await storage.append_log("run-1", "workflow_started", "start")
        await storage.append_log("run-1", "node_entered", "start")

        lines = (tmp_path / "logs" / "run-1.jsonl").read_text().splitlines()
        assert [json.loads(line)["action"] for line in lines] == [
            "workflow_started",
            "node_entered",
        ]

    @pytest.mark.asyncio
    async def test_state_survives_reload(self, tmp_path: Path):
        storage = FileStorage(tmp_path)
        await storage.save_run(create_test_run())
        await storage.append_log("run-1", "workflow_started", "start")
        await storage.save_event(create_test_event("e1"))
        await storage.save_event(create_test_event("e2"))

        reloaded = FileStorage(tmp_path)

        assert (await reloaded.get_run("run-1")).context == {"entity_id": "req-1"}
        assert [e.action for e in await reloaded.get_log("run-1")] == ["workflow_started"]
        entry = await reloaded.append_log("run-1", "node_entered", "start")
        assert entry.sequence == 2
        third = await reloaded.save_event(create_test_event("e3"))
        assert third.sequence == 3

    @pytest.mark.asyncio
    async def test_unreadable_records_are_skipped(self, tmp_path: Path):
        storage = FileStorage(tmp_path)
        await storage.save_run(create_test_run())
        (tmp_path / "runs" / "broken.json").write_text("{not json")
        (tmp_path / "runs" / "no-graph.json").write_text('{"id": "no-graph"}')

        reloaded = FileStorage(tmp_path)

        assert [r.id for r in await reloaded.list_runs()] == ["run-1"]

    @pytest.mark.asyncio
    async def test_torn_log_line_is_skipped(self, tmp_path: Path):
        storage = FileStorage(tmp_path)
        await storage.append_log("run-1", "workflow_started", "start")
        with open(tmp_path / "logs" / "run-1.jsonl", "a", encoding="utf-8") as f:
            f.write('{"run_id": "run-1", "seq')

        reloaded = FileStorage(tmp_path)

        assert [e.action for e in await reloaded.get_log("run-1")] == ["workflow_started"]

    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self, tmp_path: Path):
        storage = FileStorage(tmp_path)
        with pytest.raises(ValueError, match="path"):
            await storage.save_run(create_test_run("../escape"))
        with pytest.raises(ValueError):
            await storage.append_log("..", "workflow_started")
