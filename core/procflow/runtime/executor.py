"""
Run Executor - Advances runs through process graphs.

The executor:
1. Seeds a run with one branch pointer on the start node
2. Walks active pointers node by node in an explicit step loop
3. Parks pointers on task, validation, join and sub_process nodes
4. Resumes parked pointers on external signals (task completed, validation
   decided, branch arrived, sub-process completed)
5. Persists the run after every step and appends every transition to the
   run's execution log

Each entry point holds the run's lock for the whole walk, so triggers racing
on one run are applied one after the other. Domain events produced by a walk
are emitted only after the lock is released, since immediate handlers may
call back into the executor for the same run.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from procflow.config import EngineConfig
from procflow.errors import AlreadyDecided, RecipientUnresolved, RunNotFound, RunNotPaused
from procflow.graph.conditions import branch_handle, evaluate_condition, resolve_field
from procflow.graph.edge import GraphSpec
from procflow.graph.node import (
    ConditionConfig,
    EndConfig,
    JoinConfig,
    NodeSpec,
    NodeType,
    NotificationConfig,
    SubProcessConfig,
    TaskConfig,
    ValidationConfig,
)
from procflow.observability import set_trace_context
from procflow.runtime.collaborators import GraphStore
from procflow.runtime.locks import RunLockManager
from procflow.runtime.notifications import NotificationService
from procflow.runtime.validation_gate import ValidationGate
from procflow.schemas.entities import SubProcessRun, SubProcessStatus
from procflow.schemas.event import EntityType, EventType
from procflow.schemas.run import BranchPointer, JoinState, PointerState, Run, RunStatus
from procflow.schemas.validation import Decision
from procflow.storage.backend import InMemoryStorage

# emit(event_type, entity_type, entity_id, payload, run_id)
EventEmitter = Callable[[EventType, EntityType, str, dict[str, Any], str | None], Awaitable[Any]]


@dataclass
class PendingEvent:
    """A domain event produced by a walk, emitted once the run lock is released."""

    event_type: EventType
    entity_type: EntityType
    entity_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    run_id: str | None = None


def parent_branch(branch_id: str | None) -> str | None:
    """Branch id enclosing a nested fork branch (``"a/b"`` → ``"a"``)."""
    if not branch_id or "/" not in branch_id:
        return None
    return branch_id.rsplit("/", 1)[0]


class RunExecutor:
    """
    Interprets process graphs for runs.

    Example:
        executor = RunExecutor(storage, graphs, gate, notifications)
        run = await executor.start("purchase-approval", {"entity_id": "req-1"})
        run = await executor.on_task_completed(run.id, "task-1")
    """

    def __init__(
        self,
        storage: InMemoryStorage,
        graphs: GraphStore,
        gate: ValidationGate,
        notifications: NotificationService,
        config: EngineConfig | None = None,
        locks: RunLockManager | None = None,
        emit: EventEmitter | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage = storage
        self.graphs = graphs
        self.gate = gate
        self.notifications = notifications
        self.config = config or EngineConfig()
        self.locks = locks if locks is not None else RunLockManager()
        self.emit = emit
        self._clock = clock
        self.logger = logging.getLogger(__name__)

    # === ENTRY POINTS ===

    async def start(
        self,
        graph_id: str,
        context: dict[str, Any],
        started_by: str | None = None,
        version: int | None = None,
    ) -> Run:
        """
        Start a run of a graph and walk it until every branch is parked or the run ends.

        Raises:
            GraphNotFound: If the graph store has no such graph
            GraphMalformed: If the graph fails structural validation
        """
        graph = await self.graphs.get_graph(graph_id, version)
        graph.ensure_valid()
        start_node = graph.get_start_node()

        run = Run(
            id=str(uuid.uuid4()),
            graph_id=graph.id,
            graph_version=graph.version,
            context=dict(context),
            started_by=started_by,
            started_at=self._clock(),
            current_node_id=start_node.id,
            pointers=[BranchPointer(id=self._pointer_id(), node_id=start_node.id)],
        )
        set_trace_context(run_id=run.id, graph_id=graph.id)
        self.logger.info(f"Starting run {run.id} of graph {graph.id} v{graph.version}")

        outbox: list[PendingEvent] = []
        async with self.locks.hold(run.id):
            await self.storage.save_run(run)
            await self._log(run, "workflow_started", start_node.id, {"started_by": started_by})
            await self._drive(run, graph, outbox)
        await self._flush(outbox)
        return run

    async def on_task_completed(self, run_id: str, node_id: str) -> Run:
        """
        Resume the branch parked on a task node.

        Raises:
            RunNotFound: Unknown run
            RunNotPaused: Run is terminal or no branch waits on that task node
        """
        outbox: list[PendingEvent] = []
        async with self.locks.hold(run_id):
            run, graph = await self._load(run_id)
            node = graph.get_node(node_id)
            waiting = run.waiting_at(node_id)
            if node is None or node.type != NodeType.TASK or not waiting:
                raise RunNotPaused(run_id, f"no branch is waiting on task node '{node_id}'")

            pointer = waiting[0]
            await self._log(run, "task_completed", node_id, {"branch_id": pointer.branch_id})
            await self._move_to_next_node(run, graph, pointer)
            await self._drive(run, graph, outbox)
        await self._flush(outbox)
        return run

    async def on_validation_decided(
        self,
        validation_id: str,
        decision: Decision | str,
        comment: str | None = None,
        decided_by: str | None = None,
    ) -> Run:
        """
        Apply a decision to a pending validation and resume or terminate its run.

        Approval advances the parked branch. Rejection fails the run; with
        ``cancel_branches_on_rejection`` the sibling branches are dropped and
        their pending validations are marked skipped.

        Raises:
            ValidationNotFound: Unknown validation id
            AlreadyDecided: The instance was already decided
            RunNotPaused: The owning run is terminal or not parked on the node
        """
        decision = Decision(decision)
        instance = await self.gate.get(validation_id)

        outbox: list[PendingEvent] = []
        async with self.locks.hold(instance.run_id):
            # Re-read under the lock; a concurrent decision may have landed first
            instance = await self.gate.get(validation_id)
            if not instance.is_pending:
                raise AlreadyDecided(validation_id, instance.status.value)
            run, graph = await self._load(instance.run_id)
            pointer = next(
                (p for p in run.waiting_at(instance.node_id) if p.branch_id == instance.branch_id),
                None,
            )
            if pointer is None:
                raise RunNotPaused(
                    run.id, f"no branch is waiting on validation node '{instance.node_id}'"
                )

            instance = await self.gate.decide(validation_id, decision, comment, decided_by)
            await self._log(
                run,
                "validation_decided",
                instance.node_id,
                {
                    "validation_id": instance.id,
                    "decision": decision.value,
                    "comment": comment,
                    "decided_by": decided_by,
                },
            )
            outbox.append(
                PendingEvent(
                    EventType.VALIDATION_DECIDED,
                    EntityType.VALIDATION,
                    instance.id,
                    {
                        "decision": decision.value,
                        "comment": comment,
                        "decided_by": decided_by,
                        "node_id": instance.node_id,
                        "entity_type": instance.entity_type,
                        "entity_id": instance.entity_id,
                    },
                    run.id,
                )
            )

            if decision == Decision.APPROVED:
                await self._move_to_next_node(run, graph, pointer)
                await self._drive(run, graph, outbox)
            else:
                run.pointers = [p for p in run.pointers if p.id != pointer.id]
                if self.config.cancel_branches_on_rejection:
                    dropped = [p.branch_id or p.id for p in run.pointers]
                    run.pointers = []
                    skipped = await self.gate.skip_pending(run.id, exclude_id=instance.id)
                    await self._log(
                        run,
                        "branches_cancelled",
                        instance.node_id,
                        {"branches": dropped, "skipped_validations": skipped},
                    )
                reason = f"Validation '{instance.node_id}' rejected"
                if comment:
                    reason += f": {comment}"
                await self._fail(run, reason, instance.node_id)
        await self._flush(outbox)
        return run

    async def on_branch_arrived(self, run_id: str, join_node_id: str, branch_id: str) -> Run:
        """
        Signal that a branch reached a join node.

        The branch's parked pointer, if any, is moved onto the join; a pending
        validation it was parked on is marked skipped. A branch without a live
        pointer is accepted only when it is an outgoing branch of a fork that
        feeds this join and a sibling of it is still tracked by the run;
        anything else is logged and ignored. Arrivals are de-duplicated per
        branch and arrivals after the join fired are no-ops.

        Raises:
            RunNotFound: Unknown run
            RunNotPaused: Run is terminal or ``join_node_id`` is not a join node
        """
        outbox: list[PendingEvent] = []
        async with self.locks.hold(run_id):
            run, graph = await self._load(run_id)
            node = graph.get_node(join_node_id)
            if node is None or node.type != NodeType.JOIN:
                raise RunNotPaused(run_id, f"'{join_node_id}' is not a join node")

            pointer = next(
                (
                    p
                    for p in run.pointers
                    if p.branch_id == branch_id and p.node_id != join_node_id
                ),
                None,
            )
            if pointer is None:
                if not self._is_known_branch(run, graph, join_node_id, branch_id):
                    self.logger.warning(
                        f"Run {run.id}: ignoring arrival of unknown branch '{branch_id}' "
                        f"at join '{join_node_id}'"
                    )
                    await self._log(
                        run,
                        "join_check",
                        join_node_id,
                        {"branch_id": branch_id, "ignored": True, "reason": "unknown branch"},
                    )
                    return run
                pointer = BranchPointer(
                    id=self._pointer_id(), node_id=join_node_id, branch_id=branch_id
                )
                run.pointers.append(pointer)
            else:
                parked_on = graph.get_node(pointer.node_id)
                if (
                    pointer.state == PointerState.WAITING
                    and parked_on is not None
                    and parked_on.type == NodeType.VALIDATION
                ):
                    skipped = await self.gate.skip_pending(
                        run.id, node_id=parked_on.id, branch_id=pointer.branch_id
                    )
                    await self._log(
                        run,
                        "validation_skipped",
                        parked_on.id,
                        {"branch_id": branch_id, "skipped_validations": skipped},
                    )
            pointer.node_id = join_node_id
            pointer.state = PointerState.ACTIVE
            run.current_node_id = join_node_id
            await self._drive(run, graph, outbox)
        await self._flush(outbox)
        return run

    async def on_sub_process_completed(self, sub_process_run_id: str) -> Run | None:
        """
        Resume the branch parked on the sub_process node that created this sub-process run.

        Event-driven and idempotent: returns None when nothing waits on it.
        """
        sub_run = await self.storage.get_sub_process_run(sub_process_run_id)
        if sub_run is None or sub_run.run_id is None or sub_run.node_id is None:
            return None

        outbox: list[PendingEvent] = []
        async with self.locks.hold(sub_run.run_id):
            run = await self.storage.get_run(sub_run.run_id)
            if run is None or run.is_terminal:
                self.logger.debug(f"Run for sub-process {sub_process_run_id} is not live, skipping")
                return None
            graph = await self.graphs.get_graph(run.graph_id, run.graph_version)
            set_trace_context(run_id=run.id, graph_id=graph.id)
            waiting = run.waiting_at(sub_run.node_id)
            if not waiting:
                return None

            pointer = waiting[0]
            await self._log(
                run,
                "sub_process_completed",
                sub_run.node_id,
                {"sub_process_run_id": sub_run.id, "branch_id": pointer.branch_id},
            )
            await self._move_to_next_node(run, graph, pointer)
            await self._drive(run, graph, outbox)
        await self._flush(outbox)
        return run

    async def resume_run(self, run_id: str) -> Run:
        """Continue a walk from the persisted active pointers (after a crash mid-walk)."""
        outbox: list[PendingEvent] = []
        async with self.locks.hold(run_id):
            run, graph = await self._load(run_id)
            await self._drive(run, graph, outbox)
        await self._flush(outbox)
        return run

    async def cancel(self, run_id: str, reason: str | None = None) -> Run:
        """
        Cancel a live run. Cancelling an already cancelled run is a no-op.

        Raises:
            RunNotFound: Unknown run
            RunNotPaused: The run already completed or failed
        """
        async with self.locks.hold(run_id):
            run = await self.storage.get_run(run_id)
            if run is None:
                raise RunNotFound(run_id)
            if run.status == RunStatus.CANCELLED:
                return run
            if run.is_terminal:
                raise RunNotPaused(run_id, f"run is already {run.status}")

            run.status = RunStatus.CANCELLED
            run.completed_at = self._clock()
            await self.storage.save_run(run)
            await self._log(run, "workflow_cancelled", run.current_node_id, {"reason": reason})
            self.logger.info(f"Run {run_id} cancelled")
        return run

    # === STEP LOOP ===

    async def _drive(self, run: Run, graph: GraphSpec, outbox: list[PendingEvent]) -> None:
        """Process active pointers one step at a time until none is left or the run ends."""
        steps = 0
        while not run.is_terminal:
            pointer = next((p for p in run.pointers if p.state == PointerState.ACTIVE), None)
            if pointer is None:
                break

            steps += 1
            if steps > self.config.max_steps:
                await self._fail(
                    run, f"Step limit of {self.config.max_steps} exceeded", pointer.node_id
                )
                break

            node = graph.get_node(pointer.node_id)
            if node is None:
                await self._fail(run, f"Node '{pointer.node_id}' not found in graph")
                break

            await self._process_node(run, graph, pointer, node, outbox)
            # Persisted cursor: a crash from here on resumes at the next active pointer
            await self.storage.save_run(run)

        if not run.is_terminal:
            run.status = self._derive_status(run, graph)
            await self.storage.save_run(run)

    def _derive_status(self, run: Run, graph: GraphSpec) -> RunStatus:
        for pointer in run.pointers:
            node = graph.get_node(pointer.node_id)
            if pointer.state == PointerState.WAITING and node and node.type == NodeType.TASK:
                return RunStatus.RUNNING
        return RunStatus.PAUSED

    async def _process_node(
        self,
        run: Run,
        graph: GraphSpec,
        pointer: BranchPointer,
        node: NodeSpec,
        outbox: list[PendingEvent],
    ) -> None:
        set_trace_context(node_id=node.id)
        run.current_node_id = node.id
        await self._log(
            run,
            "node_entered",
            node.id,
            {"node_type": node.type.value, "branch_id": pointer.branch_id},
        )
        config = node.config

        if node.type == NodeType.START:
            await self._move_to_next_node(run, graph, pointer)

        elif isinstance(config, TaskConfig):
            await self._log(
                run,
                "task_node_reached",
                node.id,
                {
                    "task_template_id": config.task_template_id
                    or node.linked_task_template_id,
                    "task_title": config.task_title,
                },
            )
            pointer.state = PointerState.WAITING
            run.status = RunStatus.RUNNING

        elif isinstance(config, ValidationConfig):
            await self._enter_validation(run, node, config, pointer, outbox)

        elif isinstance(config, NotificationConfig):
            await self._enter_notification(run, node, config)
            await self._move_to_next_node(run, graph, pointer)

        elif isinstance(config, ConditionConfig):
            result = evaluate_condition(config, run.context)
            handle = branch_handle(result)
            await self._log(
                run,
                "condition_evaluated",
                node.id,
                {
                    "field": config.field,
                    "operator": config.operator.value,
                    "value": config.value,
                    "actual": _jsonable(resolve_field(run.context, config.field)),
                    "result": result,
                    "handle": handle,
                },
            )
            await self._move_to_next_node(run, graph, pointer, handle)

        elif node.type == NodeType.FORK:
            branches = self._enter_fork(run, graph, node, pointer)
            await self._log(
                run,
                "fork_started",
                node.id,
                {"branches": [{"branch_id": p.branch_id, "node_id": p.node_id} for p in branches]},
            )

        elif isinstance(config, JoinConfig):
            await self._enter_join(run, graph, node, config, pointer)

        elif isinstance(config, SubProcessConfig):
            await self._enter_sub_process(run, graph, node, config, pointer, outbox)

        elif isinstance(config, EndConfig):
            await self._complete(run, node, config)

    # --- node handlers ---

    async def _enter_validation(
        self,
        run: Run,
        node: NodeSpec,
        config: ValidationConfig,
        pointer: BranchPointer,
        outbox: list[PendingEvent],
    ) -> None:
        try:
            instance = await self.gate.create_instance(run, node.id, config, pointer.branch_id)
        except RecipientUnresolved as e:
            await self._fail(run, str(e), node.id)
            return

        await self._log(
            run,
            "validation_created",
            node.id,
            {
                "validation_id": instance.id,
                "approver_type": instance.approver_type,
                "approver_id": instance.approver_id,
                "approver_department_id": instance.approver_department_id,
                "approver_role": instance.approver_role,
                "due_at": instance.due_at.isoformat() if instance.due_at else None,
            },
        )
        pointer.state = PointerState.WAITING
        outbox.append(
            PendingEvent(
                EventType.VALIDATION_REQUESTED,
                EntityType.VALIDATION,
                instance.id,
                {
                    "node_id": node.id,
                    "approver_id": instance.approver_id,
                    "approver_department_id": instance.approver_department_id,
                    "approver_role": instance.approver_role,
                    "entity_type": instance.entity_type,
                    "entity_id": instance.entity_id,
                },
                run.id,
            )
        )

    async def _enter_notification(self, run: Run, node: NodeSpec, config: NotificationConfig):
        validations = await self.storage.list_validations(run_id=run.id)
        approver_ids = [v.approver_id for v in validations if v.approver_id]
        try:
            records = await self.notifications.create_for_node(run, node.id, config, approver_ids)
        except RecipientUnresolved as e:
            self.logger.warning(f"Run {run.id}: notification '{node.id}' skipped: {e}")
            await self._log(
                run,
                "notification_skipped",
                node.id,
                {"recipient_type": config.recipient_type.value, "reason": str(e)},
            )
            return

        await self._log(
            run,
            "notifications_created",
            node.id,
            {
                "channels": [c.value for c in config.channels],
                "recipient_type": config.recipient_type.value,
                "count": len(records),
            },
        )

    def _enter_fork(
        self, run: Run, graph: GraphSpec, node: NodeSpec, pointer: BranchPointer
    ) -> list[BranchPointer]:
        """Replace the forking pointer with one active pointer per outgoing edge."""
        run.pointers = [p for p in run.pointers if p.id != pointer.id]
        branches = []
        for index, edge in enumerate(graph.get_outgoing_edges(node.id), start=1):
            handle = edge.source_handle or f"branch-{index}"
            branch_id = f"{pointer.branch_id}/{handle}" if pointer.branch_id else handle
            branches.append(
                BranchPointer(id=self._pointer_id(), node_id=edge.target, branch_id=branch_id)
            )
        run.pointers.extend(branches)
        return branches

    async def _enter_join(
        self,
        run: Run,
        graph: GraphSpec,
        node: NodeSpec,
        config: JoinConfig,
        pointer: BranchPointer,
    ) -> None:
        state = run.join_states.setdefault(node.id, JoinState())
        branch_id = pointer.branch_id or pointer.id

        if state.fired or branch_id in state.arrived:
            run.pointers = [p for p in run.pointers if p.id != pointer.id]
            await self._log(
                run,
                "join_check",
                node.id,
                {"branch_id": branch_id, "ignored": True, "fired": state.fired},
            )
            return

        state.arrived.append(branch_id)
        pointer.state = PointerState.WAITING
        await self._log(
            run,
            "branch_arrived",
            node.id,
            {
                "branch_id": branch_id,
                "arrived_count": len(state.arrived),
                "required_count": config.required_count,
            },
        )

        fired = len(state.arrived) >= config.required_count
        await self._log(
            run,
            "join_check",
            node.id,
            {
                "arrived": list(state.arrived),
                "required_count": config.required_count,
                "fired": fired,
            },
        )
        if not fired:
            return

        state.fired = True
        run.pointers = [p for p in run.pointers if p.node_id != node.id]
        continuing = BranchPointer(
            id=self._pointer_id(),
            node_id=node.id,
            branch_id=parent_branch(state.arrived[0]),
        )
        run.pointers.append(continuing)
        await self._move_to_next_node(run, graph, continuing)

    async def _enter_sub_process(
        self,
        run: Run,
        graph: GraphSpec,
        node: NodeSpec,
        config: SubProcessConfig,
        pointer: BranchPointer,
        outbox: list[PendingEvent],
    ) -> None:
        existing = await self.storage.find_sub_process_run(run.id, node.id)
        if existing is not None and existing.status == SubProcessStatus.COMPLETED:
            await self._move_to_next_node(run, graph, pointer)
            return

        if existing is None:
            existing = SubProcessRun(
                id=str(uuid.uuid4()),
                request_id=run.context.get("request_id") or run.entity_id,
                sub_process_template_id=config.sub_process_template_id,
                name=config.sub_process_name or node.label,
                status=SubProcessStatus.RUNNING,
                run_id=run.id,
                node_id=node.id,
            )
            await self.storage.save_sub_process_run(existing)
            outbox.append(
                PendingEvent(
                    EventType.SUB_PROCESS_STARTED,
                    EntityType.REQUEST,
                    existing.id,
                    {
                        "request_id": existing.request_id,
                        "node_id": node.id,
                        "sub_process_template_id": config.sub_process_template_id,
                    },
                    run.id,
                )
            )

        await self._log(
            run,
            "sub_process_started",
            node.id,
            {"sub_process_run_id": existing.id, "branch_id": pointer.branch_id},
        )
        pointer.state = PointerState.WAITING

    async def _complete(self, run: Run, node: NodeSpec, config: EndConfig) -> None:
        run.status = (
            RunStatus.CANCELLED if config.final_status == "cancelled" else RunStatus.COMPLETED
        )
        run.completed_at = self._clock()
        run.pointers = []
        await self.storage.save_run(run)
        await self._log(run, "workflow_completed", node.id, {"final_status": run.status.value})
        self.logger.info(f"Run {run.id} reached end node '{node.id}' ({run.status})")

    # === TRANSITIONS ===

    async def _move_to_next_node(
        self,
        run: Run,
        graph: GraphSpec,
        pointer: BranchPointer,
        handle: str | None = None,
    ) -> None:
        """
        Move a pointer along its node's first matching outgoing edge.

        Edges are taken in declaration order. A missing edge or target fails
        the run with a diagnostic instead of leaving it stranded.
        """
        if await self._is_cancelled(run):
            self.logger.info(f"Run {run.id} cancelled, not leaving '{pointer.node_id}'")
            return

        edges = graph.get_outgoing_edges(pointer.node_id, handle)
        if not edges:
            detail = f" with handle '{handle}'" if handle else ""
            await self._fail(
                run, f"No outgoing edge from '{pointer.node_id}'{detail}", pointer.node_id
            )
            return

        edge = edges[0]
        if graph.get_node(edge.target) is None:
            await self._fail(
                run, f"Edge '{edge.id}' targets missing node '{edge.target}'", pointer.node_id
            )
            return

        pointer.node_id = edge.target
        pointer.state = PointerState.ACTIVE
        run.current_node_id = edge.target

    async def _is_cancelled(self, run: Run) -> bool:
        if run.status == RunStatus.CANCELLED:
            return True
        stored = await self.storage.get_run(run.id)
        if stored is not None and stored.status == RunStatus.CANCELLED:
            run.status = RunStatus.CANCELLED
            run.completed_at = stored.completed_at
            return True
        return False

    async def _fail(self, run: Run, reason: str, node_id: str | None = None) -> None:
        run.status = RunStatus.FAILED
        run.failure_reason = reason
        run.completed_at = self._clock()
        await self.storage.save_run(run)
        await self._log(run, "workflow_failed", node_id, {"reason": reason})
        self.logger.warning(f"Run {run.id} failed: {reason}")

    # === HELPERS ===

    async def _load(self, run_id: str) -> tuple[Run, GraphSpec]:
        run = await self.storage.get_run(run_id)
        if run is None:
            raise RunNotFound(run_id)
        if run.is_terminal:
            raise RunNotPaused(run_id, f"run is already {run.status}")
        graph = await self.graphs.get_graph(run.graph_id, run.graph_version)
        set_trace_context(run_id=run.id, graph_id=graph.id)
        return run, graph

    def _is_known_branch(
        self, run: Run, graph: GraphSpec, join_node_id: str, branch_id: str
    ) -> bool:
        """
        Whether ``branch_id`` names a branch of a fork that feeds ``join_node_id``.

        Branch ids follow ``_enter_fork``: the edge's source handle, prefixed
        with the forking pointer's branch id for nested forks. The fork must
        also have fired in this run, so some sibling branch has to be live or
        already recorded at the join.
        """
        prefix = parent_branch(branch_id)
        state = run.join_states.get(join_node_id)
        tracked = {p.branch_id for p in run.pointers} | set(state.arrived if state else [])

        for fork in graph.nodes:
            if fork.type != NodeType.FORK:
                continue
            edges = graph.get_outgoing_edges(fork.id)
            siblings = []
            for index, edge in enumerate(edges, start=1):
                handle = edge.source_handle or f"branch-{index}"
                sibling = f"{prefix}/{handle}" if prefix else handle
                if join_node_id in graph.reachable_from(edge.target):
                    siblings.append(sibling)
            if branch_id in siblings and tracked.intersection(siblings):
                return True
        return False

    async def _log(
        self, run: Run, action: str, node_id: str | None, details: dict[str, Any] | None = None
    ) -> None:
        await self.storage.append_log(
            run.id, action, node_id=node_id, details=details, timestamp=self._clock()
        )

    async def _flush(self, outbox: list[PendingEvent]) -> None:
        if self.emit is None:
            return
        for event in outbox:
            await self.emit(
                event.event_type, event.entity_type, event.entity_id, event.payload, event.run_id
            )

    @staticmethod
    def _pointer_id() -> str:
        return f"ptr-{uuid.uuid4().hex[:12]}"


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, str | int | float | bool | list | dict):
        return value
    return str(value)
