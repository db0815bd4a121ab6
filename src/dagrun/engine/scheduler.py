# src/dagrun/engine/scheduler.py
from __future__ import annotations

import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Optional, Sequence

from dagrun.domain.errors import ConflictError
from dagrun.domain.models import RunConfig, RunStatus, TaskOutput
from dagrun.domain.states import NodeStatus, OutputStatus, RunState
from dagrun.logging import get_logger

from .context import ContextFactory, HostContextFactory, ModelCommand
from .events import EventBus, Listener, RunEvent
from .graph import Graph, TaskDefinition, build_graph, subgraph_from
from .worker import Worker, now_ms

_LOG = get_logger(__name__)

SKIP_DEPENDENCY_FAILED = "dependency failed"
SKIP_STOPPED_EARLY = "execution stopped early"
RUN_TIMED_OUT = "run timed out"


class Scheduler:
    """
    Dependency-ordered task scheduler.

    - Graph is built and validated once, at construction (configuration errors raise here)
    - Each run executes the transitive-dependency closure of an entry task
    - Up to `concurrency` task bodies run at once on a per-run thread pool
    - A failed task skips its transitive dependents; unrelated branches keep running

    Concurrency semantics:
    - The thread calling `run` is the only writer of node state and RunStatus.
    - One run at a time per instance; a concurrent `run` raises ConflictError.
    """

    def __init__(
        self,
        definitions: Sequence[TaskDefinition],
        *,
        context_factory: Optional[ContextFactory] = None,
        worker: Optional[Worker] = None,
    ) -> None:
        self._graph = build_graph(definitions)
        self._context_factory: ContextFactory = context_factory or HostContextFactory(
            workdir=Path.cwd(),
            model=ModelCommand(template=None),
        )
        self._worker = worker or Worker()
        self._events = EventBus()
        self._run_lock = threading.Lock()
        self._latest: Optional[RunStatus] = None

    @property
    def graph(self) -> Graph:
        return self._graph

    @property
    def latest_status(self) -> Optional[RunStatus]:
        """
        Snapshot of the most recent status emitted (in-progress or final).
        """
        return self._latest

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def subscribe(self, event: RunEvent | str, listener: Listener) -> Callable[[], None]:
        return self._events.subscribe(event, listener)

    def run(self, config: RunConfig) -> RunStatus:
        if not self._run_lock.acquire(blocking=False):
            raise ConflictError(
                "A run is already in progress",
                details={"entry": config.entry},
            )
        try:
            return _Run(self, config).execute()
        finally:
            self._run_lock.release()

    def _publish(self, event: RunEvent, payload: RunStatus | TaskOutput) -> None:
        if isinstance(payload, RunStatus):
            payload = payload.model_copy(deep=True)
            self._latest = payload
        self._events.emit(event, payload)


class _Run:
    """
    State of a single invocation of Scheduler.run.
    """

    def __init__(self, scheduler: Scheduler, config: RunConfig) -> None:
        self._sched = scheduler
        self._graph = scheduler.graph
        self._cfg = config

        self._subgraph = subgraph_from(self._graph, config.entry)
        # Definition order; drives FIFO tie-breaks among ready tasks.
        self._order = [n.id for n in self._graph if n.id in self._subgraph]

        self._remaining: dict[str, int] = {}
        self._ready: deque[str] = deque()
        self._outputs: dict[str, TaskOutput] = {}
        self._in_flight: dict[Future[TaskOutput], str] = {}
        self._dispatched_at: dict[str, tuple[int, float]] = {}
        self._cancel = threading.Event()
        self._timed_out = False

        self._status = RunStatus(
            entry=config.entry,
            state=RunState.RUNNING,
            total_tasks=len(self._order),
            started_at=now_ms(),
        )

    def execute(self) -> RunStatus:
        cfg = self._cfg
        self._reset_subgraph()

        _LOG.info(
            "Starting run: entry=%s tasks=%d concurrency=%d stop_on_error=%s timeout_ms=%s",
            cfg.entry, len(self._order), cfg.concurrency, cfg.stop_on_error, cfg.timeout_ms,
        )
        self._sched._publish(RunEvent.STATUS_CHANGE, self._status)

        deadline = None if cfg.timeout_ms is None else time.monotonic() + cfg.timeout_ms / 1000.0
        abandoned = False

        executor = ThreadPoolExecutor(max_workers=cfg.concurrency, thread_name_prefix="dagrun-task")
        try:
            while True:
                if not self._dispatch_halted(deadline):
                    self._dispatch_ready(executor)

                if not self._in_flight:
                    break

                wait_s = None if deadline is None else max(0.0, deadline - time.monotonic())
                done, _ = wait(self._in_flight, timeout=wait_s, return_when=FIRST_COMPLETED)
                if not done:
                    abandoned = True
                    self._abandon_in_flight()
                    break

                # Process in dispatch order for deterministic event sequences.
                for fut, task_id in list(self._in_flight.items()):
                    if fut in done:
                        del self._in_flight[fut]
                        self._complete(task_id, self._result_of(fut, task_id))
        finally:
            executor.shutdown(wait=not abandoned, cancel_futures=True)

        self._sweep()
        return self._finalize()

    # -------------------------
    # Setup
    # -------------------------

    def _reset_subgraph(self) -> None:
        for task_id in self._order:
            node = self._graph.nodes[task_id]
            node.reset()
            # Closure guarantees every dependency is inside the subgraph.
            self._remaining[task_id] = len(node.dependencies)

        for task_id in self._order:
            if self._remaining[task_id] == 0:
                self._mark_ready(task_id)

    def _mark_ready(self, task_id: str) -> None:
        self._graph.nodes[task_id].advance(NodeStatus.READY)
        self._ready.append(task_id)

    # -------------------------
    # Dispatch
    # -------------------------

    def _dispatch_halted(self, deadline: Optional[float]) -> bool:
        if self._cfg.stop_on_error and self._status.failed_tasks > 0:
            return True
        if deadline is not None and time.monotonic() >= deadline:
            if self._ready and not self._timed_out:
                self._timed_out = True
                _LOG.warning(
                    "Run timed out after %sms with %d task(s) still queued",
                    self._cfg.timeout_ms, len(self._ready),
                )
            return True
        return False

    def _dispatch_ready(self, executor: ThreadPoolExecutor) -> None:
        dispatched = 0
        while self._ready and len(self._in_flight) < self._cfg.concurrency:
            task_id = self._ready.popleft()
            node = self._graph.nodes[task_id]
            node.advance(NodeStatus.RUNNING)
            self._status.running_task_ids.append(task_id)
            self._dispatched_at[task_id] = (now_ms(), time.monotonic())

            try:
                ctx = self._sched._context_factory(task_id, MappingProxyType(self._outputs), self._cancel)
            except Exception as e:
                _LOG.exception("Could not create context for task %s", task_id)
                self._complete(task_id, self._error_output(task_id, f"context creation failed: {e}"))
                continue

            fut = executor.submit(self._sched._worker.run, node.definition, ctx, self._cancel)
            self._in_flight[fut] = task_id
            dispatched += 1
            _LOG.debug("Dispatched task %s (in_flight=%d)", task_id, len(self._in_flight))

        if dispatched:
            self._sched._publish(RunEvent.STATUS_CHANGE, self._status)

    def _result_of(self, fut: Future[TaskOutput], task_id: str) -> TaskOutput:
        try:
            return fut.result()
        except KeyboardInterrupt:
            raise
        except BaseException as e:
            # Worker.run converts body errors itself; this only covers worker bugs.
            _LOG.exception("Task %s execution raised: %r", task_id, e)
            return self._error_output(task_id, str(e) or type(e).__name__)

    def _abandon_in_flight(self) -> None:
        _LOG.warning(
            "Run timed out after %sms; abandoning %d in-flight task(s)",
            self._cfg.timeout_ms, len(self._in_flight),
        )
        self._timed_out = True
        self._cancel.set()
        for fut, task_id in list(self._in_flight.items()):
            fut.cancel()
            del self._in_flight[fut]
            self._complete(task_id, self._error_output(task_id, RUN_TIMED_OUT))

    # -------------------------
    # State transitions
    # -------------------------

    def _complete(self, task_id: str, output: TaskOutput) -> None:
        node = self._graph.nodes[task_id]
        node.output = output
        self._record(output)
        if task_id in self._status.running_task_ids:
            self._status.running_task_ids.remove(task_id)

        if output.status == OutputStatus.SUCCESS:
            node.advance(NodeStatus.COMPLETED)
            self._status.completed_tasks += 1
            self._sched._publish(RunEvent.TASK_COMPLETED, output)

            for dependent in node.dependents:
                if dependent not in self._subgraph:
                    continue
                if self._graph.nodes[dependent].status != NodeStatus.PENDING:
                    continue
                self._remaining[dependent] -= 1
                if self._remaining[dependent] == 0:
                    self._mark_ready(dependent)
        else:
            node.advance(NodeStatus.FAILED)
            self._status.failed_tasks += 1
            _LOG.warning("Task %s failed: %s", task_id, output.error)
            self._sched._publish(RunEvent.TASK_FAILED, output)
            self._skip_dependents(task_id)

        self._sched._publish(RunEvent.STATUS_CHANGE, self._status)

    def _skip_dependents(self, failed_id: str) -> None:
        queue = deque(self._graph.nodes[failed_id].dependents)
        while queue:
            task_id = queue.popleft()
            if task_id not in self._subgraph:
                continue
            node = self._graph.nodes[task_id]
            if node.status != NodeStatus.PENDING:
                continue
            self._skip(task_id, SKIP_DEPENDENCY_FAILED)
            queue.extend(node.dependents)

    def _skip(self, task_id: str, reason: str) -> None:
        node = self._graph.nodes[task_id]
        output = TaskOutput(
            task_id=task_id,
            status=OutputStatus.SKIPPED,
            error=reason,
            started_at=now_ms(),
        )
        node.advance(NodeStatus.SKIPPED)
        node.output = output
        self._record(output)
        self._status.skipped_tasks += 1
        _LOG.info("Task %s skipped: %s", task_id, reason)
        self._sched._publish(RunEvent.TASK_SKIPPED, output)

    def _record(self, output: TaskOutput) -> None:
        self._outputs[output.task_id] = output
        self._status.outputs[output.task_id] = output

    def _error_output(self, task_id: str, error: str) -> TaskOutput:
        started_ms, started_mono = self._dispatched_at.get(task_id, (now_ms(), time.monotonic()))
        return TaskOutput(
            task_id=task_id,
            status=OutputStatus.ERROR,
            error=error,
            started_at=started_ms,
            duration_ms=int((time.monotonic() - started_mono) * 1000),
        )

    # -------------------------
    # Wrap-up
    # -------------------------

    def _sweep(self) -> None:
        # Queued work goes back to pending so it is skipped like any other leftover.
        while self._ready:
            self._graph.nodes[self._ready.popleft()].advance(NodeStatus.PENDING)
        for task_id in self._order:
            if self._graph.nodes[task_id].status == NodeStatus.PENDING:
                self._skip(task_id, SKIP_STOPPED_EARLY)

    def _finalize(self) -> RunStatus:
        status = self._status
        failed = status.failed_tasks > 0 or self._timed_out
        status.state = RunState.FAILED if failed else RunState.COMPLETED
        status.ended_at = now_ms()

        _LOG.info(
            "Run finished: entry=%s state=%s completed=%d failed=%d skipped=%d total=%d",
            status.entry, status.state, status.completed_tasks,
            status.failed_tasks, status.skipped_tasks, status.total_tasks,
        )
        self._sched._publish(RunEvent.STATUS_CHANGE, status)
        return status.model_copy(deep=True)
