# src/dagrun/domain/states.py
from __future__ import annotations

from enum import StrEnum


class NodeStatus(StrEnum):
    """
    Per-run lifecycle of a task node.

    Transitions within a run:
      PENDING -> READY -> RUNNING -> COMPLETED | FAILED
      PENDING -> SKIPPED
      READY -> PENDING (queued work handed back when the run stops early)
    """

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.COMPLETED, NodeStatus.FAILED, NodeStatus.SKIPPED)

    def can_become(self, other: NodeStatus) -> bool:
        return other in _NODE_TRANSITIONS[self]


_NODE_TRANSITIONS: dict[NodeStatus, frozenset[NodeStatus]] = {
    NodeStatus.PENDING: frozenset({NodeStatus.READY, NodeStatus.SKIPPED}),
    NodeStatus.READY: frozenset({NodeStatus.RUNNING, NodeStatus.PENDING}),
    NodeStatus.RUNNING: frozenset({NodeStatus.COMPLETED, NodeStatus.FAILED}),
    NodeStatus.COMPLETED: frozenset(),
    NodeStatus.FAILED: frozenset(),
    NodeStatus.SKIPPED: frozenset(),
}


class OutputStatus(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class RunState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
