"""
Execution engine for dagrun.

- graph: task definitions, graph construction, cycle check, subgraph selection
- scheduler: ready-set / dispatch loop + concurrency control
- worker: executes one task body (retries, timeouts) at the dispatch boundary
- context: TaskContext capabilities handed to task bodies
- events: observer subscriptions
"""

from .context import HostContextFactory, HostTaskContext, ModelCommand, ShellResult, TaskContext
from .events import RunEvent
from .graph import Graph, TaskDefinition, TaskNode, build_graph, subgraph_from, validate_graph
from .scheduler import Scheduler

__all__ = [
    "Scheduler",
    "TaskDefinition",
    "TaskNode",
    "Graph",
    "build_graph",
    "validate_graph",
    "subgraph_from",
    "RunEvent",
    "TaskContext",
    "HostTaskContext",
    "HostContextFactory",
    "ModelCommand",
    "ShellResult",
]
