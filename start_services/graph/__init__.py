"""Graph module for resolving task declarations into a dependency graph.

This module builds the graph from flat declarations, detects dangling
references and cycles, and renders the resolved graph.
"""

from start_services.graph.dependency_graph import (
    CycleDetectedError,
    DanglingReferenceError,
    DependencyGraph,
    GraphError,
    Task,
)
from start_services.graph.signal import CompletionSignal
from start_services.graph.validator import GraphValidator

__all__ = [
    "CompletionSignal",
    "CycleDetectedError",
    "DanglingReferenceError",
    "DependencyGraph",
    "GraphError",
    "GraphValidator",
    "Task",
]
