"""Graph validation with cycle detection and graph rendering.

This module provides the GraphValidator, which checks that a built
dependency graph is acyclic before anything runs, and renders the resolved
graph for inspection.
"""

from enum import Enum

import structlog

from start_services.graph.dependency_graph import CycleDetectedError, DependencyGraph

logger = structlog.get_logger(__name__)


class _Color(Enum):
    UNVISITED = 0
    ON_PATH = 1
    DONE = 2


class GraphValidator:
    """Validator for dependency graphs.

    Cycle detection follows ``dependents`` edges with an iterative
    three-color depth-first search, so each task and edge is visited once.
    """

    def find_cycle(self, graph: DependencyGraph) -> list[str] | None:
        """Find a cycle in the graph, if any.

        Every task is tried as a root, in declaration order, since the graph
        may be disconnected. Reaching a task through a second path (a
        diamond) is not a cycle; only a task reappearing on the current
        root-to-task path is.

        Args:
            graph: A built DependencyGraph

        Returns:
            The path from the root to the repeated task, with the repeated
            name appended, or None if the graph is acyclic
        """
        color = dict.fromkeys(graph.tasks, _Color.UNVISITED)

        for root in graph.tasks:
            if color[root] is not _Color.UNVISITED:
                continue

            color[root] = _Color.ON_PATH
            path = [root]
            pending = [iter(graph.tasks[root].dependents)]

            while pending:
                child = next(pending[-1], None)
                if child is None:
                    pending.pop()
                    color[path.pop()] = _Color.DONE
                    continue

                if color[child] is _Color.ON_PATH:
                    return [*path, child]

                if color[child] is _Color.UNVISITED:
                    color[child] = _Color.ON_PATH
                    path.append(child)
                    pending.append(iter(graph.tasks[child].dependents))

        return None

    def ensure_acyclic(self, graph: DependencyGraph) -> None:
        """Validate that the graph has no cycles.

        Args:
            graph: A built DependencyGraph

        Raises:
            ValueError: If the graph has not been built
            CycleDetectedError: If a cycle is found
        """
        if not graph.is_built:
            msg = "Cannot validate a graph before build()"
            raise ValueError(msg)

        logger.info("starting_graph_validation", task_count=len(graph))

        path = self.find_cycle(graph)
        if path is not None:
            error = CycleDetectedError(path)
            logger.error("cycle_detected_in_graph", path=error.path, cycle=error.cycle)
            raise error

        logger.info("graph_validation_complete", task_count=len(graph))

    def generate_visualization(self, graph: DependencyGraph, output_format: str = "text") -> str:
        """Generate a representation of the resolved graph.

        Args:
            graph: A built DependencyGraph
            output_format: 'text', 'mermaid' or 'dot'

        Returns:
            String representation of the graph in the requested format

        Raises:
            ValueError: If an unsupported format is requested
        """
        output_format = output_format.lower().strip()

        if output_format == "text":
            return self._generate_text(graph)
        if output_format == "mermaid":
            return self._generate_mermaid(graph)
        if output_format == "dot":
            return self._generate_graphviz(graph)
        error_msg = f"Unsupported format: {output_format}. Use 'text', 'mermaid' or 'dot'."
        raise ValueError(error_msg)

    def _generate_text(self, graph: DependencyGraph) -> str:
        """List each task with its prerequisites, command and dependents."""
        lines = []
        for task in graph:
            lines.append(f"task:  {task.name} (run after: {', '.join(task.after) or '-'})")
            lines.append(f"descr: {task.description}")
            lines.append(f"\t{' '.join(task.command)}")
            lines.append(f"\twait count: {task.wait_count}")
            lines.extend(f"after this we'll run: {name}" for name in task.dependents)
            lines.append("------------------")
        return "\n".join(lines)

    def _generate_mermaid(self, graph: DependencyGraph) -> str:
        """Generate a Mermaid flowchart; arrows point from prerequisite to dependent."""
        lines = ["graph TD"]

        if not graph.tasks:
            lines.append("    Empty[Empty Graph]")
            return "\n".join(lines)

        # Task names are free text, so nodes get positional ids and the name
        # is only used as the quoted label.
        node_ids = {name: f"n{index}" for index, name in enumerate(sorted(graph.tasks))}

        for name, node_id in node_ids.items():
            label = name.replace('"', "#quot;")
            lines.append(f'    {node_id}["{label}"]')

        for name, task in sorted(graph.tasks.items()):
            for dependent in sorted(task.dependents):
                lines.append(f"    {node_ids[name]} --> {node_ids[dependent]}")

        return "\n".join(lines)

    def _generate_graphviz(self, graph: DependencyGraph) -> str:
        """Generate a Graphviz DOT representation."""

        def escape_dot_string(s: str) -> str:
            return s.replace('"', '\\"')

        lines = ["digraph Tasks {"]
        lines.append("    rankdir=LR;")
        lines.append("    node [shape=box, style=rounded];")

        if not graph.tasks:
            lines.append('    Empty [label="Empty Graph"];')
        else:
            lines.extend(f'    "{escape_dot_string(name)}";' for name in sorted(graph.tasks))
            for name, task in sorted(graph.tasks.items()):
                escaped = escape_dot_string(name)
                lines.extend(
                    f'    "{escaped}" -> "{escape_dot_string(dependent)}";'
                    for dependent in sorted(task.dependents)
                )

        lines.append("}")
        return "\n".join(lines)
