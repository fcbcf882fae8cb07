#!/usr/bin/env python3
"""Main Entry Point and CLI Integration.

This module provides the main async entry point and CLI interface for the
task runner. It builds the run configuration, loads the task file, resolves
and validates the dependency graph, and runs every task.
"""

import argparse
import asyncio
import sys
import uuid

import structlog

from start_services.config import ConfigError, RunConfig, load_task_declarations
from start_services.graph.dependency_graph import DependencyGraph, GraphError
from start_services.graph.validator import GraphValidator
from start_services.log_config import bind_run_id, configure_logging
from start_services.orchestrator.result_collector import ResultCollector
from start_services.orchestrator.scheduler import TaskScheduler
from start_services.runner.command_runner import CommandRunner

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


def build_dependency_graph(config: RunConfig) -> DependencyGraph:
    """Load the task file and build a validated dependency graph.

    Args:
        config: Run configuration

    Returns:
        Built DependencyGraph with no cycles and no dangling references

    Raises:
        ConfigError: If the task file is unreadable or invalid
        DanglingReferenceError: If a task runs after an unknown task
        CycleDetectedError: If the tasks depend on each other in a cycle
    """
    declarations = load_task_declarations(config.taskfile)
    graph = DependencyGraph.from_declarations(declarations)
    GraphValidator().ensure_acyclic(graph)
    return graph


async def main_async(config: RunConfig) -> int:
    """Main async entry point.

    Individual task failures do not change the exit code; they are reported
    in the per-task output and the summary.

    Args:
        config: Run configuration

    Returns:
        Exit code (0 after a completed run or graph dump, 1 on a fatal error)
    """
    bind_run_id(uuid.uuid4().hex[:12])

    try:
        graph = build_dependency_graph(config)
    except ConfigError as e:
        logger.error("configuration_error", error=e.message, path=e.path)
        print(f"error: {e.message}", file=sys.stderr)
        return EXIT_FATAL
    except GraphError as e:
        logger.error("dependency_graph_error", error=e.message, error_type=type(e).__name__)
        print(f"error: {e.message}", file=sys.stderr)
        return EXIT_FATAL

    if config.show_configs:
        print(GraphValidator().generate_visualization(graph, config.graph_format))
        return EXIT_OK

    collector = ResultCollector()
    runner = CommandRunner(cwd=config.workdir, env=config.env)
    scheduler = TaskScheduler(graph, runner=runner, collector=collector)
    await scheduler.run()

    print(collector.summary_line())
    print()

    try:
        if config.results_json is not None:
            collector.export_json(config.results_json)
            logger.info("results_exported", format="json", path=str(config.results_json))
        if config.results_csv is not None:
            collector.export_csv(config.results_csv)
            logger.info("results_exported", format="csv", path=str(config.results_csv))
    except OSError as e:
        logger.error("results_export_failed", error=str(e), path=e.filename)
        print(f"error: cannot write results: {e}", file=sys.stderr)
        return EXIT_FATAL

    return EXIT_OK


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list (default: sys.argv[1:])

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Run the tasks declared in a YAML file concurrently, honoring their order",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run every task
  start-services --taskfile tasks.yaml

  # Print the resolved graph without running anything
  start-services --taskfile tasks.yaml --show-configs

  # Render the graph for Mermaid
  start-services --taskfile tasks.yaml --show-configs --format mermaid

  # Keep a JSON record of the run
  start-services --taskfile tasks.yaml --results-json results.json

  # Run the commands from another directory with an extra variable
  start-services --taskfile tasks.yaml --workdir ./services --env PORT=8080
        """,
    )

    parser.add_argument(
        "-t",
        "--taskfile",
        required=True,
        help="Path to the YAML file declaring the tasks",
    )

    parser.add_argument(
        "--show-configs",
        action="store_true",
        help="Print the resolved task graph and exit without running anything",
    )

    parser.add_argument(
        "--format",
        choices=["text", "mermaid", "dot"],
        default="text",
        help="Output format for --show-configs (default: text)",
    )

    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Enable debug output (DEBUG level)",
    )

    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Set logging level (default: WARNING)",
    )

    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Write log lines as JSON",
    )

    parser.add_argument(
        "-C",
        "--workdir",
        default=None,
        help="Run every task command in this directory (default: current directory)",
    )

    parser.add_argument(
        "-e",
        "--env",
        action="append",
        metavar="KEY=VALUE",
        help="Set an environment variable for every task command (repeatable)",
    )

    parser.add_argument(
        "--results-json",
        default=None,
        help="Write the run summary and results to this JSON file",
    )

    parser.add_argument(
        "--results-csv",
        default=None,
        help="Write the results to this CSV file",
    )

    args = parser.parse_args(argv)

    if args.debug:
        args.log_level = "DEBUG"

    return args


def main(argv: list[str] | None = None) -> None:
    """Main entry point.

    Parses arguments, builds the run configuration, runs the async main
    function and exits with its code.
    """
    args = parse_args(argv)

    try:
        config = RunConfig.from_args(args)
    except ConfigError as e:
        print(f"error: {e.message}", file=sys.stderr)
        sys.exit(EXIT_FATAL)

    configure_logging(config.logging_level, json_logs=config.json_logs)

    try:
        exit_code = asyncio.run(main_async(config))
    except KeyboardInterrupt:
        logger.warning("run_interrupted")
        exit_code = EXIT_FATAL
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
