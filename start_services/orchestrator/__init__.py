"""Orchestrator module for task execution and result collection.

This module contains the TaskScheduler, which runs one worker per task and
propagates upstream failures, and the ResultCollector, which receives every
task's result and computes run statistics.
"""

from start_services.orchestrator.result_collector import (
    UPSTREAM_FAILURE_MESSAGE,
    ResultCollector,
    RunSummary,
    TaskResult,
    TaskStatus,
)
from start_services.orchestrator.scheduler import TaskScheduler, TaskState

__all__ = [
    "UPSTREAM_FAILURE_MESSAGE",
    "ResultCollector",
    "RunSummary",
    "TaskResult",
    "TaskScheduler",
    "TaskState",
    "TaskStatus",
]
