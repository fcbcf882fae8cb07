"""Runner module for launching task commands."""

from start_services.runner.command_runner import CommandResult, CommandRunner

__all__ = ["CommandResult", "CommandRunner"]
