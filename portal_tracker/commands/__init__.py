"""Command module for start/stop/refresh/clearLogs control commands."""

from .processor import Command, CommandProcessor, parse_command

__all__ = ["Command", "CommandProcessor", "parse_command"]
