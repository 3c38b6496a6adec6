"""Execution collaborators."""
from .dry_run import DryRunExecution

__all__ = ["DryRunExecution"]
