"""Execution state machine: the LangGraph step engine and the per-execution actor."""

from .actor import Command, CommandKind, ExecutionActor
from .engine import ExecutionEngine
from .models import AgentRuntime, EngineDeps, JudgmentProvider

__all__ = [
    "AgentRuntime",
    "Command",
    "CommandKind",
    "EngineDeps",
    "ExecutionActor",
    "ExecutionEngine",
    "JudgmentProvider",
]
