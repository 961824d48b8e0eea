"""Checkpoints and rollback of an execution's step log."""

from .manager import CheckpointManager, InverseOperation, blocking_steps

__all__ = ["CheckpointManager", "InverseOperation", "blocking_steps"]
