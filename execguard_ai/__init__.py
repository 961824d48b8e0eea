"""ExecGuard-AI.

An execution-governance engine for autonomous AI agents. It decides, step by
step, whether an agent may keep acting, must pause for human approval, must
roll back prior changes, or must halt.

High-level architecture
-----------------------

- ``execguard_ai.governance``:

  - Execution, step, checkpoint and budget schemas.
  - A Pre-Flight Check Engine evaluating guard conditions before every step.
  - A Confirmation Gate with risk classification and typed confirmation.
  - A Checkpoint & Rollback Manager driving the agent's inverse operations.
  - A LangGraph-based execution state machine, one actor task per execution.
  - A Progress Stream fanning out ``state``/``step`` events.
  - Repository interfaces with in-memory and SQL implementations.

- ``execguard_ai.server``:

  - A FastAPI application exposing the governance service over HTTP and SSE.

Typical workflow
----------------

Most integrations should use ``execguard_ai.governance.service.GovernanceService``:

1. Start an execution for a ``Goal`` with an ``ExecutionConfig``.
2. Subscribe to its progress stream.
3. Answer confirmation requests, pause, resume or halt as needed.
4. Roll back to a checkpoint while the execution is paused or halted.

The agent itself (what to do next and how to do it) is supplied by the caller
through the ``AgentRuntime`` and ``JudgmentProvider`` protocols.
"""

__version__ = "0.1.0"
