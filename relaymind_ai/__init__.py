"""RelayMind-AI.

This package contains the execution engine that lets an autonomous agent
repeatedly prompt a language model, run the tools the model asks for, and
decide whether to continue, pause for a human, finish, or fail.

High-level architecture
-----------------------

- ``relaymind_ai.agent_core``:

  - Capability interface, registry and the tool dispatcher that turns a
    ``"<Capability>.<method>"`` call into a bound method invocation.
  - Resilience wrappers (scoped function cache, quota-aware retry).
  - Generation providers and the multi-provider facade.
  - A LangGraph-based control loop with pause/resume states.
  - Persistence contracts with in-memory and SQL implementations.
  - Completion handlers notified when a run pauses or stops.

- ``relaymind_ai.core``:

  - Settings and logging configuration shared by every module.

Typical workflow
----------------

Most integrations should use ``relaymind_ai.agent_core.service.AgentService``:

1. ``start`` an agent with an initial prompt and capability list.
2. The engine iterates until the model finishes, asks for feedback, hits a
   human-in-the-loop threshold, requests a tool that needs approval, or fails.
3. The matching ``resume_*`` operation re-enters the loop with a fresh
   execution id.
"""
