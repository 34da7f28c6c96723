"""Praxis - offline-first autonomous coding agent.

A ReAct loop drives two local Ollama model roles (orchestrator and executor)
over a registry of coding, context and browser tools, delegating sub-goals
to nested sub-agents under turn and depth budgets.
"""

__version__ = "0.1.0"
