"""Conduit — one agent-turn orchestrator over many LLM wire protocols."""

__version__ = "0.1.0"
