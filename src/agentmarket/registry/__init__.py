"""Agent registry and feedback."""

from agentmarket.registry.agents import AgentRegistry

__all__ = ["AgentRegistry"]
