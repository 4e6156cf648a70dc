"""OpenAI-compatible HTTP API for the ops agent."""

from .app import create_app
from .router import AgentDependencies, router

__all__ = ["AgentDependencies", "create_app", "router"]
