"""Graph editing primitives for agent definitions."""

from workflow.graph import GraphModel

__all__ = ["GraphModel"]
