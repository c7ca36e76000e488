"""
Tool Registry — register tools, get schemas, look up by name.

The engine dispatches tool calls through a registry: a mapping from tool name
to a Tool (validator + executor pair), looked up at dispatch time. A registry
is read-only for the duration of a run.
"""

from __future__ import annotations

import logging
from typing import Iterable

from streamrun.tools.base import Tool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Name → Tool mapping. Names are unique."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    @classmethod
    def from_tools(cls, tools: Iterable[Tool]) -> ToolRegistry:
        registry = cls()
        for t in tools:
            registry.register(t)
        return registry

    def register(self, tool: Tool) -> None:
        """Register a tool. Raises ValueError on a missing or duplicate name."""
        if not tool.name:
            raise ValueError(f"Tool must have a name: {tool}")
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        """All registered tools."""
        return list(self._tools.values())

    def tool_names(self) -> list[str]:
        """Names of all registered tools."""
        return list(self._tools.keys())

    def to_openai_tools(self) -> list[dict]:
        """Get all tool schemas in OpenAI function calling format."""
        return [t.to_openai_schema() for t in self._tools.values()]

    def without(self, *names: str) -> ToolRegistry:
        """Return a new registry excluding the named tools."""
        filtered = ToolRegistry()
        for name, t in self._tools.items():
            if name not in names:
                filtered._tools[name] = t
        return filtered

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __repr__(self) -> str:
        return f"<ToolRegistry tools={self.tool_names()}>"
