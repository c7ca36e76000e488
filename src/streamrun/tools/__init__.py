"""streamrun tools — definitions, registry and the execution engine."""

from streamrun.tools.base import FunctionTool, Tool, ToolParam, tool
from streamrun.tools.engine import ToolEngine
from streamrun.tools.registry import ToolRegistry

__all__ = ["FunctionTool", "Tool", "ToolEngine", "ToolParam", "ToolRegistry", "tool"]
