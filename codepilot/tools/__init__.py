"""Tool providers and the registry that dispatches to them."""

from codepilot.tools.base import ToolFailure, ToolOutcome, ToolProvider, ToolSuccess, clean_json_schema
from codepilot.tools.registry import ToolRegistry

__all__ = ["ToolFailure", "ToolOutcome", "ToolProvider", "ToolRegistry", "ToolSuccess", "clean_json_schema"]
