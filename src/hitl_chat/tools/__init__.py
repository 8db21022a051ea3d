"""Tools module - tool-call dispatch for the chat agent."""

from .registry import (
    Tool,
    ToolRegistry,
    ToolError,
    ToolNotFoundError,
    ToolArgumentsError,
    to_content,
    error_payload,
)
from .builtin import add, multiply, divide, send_email, default_registry

__all__ = [
    "Tool",
    "ToolRegistry",
    "ToolError",
    "ToolNotFoundError",
    "ToolArgumentsError",
    "to_content",
    "error_payload",
    "add",
    "multiply",
    "divide",
    "send_email",
    "default_registry",
]
