"""API module - local approval server and terminal reviewer."""

from .server import app, CreateFunctionCall, FunctionCallDecision, ApprovalStats
from .terminal_ui import ApprovalTerminalUI

__all__ = [
    "app",
    "CreateFunctionCall",
    "FunctionCallDecision",
    "ApprovalStats",
    "ApprovalTerminalUI",
]
