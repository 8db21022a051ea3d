"""
Example tools exposed to the chat model.

The math tools are harmless; ``send_email`` stands in for an action
someone should sign off on.
"""

import logging
from typing import Optional
from uuid import uuid4

from ..approvals.gate import ApprovalGate
from .registry import ToolRegistry

logger = logging.getLogger(__name__)


def add(x: float, y: float) -> float:
    """
    Add two numbers.

    Args:
        x: First operand
        y: Second operand
    """
    return x + y


def multiply(x: float, y: float) -> float:
    """
    Multiply two numbers.

    Args:
        x: First operand
        y: Second operand
    """
    return x * y


def divide(x: float, y: float) -> float:
    """
    Divide one number by another.

    Args:
        x: Dividend
        y: Divisor (must not be zero)
    """
    if y == 0:
        raise ZeroDivisionError("Cannot divide by zero")
    return x / y


def send_email(to: str, subject: str, body: str) -> dict:
    """
    Send an email on the user's behalf.

    Args:
        to: Recipient address
        subject: Subject line
        body: Plain-text message body
    """
    if "@" not in to:
        raise ValueError(f"Invalid recipient address: {to}")

    # Delivery is simulated; the message id lets the model refer back to it
    message_id = str(uuid4())
    logger.info(f"Email {message_id} sent to {to}: {subject}")
    return {"status": "sent", "to": to, "subject": subject, "message_id": message_id}


BUILTIN_TOOLS = (add, multiply, divide, send_email)


def default_registry(gate: Optional[ApprovalGate] = None) -> ToolRegistry:
    """
    Create a registry holding the built-in tools.

    Args:
        gate: Approval gate applied to every call

    Returns:
        ToolRegistry
    """
    registry = ToolRegistry(gate=gate)
    for tool in BUILTIN_TOOLS:
        registry.register(tool)
    return registry
