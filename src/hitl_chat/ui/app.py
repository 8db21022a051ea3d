"""Chainlit entry point shipped with the package; ``hitl-chat ui`` runs this file."""

from hitl_chat.ui.chainlit_app import call_tool, on_message, start_chat  # noqa: F401
