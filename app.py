"""Chainlit entry point: ``chainlit run app.py``."""

from hitl_chat.ui.chainlit_app import call_tool, on_message, start_chat  # noqa: F401
