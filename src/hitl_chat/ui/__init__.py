"""Chainlit UI module. Import ``hitl_chat.ui.chainlit_app`` to register handlers."""
