"""Agent module - OpenAI chat loop with approval-gated tools."""

from .chat import ChatAgent, ChatAgentError, ChatResult, build_chat_agent, build_gate

__all__ = [
    "ChatAgent",
    "ChatAgentError",
    "ChatResult",
    "build_chat_agent",
    "build_gate",
]
