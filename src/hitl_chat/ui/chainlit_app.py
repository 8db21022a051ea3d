"""
Chainlit chat app with approval-gated tool calls.

Run with ``chainlit run app.py`` (or ``hitl-chat ui``).
"""

import logging
from typing import Any, Optional

import chainlit as cl

from ..agent.chat import ChatAgent, ChatAgentError, build_chat_agent
from ..config import get_cached_settings
from ..logging_config import setup_logging

logger = logging.getLogger(__name__)

_agent: Optional[ChatAgent] = None


def get_agent() -> ChatAgent:
    """Build the chat agent once per process; approvals poll with cl.sleep."""
    global _agent
    if _agent is None:
        settings = get_cached_settings()
        setup_logging(settings=settings)
        _agent = build_chat_agent(settings, sleep=cl.sleep)
    return _agent


@cl.step(type="tool")
async def call_tool(name: str, arguments: Any) -> str:
    """Run one tool call as a visible step; blocks while approval is pending."""
    step = cl.context.current_step
    step.name = name
    step.input = arguments

    result = await get_agent().registry.ainvoke(name, arguments)

    step.output = result
    return result


async def send_error(error: Exception) -> None:
    logger.error(f"Chat run failed: {error}")
    await cl.Message(content=f"Something went wrong: {error}").send()


@cl.on_chat_start
async def start_chat():
    try:
        agent = get_agent()
    except (ChatAgentError, ValueError) as e:
        await send_error(e)
        return
    cl.user_session.set("messages", agent.new_conversation())


@cl.on_message
async def on_message(message: cl.Message):
    messages = cl.user_session.get("messages") or []

    try:
        agent = get_agent()
        if not messages:
            messages = agent.new_conversation()
        messages.append({"role": "user", "content": message.content})
        result = await agent.arun(messages, tool_runner=call_tool)
    except (ChatAgentError, ValueError) as e:
        await send_error(e)
        return
    finally:
        cl.user_session.set("messages", messages)

    await cl.Message(content=result.content).send()
