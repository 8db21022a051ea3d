"""
Chat agent - OpenAI tool-calling loop with approval-gated tools.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, Union

import openai
from pydantic import BaseModel, Field

from ..approvals.backends import ApprovalBackend, create_backend
from ..approvals.gate import ApprovalGate, ToolPolicy
from ..config import DEFAULT_SYSTEM_PROMPT, Settings, get_cached_settings, load_config
from ..tools.builtin import default_registry
from ..tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

ToolRunner = Callable[[str, Any], Awaitable[str]]


class ChatAgentError(Exception):
    """Raised when the chat loop cannot produce an answer."""

    def __init__(self, message: str, original_error: Exception | None = None):
        self.original_error = original_error
        super().__init__(message)


class ChatResult(BaseModel):
    """Outcome of one agent run."""

    content: str
    messages: list[dict[str, Any]] = Field(default_factory=list)
    tool_calls: int = 0
    iterations: int = 0


class ChatAgent:
    """
    Runs a conversation against the chat-completions API, executing the
    model's tool calls through a ToolRegistry until it answers in text.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        model: str = "gpt-4o-mini",
        client: Optional[openai.OpenAI] = None,
        async_client: Optional[openai.AsyncOpenAI] = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        temperature: float = 0.2,
        max_iterations: int = 10,
    ):
        """
        Initialize chat agent.

        Args:
            registry: Tools available to the model
            model: Chat model name
            client: Sync OpenAI client (needed for run)
            async_client: Async OpenAI client (needed for arun)
            system_prompt: System prompt for new conversations
            temperature: Sampling temperature
            max_iterations: Maximum model round-trips per run
        """
        self.registry = registry
        self.model = model
        self.client = client
        self.async_client = async_client
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.max_iterations = max_iterations

    def new_conversation(self) -> list[dict[str, Any]]:
        return [{"role": "system", "content": self.system_prompt}]

    def _start(self, prompt: Union[str, list[dict[str, Any]]]) -> list[dict[str, Any]]:
        if isinstance(prompt, str):
            messages = self.new_conversation()
            messages.append({"role": "user", "content": prompt})
            return messages
        return prompt

    def _request_kwargs(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
        }
        tools = self.registry.openai_tools()
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        return kwargs

    @staticmethod
    def _assistant_message(message: Any) -> dict[str, Any]:
        entry: dict[str, Any] = {"role": "assistant", "content": message.content}
        if message.tool_calls:
            entry["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.function.name,
                        "arguments": call.function.arguments,
                    },
                }
                for call in message.tool_calls
            ]
        return entry

    @staticmethod
    def _tool_message(call: Any, content: str) -> dict[str, Any]:
        return {"role": "tool", "tool_call_id": call.id, "content": content}

    def _limit_reached(self) -> ChatAgentError:
        logger.error(f"Chat loop hit max iterations ({self.max_iterations})")
        return ChatAgentError(
            f"No final answer after {self.max_iterations} iterations"
        )

    def run(self, prompt: Union[str, list[dict[str, Any]]]) -> ChatResult:
        """
        Run the tool-calling loop synchronously.

        Args:
            prompt: User prompt, or a message history to continue (extended in place)

        Returns:
            ChatResult

        Raises:
            ChatAgentError: On API failure or when max_iterations is reached
        """
        if self.client is None:
            raise ChatAgentError("No sync OpenAI client configured")

        messages = self._start(prompt)
        tool_calls = 0

        for iteration in range(1, self.max_iterations + 1):
            try:
                response = self.client.chat.completions.create(**self._request_kwargs(messages))
            except openai.OpenAIError as e:
                raise ChatAgentError(f"OpenAI request failed: {e}", e) from e

            message = response.choices[0].message
            messages.append(self._assistant_message(message))

            if not message.tool_calls:
                return ChatResult(
                    content=message.content or "",
                    messages=messages,
                    tool_calls=tool_calls,
                    iterations=iteration,
                )

            for call in message.tool_calls:
                logger.info(f"Model requested {call.function.name}")
                content = self.registry.invoke(call.function.name, call.function.arguments)
                messages.append(self._tool_message(call, content))
                tool_calls += 1

        raise self._limit_reached()

    async def arun(
        self,
        prompt: Union[str, list[dict[str, Any]]],
        tool_runner: Optional[ToolRunner] = None,
    ) -> ChatResult:
        """
        Run the tool-calling loop asynchronously.

        Args:
            prompt: User prompt, or a message history to continue (extended in place)
            tool_runner: Async callable (name, arguments) -> content that
                replaces registry.ainvoke

        Returns:
            ChatResult

        Raises:
            ChatAgentError: On API failure or when max_iterations is reached
        """
        if self.async_client is None:
            raise ChatAgentError("No async OpenAI client configured")

        run_tool = tool_runner or self.registry.ainvoke
        messages = self._start(prompt)
        tool_calls = 0

        for iteration in range(1, self.max_iterations + 1):
            try:
                response = await self.async_client.chat.completions.create(
                    **self._request_kwargs(messages)
                )
            except openai.OpenAIError as e:
                raise ChatAgentError(f"OpenAI request failed: {e}", e) from e

            message = response.choices[0].message
            messages.append(self._assistant_message(message))

            if not message.tool_calls:
                return ChatResult(
                    content=message.content or "",
                    messages=messages,
                    tool_calls=tool_calls,
                    iterations=iteration,
                )

            for call in message.tool_calls:
                logger.info(f"Model requested {call.function.name}")
                content = await run_tool(call.function.name, call.function.arguments)
                messages.append(self._tool_message(call, content))
                tool_calls += 1

        raise self._limit_reached()


def build_gate(
    settings: Settings,
    backend: Optional[ApprovalBackend] = None,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
) -> ApprovalGate:
    """
    Build the approval gate described by settings and the YAML tool policy.

    Args:
        settings: Settings instance
        backend: Approval backend (selected from settings if None)
        sleep: Async sleep used while polling

    Returns:
        ApprovalGate
    """
    policy = ToolPolicy.from_config(load_config(settings.config_path))
    return ApprovalGate(
        backend=backend or create_backend(settings),
        policy=policy,
        poll_interval=settings.approval_poll_interval,
        timeout=settings.approval_timeout,
        sleep=sleep,
    )


def build_chat_agent(
    settings: Optional[Settings] = None,
    gate: Optional[ApprovalGate] = None,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
) -> ChatAgent:
    """
    Wire settings, approval gate, tools and OpenAI clients into a ChatAgent.

    Args:
        settings: Settings (cached settings if None)
        gate: Approval gate (built from settings if None)
        sleep: Async sleep used while polling approvals

    Returns:
        ChatAgent

    Raises:
        ChatAgentError: If the OpenAI clients cannot be created
    """
    settings = settings or get_cached_settings()
    gate = gate or build_gate(settings, sleep=sleep)

    client_kwargs: dict[str, Any] = {"api_key": settings.openai_api_key}
    if settings.openai_base_url:
        client_kwargs["base_url"] = settings.openai_base_url

    try:
        client = openai.OpenAI(**client_kwargs)
        async_client = openai.AsyncOpenAI(**client_kwargs)
    except openai.OpenAIError as e:
        raise ChatAgentError(f"Cannot create OpenAI client (is OPENAI_API_KEY set?): {e}", e) from e

    logger.info(
        f"Chat agent ready: model={settings.openai_model}, "
        f"approvals via {gate.backend.name}"
    )

    return ChatAgent(
        registry=default_registry(gate),
        model=settings.openai_model,
        client=client,
        async_client=async_client,
        system_prompt=settings.system_prompt,
        temperature=settings.openai_temperature,
        max_iterations=settings.max_iterations,
    )
