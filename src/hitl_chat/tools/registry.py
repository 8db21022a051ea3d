"""
Tool registry - the dispatch table between model tool calls and Python functions.

Every tool call goes through the same steps:
parse arguments, validate them, pass the approval gate, run, serialize.
Failures never escape; they come back to the model as a JSON error payload.
"""

import inspect
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, get_type_hints

from pydantic import BaseModel, Field, ValidationError, create_model

from ..approvals.gate import ApprovalGate

logger = logging.getLogger(__name__)


class ToolError(Exception):
    """Base exception for tool dispatch errors."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(message)


class ToolNotFoundError(ToolError):
    """Raised when the model asks for a tool that is not registered."""

    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Unknown tool: {tool_name}")


class ToolArgumentsError(ToolError):
    """Raised when tool arguments cannot be parsed or validated."""

    pass


@dataclass
class Tool:
    """A registered tool."""

    name: str
    description: str
    func: Callable
    args_model: type[BaseModel]

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.func)

    def to_openai(self) -> dict:
        """OpenAI function-calling definition for this tool."""
        schema = self.args_model.model_json_schema()
        parameters: dict[str, Any] = {
            "type": "object",
            "properties": schema.get("properties", {}),
        }
        required = schema.get("required", [])
        if required:
            parameters["required"] = required
        if "$defs" in schema:
            parameters["$defs"] = schema["$defs"]

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


_ARG_LINE = re.compile(r"^\s*(\w+)(?:\s*\([^)]*\))?:\s*(.+)$")


def _parse_docstring(func: Callable) -> tuple[str, dict[str, str]]:
    """Split a Google-style docstring into (summary, {param: description})."""
    doc = inspect.getdoc(func) or ""
    summary = doc.split("\n\n", 1)[0].strip()

    params: dict[str, str] = {}
    in_args = False
    for line in doc.splitlines():
        stripped = line.strip()
        if stripped in ("Args:", "Arguments:", "Parameters:"):
            in_args = True
            continue
        if in_args:
            if not stripped:
                continue
            if not line.startswith((" ", "\t")):
                in_args = False
                continue
            match = _ARG_LINE.match(line)
            if match:
                params[match.group(1)] = match.group(2).strip()

    return summary, params


def _build_args_model(name: str, func: Callable, param_docs: dict[str, str]) -> type[BaseModel]:
    hints = get_type_hints(func)
    fields: dict[str, Any] = {}

    for pname, param in inspect.signature(func).parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        annotation = hints.get(pname, Any)
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[pname] = (annotation, Field(default, description=param_docs.get(pname)))

    return create_model(f"{name}_arguments", **fields)


def to_content(result: Any) -> str:
    """Serialize a tool result into message content."""
    if isinstance(result, str):
        return result
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    return json.dumps(result, default=str)


def error_payload(tool_name: str, error: Exception) -> str:
    """JSON error payload returned to the model when a tool call fails."""
    return json.dumps(
        {
            "error": True,
            "tool": tool_name,
            "type": type(error).__name__,
            "message": str(error),
        }
    )


class ToolRegistry:
    """
    Registry of tools the model may call.

    Optionally routes calls through an ApprovalGate.
    """

    def __init__(self, gate: Optional[ApprovalGate] = None):
        """
        Initialize tool registry.

        Args:
            gate: Approval gate (no approvals if None)
        """
        self.gate = gate
        self._tools: dict[str, Tool] = {}

    def register(
        self,
        func: Optional[Callable] = None,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ):
        """
        Register a function as a tool.

        Usable directly (``registry.register(fn)``) or as a decorator
        (``@registry.register()``).

        Raises:
            ValueError: If a tool with the same name exists
        """

        def decorator(f: Callable) -> Callable:
            tool_name = name or f.__name__
            if tool_name in self._tools:
                raise ValueError(f"Tool already registered: {tool_name}")

            summary, param_docs = _parse_docstring(f)
            self._tools[tool_name] = Tool(
                name=tool_name,
                description=description or summary,
                func=f,
                args_model=_build_args_model(tool_name, f, param_docs),
            )
            logger.debug(f"Registered tool {tool_name}")
            return f

        if func is not None:
            return decorator(func)
        return decorator

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def openai_tools(self) -> list[dict]:
        """OpenAI tool definitions for every registered tool."""
        return [tool.to_openai() for tool in self._tools.values()]

    def _parse_arguments(self, tool: Tool, arguments: Any) -> dict[str, Any]:
        if arguments is None or arguments == "":
            raw = {}
        elif isinstance(arguments, str):
            try:
                raw = json.loads(arguments)
            except json.JSONDecodeError as e:
                raise ToolArgumentsError(tool.name, f"Invalid JSON arguments: {e}") from e
        else:
            raw = arguments

        if not isinstance(raw, dict):
            raise ToolArgumentsError(
                tool.name, f"Arguments must be an object, got {type(raw).__name__}"
            )

        try:
            validated = tool.args_model.model_validate(raw)
        except ValidationError as e:
            raise ToolArgumentsError(tool.name, str(e)) from e

        return {field: getattr(validated, field) for field in tool.args_model.model_fields}

    def invoke(self, name: str, arguments: Any = None) -> str:
        """
        Run a tool call synchronously.

        Args:
            name: Tool name
            arguments: JSON string or dict of arguments

        Returns:
            Result content, denial message, or JSON error payload
        """
        try:
            tool = self.get(name)
            if tool.is_async:
                raise ToolError(name, f"Tool {name} is async; use ainvoke")

            kwargs = self._parse_arguments(tool, arguments)

            if self.gate is not None:
                approved, comment = self.gate.check(name, kwargs)
                if not approved:
                    return self.gate.denial_message(name, comment)

            logger.info(f"Calling tool {name}({kwargs})")
            return to_content(tool.func(**kwargs))

        except Exception as e:
            logger.warning(f"Tool call {name} failed: {type(e).__name__}: {e}")
            return error_payload(name, e)

    async def ainvoke(self, name: str, arguments: Any = None) -> str:
        """Async version of invoke; awaits async tools."""
        try:
            tool = self.get(name)
            kwargs = self._parse_arguments(tool, arguments)

            if self.gate is not None:
                approved, comment = await self.gate.acheck(name, kwargs)
                if not approved:
                    return self.gate.denial_message(name, comment)

            logger.info(f"Calling tool {name}({kwargs})")
            if tool.is_async:
                result = await tool.func(**kwargs)
            else:
                result = tool.func(**kwargs)
            return to_content(result)

        except Exception as e:
            logger.warning(f"Tool call {name} failed: {type(e).__name__}: {e}")
            return error_payload(name, e)
