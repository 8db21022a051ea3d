"""
Approval gate - blocks tool execution until a human decides.

Submits a function call to an approval backend and polls it until the
call is approved, rejected, or the wait times out.
"""

import asyncio
import inspect
import logging
import time
from functools import wraps
from typing import Any, Awaitable, Callable, Optional

from .backends import ApprovalBackend
from .manager import ApprovalError, ApprovalTimeout
from .models import (
    ApprovalStatus,
    FunctionCall,
    FunctionCallSpec,
    RiskClassifier,
    RiskLevel,
)

logger = logging.getLogger(__name__)


class ToolPolicy:
    """Per-tool risk levels and approval timeouts."""

    # Default timeout by risk level (seconds)
    TIMEOUT_BY_RISK = {
        RiskLevel.LOW: 60,  # 1 minute
        RiskLevel.MEDIUM: 300,  # 5 minutes
        RiskLevel.HIGH: 600,  # 10 minutes
        RiskLevel.CRITICAL: 900,  # 15 minutes
    }

    def __init__(
        self,
        tools: Optional[dict[str, RiskLevel]] = None,
        default_risk: RiskLevel = RiskLevel.MEDIUM,
        timeouts: Optional[dict[RiskLevel, Optional[float]]] = None,
    ):
        self.tools = dict(tools or {})
        self.default_risk = default_risk
        self.timeouts = {**self.TIMEOUT_BY_RISK, **(timeouts or {})}

    @classmethod
    def from_config(cls, config: Optional[dict]) -> "ToolPolicy":
        """
        Build a policy from the ``approvals`` block of the YAML config.

        Example::

            approvals:
              default_risk: medium
              tools:
                multiply: high
              timeouts:
                high: 120
        """
        block = (config or {}).get("approvals") or {}
        tools = {
            name: RiskLevel(risk) for name, risk in (block.get("tools") or {}).items()
        }
        timeouts = {
            RiskLevel(risk): seconds
            for risk, seconds in (block.get("timeouts") or {}).items()
        }
        return cls(
            tools=tools,
            default_risk=RiskLevel(block.get("default_risk", RiskLevel.MEDIUM.value)),
            timeouts=timeouts,
        )

    def risk_for(self, tool: str) -> RiskLevel:
        return self.tools.get(tool, self.default_risk)

    def requires_approval(self, tool: str) -> bool:
        return RiskClassifier.requires_approval(self.risk_for(tool))

    def get_timeout(self, risk_level: RiskLevel) -> Optional[float]:
        """Timeout for a risk level; None or 0 means wait forever."""
        return self.timeouts.get(risk_level, 300) or None


class ApprovalGate:
    """
    Human-in-the-Loop approval gate for tool calls.

    Wraps tool execution and requires approval before it runs.
    """

    def __init__(
        self,
        backend: ApprovalBackend,
        policy: Optional[ToolPolicy] = None,
        poll_interval: float = 3.0,
        timeout: Optional[float] = None,
        enabled: bool = True,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """
        Initialize approval gate.

        Args:
            backend: Approval backend to submit calls to
            policy: Tool policy (everything medium risk if None)
            poll_interval: Seconds between status checks
            timeout: Overrides the policy timeout for every tool
            enabled: Whether approval checks are enabled
            sleep: Async sleep used while polling (asyncio.sleep if None)
        """
        self.backend = backend
        self.policy = policy or ToolPolicy()
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.enabled = enabled
        self._sleep = sleep or asyncio.sleep

    def _build_spec(self, fn: str, kwargs: dict) -> FunctionCallSpec:
        return FunctionCallSpec(fn=fn, kwargs=kwargs, risk_level=self.policy.risk_for(fn))

    def _timeout_for(self, spec: FunctionCallSpec) -> Optional[float]:
        if self.timeout is not None:
            return self.timeout or None
        return self.policy.get_timeout(spec.risk_level)

    @staticmethod
    def _timed_out(call: FunctionCall, waited: float) -> ApprovalTimeout:
        logger.error(f"Approval timeout: {call.spec.fn} (waited {waited:.0f}s)")
        return ApprovalTimeout(call.call_id, call.spec.fn, waited)

    def _give_up(self, call: FunctionCall, waited: float) -> ApprovalTimeout:
        try:
            self.backend.expire(call.call_id)
        except ApprovalError as e:
            logger.warning(f"Could not expire call {call.call_id}: {e}")
        return self._timed_out(call, waited)

    async def _agive_up(self, call: FunctionCall, waited: float) -> ApprovalTimeout:
        try:
            await self.backend.aexpire(call.call_id)
        except ApprovalError as e:
            logger.warning(f"Could not expire call {call.call_id}: {e}")
        return self._timed_out(call, waited)

    def _settled(self, call: FunctionCall, started: float) -> FunctionCall:
        # Expired elsewhere (reviewer or server) counts as a timeout
        if call.state == ApprovalStatus.TIMEOUT:
            raise self._timed_out(call, time.monotonic() - started)
        return call

    def fetch_approval(self, fn: str, kwargs: dict) -> FunctionCall:
        """
        Submit a function call and block until it is decided.

        Args:
            fn: Tool name
            kwargs: Tool arguments

        Returns:
            The decided FunctionCall

        Raises:
            ApprovalTimeout: If no decision arrives in time
            ApprovalBackendError: If the backend fails
        """
        spec = self._build_spec(fn, kwargs)
        timeout = self._timeout_for(spec)
        started = time.monotonic()

        call = self.backend.create_function_call(spec)
        logger.info(f"Waiting for approval of {fn} (call {call.call_id})")

        while not call.is_decided:
            waited = time.monotonic() - started
            if timeout is not None and waited >= timeout:
                raise self._give_up(call, waited)
            time.sleep(self.poll_interval)
            call = self.backend.get_function_call(call.call_id)

        return self._settled(call, started)

    async def afetch_approval(self, fn: str, kwargs: dict) -> FunctionCall:
        """Async version of fetch_approval."""
        spec = self._build_spec(fn, kwargs)
        timeout = self._timeout_for(spec)
        started = time.monotonic()

        call = await self.backend.acreate_function_call(spec)
        logger.info(f"Waiting for approval of {fn} (call {call.call_id})")

        while not call.is_decided:
            waited = time.monotonic() - started
            if timeout is not None and waited >= timeout:
                raise await self._agive_up(call, waited)
            await self._sleep(self.poll_interval)
            call = await self.backend.aget_function_call(call.call_id)

        return self._settled(call, started)

    def _skip(self, fn: str) -> bool:
        if not self.enabled:
            logger.debug(f"Approval gate disabled - running {fn}")
            return True
        if not self.policy.requires_approval(fn):
            logger.debug(f"Low risk tool - running {fn} without approval")
            return True
        return False

    def _decision(self, call: FunctionCall) -> tuple[bool, Optional[str]]:
        approved = bool(call.status.approved)
        comment = call.status.comment
        if approved:
            logger.info(f"Tool call approved: {call.spec.fn}")
        else:
            logger.warning(f"Tool call rejected: {call.spec.fn} - {comment}")
        return approved, comment

    def check(self, fn: str, kwargs: dict) -> tuple[bool, Optional[str]]:
        """
        Check whether a tool call may run.

        Returns:
            (approved, comment)

        Raises:
            ApprovalTimeout: If no decision arrives in time
        """
        if self._skip(fn):
            return True, None
        return self._decision(self.fetch_approval(fn, kwargs))

    async def acheck(self, fn: str, kwargs: dict) -> tuple[bool, Optional[str]]:
        """Async version of check."""
        if self._skip(fn):
            return True, None
        return self._decision(await self.afetch_approval(fn, kwargs))

    @staticmethod
    def denial_message(fn: str, comment: Optional[str]) -> str:
        """Text returned to the model in place of a denied tool's result."""
        return f"User denied {fn} with message: {comment or 'no reason given'}"

    def require_approval(self, name: Optional[str] = None):
        """
        Decorator to require approval before executing a function.

        A denied call returns the denial message instead of running.

        Args:
            name: Tool name used for policy lookup (function name if None)

        Returns:
            Decorator function
        """

        def decorator(func: Callable) -> Callable:
            fn_name = name or func.__name__
            signature = inspect.signature(func)

            def call_kwargs(args: tuple, kwargs: dict) -> dict:
                bound = signature.bind(*args, **kwargs)
                bound.apply_defaults()
                return dict(bound.arguments)

            if inspect.iscoroutinefunction(func):

                @wraps(func)
                async def async_wrapper(*args, **kwargs):
                    approved, comment = await self.acheck(fn_name, call_kwargs(args, kwargs))
                    if not approved:
                        return self.denial_message(fn_name, comment)
                    return await func(*args, **kwargs)

                return async_wrapper

            @wraps(func)
            def wrapper(*args, **kwargs):
                approved, comment = self.check(fn_name, call_kwargs(args, kwargs))
                if not approved:
                    return self.denial_message(fn_name, comment)
                return func(*args, **kwargs)

            return wrapper

        return decorator
