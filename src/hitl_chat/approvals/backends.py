"""
Approval backends - where function calls are sent for a human decision.

Every backend exposes the same create/get pair, sync and async, so the
polling loop in ApprovalGate does not care who answers.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Optional

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

from .manager import (
    ApprovalBackendError,
    ApprovalManager,
    FunctionCallAlreadyDecided,
    FunctionCallNotFound,
    get_approval_manager,
)
from .models import (
    ApprovalStatus,
    FunctionCall,
    FunctionCallSpec,
    FunctionCallStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


class ApprovalBackend(ABC):
    """Base interface for approval services."""

    name = "base"

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id

    @abstractmethod
    def create_function_call(self, spec: FunctionCallSpec) -> FunctionCall:
        """
        Submit a function call for approval.

        Args:
            spec: Function call spec

        Returns:
            The registered FunctionCall (normally still pending)
        """
        pass

    @abstractmethod
    def get_function_call(self, call_id: str) -> FunctionCall:
        """
        Fetch the current state of a function call.

        Raises:
            FunctionCallNotFound: If the id is unknown
        """
        pass

    async def acreate_function_call(self, spec: FunctionCallSpec) -> FunctionCall:
        return await asyncio.to_thread(self.create_function_call, spec)

    async def aget_function_call(self, call_id: str) -> FunctionCall:
        return await asyncio.to_thread(self.get_function_call, call_id)

    def expire(self, call_id: str) -> None:
        """Tell the backend the caller stopped waiting. No-op unless overridden."""
        pass

    async def aexpire(self, call_id: str) -> None:
        await asyncio.to_thread(self.expire, call_id)


class LocalApprovalBackend(ApprovalBackend):
    """Backend over an in-process ApprovalManager."""

    name = "local"

    def __init__(self, manager: Optional[ApprovalManager] = None, run_id: Optional[str] = None):
        super().__init__(run_id)
        self.manager = manager or get_approval_manager()

    def create_function_call(self, spec: FunctionCallSpec) -> FunctionCall:
        return self.manager.create_function_call(spec, run_id=self.run_id)

    def get_function_call(self, call_id: str) -> FunctionCall:
        return self.manager.get_function_call(call_id)

    async def acreate_function_call(self, spec: FunctionCallSpec) -> FunctionCall:
        return self.create_function_call(spec)

    async def aget_function_call(self, call_id: str) -> FunctionCall:
        return self.get_function_call(call_id)

    def expire(self, call_id: str) -> None:
        self.manager.expire(call_id)

    async def aexpire(self, call_id: str) -> None:
        self.expire(call_id)


class HumanLayerBackend(ApprovalBackend):
    """
    Backend over the HumanLayer SDK.

    Uses ``HumanLayer`` for sync calls and ``AsyncHumanLayer`` for async calls.
    Clients are created lazily so the SDK is only needed when this backend
    is used.
    """

    name = "humanlayer"

    def __init__(
        self,
        api_key: Optional[str] = None,
        run_id: Optional[str] = None,
        verbose: bool = False,
        client: Any = None,
        async_client: Any = None,
    ):
        """
        Initialize HumanLayer backend.

        Args:
            api_key: HumanLayer API key (SDK reads HUMANLAYER_API_KEY if None)
            run_id: Run id shown to approvers
            verbose: Enable SDK console output
            client: Pre-built sync client
            async_client: Pre-built async client
        """
        super().__init__(run_id)
        self.api_key = api_key
        self.verbose = verbose
        self._client = client
        self._async_client = async_client

        # Risk level and description never reach the service; keep them here
        self._specs: dict[str, FunctionCallSpec] = {}

    def _sdk_kwargs(self) -> dict:
        kwargs: dict[str, Any] = {"verbose": self.verbose}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.run_id:
            kwargs["run_id"] = self.run_id
        return kwargs

    @property
    def client(self) -> Any:
        if self._client is None:
            from humanlayer import HumanLayer

            self._client = HumanLayer(**self._sdk_kwargs())
        return self._client

    @property
    def async_client(self) -> Any:
        if self._async_client is None:
            from humanlayer import AsyncHumanLayer

            self._async_client = AsyncHumanLayer(**self._sdk_kwargs())
        return self._async_client

    @staticmethod
    def _to_sdk_spec(spec: FunctionCallSpec) -> Any:
        from humanlayer import FunctionCallSpec as SDKFunctionCallSpec

        return SDKFunctionCallSpec(fn=spec.fn, kwargs=spec.kwargs)

    def _from_sdk(self, sdk_call: Any) -> FunctionCall:
        call_id = sdk_call.call_id
        spec = self._specs.get(call_id)
        if spec is None:
            sdk_spec = getattr(sdk_call, "spec", None)
            spec = FunctionCallSpec(
                fn=getattr(sdk_spec, "fn", "unknown"),
                kwargs=getattr(sdk_spec, "kwargs", None) or {},
            )

        status = None
        sdk_status = getattr(sdk_call, "status", None)
        if sdk_status is not None:
            status = FunctionCallStatus(
                requested_at=getattr(sdk_status, "requested_at", None) or utcnow(),
                responded_at=getattr(sdk_status, "responded_at", None),
                approved=getattr(sdk_status, "approved", None),
                comment=getattr(sdk_status, "comment", None),
            )

        call = FunctionCall(
            call_id=call_id,
            run_id=getattr(sdk_call, "run_id", None) or self.run_id,
            spec=spec,
            status=status,
        )
        if call.is_decided:
            self._specs.pop(call_id, None)
        return call

    def create_function_call(self, spec: FunctionCallSpec) -> FunctionCall:
        try:
            sdk_call = self.client.create_function_call(spec=self._to_sdk_spec(spec))
        except Exception as e:
            raise ApprovalBackendError(f"HumanLayer create_function_call failed: {e}", e) from e

        self._specs[sdk_call.call_id] = spec
        logger.info(f"Submitted {spec.fn} to HumanLayer (call {sdk_call.call_id})")
        return self._from_sdk(sdk_call)

    def get_function_call(self, call_id: str) -> FunctionCall:
        try:
            sdk_call = self.client.get_function_call(call_id)
        except Exception as e:
            raise ApprovalBackendError(f"HumanLayer get_function_call failed: {e}", e) from e
        return self._from_sdk(sdk_call)

    async def acreate_function_call(self, spec: FunctionCallSpec) -> FunctionCall:
        try:
            sdk_call = await self.async_client.create_function_call(
                spec=self._to_sdk_spec(spec)
            )
        except Exception as e:
            raise ApprovalBackendError(f"HumanLayer create_function_call failed: {e}", e) from e

        self._specs[sdk_call.call_id] = spec
        logger.info(f"Submitted {spec.fn} to HumanLayer (call {sdk_call.call_id})")
        return self._from_sdk(sdk_call)

    async def aget_function_call(self, call_id: str) -> FunctionCall:
        try:
            sdk_call = await self.async_client.get_function_call(call_id)
        except Exception as e:
            raise ApprovalBackendError(f"HumanLayer get_function_call failed: {e}", e) from e
        return self._from_sdk(sdk_call)


class HttpApprovalBackend(ApprovalBackend):
    """
    Backend over the local approval server's HTTP API.

    Also exposes the reviewer side (pending list, respond, history, stats)
    used by the CLI and terminal UI.
    """

    name = "server"

    def __init__(
        self,
        base_url: str = "http://localhost:8001",
        timeout: float = 10.0,
        run_id: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        async_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize HTTP backend.

        Args:
            base_url: Approval server URL
            timeout: Request timeout in seconds
            run_id: Run id attached to created calls
            client: Pre-built sync client (its base_url is used as-is)
            async_client: Pre-built async client (its base_url is used as-is)
        """
        super().__init__(run_id)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._async_client = async_client

    def _raise_for_status(self, response: httpx.Response, call_id: Optional[str] = None) -> None:
        if response.status_code < 400:
            return
        if response.status_code == 404 and call_id is not None:
            raise FunctionCallNotFound(call_id)
        raise ApprovalBackendError(
            f"Approval server returned {response.status_code}: {response.text}"
        )

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            if self._client is not None:
                return self._client.request(method, path, **kwargs)
            with httpx.Client(base_url=self.base_url, timeout=self.timeout) as client:
                return client.request(method, path, **kwargs)
        except httpx.ConnectError as e:
            raise ApprovalBackendError(
                f"Cannot connect to approval server at {self.base_url}", e
            ) from e
        except httpx.HTTPError as e:
            raise ApprovalBackendError(f"Approval server request failed: {e}", e) from e

    async def _arequest(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            if self._async_client is not None:
                return await self._async_client.request(method, path, **kwargs)
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout) as client:
                return await client.request(method, path, **kwargs)
        except httpx.ConnectError as e:
            raise ApprovalBackendError(
                f"Cannot connect to approval server at {self.base_url}", e
            ) from e
        except httpx.HTTPError as e:
            raise ApprovalBackendError(f"Approval server request failed: {e}", e) from e

    def _create_body(self, spec: FunctionCallSpec) -> dict:
        return {"spec": spec.model_dump(mode="json"), "run_id": self.run_id}

    def create_function_call(self, spec: FunctionCallSpec) -> FunctionCall:
        response = self._request("POST", "/function_calls", json=self._create_body(spec))
        self._raise_for_status(response)
        return FunctionCall.model_validate(response.json())

    def get_function_call(self, call_id: str) -> FunctionCall:
        response = self._request("GET", f"/function_calls/{call_id}")
        self._raise_for_status(response, call_id)
        return FunctionCall.model_validate(response.json())

    async def acreate_function_call(self, spec: FunctionCallSpec) -> FunctionCall:
        response = await self._arequest("POST", "/function_calls", json=self._create_body(spec))
        self._raise_for_status(response)
        return FunctionCall.model_validate(response.json())

    async def aget_function_call(self, call_id: str) -> FunctionCall:
        response = await self._arequest("GET", f"/function_calls/{call_id}")
        self._raise_for_status(response, call_id)
        return FunctionCall.model_validate(response.json())

    def expire(self, call_id: str) -> None:
        response = self._request("POST", f"/function_calls/{call_id}/expire")
        self._raise_for_status(response, call_id)

    async def aexpire(self, call_id: str) -> None:
        response = await self._arequest("POST", f"/function_calls/{call_id}/expire")
        self._raise_for_status(response, call_id)

    # Reviewer side

    def list_pending(self) -> list[FunctionCall]:
        response = self._request("GET", "/function_calls/pending")
        self._raise_for_status(response)
        return [FunctionCall.model_validate(item) for item in response.json()]

    def respond(
        self,
        call_id: str,
        approved: bool,
        comment: Optional[str] = None,
    ) -> FunctionCall:
        response = self._request(
            "POST",
            f"/function_calls/{call_id}/respond",
            json={"approved": approved, "comment": comment},
        )
        if response.status_code == 409:
            raise FunctionCallAlreadyDecided(
                call_id, ApprovalStatus(response.json().get("state", "pending"))
            )
        self._raise_for_status(response, call_id)
        return FunctionCall.model_validate(response.json())

    def get_history(
        self,
        limit: Optional[int] = None,
        status: Optional[ApprovalStatus] = None,
    ) -> list[FunctionCall]:
        params = {}
        if limit:
            params["limit"] = limit
        if status:
            params["status"] = status.value
        response = self._request("GET", "/function_calls/history", params=params)
        self._raise_for_status(response)
        return [FunctionCall.model_validate(item) for item in response.json()]

    def get_stats(self) -> dict:
        response = self._request("GET", "/function_calls/stats")
        self._raise_for_status(response)
        return response.json()

    def health_check(self) -> bool:
        try:
            response = self._request("GET", "/health")
        except ApprovalBackendError:
            return False
        return response.status_code == 200


class ConsoleApprovalBackend(ApprovalBackend):
    """
    Backend that asks the operator in the terminal.

    The decision is taken while the call is created, so polling returns
    immediately.
    """

    name = "console"

    # Decided calls remembered for get_function_call; oldest dropped first
    MAX_REMEMBERED = 50

    def __init__(self, console: Optional[Console] = None, run_id: Optional[str] = None):
        super().__init__(run_id)
        self.console = console or Console()
        self._calls: OrderedDict[str, FunctionCall] = OrderedDict()

    def create_function_call(self, spec: FunctionCallSpec) -> FunctionCall:
        kwargs_str = "\n".join(f"  • {k}: {v}" for k, v in spec.kwargs.items()) or "  (none)"
        self.console.print(
            Panel(
                f"[bold]Function:[/bold] {spec.fn}\n"
                f"[bold]Risk Level:[/bold] {spec.risk_level.value.upper()}\n"
                f"[bold]Arguments:[/bold]\n{kwargs_str}",
                title="[bold]Approval Required[/bold]",
                border_style="yellow",
            )
        )

        approved = Confirm.ask(
            f"[bold]Allow {spec.fn} to run?[/bold]",
            default=False,
            console=self.console,
        )
        comment = None
        if not approved:
            comment = Prompt.ask(
                "[red]Reason (optional)[/red]",
                default="",
                console=self.console,
            ) or None

        call = FunctionCall(
            run_id=self.run_id,
            spec=spec,
            status=FunctionCallStatus(
                approved=approved,
                comment=comment,
                responded_at=utcnow(),
            ),
        )
        self._calls[call.call_id] = call
        while len(self._calls) > self.MAX_REMEMBERED:
            self._calls.popitem(last=False)
        return call

    def get_function_call(self, call_id: str) -> FunctionCall:
        call = self._calls.get(call_id)
        if call is None:
            raise FunctionCallNotFound(call_id)
        return call


BACKENDS = ("auto", "humanlayer", "server", "local", "console")


def create_backend(settings: Any, manager: Optional[ApprovalManager] = None) -> ApprovalBackend:
    """
    Build the approval backend selected in settings.

    Args:
        settings: Settings instance
        manager: Approval manager for the ``local`` backend

    Returns:
        ApprovalBackend

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = (settings.approval_backend or "auto").lower()
    run_id = settings.humanlayer_run_id

    if backend == "auto":
        backend = "humanlayer" if settings.humanlayer_api_key else "console"

    if backend == "humanlayer":
        return HumanLayerBackend(
            api_key=settings.humanlayer_api_key,
            run_id=run_id,
            verbose=settings.humanlayer_verbose,
        )
    if backend == "server":
        return HttpApprovalBackend(base_url=settings.approval_server_url, run_id=run_id)
    if backend == "local":
        return LocalApprovalBackend(manager=manager, run_id=run_id)
    if backend == "console":
        return ConsoleApprovalBackend(run_id=run_id)

    raise ValueError(
        f"Unknown approval backend: {settings.approval_backend!r} "
        f"(expected one of {', '.join(BACKENDS)})"
    )
