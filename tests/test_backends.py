"""
Tests for approval backends.
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from hitl_chat.api.server import app, get_manager
from hitl_chat.approvals.backends import (
    ConsoleApprovalBackend,
    HttpApprovalBackend,
    HumanLayerBackend,
    LocalApprovalBackend,
    create_backend,
)
from hitl_chat.approvals.gate import ApprovalGate
from hitl_chat.approvals.manager import (
    ApprovalBackendError,
    ApprovalTimeout,
    FunctionCallAlreadyDecided,
    FunctionCallNotFound,
)
from hitl_chat.approvals.models import ApprovalStatus, FunctionCallSpec, RiskLevel
from hitl_chat.config import Settings


def sdk_call(call_id="hl-1", approved=None, comment=None, with_status=True):
    status = None
    if with_status:
        status = SimpleNamespace(
            requested_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            responded_at=None,
            approved=approved,
            comment=comment,
        )
    return SimpleNamespace(
        call_id=call_id,
        run_id="hl-run",
        spec=SimpleNamespace(fn="multiply", kwargs={"x": 2, "y": 3}),
        status=status,
    )


class TestLocalApprovalBackend:
    """Tests for the local backend."""

    def test_create_and_get(self, manager, local_backend):
        call = local_backend.create_function_call(FunctionCallSpec(fn="multiply"))

        assert call.run_id == "test-run"
        assert manager.list_pending() == [call]
        assert local_backend.get_function_call(call.call_id) is call

    def test_expire(self, manager, local_backend):
        call = local_backend.create_function_call(FunctionCallSpec(fn="multiply"))
        local_backend.expire(call.call_id)

        assert manager.get_function_call(call.call_id).state == ApprovalStatus.TIMEOUT

    @pytest.mark.asyncio
    async def test_aexpire(self, manager, local_backend):
        call = await local_backend.acreate_function_call(FunctionCallSpec(fn="multiply"))
        await local_backend.aexpire(call.call_id)

        assert manager.get_function_call(call.call_id).state == ApprovalStatus.TIMEOUT


class TestHumanLayerBackend:
    """Tests for the HumanLayer SDK backend."""

    def test_create_keeps_local_spec(self):
        client = MagicMock()
        client.create_function_call.return_value = sdk_call()
        backend = HumanLayerBackend(run_id="hl-run", client=client)

        spec = FunctionCallSpec(fn="multiply", kwargs={"x": 2, "y": 3}, risk_level=RiskLevel.HIGH)
        call = backend.create_function_call(spec)

        sent = client.create_function_call.call_args.kwargs["spec"]
        assert sent.fn == "multiply"
        assert sent.kwargs == {"x": 2, "y": 3}

        assert call.call_id == "hl-1"
        assert call.run_id == "hl-run"
        assert call.spec.risk_level == RiskLevel.HIGH
        assert call.state == ApprovalStatus.PENDING

    def test_get_converts_status(self):
        client = MagicMock()
        client.get_function_call.return_value = sdk_call(approved=False, comment="nope")
        backend = HumanLayerBackend(client=client)

        call = backend.get_function_call("hl-1")

        client.get_function_call.assert_called_once_with("hl-1")
        assert call.state == ApprovalStatus.REJECTED
        assert call.status.comment == "nope"
        assert call.spec.fn == "multiply"

    def test_missing_status_is_pending(self):
        client = MagicMock()
        client.get_function_call.return_value = sdk_call(with_status=False)

        call = HumanLayerBackend(client=client).get_function_call("hl-1")

        assert call.status is None
        assert call.state == ApprovalStatus.PENDING

    def test_spec_forgotten_once_decided(self):
        client = MagicMock()
        client.create_function_call.return_value = sdk_call()
        client.get_function_call.side_effect = [sdk_call(), sdk_call(approved=True)]
        backend = HumanLayerBackend(client=client)

        backend.create_function_call(FunctionCallSpec(fn="multiply", risk_level=RiskLevel.HIGH))
        pending = backend.get_function_call("hl-1")
        decided = backend.get_function_call("hl-1")

        assert pending.spec.risk_level == RiskLevel.HIGH
        assert decided.spec.risk_level == RiskLevel.HIGH
        assert backend._specs == {}

    def test_sdk_errors_are_wrapped(self):
        client = MagicMock()
        client.get_function_call.side_effect = RuntimeError("401 unauthorized")

        with pytest.raises(ApprovalBackendError, match="401"):
            HumanLayerBackend(client=client).get_function_call("hl-1")

    @pytest.mark.asyncio
    async def test_async_client(self):
        async_client = MagicMock()
        async_client.create_function_call = AsyncMock(return_value=sdk_call())
        async_client.get_function_call = AsyncMock(return_value=sdk_call(approved=True))
        backend = HumanLayerBackend(async_client=async_client)

        created = await backend.acreate_function_call(FunctionCallSpec(fn="multiply"))
        fetched = await backend.aget_function_call(created.call_id)

        assert created.state == ApprovalStatus.PENDING
        assert fetched.state == ApprovalStatus.APPROVED
        async_client.get_function_call.assert_awaited_once_with("hl-1")


class TestHttpApprovalBackend:
    """Tests for the HTTP backend against the approval server app."""

    @pytest.fixture
    def client(self, manager):
        app.dependency_overrides[get_manager] = lambda: manager
        with TestClient(app) as client:
            yield client
        app.dependency_overrides.clear()

    @pytest.fixture
    def backend(self, client):
        return HttpApprovalBackend(run_id="http-run", client=client)

    def test_create_and_get(self, manager, backend):
        call = backend.create_function_call(
            FunctionCallSpec(fn="send_email", kwargs={"to": "a@b.c"}, risk_level=RiskLevel.CRITICAL)
        )

        assert call.run_id == "http-run"
        assert call.spec.risk_level == RiskLevel.CRITICAL
        assert manager.get_function_call(call.call_id).spec.fn == "send_email"

        manager.approve(call.call_id, "go")
        fetched = backend.get_function_call(call.call_id)
        assert fetched.state == ApprovalStatus.APPROVED
        assert fetched.status.comment == "go"

    def test_get_unknown(self, backend):
        with pytest.raises(FunctionCallNotFound):
            backend.get_function_call("missing")

    def test_reviewer_operations(self, manager, backend):
        call = backend.create_function_call(FunctionCallSpec(fn="multiply"))

        assert [c.call_id for c in backend.list_pending()] == [call.call_id]

        decided = backend.respond(call.call_id, False, "no")
        assert decided.state == ApprovalStatus.REJECTED

        with pytest.raises(FunctionCallAlreadyDecided) as exc_info:
            backend.respond(call.call_id, True)
        assert exc_info.value.state == ApprovalStatus.REJECTED

        history = backend.get_history(limit=5, status=ApprovalStatus.REJECTED)
        assert [c.call_id for c in history] == [call.call_id]
        assert backend.get_stats()["by_status"]["rejected"] == 1

    def test_expire(self, manager, backend):
        call = backend.create_function_call(FunctionCallSpec(fn="multiply"))
        backend.expire(call.call_id)

        assert manager.get_function_call(call.call_id).state == ApprovalStatus.TIMEOUT

    def test_health_check(self, backend):
        assert backend.health_check() is True

    def test_connection_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(base_url="http://approvals", transport=httpx.MockTransport(refuse))
        backend = HttpApprovalBackend(client=client)

        with pytest.raises(ApprovalBackendError, match="Cannot connect"):
            backend.get_function_call("abc")
        assert backend.health_check() is False

    def test_server_error(self):
        client = httpx.Client(
            base_url="http://approvals",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
        )

        with pytest.raises(ApprovalBackendError, match="500"):
            HttpApprovalBackend(client=client).list_pending()

    @pytest.mark.asyncio
    async def test_async_round_trip(self, manager):
        app.dependency_overrides[get_manager] = lambda: manager
        try:
            async with httpx.AsyncClient(
                transport=httpx.ASGITransport(app=app), base_url="http://approvals"
            ) as async_client:
                backend = HttpApprovalBackend(async_client=async_client)

                call = await backend.acreate_function_call(FunctionCallSpec(fn="multiply"))
                manager.approve(call.call_id)
                fetched = await backend.aget_function_call(call.call_id)
        finally:
            app.dependency_overrides.clear()

        assert fetched.state == ApprovalStatus.APPROVED

    @pytest.mark.asyncio
    async def test_async_timeout_expires_through_async_client(self, manager):
        app.dependency_overrides[get_manager] = lambda: manager
        try:
            async with httpx.AsyncClient(
                transport=httpx.ASGITransport(app=app), base_url="http://approvals"
            ) as async_client:
                # Nothing listens on base_url; only the async client reaches the server
                backend = HttpApprovalBackend(base_url="http://127.0.0.1:9", async_client=async_client)
                gate = ApprovalGate(backend, poll_interval=0.01, timeout=0.05)

                with pytest.raises(ApprovalTimeout) as exc_info:
                    await gate.afetch_approval("multiply", {"x": 1, "y": 2})
        finally:
            app.dependency_overrides.clear()

        call = manager.get_function_call(exc_info.value.call_id)
        assert call.state == ApprovalStatus.TIMEOUT
        assert manager.list_pending() == []


class TestConsoleApprovalBackend:
    """Tests for the terminal prompt backend."""

    def test_approve(self):
        backend = ConsoleApprovalBackend(console=MagicMock())

        with patch("hitl_chat.approvals.backends.Confirm.ask", return_value=True):
            call = backend.create_function_call(FunctionCallSpec(fn="multiply", kwargs={"x": 1}))

        assert call.state == ApprovalStatus.APPROVED
        assert backend.get_function_call(call.call_id) is call

    def test_reject_with_reason(self):
        backend = ConsoleApprovalBackend(console=MagicMock())

        with patch("hitl_chat.approvals.backends.Confirm.ask", return_value=False), \
                patch("hitl_chat.approvals.backends.Prompt.ask", return_value="wrong numbers"):
            call = backend.create_function_call(FunctionCallSpec(fn="multiply"))

        assert call.state == ApprovalStatus.REJECTED
        assert call.status.comment == "wrong numbers"

    def test_unknown_call(self):
        with pytest.raises(FunctionCallNotFound):
            ConsoleApprovalBackend(console=MagicMock()).get_function_call("missing")

    def test_only_recent_calls_remembered(self):
        backend = ConsoleApprovalBackend(console=MagicMock())

        with patch("hitl_chat.approvals.backends.Confirm.ask", return_value=True):
            calls = [
                backend.create_function_call(FunctionCallSpec(fn="add"))
                for _ in range(backend.MAX_REMEMBERED + 1)
            ]

        assert len(backend._calls) == backend.MAX_REMEMBERED
        with pytest.raises(FunctionCallNotFound):
            backend.get_function_call(calls[0].call_id)
        assert backend.get_function_call(calls[-1].call_id) is calls[-1]


class TestCreateBackend:
    """Tests for backend selection."""

    def test_auto_without_key_uses_console(self):
        assert isinstance(create_backend(Settings()), ConsoleApprovalBackend)

    def test_auto_with_key_uses_humanlayer(self):
        backend = create_backend(Settings(HUMANLAYER_API_KEY="hl-key", HUMANLAYER_RUN_ID="run-9"))

        assert isinstance(backend, HumanLayerBackend)
        assert backend.api_key == "hl-key"
        assert backend.run_id == "run-9"

    def test_server(self):
        backend = create_backend(
            Settings(APPROVAL_BACKEND="server", APPROVAL_SERVER_URL="http://approvals:9000/")
        )

        assert isinstance(backend, HttpApprovalBackend)
        assert backend.base_url == "http://approvals:9000"

    def test_local(self, manager):
        backend = create_backend(Settings(APPROVAL_BACKEND="local"), manager=manager)

        assert isinstance(backend, LocalApprovalBackend)
        assert backend.manager is manager

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown approval backend"):
            create_backend(Settings(APPROVAL_BACKEND="carrier-pigeon"))
