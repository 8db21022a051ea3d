"""
Tests for the approval system.

Tests approval models, risk classification and the in-process manager.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from hitl_chat.approvals.manager import (
    ApprovalManager,
    DuplicateFunctionCall,
    FunctionCallAlreadyDecided,
    FunctionCallNotFound,
    get_approval_manager,
)
from hitl_chat.approvals.models import (
    ApprovalStatus,
    FunctionCall,
    FunctionCallSpec,
    FunctionCallStatus,
    RiskClassifier,
    RiskLevel,
)


def spec(fn: str = "multiply", risk: RiskLevel = RiskLevel.HIGH, **kwargs) -> FunctionCallSpec:
    return FunctionCallSpec(fn=fn, kwargs=kwargs or {"x": 2, "y": 3}, risk_level=risk)


class TestRiskClassifier:
    """Tests for risk classification."""

    def test_requires_approval(self):
        assert not RiskClassifier.requires_approval(RiskLevel.LOW)
        assert RiskClassifier.requires_approval(RiskLevel.MEDIUM)
        assert RiskClassifier.requires_approval(RiskLevel.HIGH)
        assert RiskClassifier.requires_approval(RiskLevel.CRITICAL)


class TestFunctionCall:
    """Tests for FunctionCall state derivation."""

    def test_no_status_is_pending(self):
        call = FunctionCall(spec=spec())

        assert call.call_id
        assert call.state == ApprovalStatus.PENDING
        assert call.is_decided is False

    def test_undecided_status_is_pending(self):
        call = FunctionCall(spec=spec(), status=FunctionCallStatus())
        assert call.state == ApprovalStatus.PENDING

    def test_approved_and_rejected(self):
        approved = FunctionCall(spec=spec(), status=FunctionCallStatus(approved=True))
        rejected = FunctionCall(spec=spec(), status=FunctionCallStatus(approved=False))

        assert approved.state == ApprovalStatus.APPROVED
        assert rejected.state == ApprovalStatus.REJECTED
        assert approved.is_decided and rejected.is_decided

    def test_timed_out(self):
        call = FunctionCall(spec=spec(), status=FunctionCallStatus(timed_out=True))
        assert call.state == ApprovalStatus.TIMEOUT

    def test_serialization_round_trip(self):
        call = FunctionCall(spec=spec(), status=FunctionCallStatus(approved=True, comment="ok"))

        data = call.model_dump(mode="json")
        assert isinstance(data["status"]["requested_at"], str)
        assert data["spec"]["risk_level"] == "high"

        restored = FunctionCall.model_validate(data)
        assert restored.state == ApprovalStatus.APPROVED
        assert restored.status.requested_at == call.status.requested_at


class TestApprovalManager:
    """Tests for ApprovalManager."""

    def test_create_function_call(self, manager):
        call = manager.create_function_call(spec())

        assert call.run_id == "test-run"
        assert call.state == ApprovalStatus.PENDING
        assert manager.list_pending() == [call]
        assert manager.get_function_call(call.call_id) is call

    def test_create_with_explicit_ids(self, manager):
        call = manager.create_function_call(spec(), run_id="run-1", call_id="call-1")

        assert call.call_id == "call-1"
        assert call.run_id == "run-1"

        with pytest.raises(DuplicateFunctionCall):
            manager.create_function_call(spec(), call_id="call-1")

    def test_get_unknown_call(self, manager):
        with pytest.raises(FunctionCallNotFound):
            manager.get_function_call("missing")

    def test_respond_approves(self, manager):
        call = manager.create_function_call(spec())

        decided = manager.respond(call.call_id, True, "Looks good")

        assert decided.state == ApprovalStatus.APPROVED
        assert decided.status.comment == "Looks good"
        assert decided.status.responded_at is not None
        assert manager.list_pending() == []
        assert manager.get_history() == [decided]
        # Still reachable after leaving the pending set
        assert manager.get_function_call(call.call_id).state == ApprovalStatus.APPROVED

    def test_respond_twice(self, manager):
        call = manager.create_function_call(spec())
        manager.respond(call.call_id, False, "No")

        with pytest.raises(FunctionCallAlreadyDecided) as exc_info:
            manager.respond(call.call_id, True)

        assert exc_info.value.state == ApprovalStatus.REJECTED

    def test_respond_unknown(self, manager):
        with pytest.raises(FunctionCallNotFound):
            manager.respond("missing", True)

    def test_approve_and_reject_wrappers(self, manager):
        first = manager.create_function_call(spec())
        second = manager.create_function_call(spec())

        assert manager.approve(first.call_id) is True
        assert manager.reject(second.call_id, "Too risky") is True
        assert manager.approve(first.call_id) is False
        assert manager.reject("missing") is False

        assert manager.get_function_call(second.call_id).status.comment == "Too risky"

    def test_expire(self, manager):
        call = manager.create_function_call(spec())

        expired = manager.expire(call.call_id)

        assert expired.state == ApprovalStatus.TIMEOUT
        assert manager.list_pending() == []
        # Expiring a decided call is a no-op
        assert manager.expire(call.call_id).state == ApprovalStatus.TIMEOUT

    def test_callbacks(self, manager):
        created, decided = [], []
        manager.set_callbacks(on_created=created.append, on_decided=decided.append)

        call = manager.create_function_call(spec())
        manager.approve(call.call_id)

        assert [c.call_id for c in created] == [call.call_id]
        assert [c.call_id for c in decided] == [call.call_id]

    def test_callback_errors_do_not_propagate(self, manager):
        def boom(call):
            raise RuntimeError("listener down")

        manager.set_callbacks(on_created=boom, on_decided=boom)

        call = manager.create_function_call(spec())
        assert manager.approve(call.call_id) is True

    @pytest.mark.asyncio
    async def test_async_callbacks_scheduled(self, manager):
        seen = []

        async def listener(call):
            seen.append(call.call_id)

        manager.set_callbacks(on_created=listener)
        call = manager.create_function_call(spec())
        await asyncio.sleep(0)

        assert seen == [call.call_id]

    def test_history_filter_and_limit(self, manager):
        ids = [manager.create_function_call(spec()).call_id for _ in range(3)]
        manager.approve(ids[0])
        manager.reject(ids[1])
        manager.approve(ids[2])

        approved = manager.get_history(status=ApprovalStatus.APPROVED)
        assert {c.call_id for c in approved} == {ids[0], ids[2]}

        latest = manager.get_history(limit=1)
        assert [c.call_id for c in latest] == [ids[2]]

    def test_get_stats(self, manager):
        ids = [manager.create_function_call(spec()).call_id for _ in range(4)]
        manager.approve(ids[0])
        manager.approve(ids[1])
        manager.reject(ids[2])

        stats = manager.get_stats()

        assert stats["pending"] == 1
        assert stats["total_history"] == 3
        assert stats["by_status"] == {"approved": 2, "rejected": 1, "timeout": 0}
        assert stats["by_risk_level"]["high"] == 3
        assert stats["approval_rate"] == pytest.approx(2 / 3)

    def test_stats_empty(self, manager):
        assert manager.get_stats()["approval_rate"] == 0.0

    def test_clear_history(self, manager):
        call = manager.create_function_call(spec())
        manager.approve(call.call_id)

        assert manager.clear_history() == 1
        assert manager.history == []

    def test_clear_history_with_filter(self, manager):
        recent = FunctionCall(
            spec=spec(fn="recent"),
            status=FunctionCallStatus(approved=True, responded_at=datetime.now(timezone.utc)),
        )
        old = FunctionCall(
            spec=spec(fn="old"),
            status=FunctionCallStatus(
                approved=True,
                responded_at=datetime.now(timezone.utc) - timedelta(hours=25),
            ),
        )
        manager.history = [recent, old]

        cleared = manager.clear_history(older_than_hours=24)

        assert cleared == 1
        assert [c.spec.fn for c in manager.history] == ["recent"]


def test_singleton():
    assert get_approval_manager() is get_approval_manager()
    assert isinstance(get_approval_manager(), ApprovalManager)
