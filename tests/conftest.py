"""
Shared pytest fixtures for the hitl-chat test suite.
"""

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Optional

import pytest

# Ensure src/ is importable without installing the package
_SRC = Path(__file__).resolve().parent.parent / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

from hitl_chat.approvals.backends import ApprovalBackend, LocalApprovalBackend  # noqa: E402
from hitl_chat.approvals.manager import ApprovalManager, FunctionCallNotFound  # noqa: E402
from hitl_chat.approvals.models import (  # noqa: E402
    FunctionCall,
    FunctionCallSpec,
    FunctionCallStatus,
)


# ─── Approval fixtures ───────────────────────────────────────────────────────

@pytest.fixture
def manager():
    """Fresh in-process approval manager."""
    return ApprovalManager(default_run_id="test-run")


@pytest.fixture
def local_backend(manager):
    """Local backend over the test manager."""
    return LocalApprovalBackend(manager=manager, run_id="test-run")


class ScriptedBackend(ApprovalBackend):
    """
    Backend that stays pending for a number of polls, then answers.

    ``decision`` of None means it never answers.
    """

    name = "scripted"

    def __init__(self, polls: int = 0, decision: Optional[bool] = True, comment: Optional[str] = None):
        super().__init__("scripted-run")
        self.polls = polls
        self.decision = decision
        self.comment = comment
        self.created: list[FunctionCallSpec] = []
        self.get_calls = 0
        self.expired: list[str] = []
        self._call: Optional[FunctionCall] = None

    def create_function_call(self, spec: FunctionCallSpec) -> FunctionCall:
        self.created.append(spec)
        self._call = FunctionCall(run_id=self.run_id, spec=spec, status=None)
        return self._call

    def get_function_call(self, call_id: str) -> FunctionCall:
        if self._call is None or self._call.call_id != call_id:
            raise FunctionCallNotFound(call_id)
        self.get_calls += 1
        if self.decision is None or self.get_calls <= self.polls:
            return self._call.model_copy(update={"status": FunctionCallStatus()})
        return self._call.model_copy(
            update={
                "status": FunctionCallStatus(approved=self.decision, comment=self.comment)
            }
        )

    def expire(self, call_id: str) -> None:
        self.expired.append(call_id)


@pytest.fixture
def scripted_backend():
    """Factory for scripted backends."""
    return ScriptedBackend


# ─── OpenAI doubles ──────────────────────────────────────────────────────────

def make_tool_call(call_id: str, name: str, arguments: str):
    return SimpleNamespace(
        id=call_id,
        type="function",
        function=SimpleNamespace(name=name, arguments=arguments),
    )


def make_completion(content: Optional[str] = None, tool_calls: Optional[list] = None):
    message = SimpleNamespace(role="assistant", content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="stop")])


@pytest.fixture
def completion():
    """Builders for fake chat-completion responses."""
    return SimpleNamespace(message=make_completion, tool_call=make_tool_call)


# ─── Environment ─────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep real credentials and .env files out of tests."""
    for var in (
        "OPENAI_API_KEY",
        "HUMANLAYER_API_KEY",
        "APPROVAL_BACKEND",
        "APPROVAL_TIMEOUT",
        "HITL_CONFIG_PATH",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(Path(__file__).resolve().parent)
