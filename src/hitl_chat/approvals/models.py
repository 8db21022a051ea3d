"""
Approval data shapes for Human-in-the-Loop tool calls.

A FunctionCall is a proposed tool invocation waiting on a human decision.
Its status stays empty (or ``approved is None``) until someone responds.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_serializer


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RiskLevel(str, Enum):
    """Risk level classification for tools."""

    LOW = "low"  # No approval needed (pure computations, reads)
    MEDIUM = "medium"  # Approval recommended
    HIGH = "high"  # Approval required
    CRITICAL = "critical"  # Always requires approval (irreversible actions)


class ApprovalStatus(str, Enum):
    """Status of a function call awaiting approval."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    TIMEOUT = "timeout"


class FunctionCallSpec(BaseModel):
    """The tool invocation a human is asked to approve."""

    fn: str
    kwargs: dict[str, Any] = Field(default_factory=dict)
    risk_level: RiskLevel = RiskLevel.MEDIUM
    description: Optional[str] = None


class FunctionCallStatus(BaseModel):
    """Decision state of a function call."""

    requested_at: datetime = Field(default_factory=utcnow)
    responded_at: Optional[datetime] = None
    approved: Optional[bool] = None
    comment: Optional[str] = None
    timed_out: bool = False

    @field_serializer("requested_at", "responded_at")
    def serialize_datetimes(self, v: datetime | None) -> str | None:
        return v.isoformat() if v is not None else None


class FunctionCall(BaseModel):
    """A function call registered with an approval backend."""

    call_id: str = Field(default_factory=lambda: str(uuid4()))
    run_id: Optional[str] = None
    spec: FunctionCallSpec
    status: Optional[FunctionCallStatus] = None

    @property
    def state(self) -> ApprovalStatus:
        if self.status is None:
            return ApprovalStatus.PENDING
        if self.status.approved is True:
            return ApprovalStatus.APPROVED
        if self.status.approved is False:
            return ApprovalStatus.REJECTED
        if self.status.timed_out:
            return ApprovalStatus.TIMEOUT
        return ApprovalStatus.PENDING

    @property
    def is_decided(self) -> bool:
        return self.state != ApprovalStatus.PENDING


class RiskClassifier:
    """Maps risk levels to approval requirements."""

    APPROVAL_REQUIRED = {
        RiskLevel.LOW: False,
        RiskLevel.MEDIUM: True,
        RiskLevel.HIGH: True,
        RiskLevel.CRITICAL: True,
    }

    @classmethod
    def requires_approval(cls, risk_level: RiskLevel) -> bool:
        """
        Determine if risk level requires approval.

        Args:
            risk_level: Risk level to check

        Returns:
            True if approval required
        """
        return cls.APPROVAL_REQUIRED.get(risk_level, True)
