"""
Approval Manager - in-process store for function calls awaiting approval.

Backs the local approval server and the ``local`` backend.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from .models import (
    ApprovalStatus,
    FunctionCall,
    FunctionCallSpec,
    FunctionCallStatus,
    RiskLevel,
    utcnow,
)

logger = logging.getLogger(__name__)


class ApprovalError(Exception):
    """Base exception for approval errors."""

    pass


class ApprovalTimeout(ApprovalError):
    """Raised when nobody decides on a function call in time."""

    def __init__(self, call_id: str, fn: str, waited: float):
        self.call_id = call_id
        self.fn = fn
        self.waited = waited
        super().__init__(
            f"Approval for {fn} (call {call_id}) timed out after {waited:.0f}s"
        )


class ApprovalBackendError(ApprovalError):
    """Raised when the approval service cannot be reached or misbehaves."""

    def __init__(self, message: str, original_error: Exception | None = None):
        self.original_error = original_error
        super().__init__(message)


class FunctionCallNotFound(ApprovalError):
    """Raised when a call id is unknown."""

    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"Function call not found: {call_id}")


class FunctionCallAlreadyDecided(ApprovalError):
    """Raised when responding to a call that already has a decision."""

    def __init__(self, call_id: str, state: ApprovalStatus):
        self.call_id = call_id
        self.state = state
        super().__init__(f"Function call {call_id} is already {state.value}")


class DuplicateFunctionCall(ApprovalError):
    """Raised when creating a call with an id that is already in use."""

    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"Function call already exists: {call_id}")


class ApprovalManager:
    """
    Manages function calls and their decisions.

    Tracks pending calls, records decisions, and maintains history.
    """

    def __init__(self, default_run_id: str = "local"):
        """
        Initialize approval manager.

        Args:
            default_run_id: Run id assigned to calls created without one
        """
        self.default_run_id = default_run_id

        # Active calls {call_id: FunctionCall}
        self.pending: Dict[str, FunctionCall] = {}

        # Decided calls, oldest first
        self.history: List[FunctionCall] = []

        # on_created(call) - called when a new call is pending
        # on_decided(call) - called when approved/rejected/timed out
        self._on_created: Optional[Callable] = None
        self._on_decided: Optional[Callable] = None

    def set_callbacks(
        self,
        on_created: Optional[Callable] = None,
        on_decided: Optional[Callable] = None,
    ) -> None:
        """
        Set callbacks for function call lifecycle events.

        Args:
            on_created: Called when a new function call is created
            on_decided: Called when a call is approved, rejected or expires
        """
        if on_created is not None:
            self._on_created = on_created
        if on_decided is not None:
            self._on_decided = on_decided

    def _notify(self, callback: Optional[Callable], call: FunctionCall) -> None:
        if callback is None:
            return
        try:
            result = callback(call)
            if asyncio.iscoroutine(result):
                # Async listeners are scheduled on the running loop, if any
                try:
                    asyncio.get_running_loop().create_task(result)
                except RuntimeError:
                    result.close()
                    logger.warning("Async callback dropped: no running event loop")
        except Exception as cb_err:
            logger.warning(f"Approval callback error: {cb_err}")

    def create_function_call(
        self,
        spec: FunctionCallSpec,
        run_id: Optional[str] = None,
        call_id: Optional[str] = None,
    ) -> FunctionCall:
        """
        Register a function call awaiting approval.

        Args:
            spec: Function call spec
            run_id: Run the call belongs to
            call_id: Explicit call id (generated if None)

        Returns:
            The pending FunctionCall

        Raises:
            DuplicateFunctionCall: If call_id is already known
        """
        if call_id is not None and self._find(call_id) is not None:
            raise DuplicateFunctionCall(call_id)

        ids = {"call_id": call_id} if call_id is not None else {}
        call = FunctionCall(
            run_id=run_id or self.default_run_id,
            spec=spec,
            status=FunctionCallStatus(),
            **ids,
        )

        self.pending[call.call_id] = call

        logger.info(
            f"Approval requested: {spec.fn}({spec.kwargs}) "
            f"(risk: {spec.risk_level.value}, call: {call.call_id})"
        )

        self._notify(self._on_created, call)
        return call

    def _find(self, call_id: str) -> Optional[FunctionCall]:
        if call_id in self.pending:
            return self.pending[call_id]

        for call in self.history:
            if call.call_id == call_id:
                return call

        return None

    def get_function_call(self, call_id: str) -> FunctionCall:
        """
        Get a function call by id.

        Args:
            call_id: Call id

        Returns:
            FunctionCall

        Raises:
            FunctionCallNotFound: If the id is unknown
        """
        call = self._find(call_id)
        if call is None:
            raise FunctionCallNotFound(call_id)
        return call

    def respond(
        self,
        call_id: str,
        approved: bool,
        comment: Optional[str] = None,
    ) -> FunctionCall:
        """
        Record a human decision on a pending call.

        Args:
            call_id: Call id
            approved: Decision
            comment: Optional note from the reviewer

        Returns:
            The decided FunctionCall

        Raises:
            FunctionCallNotFound: If the id is unknown
            FunctionCallAlreadyDecided: If the call was already decided
        """
        call = self.pending.get(call_id)

        if call is None:
            existing = self._find(call_id)
            if existing is None:
                raise FunctionCallNotFound(call_id)
            raise FunctionCallAlreadyDecided(call_id, existing.state)

        call.status.approved = approved
        call.status.comment = comment
        call.status.responded_at = utcnow()

        self.pending.pop(call_id)
        self.history.append(call)

        logger.info(
            f"{'Approved' if approved else 'Rejected'} {call.spec.fn} "
            f"(call {call_id}): {comment or 'No comment'}"
        )

        self._notify(self._on_decided, call)
        return call

    def approve(self, call_id: str, comment: Optional[str] = None) -> bool:
        """
        Approve a pending call.

        Returns:
            True if approved, False if the call is unknown or already decided
        """
        try:
            self.respond(call_id, True, comment)
            return True
        except (FunctionCallNotFound, FunctionCallAlreadyDecided) as e:
            logger.warning(str(e))
            return False

    def reject(self, call_id: str, comment: Optional[str] = None) -> bool:
        """
        Reject a pending call.

        Returns:
            True if rejected, False if the call is unknown or already decided
        """
        try:
            self.respond(call_id, False, comment)
            return True
        except (FunctionCallNotFound, FunctionCallAlreadyDecided) as e:
            logger.warning(str(e))
            return False

    def expire(self, call_id: str) -> FunctionCall:
        """
        Mark a pending call as timed out.

        Decided calls are returned unchanged.

        Raises:
            FunctionCallNotFound: If the id is unknown
        """
        call = self.pending.pop(call_id, None)

        if call is None:
            return self.get_function_call(call_id)

        call.status.timed_out = True
        call.status.responded_at = utcnow()
        self.history.append(call)

        logger.warning(f"Approval timeout: {call.spec.fn} (call {call_id})")

        self._notify(self._on_decided, call)
        return call

    def list_pending(self) -> List[FunctionCall]:
        """
        Get all pending function calls, oldest first.

        Returns:
            List of pending calls
        """
        return sorted(self.pending.values(), key=lambda c: c.status.requested_at)

    def get_history(
        self,
        limit: Optional[int] = None,
        status: Optional[ApprovalStatus] = None,
    ) -> List[FunctionCall]:
        """
        Get decided function calls.

        Args:
            limit: Maximum number of calls to return
            status: Filter by status

        Returns:
            List of calls, most recently decided first
        """
        history = self.history

        if status:
            history = [c for c in history if c.state == status]

        history = sorted(
            history,
            key=lambda c: c.status.responded_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )

        if limit:
            history = history[:limit]

        return history

    def get_stats(self) -> dict:
        """
        Get approval statistics.

        Returns:
            Stats dict
        """
        stats = {
            "pending": len(self.pending),
            "total_history": len(self.history),
            "by_status": {},
            "by_risk_level": {},
            "approval_rate": 0.0,
        }

        for status in ApprovalStatus:
            if status == ApprovalStatus.PENDING:
                continue
            stats["by_status"][status.value] = sum(
                1 for c in self.history if c.state == status
            )

        for risk in RiskLevel:
            stats["by_risk_level"][risk.value] = sum(
                1 for c in self.history if c.spec.risk_level == risk
            )

        approved = stats["by_status"][ApprovalStatus.APPROVED.value]
        total_decided = approved + stats["by_status"][ApprovalStatus.REJECTED.value]

        if total_decided > 0:
            stats["approval_rate"] = approved / total_decided

        return stats

    def clear_history(self, older_than_hours: Optional[int] = None) -> int:
        """
        Clear approval history.

        Args:
            older_than_hours: Only clear calls decided before this many hours ago

        Returns:
            Number of calls cleared
        """
        if older_than_hours is None:
            count = len(self.history)
            self.history.clear()
            logger.info(f"Cleared {count} approval history entries")
            return count

        cutoff = datetime.now(timezone.utc) - timedelta(hours=older_than_hours)

        original_count = len(self.history)
        self.history = [
            c for c in self.history
            if (c.status.responded_at or utcnow()) > cutoff
        ]

        cleared = original_count - len(self.history)
        logger.info(f"Cleared {cleared} approval entries older than {older_than_hours}h")

        return cleared


# Singleton instance
_approval_manager: Optional[ApprovalManager] = None


def get_approval_manager() -> ApprovalManager:
    """
    Get or create approval manager singleton.

    Returns:
        ApprovalManager instance
    """
    global _approval_manager
    if _approval_manager is None:
        _approval_manager = ApprovalManager()
    return _approval_manager
