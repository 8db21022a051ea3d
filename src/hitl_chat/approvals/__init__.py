"""Approvals module - Human-in-the-Loop approval of tool calls."""

from .models import (
    RiskLevel,
    ApprovalStatus,
    FunctionCallSpec,
    FunctionCallStatus,
    FunctionCall,
    RiskClassifier,
)
from .manager import (
    ApprovalError,
    ApprovalTimeout,
    ApprovalBackendError,
    FunctionCallNotFound,
    FunctionCallAlreadyDecided,
    DuplicateFunctionCall,
    ApprovalManager,
    get_approval_manager,
)
from .backends import (
    ApprovalBackend,
    LocalApprovalBackend,
    HumanLayerBackend,
    HttpApprovalBackend,
    ConsoleApprovalBackend,
    create_backend,
)
from .gate import ApprovalGate, ToolPolicy

__all__ = [
    # Models
    "RiskLevel",
    "ApprovalStatus",
    "FunctionCallSpec",
    "FunctionCallStatus",
    "FunctionCall",
    "RiskClassifier",
    # Manager and errors
    "ApprovalError",
    "ApprovalTimeout",
    "ApprovalBackendError",
    "FunctionCallNotFound",
    "FunctionCallAlreadyDecided",
    "DuplicateFunctionCall",
    "ApprovalManager",
    "get_approval_manager",
    # Backends
    "ApprovalBackend",
    "LocalApprovalBackend",
    "HumanLayerBackend",
    "HttpApprovalBackend",
    "ConsoleApprovalBackend",
    "create_backend",
    # Gate
    "ApprovalGate",
    "ToolPolicy",
]
