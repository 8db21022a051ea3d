"""
FastAPI server for local Human-in-the-Loop approvals.

Agents create function calls and poll them; reviewers list pending
calls and respond. Used by the ``server`` approval backend.
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..approvals.manager import (
    ApprovalManager,
    DuplicateFunctionCall,
    FunctionCallAlreadyDecided,
    FunctionCallNotFound,
    get_approval_manager,
)
from ..approvals.models import ApprovalStatus, FunctionCall, FunctionCallSpec

logger = logging.getLogger(__name__)


# Request/Response Models
class CreateFunctionCall(BaseModel):
    """Request to create a function call awaiting approval."""

    spec: FunctionCallSpec
    run_id: Optional[str] = None
    call_id: Optional[str] = None


class FunctionCallDecision(BaseModel):
    """Decision on a function call."""

    approved: bool
    comment: Optional[str] = None


class ApprovalStats(BaseModel):
    """Statistics about approvals."""

    pending: int
    total_history: int
    by_status: dict
    by_risk_level: dict
    approval_rate: float


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan."""
    logger.info("Starting HITL Approval Server")
    yield
    logger.info("Shutting down HITL Approval Server")


app = FastAPI(
    title="hitl-chat - Approval API",
    description="Local Human-in-the-Loop approvals for chat tool calls",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FunctionCallNotFound)
async def not_found_handler(request: Request, exc: FunctionCallNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(FunctionCallAlreadyDecided)
async def already_decided_handler(request: Request, exc: FunctionCallAlreadyDecided):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "state": exc.state.value},
    )


def get_manager() -> ApprovalManager:
    """Get approval manager singleton."""
    return get_approval_manager()


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "hitl-approval-server",
    }


@app.post("/function_calls", response_model=FunctionCall, status_code=201)
async def create_function_call(
    request: CreateFunctionCall,
    manager: ApprovalManager = Depends(get_manager),
):
    """
    Register a function call awaiting approval.

    Returns immediately; callers poll ``GET /function_calls/{call_id}``.
    """
    try:
        return manager.create_function_call(
            request.spec,
            run_id=request.run_id,
            call_id=request.call_id,
        )
    except DuplicateFunctionCall as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.get("/function_calls/pending", response_model=List[FunctionCall])
async def list_pending(manager: ApprovalManager = Depends(get_manager)):
    """Get all pending function calls."""
    return manager.list_pending()


@app.get("/function_calls/history", response_model=List[FunctionCall])
async def get_history(
    limit: Optional[int] = Query(None, ge=1, le=100),
    status: Optional[ApprovalStatus] = None,
    manager: ApprovalManager = Depends(get_manager),
):
    """
    Get decided function calls.

    Args:
        limit: Maximum number of calls to return (1-100)
        status: Filter by status
    """
    return manager.get_history(limit=limit, status=status)


@app.get("/function_calls/stats", response_model=ApprovalStats)
async def get_stats(manager: ApprovalManager = Depends(get_manager)):
    """Get approval statistics."""
    return ApprovalStats(**manager.get_stats())


@app.delete("/function_calls/history")
async def clear_history(
    older_than_hours: Optional[int] = Query(None, ge=1),
    manager: ApprovalManager = Depends(get_manager),
):
    """
    Clear approval history.

    Args:
        older_than_hours: Only clear calls decided before this (hours)
    """
    cleared = manager.clear_history(older_than_hours=older_than_hours)

    return {
        "success": True,
        "cleared": cleared,
        "older_than_hours": older_than_hours,
    }


@app.get("/function_calls/{call_id}", response_model=FunctionCall)
async def get_function_call(
    call_id: str,
    manager: ApprovalManager = Depends(get_manager),
):
    """Get a function call by id."""
    return manager.get_function_call(call_id)


@app.post("/function_calls/{call_id}/respond", response_model=FunctionCall)
async def respond(
    call_id: str,
    decision: FunctionCallDecision,
    manager: ApprovalManager = Depends(get_manager),
):
    """Approve or reject a pending function call."""
    return manager.respond(call_id, decision.approved, decision.comment)


@app.post("/function_calls/{call_id}/expire", response_model=FunctionCall)
async def expire(
    call_id: str,
    manager: ApprovalManager = Depends(get_manager),
):
    """Mark a pending function call as timed out."""
    return manager.expire(call_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8001, log_level="info")
