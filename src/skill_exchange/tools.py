"""FastMCP tool definitions for Skill Exchange."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastmcp import FastMCP

from skill_exchange.errors import WorkflowError

if TYPE_CHECKING:
    from skill_exchange.lifecycle import SessionLifecycleController

mcp = FastMCP("skill-exchange", instructions="Skill exchange session workflow: completion, cancellation, reviews, badges")

# Will be set by server.py at startup
_controller: SessionLifecycleController | None = None


def set_controller(controller: SessionLifecycleController) -> None:
    global _controller
    _controller = controller


def _get_controller() -> SessionLifecycleController:
    if _controller is None:
        raise RuntimeError("SessionLifecycleController not initialized")
    return _controller


def _error(e: WorkflowError) -> dict:
    return {"error": str(e), "status_code": e.status_code}


@mcp.tool()
async def get_session(session_id: str) -> dict:
    """Return a session with its status, completion state and cancellation state."""
    try:
        return _get_controller().get_session(session_id).model_dump(mode="json")
    except WorkflowError as e:
        return _error(e)


@mcp.tool()
async def list_sessions(user_id: str | None = None, status: str | None = None) -> list[dict]:
    """List sessions, optionally filtered by participant and status (active, completed, canceled)."""
    try:
        return [s.model_dump(mode="json") for s in _get_controller().list_sessions(user_id, status)]
    except WorkflowError as e:
        return [_error(e)]


@mcp.tool()
async def request_completion(session_id: str, actor_id: str) -> dict:
    """Ask the other participant to confirm that the session is completed."""
    try:
        return _get_controller().request_completion(session_id, actor_id).model_dump(mode="json")
    except WorkflowError as e:
        return _error(e)


@mcp.tool()
async def respond_to_completion(
    session_id: str, actor_id: str, action: str, rejection_reason: str | None = None,
) -> dict:
    """Approve or reject a pending completion request. action: approve | reject."""
    try:
        session = _get_controller().respond_to_completion(session_id, actor_id, action, rejection_reason)
        return session.model_dump(mode="json")
    except WorkflowError as e:
        return _error(e)


@mcp.tool()
async def request_cancellation(
    session_id: str,
    actor_id: str,
    reason: str,
    description: str,
    evidence_files: list[str] | None = None,
) -> dict:
    """Open a cancellation request. reason is one of the CancelReason values."""
    try:
        request = _get_controller().request_cancellation(
            session_id, actor_id, reason, description, evidence_files,
        )
        return request.model_dump(mode="json")
    except WorkflowError as e:
        return _error(e)


@mcp.tool()
async def respond_to_cancellation(
    session_id: str,
    actor_id: str,
    action: str,
    response_description: str,
    work_completion_percentage: int | None = None,
    response_evidence_files: list[str] | None = None,
) -> dict:
    """Agree to or dispute an open cancellation request. Disputes need work_completion_percentage."""
    try:
        request = _get_controller().respond_to_cancellation(
            session_id,
            actor_id,
            action,
            response_description,
            work_completion_percentage,
            response_evidence_files,
        )
        return request.model_dump(mode="json")
    except WorkflowError as e:
        return _error(e)


@mcp.tool()
async def finalize_cancellation(session_id: str, actor_id: str, final_note: str) -> dict:
    """Finalize a disputed cancellation. The session ends up canceled."""
    try:
        return _get_controller().finalize_cancellation(session_id, actor_id, final_note).model_dump(mode="json")
    except WorkflowError as e:
        return _error(e)


@mcp.tool()
async def submit_review(
    session_id: str, reviewer_id: str, rating: int, comment: str, reviewee_id: str | None = None,
) -> dict:
    """Review the other participant of a completed session (rating 1-5)."""
    try:
        review = _get_controller().submit_review(session_id, reviewer_id, rating, comment, reviewee_id)
        return review.model_dump(mode="json")
    except WorkflowError as e:
        return _error(e)


@mcp.tool()
async def get_user_badges(user_id: str) -> list[dict]:
    """List the badges a user has earned."""
    return _get_controller().list_user_badges(user_id)
