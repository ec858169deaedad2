"""FastAPI server with MCP integration, REST API, and SSE."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError as ModelValidationError

from skill_exchange import __version__
from skill_exchange.config import WorkflowConfig, default_state_file, load_config
from skill_exchange.errors import WorkflowError
from skill_exchange.lifecycle import SessionLifecycleController
from skill_exchange.store import InMemorySessionStore, SessionStore
from skill_exchange.tools import mcp, set_controller


def _dump(items: list) -> list[dict]:
    return [item.model_dump(mode="json") for item in items]


def create_app(
    store: SessionStore | None = None,
    config: WorkflowConfig | None = None,
    config_path: str | Path | None = None,
) -> FastAPI:
    """Create the FastAPI application."""
    cfg = config or load_config(config_path)
    if store is None:
        store = InMemorySessionStore(cfg.state_file or default_state_file())
    controller = SessionLifecycleController(store=store, config=cfg)
    set_controller(controller)

    mcp_http_app = mcp.http_app(path="")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with mcp_http_app.lifespan(app):
            yield
        controller.broker.disconnect_all()

    app = FastAPI(title="Skill Exchange", version=__version__, lifespan=lifespan)
    app.state.controller = controller

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _read_body(request: Request) -> dict[str, Any]:
        if not await request.body():
            return {}
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Request body must be valid JSON")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Request body must be a JSON object")
        return body

    def _actor_id(request: Request, body: dict[str, Any] | None = None) -> str:
        header_id = (request.headers.get("x-user-id") or "").strip()
        if header_id:
            return header_id
        if isinstance(body, dict):
            return str(body.get("actor_id") or "").strip()
        return ""

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @app.get("/api/sessions")
    async def api_list_sessions(user_id: str | None = None, status: str | None = None):
        try:
            sessions = controller.list_sessions(user_id=user_id, status=status)
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return JSONResponse(_dump(sessions))

    @app.post("/api/sessions")
    async def api_create_session(request: Request):
        body = await _read_body(request)
        try:
            session = controller.create_session(
                str(body.get("participant_a") or ""),
                str(body.get("participant_b") or ""),
                skill_a=str(body.get("skill_a") or ""),
                skill_b=str(body.get("skill_b") or ""),
                description_a=str(body.get("description_a") or ""),
                description_b=str(body.get("description_b") or ""),
                expected_end_date=body.get("expected_end_date"),
                due_date=body.get("due_date"),
            )
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        except ModelValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return JSONResponse(session.model_dump(mode="json"), status_code=201)

    @app.get("/api/sessions/{session_id}")
    async def api_get_session(session_id: str):
        try:
            session = controller.get_session(session_id)
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return JSONResponse(session.model_dump(mode="json"))

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    @app.post("/api/sessions/{session_id}/completion")
    async def api_request_completion(session_id: str, request: Request):
        body = await _read_body(request)
        try:
            session = controller.request_completion(session_id, _actor_id(request, body))
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return JSONResponse(session.model_dump(mode="json"))

    @app.patch("/api/sessions/{session_id}/completion")
    async def api_respond_to_completion(session_id: str, request: Request):
        body = await _read_body(request)
        try:
            session = controller.respond_to_completion(
                session_id,
                _actor_id(request, body),
                body.get("action"),
                rejection_reason=body.get("rejection_reason"),
            )
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return JSONResponse(session.model_dump(mode="json"))

    @app.get("/api/sessions/{session_id}/completion")
    async def api_list_completion_requests(session_id: str):
        try:
            session = controller.get_session(session_id)
            records = controller.list_completion_requests(session_id)
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return JSONResponse({
            "session_id": session_id,
            "completion_state": session.completion_state.value,
            "completion_requested_by": session.completion_requested_by,
            "requests": _dump(records),
        })

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @app.post("/api/sessions/{session_id}/cancel")
    async def api_request_cancellation(session_id: str, request: Request):
        body = await _read_body(request)
        try:
            cancel_request = controller.request_cancellation(
                session_id,
                _actor_id(request, body),
                body.get("reason"),
                body.get("description"),
                body.get("evidence_files"),
            )
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return JSONResponse(cancel_request.model_dump(mode="json"), status_code=201)

    @app.get("/api/sessions/{session_id}/cancel")
    async def api_get_cancel_request(session_id: str):
        try:
            cancel_request = controller.get_cancel_request(session_id)
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        if cancel_request is None:
            raise HTTPException(status_code=404, detail=f"No cancellation request for session {session_id}")
        return JSONResponse(cancel_request.model_dump(mode="json"))

    @app.patch("/api/sessions/{session_id}/cancel")
    async def api_respond_to_cancellation(session_id: str, request: Request):
        body = await _read_body(request)
        try:
            cancel_request = controller.respond_to_cancellation(
                session_id,
                _actor_id(request, body),
                body.get("action"),
                body.get("response_description"),
                work_completion_percentage=body.get("work_completion_percentage"),
                response_evidence_files=body.get("response_evidence_files"),
            )
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return JSONResponse(cancel_request.model_dump(mode="json"))

    @app.post("/api/sessions/{session_id}/cancel/finalize")
    async def api_finalize_cancellation(session_id: str, request: Request):
        body = await _read_body(request)
        try:
            cancel_request = controller.finalize_cancellation(
                session_id, _actor_id(request, body), body.get("final_note"),
            )
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return JSONResponse(cancel_request.model_dump(mode="json"))

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    @app.post("/api/sessions/{session_id}/reviews")
    async def api_submit_review(session_id: str, request: Request):
        body = await _read_body(request)
        try:
            review = controller.submit_review(
                session_id,
                _actor_id(request, body),
                body.get("rating"),
                body.get("comment"),
                reviewee_id=body.get("reviewee_id"),
            )
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return JSONResponse(review.model_dump(mode="json"), status_code=201)

    @app.get("/api/sessions/{session_id}/reviews")
    async def api_list_reviews(session_id: str):
        try:
            reviews = controller.list_reviews(session_id)
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return JSONResponse(_dump(reviews))

    # ------------------------------------------------------------------
    # Users: badges, ratings, notifications, activity events
    # ------------------------------------------------------------------

    @app.get("/api/badges")
    async def api_badge_catalog():
        return JSONResponse(_dump(controller.badge_catalog()))

    @app.get("/api/users/{user_id}/badges")
    async def api_user_badges(user_id: str):
        return JSONResponse(controller.list_user_badges(user_id))

    @app.get("/api/users/{user_id}/rating")
    async def api_user_rating(user_id: str):
        return JSONResponse(controller.rating_summary(user_id))

    @app.get("/api/users/{user_id}/notifications")
    async def api_user_notifications(user_id: str):
        return JSONResponse(_dump(controller.list_notifications(user_id)))

    @app.post("/api/users/{user_id}/verified-skills")
    async def api_record_verified_skill(user_id: str, request: Request):
        body = await _read_body(request)
        try:
            granted = controller.record_verified_skill(user_id, str(body.get("skill_id") or ""))
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return JSONResponse({"user_id": user_id, "granted_badges": granted})

    @app.post("/api/users/{user_id}/forum-posts")
    async def api_record_forum_post(user_id: str, request: Request):
        body = await _read_body(request)
        try:
            granted = controller.record_forum_post(user_id, str(body.get("post_id") or ""))
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return JSONResponse({"user_id": user_id, "granted_badges": granted})

    # ------------------------------------------------------------------
    # Report e-mails (sent by an admin)
    # ------------------------------------------------------------------

    @app.post("/api/reports/{report_id}/notifications")
    async def api_report_notice(report_id: str, request: Request):
        body = await _read_body(request)
        try:
            intents = controller.send_report_notice(
                str(body.get("kind") or ""),
                admin_id=_actor_id(request, body),
                report_id=report_id,
                reporter_id=str(body.get("reporter_id") or ""),
                reported_id=str(body.get("reported_id") or ""),
                reason=str(body.get("reason") or ""),
            )
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return JSONResponse(_dump(intents), status_code=201)

    # ------------------------------------------------------------------
    # SSE
    # ------------------------------------------------------------------

    @app.get("/api/sessions/{session_id}/stream")
    async def api_sse_stream(session_id: str):
        try:
            controller.get_session(session_id)
        except WorkflowError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))

        async def event_generator():
            async for event in controller.broker.subscribe(session_id=session_id):
                yield event.format()

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    # --- MCP mount ---
    app.mount("/mcp", mcp_http_app)

    return app
