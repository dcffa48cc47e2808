"""
FastAPI application factory.

Exposes sessions over HTTP. Turns stream their events as server-sent
events; every event is its ``to_dict()`` wire shape.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..agent.session import SessionManager
from ..config import Settings, get_settings
from ..errors import CompactionError, SessionNotFoundError
from ..runtime import build_runtime

logger = structlog.get_logger()

VERSION = __version__


class CreateSessionRequest(BaseModel):
    working_directory: str | None = None
    title: str | None = None
    provider: str | None = None
    model: str | None = None
    system_prompt: str | None = None


class PromptRequest(BaseModel):
    text: str = Field(min_length=1)
    stream: bool = True


class CompactionConfigUpdate(BaseModel):
    enabled: bool | None = None
    model: str | None = None
    token_threshold: float | None = None
    inception_count: int | None = None
    working_window_count: int | None = None


def _sse(event_type: str, data: dict[str, Any]) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


def create_app(settings: Settings | None = None, manager: SessionManager | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Pass a ready SessionManager to serve it (tests do); otherwise one is
    built from settings when the app starts.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        owned = manager is None
        if owned:
            runtime = await build_runtime(settings)
            app.state.manager = SessionManager(runtime)
        else:
            app.state.manager = manager

        yield

        if owned:
            await app.state.manager.shutdown()
            await app.state.manager.runtime.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="openmgr-agent",
        description="AI coding assistant orchestration core",
        version=VERSION,
        lifespan=lifespan,
    )
    if manager is not None:
        app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def sessions(request: Request) -> SessionManager:
        return request.app.state.manager

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found(_request: Request, exc: SessionNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #
    @app.get("/api/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        runtime = sessions(request).runtime
        return {
            "status": "healthy",
            "version": VERSION,
            "llm_configured": bool(
                settings.anthropic_api_key
                or settings.openai_api_key
                or settings.google_api_key
                or settings.openrouter_api_key
            ),
            "providers": runtime.providers.names(),
            "tools": runtime.tools.list_tools(),
        }

    # ------------------------------------------------------------------ #
    # Sessions
    # ------------------------------------------------------------------ #
    @app.post("/api/sessions", status_code=201)
    async def create_session(body: CreateSessionRequest, request: Request):
        session = await sessions(request).create(
            working_directory=body.working_directory,
            title=body.title,
            provider=body.provider,
            model=body.model,
            system_prompt=body.system_prompt,
        )
        return session.to_dict()

    @app.get("/api/sessions")
    async def list_sessions(request: Request, limit: int = 50):
        items = await sessions(request).list_sessions(limit=limit)
        return {"sessions": [s.to_dict() for s in items]}

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str, request: Request):
        manager = sessions(request)
        session = await manager.get_session(session_id)
        agent = manager.get_agent(session_id)
        data = session.to_dict()
        data["state"] = agent.state.value if agent else "idle"
        data["running"] = bool(agent and agent.is_running)
        return data

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(session_id: str, request: Request):
        if not await sessions(request).delete(session_id):
            raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
        return {"deleted": session_id}

    @app.get("/api/sessions/{session_id}/messages")
    async def get_messages(session_id: str, request: Request):
        messages = await sessions(request).get_messages(session_id)
        return {"messages": [m.to_dict() for m in messages]}

    @app.get("/api/sessions/{session_id}/children")
    async def list_children(session_id: str, request: Request):
        manager = sessions(request)
        await manager.get_session(session_id)
        children = await manager.list_children(session_id)
        return {"sessions": [s.to_dict() for s in children]}

    # ------------------------------------------------------------------ #
    # Turns
    # ------------------------------------------------------------------ #
    @app.post("/api/sessions/{session_id}/prompt")
    async def prompt(session_id: str, body: PromptRequest, request: Request):
        """Run a turn. Streams events as SSE unless ``stream`` is false."""
        manager = sessions(request)
        agent = await manager.restore(session_id)
        if agent.is_running:
            raise HTTPException(status_code=409, detail="Session is already running a turn")

        if not body.stream:
            final = await manager.prompt(session_id, body.text)
            return {
                "response": final.to_dict(),
                "events": [e.to_dict() for e in agent.events.history],
            }

        async def event_source() -> AsyncGenerator[str, None]:
            stream = agent.events.stream(manager.prompt(session_id, body.text))
            try:
                async for event in stream:
                    yield _sse(event.type, event.to_dict())
            except Exception as e:
                logger.error("Streaming turn failed", session_id=session_id, error=str(e))
                yield _sse("error", {"type": "error", "sessionId": session_id, "message": str(e)})
                return
            yield _sse("done", stream.result.to_dict())

        return StreamingResponse(event_source(), media_type="text/event-stream")

    @app.post("/api/sessions/{session_id}/abort")
    async def abort(session_id: str, request: Request):
        manager = sessions(request)
        await manager.get_session(session_id)
        return {"aborted": manager.abort(session_id)}

    # ------------------------------------------------------------------ #
    # Compaction
    # ------------------------------------------------------------------ #
    @app.post("/api/sessions/{session_id}/compact")
    async def compact(session_id: str, request: Request):
        try:
            record = await sessions(request).compact(session_id)
        except CompactionError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except RuntimeError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return record.to_dict()

    @app.get("/api/sessions/{session_id}/compactions")
    async def compaction_history(session_id: str, request: Request):
        records = await sessions(request).compaction_history(session_id)
        return {"compactions": [r.to_dict() for r in records]}

    @app.patch("/api/sessions/{session_id}/compaction-config")
    async def update_compaction_config(session_id: str, body: CompactionConfigUpdate, request: Request):
        fields = {
            name: value
            for name, value in body.model_dump(exclude_unset=True).items()
            if value is not None or name == "model"
        }
        try:
            config = await sessions(request).update_compaction_config(session_id, **fields)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except RuntimeError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return config.to_dict()

    # ------------------------------------------------------------------ #
    # Subagent tasks
    # ------------------------------------------------------------------ #
    @app.get("/api/tasks")
    async def list_tasks(request: Request):
        """Pending asynchronous subagents."""
        handles = sessions(request).subagents.list_tasks()
        return {"tasks": [h.to_dict() for h in handles]}

    @app.get("/api/sessions/{session_id}/tasks")
    async def list_session_tasks(session_id: str, request: Request):
        manager = sessions(request)
        await manager.get_session(session_id)
        handles = [h for h in manager.subagents.list_tasks() if h.parent_session_id == session_id]
        return {"tasks": [h.to_dict() for h in handles]}

    return app
