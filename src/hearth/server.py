"""HTTP surface: one JSON endpoint, one streaming endpoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .dialogue import DialogueOrchestrator, parse_stream_request
from .dialogue.prompt import FALLBACK_REPLY
from .errors import StoreUnavailable, ValidationError

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"ok": False, "reply": "", "error": message}, status_code=status)


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as e:
        raise ValidationError("Invalid JSON body.") from e


def create_app(
    orchestrator: DialogueOrchestrator,
    *,
    allow_origins: list[str] | None = None,
) -> FastAPI:
    """Build the FastAPI app around a constructed orchestrator."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await orchestrator.aclose()
        await orchestrator.memory.store.close()

    app = FastAPI(title="hearth", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins or ["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(StoreUnavailable)
    async def _store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
        logger.error(f"State store unavailable: {exc}")
        return JSONResponse(
            {"ok": False, "reply": FALLBACK_REPLY, "error": "state store unavailable"},
            status_code=503,
        )

    @app.get("/api/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.post("/api/chat")
    async def chat(request: Request) -> JSONResponse:
        reply = await orchestrator.handle(await _json_body(request))
        status = 200 if reply.ok else 503
        return JSONResponse(reply.to_dict(), status_code=status)

    @app.post("/api/chat/stream")
    async def chat_stream(request: Request) -> StreamingResponse:
        say = parse_stream_request(await _json_body(request))
        frames = await orchestrator.open_stream(say)
        return StreamingResponse(
            frames, media_type="text/event-stream; charset=utf-8", headers=SSE_HEADERS
        )

    return app
