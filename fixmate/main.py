from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional, Set

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .auth import SignedTokenVerifier, TokenVerifier, get_current_user_id
from .config import Settings, configure_logging
from .llm import ModelStreamBridge, build_bridge
from .pipeline import ChatTurnPipeline
from .schemas import ChatError, ChatRequest, HealthResponse, HistoryResponse, TurnOut
from .store import ConversationStore, build_store
from .transport import StreamingTransport

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

# pipeline tasks outlive their response when the client disconnects
_inflight: Set["asyncio.Task"] = set()


def _on_turn_done(task: "asyncio.Task") -> None:
    _inflight.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("Chat turn task crashed", exc_info=task.exception())


def error_response(settings: Settings, exc: BaseException) -> JSONResponse:
    body = ChatError(
        error="Failed to process chat request",
        details=str(exc) if settings.is_development else "Internal server error",
    )
    return JSONResponse(status_code=500, content=body.model_dump())


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ConversationStore] = None,
    bridge: Optional[ModelStreamBridge] = None,
    verifier: Optional[TokenVerifier] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    store = store or build_store(settings)
    bridge = bridge or build_bridge(settings)
    pipeline = ChatTurnPipeline(store, bridge, max_turns=settings.history_max_turns)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.ensure_indexes()
        yield
        await store.close()

    app = FastAPI(title="FixMate AI Chat", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.pipeline = pipeline
    app.state.token_verifier = verifier or SignedTokenVerifier(settings.auth_secret)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    def health():
        return HealthResponse(
            ok=True,
            backend=bridge.name,
            demo=settings.demo,
            local_only=settings.local_only,
            has_gemini_key=bool(settings.gemini_api_key),
            store=store.name,
        )

    @app.post("/api/chat/")
    async def chat(payload: ChatRequest, user_id: str = Depends(get_current_user_id)):
        if not payload.prompt.strip():
            raise HTTPException(status_code=400, detail="Prompt cannot be empty")

        transport = StreamingTransport()
        task = asyncio.create_task(pipeline.handle_turn(user_id, payload.prompt, transport))
        _inflight.add(task)
        task.add_done_callback(_on_turn_done)

        opened = asyncio.ensure_future(transport.wait_opened())
        await asyncio.wait({opened, task}, return_when=asyncio.FIRST_COMPLETED)
        if not opened.done():
            opened.cancel()
            crashed = None if task.cancelled() else task.exception()
            return error_response(settings, crashed or RuntimeError("chat turn ended early"))

        error = opened.result()
        if error is not None:
            return error_response(settings, error)

        return StreamingResponse(
            transport.body(),
            media_type="text/plain; charset=utf-8",
            headers=STREAM_HEADERS,
        )

    @app.get("/api/chat/history", response_model=HistoryResponse)
    async def chat_history(user_id: str = Depends(get_current_user_id)):
        record = await store.load(user_id)
        if record is None:
            return HistoryResponse(userId=user_id, turns=[])

        turns = sorted(record.turns, key=lambda t: t.timestamp)
        return HistoryResponse(
            userId=user_id,
            turns=[
                TurnOut(userText=t.user_text, assistantText=t.assistant_text, timestamp=t.timestamp)
                for t in turns
            ],
            updatedAt=record.updated_at,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    return app


app = create_app()


def run() -> None:
    uvicorn.run("fixmate.main:app", host="0.0.0.0", port=8000)
