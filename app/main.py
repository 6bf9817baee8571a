from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.concurrency import run_in_threadpool

from chat.core.store import SessionStore
from chat.errors import ConfigError, InvalidRequestBody, UpstreamError
from chat.gemini import build_session_factory
from config.settings import Settings, get_settings


logging.basicConfig(level=get_settings().log_level, format="[%(asctime)s] %(levelname)s - %(message)s")
logger = logging.getLogger("gemini_gateway")


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(..., alias="userId", min_length=1, description="Caller's user identifier")
    message: str = Field(..., description="User's latest message")


class ChatResponse(BaseModel):
    response: str


def build_session_store(settings: Settings) -> SessionStore:
    return SessionStore(
        build_session_factory(settings),
        max_sessions=settings.session_max_count,
        idle_timeout=settings.session_idle_timeout,
    )


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def create_app(
    store: Optional[SessionStore] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.sessions is None:
            try:
                app.state.sessions = build_session_store(settings)
            except ConfigError as exc:
                logger.critical("Cannot start gateway: %s", exc)
                raise
        logger.info(
            "Gateway ready: model=%s max_sessions=%s idle_timeout=%ss",
            settings.gemini_model,
            settings.session_max_count,
            settings.session_idle_timeout,
        )
        yield
        dropped = app.state.sessions.clear()
        logger.info("Gateway stopped: %s sessions dropped", dropped)

    app = FastAPI(title="Gemini Chat Gateway", version="1.0.0", lifespan=lifespan)
    app.state.sessions = store

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization"],
        )

    @app.exception_handler(InvalidRequestBody)
    async def invalid_body_handler(request: Request, exc: InvalidRequestBody) -> PlainTextResponse:
        return PlainTextResponse(exc.detail, status_code=400)

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError) -> PlainTextResponse:
        return PlainTextResponse(f"Gemini error: {exc}", status_code=500)

    @app.post("/chat", response_model=ChatResponse)
    async def chat(request: Request, sessions: SessionStore = Depends(get_session_store)) -> ChatResponse:
        body = await request.body()
        try:
            req = ChatRequest.model_validate_json(body)
        except ValidationError as exc:
            logger.info("Rejected chat request: %s validation errors", exc.error_count())
            raise InvalidRequestBody() from exc

        logger.info("Incoming chat: user_id=%s message_len=%s", req.user_id, len(req.message))
        try:
            session = await run_in_threadpool(sessions.get_or_create, req.user_id)
            answer = await run_in_threadpool(session.send_message, req.message)
        except UpstreamError as exc:
            logger.warning("Gemini call failed for user_id=%s: %s", req.user_id, exc)
            raise

        logger.info("Gemini replied to user_id=%s with %s chars", req.user_id, len(answer))
        logger.debug("Reply: %s", answer)
        return ChatResponse(response=answer)

    @app.get("/health")
    def health(sessions: SessionStore = Depends(get_session_store)) -> Dict[str, Any]:
        return {"status": "ok", "sessions": len(sessions)}

    @app.delete("/sessions/{user_id}")
    def delete_session(user_id: str, sessions: SessionStore = Depends(get_session_store)) -> Dict[str, str]:
        if not sessions.remove(user_id):
            raise HTTPException(status_code=404, detail="Session not found")
        return {"message": f"Session for {user_id} deleted"}

    @app.delete("/sessions")
    def clear_sessions(sessions: SessionStore = Depends(get_session_store)) -> Dict[str, Any]:
        count = sessions.clear()
        return {"message": f"All {count} sessions cleared", "count": count}

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    if not settings.gemini_api_key:
        logger.critical("GEMINI_API_KEY environment variable not set")
        raise SystemExit(1)

    logger.info("Server running on http://%s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
