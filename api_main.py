"""
HabitCoach Router – API

This module exposes a FastAPI app that wraps the intent router:
one user message in, one executor command (or one clarifying question) out.

File: api_main.py
"""

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Optional, Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from config import get_settings
from errors import ClassificationUnavailableError, InvalidRequestError
from graph_app import route
from schemas import RouterRequest, RouterResponse

# --------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------

settings = get_settings()

logger = logging.getLogger("habit_router_api")
logger.setLevel(settings.log_level.upper())

if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logging.getLogger("habit_router").addHandler(handler)
    logging.getLogger("habit_router").setLevel("DEBUG" if settings.debug else settings.log_level.upper())

# --------------------------------------------------------------------
# API Models (Stable Contracts)
# --------------------------------------------------------------------


class ErrorResponse(BaseModel):
    error: str
    details: Optional[Any] = None
    request_id: Optional[str] = None


class RouterStatus(BaseModel):
    """
    Whether /route can answer right now.

    With ROUTER_BACKEND=rules it always can; the LLM backend needs a key.
    """
    ready: bool
    backend: str
    model: Optional[str] = None
    reason: Optional[str] = None
    updatedAt: str


# --------------------------------------------------------------------
# FastAPI App
# --------------------------------------------------------------------

app = FastAPI(
    title="HabitCoach Router API",
    description=(
        "Routes a free-text message to exactly one HABITS, SCHEDULE or TASKS "
        "command, or asks one clarifying question."
    ),
    version="1.0.0",
)

# CORS – allow all for now; tighten in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --------------------------------------------------------------------
# Middleware
# --------------------------------------------------------------------


@app.middleware("http")
async def add_request_id_and_log(request: Request, call_next):
    """Attach a request ID to each request and log basic info."""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    logger.info(f"[{request_id}] {request.method} {request.url.path}")

    try:
        response = await call_next(request)
    except Exception as exc:  # global safety net
        logger.exception(f"[{request_id}] Unhandled error: {exc}")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal server error",
                details="Unexpected error",
                request_id=request_id,
            ).model_dump(),
        )

    response.headers["X-Request-ID"] = request_id
    return response


# --------------------------------------------------------------------
# Exception Handlers
# --------------------------------------------------------------------


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    request_id = getattr(request.state, "request_id", None)
    logger.warning(f"[{request_id}] HTTPException {exc.status_code}: {exc.detail}")

    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content = {**detail, "request_id": request_id}
    else:
        content = ErrorResponse(
            error=str(detail),
            details=None,
            request_id=request_id,
        ).model_dump()

    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    request_id = getattr(request.state, "request_id", None)
    logger.warning(f"[{request_id}] ValidationError: {exc.errors()}")

    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error="Validation error",
            details=exc.errors(include_url=False, include_context=False),
            request_id=request_id,
        ).model_dump(),
    )


@app.exception_handler(InvalidRequestError)
async def invalid_request_handler(request: Request, exc: InvalidRequestError):
    request_id = getattr(request.state, "request_id", None)
    logger.warning(f"[{request_id}] InvalidRequestError: {exc}")

    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="Invalid request",
            details=str(exc),
            request_id=request_id,
        ).model_dump(),
    )


@app.exception_handler(ClassificationUnavailableError)
async def classification_unavailable_handler(request: Request, exc: ClassificationUnavailableError):
    request_id = getattr(request.state, "request_id", None)
    logger.warning(f"[{request_id}] ClassificationUnavailableError: {exc}")

    return JSONResponse(
        status_code=503,
        content=ErrorResponse(
            error="Classification unavailable",
            details=str(exc),
            request_id=request_id,
        ).model_dump(),
    )


# --------------------------------------------------------------------
# Utility Helpers
# --------------------------------------------------------------------


def router_status() -> RouterStatus:
    """Mirror of the agent status the frontend polls before enabling chat."""
    current = get_settings()
    uses_llm = current.router_backend == "llm"
    ready = not uses_llm or bool(current.openai_api_key)

    return RouterStatus(
        ready=ready,
        backend=current.router_backend,
        model=current.openai_model_json if uses_llm else None,
        reason=None if ready else "Set the OPENAI_API_KEY environment variable.",
        updatedAt=datetime.now(timezone.utc).isoformat(),
    )


# --------------------------------------------------------------------
# Basic & Health
# --------------------------------------------------------------------


@app.get("/", tags=["meta"])
def root():
    return {
        "message": "HabitCoach Router API is running.",
        "docs_url": "/docs",
        "environment": settings.env,
        "debug": settings.debug,
    }


@app.get("/health", tags=["meta"])
def health_check():
    return {
        "status": "ok",
        "router_backend": settings.router_backend,
        "openai_key_configured": bool(settings.openai_api_key),
        "environment": settings.env,
        "debug": settings.debug,
    }


@app.get(
    "/router/status",
    response_model=RouterStatus,
    tags=["router"],
    summary="Is the router ready to classify?",
)
def get_router_status():
    return router_status()


# --------------------------------------------------------------------
# Routing
# --------------------------------------------------------------------


@app.post(
    "/route",
    response_model=RouterResponse,
    tags=["router"],
    summary="Route one user message to one executor command",
)
def route_message(req: RouterRequest, request: Request):
    """
    Frontend flow:
    - User types into the assistant panel on HABITS, SCHEDULE or TASKS.
    - Call /route with currentMenu, userMessage, nowISO and whatever
      recentContext / domainState you have.
    - If needs_clarification is true, show `question` and send the answer
      back as the next userMessage (with updated recentContext).
    - Otherwise hand {intent, fields} to the executor for `domain`.

    InvalidRequestError -> 400, ClassificationUnavailableError -> 503.
    Retrying is up to the caller.
    """
    request_id = getattr(request.state, "request_id", None)

    result = route(req)

    logger.info(
        f"[{request_id}] routed {req.currentMenu.value} -> "
        f"{result.domain.value}/{result.intent} clarification={result.needs_clarification}"
    )
    return result


# --------------------------------------------------------------------
# Local dev runner
# --------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api_main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=True,
    )
