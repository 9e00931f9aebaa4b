"""
FastAPI application factory and configuration.
"""
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatroom.core.config import Settings, get_settings
from chatroom.core.errors import ChatError
from chatroom.core.logging import setup_logging, get_logger
from chatroom.core.metrics import set_startup_time
from chatroom.api import messages, users, uploads, realtime, health, metrics
from chatroom.api.metrics import MetricsMiddleware
from chatroom.services.chat import build_chat_service
from chatroom.services.store import utcnow


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger = get_logger(__name__)
    logger.info("Starting application...")

    set_startup_time()

    yield

    logger.info(
        "Shutting down application...",
        extra={"extra_data": {"open_connections": app.state.chat.online_count()}}
    )


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """Map request-scoped chat errors to their status and stable code."""
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        headers = {"Retry-After": str(max(1, round(retry_after)))}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Schema errors are answered as 400 like every other validation failure."""
    errors = exc.errors()
    detail = "; ".join(str(error.get("msg", "Invalid request")) for error in errors) or "Invalid request"
    get_logger(__name__).warning(
        f"Validation error: {detail}",
        extra={"extra_data": {"path": request.url.path}}
    )
    return JSONResponse(status_code=400, content={"detail": detail, "code": "validation_error"})


def create_app(
    settings: Optional[Settings] = None,
    clock: Callable[[], float] = time.monotonic,
    wall_clock: Callable = utcnow,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    setup_logging(settings)
    logger = get_logger(__name__)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Public chat room with live push delivery and polling catch-up",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # One chat service per app; routes reach it through get_chat_service
    app.state.chat = build_chat_service(settings, clock=clock, wall_clock=wall_clock)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(ChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(messages.router)
    app.include_router(users.router)
    app.include_router(uploads.router)
    app.include_router(realtime.router)
    app.include_router(health.router)
    app.include_router(metrics.router)

    logger.info(
        "Application created",
        extra={
            "extra_data": {
                "app_name": settings.app_name,
                "version": settings.app_version,
                "store_backend": settings.store_backend,
                "debug": settings.debug,
            }
        }
    )

    return app


# Create the application instance
app = create_app()


def main() -> None:
    """Run the server with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "chatroom.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
