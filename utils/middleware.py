import uuid
from collections.abc import Awaitable, Callable

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse, Response

from core.exceptions import QuizEngineError
from core.logger import logger


def error_envelope(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {"code": code, "message": message},
            "request_id": getattr(request.state, "request_id", None),
        },
    )


async def request_context_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)

    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled exception")
        response = error_envelope(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "internal_error",
            "An unexpected error occurred",
        )
    response.headers["X-Request-ID"] = request_id
    return response


async def quiz_engine_error_handler(request: Request, exc: QuizEngineError) -> JSONResponse:
    logger.info("Request rejected", code=exc.code, status=exc.status_code)
    return error_envelope(request, exc.status_code, exc.code, exc.detail)
