from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from fastapi import Request
from uuid import uuid4

import structlog


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request_id to every HTTP request.

    - Sets request.state.request_id
    - Binds request_id, method and path into structlog context vars so every
      log line emitted while handling the request carries them
    - Adds the X-Request-ID header to the response
    """

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
        response.headers["X-Request-ID"] = request_id
        return response
