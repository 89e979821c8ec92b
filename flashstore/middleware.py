import logging
import time
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .errors import unhandled_exception_handler

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
principal_ctx_var: ContextVar[str | None] = ContextVar("principal", default=None)
logger = logging.getLogger("flashstore.request")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Correlate every shop request with one id and one ``request.completed`` line.

    The id comes from the caller's ``X-Request-ID`` or is generated, and is
    echoed back together with ``X-Response-Time``. The principal
    (``user:<id>``) is whatever the token dependency left on
    ``request.state``; anonymous catalog browsing and order placement log
    without one. Unhandled errors are turned into the ``{"error": ...}``
    500 here so that failed requests carry the same headers and log line.
    """

    def __init__(self, app, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid4())
        token = request_id_ctx_var.set(request_id)
        principal_token = principal_ctx_var.set(None)
        request.state.request_id = request_id
        start = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                response = await unhandled_exception_handler(request, exc)
            duration_ms = (time.perf_counter() - start) * 1000
            response.headers[self.header_name] = request_id
            response.headers.setdefault("X-Response-Time", f"{duration_ms:.2f}ms")
            data = {
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }
            # endpoints run in their own context, so the principal comes back via request.state
            principal = getattr(request.state, "principal", None)
            if principal:
                data["principal"] = principal
            logger.info("request.completed", extra={"extra_data": data})
        finally:
            request_id_ctx_var.reset(token)
            principal_ctx_var.reset(principal_token)
        return response
