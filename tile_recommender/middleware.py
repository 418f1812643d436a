import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

log = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        log.info("REQUEST_START | request_id=%s | %s %s", request_id, request.method, request.url.path)

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = int((time.perf_counter() - start) * 1000)
            log.error("REQUEST_ERROR | request_id=%s | duration_ms=%d | err=%r", request_id, duration_ms, e)
            raise

        duration_ms = int((time.perf_counter() - start) * 1000)
        log.info(
            "REQUEST_END | request_id=%s | status=%d | duration_ms=%d",
            request_id, response.status_code, duration_ms,
        )

        response.headers["x-request-id"] = request_id
        return response
