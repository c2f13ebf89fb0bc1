from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
import logging
import time
import uuid

from hms.util.logs import reset_request_id, set_request_id

log = logging.getLogger(__name__)

class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = set_request_id(req_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            log.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code,
                     (time.perf_counter() - started) * 1000)
        finally:
            reset_request_id(token)
        response.headers["X-Request-ID"] = req_id
        return response
