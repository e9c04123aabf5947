import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from subsync.core.logging import request_id_var


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with a request-id, echoed back in the response headers
    and bound to log records emitted while the request is handled.
    An incoming id (default header X-Request-Id) is reused so status checks can
    be correlated with upstream logs.
    """

    def __init__(self, app, header_name: str = "X-Request-Id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = rid

        token = request_id_var.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[self.header_name] = rid
        return response
