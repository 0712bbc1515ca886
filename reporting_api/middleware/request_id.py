from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
import re
import uuid

REQUEST_ID_HEADER = "X-Request-ID"
# Accept caller-supplied ids only if they are short and printable
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Ensure request ID
        incoming = request.headers.get(REQUEST_ID_HEADER)
        req_id = incoming if incoming and _VALID_REQUEST_ID.match(incoming) else str(uuid.uuid4())
        request.state.request_id = req_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = req_id
        return response
