from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp
import logging

logger = logging.getLogger(__name__)

HEALTH_PATHS = ("/api/health",)


class ShutdownGateMiddleware(BaseHTTPMiddleware):
    _is_shutting_down = False

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    @classmethod
    def set_shutting_down(cls, value: bool):
        cls._is_shutting_down = value
        if value:
            logger.info("Shutdown Gate enabled: Rejecting non-health traffic.")

    async def dispatch(self, request: Request, call_next):
        if self._is_shutting_down:
            # Allow health even during shutdown
            if request.url.path.startswith(HEALTH_PATHS):
                return await call_next(request)

            # Reject everything else
            return JSONResponse(
                status_code=503,
                content={
                    "ok": False,
                    "error": {
                        "code": "SERVER_SHUTTING_DOWN",
                        "message": "Server is shutting down"
                    }
                },
                headers={"Retry-After": "5"}
            )

        return await call_next(request)
