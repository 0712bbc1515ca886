import hashlib
import logging
from typing import Dict

from starlette.requests import Request

from reporting_api.core.rate_limiter import RateLimiter
from reporting_api.domain.models import ActionClass, SubjectKey
from reporting_api.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


def client_ip_subject(request: Request, action_class: ActionClass) -> SubjectKey:
    """Subject for unauthenticated actions: the hashed client IP."""
    ip = request.client.host if request.client else "unknown"
    ip_hash = hashlib.sha256(ip.encode()).hexdigest()
    return SubjectKey(f"ip:{ip_hash}", action_class)


async def enforce_rate_limit(limiter: RateLimiter, subject: SubjectKey) -> Dict[str, str]:
    """Count the request and return the quota headers, or raise ``RateLimitExceeded``.

    Runs before any side effect of the action.
    """
    result = await limiter.check(subject)
    headers = result.headers()

    if not result.allowed:
        headers["Retry-After"] = str(max(1, result.reset_at - int(limiter.clock())))
        logger.info(f"Rate limit exceeded for {subject.action_class.value} ({subject.client_id})")
        raise RateLimitExceeded(headers=headers)

    return headers
