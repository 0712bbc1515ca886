"""Response envelope helpers.

- Success: ``{"ok": true, "data": {...}}``
- Error: ``{"ok": false, "error": {"code": ..., "message": ..., "request_id": ...}}``
"""
import copy
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

from reporting_api.domain.idempotency import IdempotentResult
from reporting_api.domain.models import StoredResponse

REPLAYED_HEADER = "Idempotency-Replayed"


def ok_body(data: Any) -> Dict[str, Any]:
    return {"ok": True, "data": data}


def ok(data: Any, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ok_body(data), headers=headers)


def stored(data: Any, status_code: int = 200) -> StoredResponse:
    """Wrap an action result for the idempotency cache."""
    return StoredResponse(status_code=status_code, body=ok_body(data))


def render_idempotent(result: IdempotentResult, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    """Render a stored outcome, stamping ``replayed`` into successful bodies."""
    body = copy.deepcopy(result.response.body)
    if body.get("ok") and isinstance(body.get("data"), dict):
        body["data"]["replayed"] = result.replayed

    out_headers = dict(headers or {})
    if result.replayed:
        out_headers[REPLAYED_HEADER] = "true"
    return JSONResponse(status_code=result.response.status_code, content=body, headers=out_headers)
