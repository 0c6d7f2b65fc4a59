from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

# Lender callbacks answer in the shape the sender expects.
ENVELOPE_EXEMPT_PREFIXES = ("/webhooks",)


def _success_code(status_code: int) -> str:
    mapping = {
        200: "ok",
        201: "created",
        202: "accepted",
    }
    return mapping.get(status_code, "ok")


def _success_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Success"


def _build_success_envelope(data: Any, status_code: int) -> dict[str, Any]:
    return {
        "code": _success_code(status_code),
        "message": _success_message(status_code),
        "data": data,
        "details": {},
    }


def _is_enveloped(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    if "code" in payload and "message" in payload:
        return "data" in payload or "details" in payload
    return False


def _normalize_envelope(payload: dict[str, Any], status_code: int) -> dict[str, Any]:
    normalized = dict(payload)
    normalized.setdefault("code", _success_code(status_code))
    normalized.setdefault("message", _success_message(status_code))
    normalized.setdefault("data", None)
    normalized.setdefault("details", {})
    return normalized


def _copy_headers(source: Response, target: Response) -> Response:
    for key, value in source.headers.items():
        if key.lower() in {"content-length", "content-type"}:
            continue
        target.headers[key] = value
    return target


class ResponseEnvelopeMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next) -> Response:
        response = await call_next(request)

        if request.url.path.startswith(ENVELOPE_EXEMPT_PREFIXES):
            return response

        if response.status_code < 200 or response.status_code >= 300:
            return response

        # Convert 204 to a 200 success envelope for frontend consistency
        if response.status_code == 204:
            return _copy_headers(response, JSONResponse(status_code=200, content=_build_success_envelope(None, 200)))

        if "application/json" not in response.headers.get("content-type", ""):
            return response

        # call_next hands back a streaming response; drain it to inspect the payload.
        raw_body = b"".join([chunk async for chunk in response.body_iterator])
        try:
            payload = json.loads(raw_body) if raw_body else None
        except ValueError:
            return _copy_headers(
                response,
                Response(content=raw_body, status_code=response.status_code, media_type="application/json"),
            )

        if _is_enveloped(payload):
            content = _normalize_envelope(payload, response.status_code)
        else:
            content = _build_success_envelope(payload, response.status_code)
        return _copy_headers(response, JSONResponse(status_code=response.status_code, content=content))


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware)
