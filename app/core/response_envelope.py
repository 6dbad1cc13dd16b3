from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

_SUCCESS_CODES = {200: "ok", 201: "created", 202: "accepted"}
_DROPPED_HEADERS = {"content-length", "content-type"}


def _success_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Success"


def build_envelope(data: Any, status_code: int = 200) -> dict[str, Any]:
    return {
        "code": _SUCCESS_CODES.get(status_code, "ok"),
        "message": _success_message(status_code),
        "data": data,
        "details": {},
    }


def _is_enveloped(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and "code" in payload
        and "message" in payload
        and ("data" in payload or "details" in payload)
    )


def _rewrap(original: Response, status_code: int, content: dict[str, Any]) -> JSONResponse:
    wrapped = JSONResponse(status_code=status_code, content=content)
    for key, value in original.headers.items():
        if key.lower() not in _DROPPED_HEADERS:
            wrapped.headers[key] = value
    return wrapped


def _replay(original: Response, body: bytes) -> Response:
    return Response(
        content=body,
        status_code=original.status_code,
        headers={k: v for k, v in original.headers.items() if k.lower() != "content-length"},
    )


class ResponseEnvelopeMiddleware(BaseHTTPMiddleware):
    """Wrap successful JSON bodies as ``{code, message, data, details}``.

    Error bodies are already enveloped by the exception handlers. An empty
    204 becomes a 200 envelope with ``data=None`` so clients parse every
    success the same way.
    """

    async def dispatch(self, request, call_next) -> Response:
        response = await call_next(request)

        if not 200 <= response.status_code < 300:
            return response

        if response.status_code == 204:
            return _rewrap(response, 200, build_envelope(None, 200))

        if not response.headers.get("content-type", "").startswith("application/json"):
            return response

        # call_next always returns a streaming response.
        body = b"".join([chunk async for chunk in response.body_iterator])
        try:
            payload = json.loads(body.decode("utf-8")) if body else None
        except (UnicodeDecodeError, json.JSONDecodeError):
            return _replay(response, body)

        if _is_enveloped(payload):
            return _replay(response, body)
        return _rewrap(response, response.status_code, build_envelope(payload, response.status_code))


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware)
