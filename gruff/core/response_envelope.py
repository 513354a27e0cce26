"""Wrap successful JSON responses in the ``{code, message, data, details}`` envelope.

Error responses are already enveloped by the exception handlers in
``gruff.core.errors``; this middleware only touches 2xx responses.
"""

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


def build_envelope(data: Any, status_code: int) -> dict[str, Any]:
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


async def _read_body(response: Response) -> bytes:
    body = getattr(response, "body", None)
    if body is not None:
        return body
    chunks = [chunk async for chunk in response.body_iterator]
    return b"".join(c if isinstance(c, bytes) else c.encode("utf-8") for c in chunks)


class ResponseEnvelopeMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next) -> Response:
        response = await call_next(request)

        if not 200 <= response.status_code < 300:
            return response

        # 204 carries no body; clients get a uniform 200 envelope instead.
        if response.status_code == 204:
            return _rewrap(response, 200, build_envelope(None, 200))

        if "application/json" not in response.headers.get("content-type", ""):
            return response

        raw_body = await _read_body(response)
        try:
            payload = json.loads(raw_body) if raw_body else None
        except ValueError:
            return Response(
                content=raw_body,
                status_code=response.status_code,
                headers=dict(response.headers),
            )

        if _is_enveloped(payload):
            return _rewrap(response, response.status_code, payload)
        return _rewrap(response, response.status_code, build_envelope(payload, response.status_code))


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware)
