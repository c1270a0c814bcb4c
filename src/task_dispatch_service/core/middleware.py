"""ASGI middleware that screens JSON request bodies before routing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from task_dispatch_service.core.exceptions import error_response

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

JSON_BODY_ROUTES: frozenset[tuple[str, str]] = frozenset(
    {
        ("POST", "/tasks"),
        ("POST", "/deposits"),
        ("POST", "/work/submit"),
        ("POST", "/workers/connect"),
        ("PATCH", "/workers/profile"),
        ("POST", "/workers/email"),
        ("POST", "/workers/payout"),
        ("POST", "/workers/withdraw"),
    }
)


def _has_json_content_type(scope: Scope) -> bool:
    for name, value in scope.get("headers", []):
        if name == b"content-type":
            media_type = value.decode("latin-1").split(";", 1)[0]
            return media_type.strip().lower() == "application/json"
    return False


async def _read_body(receive: Receive, limit: int) -> bytes | None:
    """The full request body, or None as soon as it grows past ``limit``."""
    body = bytearray()
    while True:
        message = await receive()
        if message["type"] != "http.request":
            break
        body.extend(message.get("body", b""))
        if len(body) > limit:
            return None
        if not message.get("more_body", False):
            break
    return bytes(body)


def _replay(body: bytes) -> Receive:
    delivered = False

    async def receive() -> Message:
        nonlocal delivered
        if delivered:
            return {"type": "http.disconnect"}
        delivered = True
        return {"type": "http.request", "body": body, "more_body": False}

    return receive


class RequestValidationMiddleware:
    """
    Rejects unusable bodies on the routes listed in ``JSON_BODY_ROUTES``.

    A content type other than ``application/json`` gets 415 and a body over
    ``max_body_size`` bytes gets 413. Accepted bodies are buffered and
    replayed to the app unchanged. Every other request passes straight
    through.
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or (scope["method"], scope["path"]) not in JSON_BODY_ROUTES:
            await self.app(scope, receive, send)
            return

        if not _has_json_content_type(scope):
            response = error_response(
                415, "UNSUPPORTED_MEDIA_TYPE", "Content-Type must be application/json"
            )
            await response(scope, receive, send)
            return

        body = await _read_body(receive, self.max_body_size)
        if body is None:
            response = error_response(
                413, "PAYLOAD_TOO_LARGE", "Request body exceeds maximum allowed size"
            )
            await response(scope, receive, send)
            return

        await self.app(scope, _replay(body), send)
