"""Shared request validation helpers for routers."""

from __future__ import annotations

import hmac
import json
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from task_dispatch_service.core.exceptions import AuthError, InvalidRequestError, ServiceError
from task_dispatch_service.core.state import get_app_state
from task_dispatch_service.services.worker_registry import hash_token

if TYPE_CHECKING:
    from fastapi import Request

ModelT = TypeVar("ModelT", bound=BaseModel)

BEARER_PREFIX = "Bearer "


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError("INVALID_JSON", "Request body is not valid JSON", 400, {}) from exc

    if not isinstance(data, dict):
        raise ServiceError("INVALID_JSON", "Request body must be a JSON object", 400, {})

    return data


def parse_model(model: type[ModelT], data: dict[str, Any]) -> ModelT:
    """Validate a parsed body against a request model."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        first = errors[0] if errors else {"field": "", "message": "Invalid request"}
        message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
        raise InvalidRequestError(message, {"errors": errors}) from exc


async def read_model(request: Request, model: type[ModelT]) -> ModelT:
    """Read, parse and validate the request body."""
    body = await request.body()
    return parse_model(model, parse_json_body(body))


def extract_bearer_token(authorization: str | None) -> str:
    """Extract a token from an ``Authorization: Bearer`` header."""
    if authorization is None:
        raise AuthError("Missing Authorization header")
    if not authorization.startswith(BEARER_PREFIX):
        raise AuthError("Authorization header must use Bearer scheme")
    token = authorization[len(BEARER_PREFIX) :].strip()
    if not token:
        raise AuthError("Bearer token must not be empty")
    return token


def client_ip(request: Request) -> str:
    """Caller address, preferring the first ``X-Forwarded-For`` hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def require_buyer_id(request: Request) -> str:
    """Buyer identity injected by the gateway as ``X-User-Id``."""
    buyer_id = request.headers.get("x-user-id", "").strip()
    if not buyer_id:
        raise AuthError("Missing X-User-Id header")
    return buyer_id


def enforce_ip_limit(request: Request, operation: str) -> None:
    state = get_app_state()
    if state.rate_limits is None:
        msg = "Rate limiter not initialized"
        raise RuntimeError(msg)
    state.rate_limits.enforce_ip(operation, client_ip(request))


def authenticate_worker(request: Request, operation: str | None = None) -> dict[str, Any]:
    """
    Resolve the calling worker from its bearer token.

    When ``operation`` is given the token is rate limited before lookup.
    Blocking: call through ``run_in_threadpool``.
    """
    token = extract_bearer_token(request.headers.get("authorization"))

    state = get_app_state()
    if state.worker_registry is None or state.rate_limits is None:
        msg = "Worker registry not initialized"
        raise RuntimeError(msg)

    if operation is not None:
        state.rate_limits.enforce_worker(operation, hash_token(token))
    return state.worker_registry.authenticate(token)


def require_cron_secret(request: Request, *, required: bool = False) -> None:
    """
    Check ``Authorization: Bearer <cron_secret>``.

    With no secret configured the check passes, unless ``required`` is set,
    in which case every call is rejected.
    """
    secret = get_app_state().cron_secret
    if not secret:
        if required:
            raise AuthError("Platform secret is not configured")
        return
    token = extract_bearer_token(request.headers.get("authorization"))
    if not hmac.compare_digest(token, secret):
        raise AuthError("Invalid cron secret")
