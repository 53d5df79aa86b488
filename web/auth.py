"""Authentication helpers for the chat API."""

from __future__ import annotations

import bcrypt
from flask import Response, g, request

from agent.config import AuthConfig


def init_auth(app, auth_config: AuthConfig) -> None:
    """Register auth handler for the Flask app."""
    if not auth_config.enabled:
        return

    @app.before_request
    def _check_auth():
        if request.method == "OPTIONS":
            return None
        caller_id = _caller_from_api_key(request, auth_config.api_keys)
        if caller_id is not None:
            g.caller_id = caller_id
            return None
        if auth_config.password_hash and _check_basic_auth(request, auth_config):
            return None
        return _unauthorized_response()


def authenticated_caller() -> str | None:
    """Caller id bound to the request's API key, if any."""
    return g.get("caller_id")


def _caller_from_api_key(req, api_keys: dict[str, str]) -> str | None:
    if not api_keys:
        return None
    header_key = req.headers.get("X-API-Key")
    if header_key and header_key in api_keys:
        return api_keys[header_key]
    auth_header = req.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        return api_keys.get(token)
    return None


def _check_basic_auth(req, auth_config: AuthConfig) -> bool:
    auth = req.authorization
    if not auth or not auth.username or not auth.password:
        return False
    if auth.username != auth_config.username:
        return False
    return _verify_password(auth.password, auth_config.password_hash)


def _verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _unauthorized_response() -> Response:
    return Response(
        "Unauthorized",
        401,
        {"WWW-Authenticate": 'Basic realm="ERP Data Chat"'},
    )
