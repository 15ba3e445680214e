from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from synapse_backend.config import Config
from synapse_backend.db import connect
from synapse_backend.errors import (
    ConfigurationError,
    ForbiddenError,
    InvalidToken,
    MissingToken,
    TokenError,
)

from .crud import get_user_by_id, public_user
from .security import TokenService


_bearer = HTTPBearer(auto_error=False)


def _debug(msg: str) -> None:
    print(f"[auth] {msg}")


def get_config(request: Request) -> Config:
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise ConfigurationError("server_config_missing")
    return cfg


def get_token_service(request: Request) -> TokenService:
    tokens = getattr(request.app.state, "tokens", None)
    if tokens is None:
        raise ConfigurationError("token_service_missing")
    return tokens


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Dict[str, Any]:
    """Authenticate a request from `Authorization: Bearer <jwt>`.

    The user row is re-read on every request, so role changes and deleted accounts take
    effect immediately. Every verification failure produces the same 401 body.
    The resolved identity is also attached to `request.state.user`.
    """

    cfg = get_config(request)
    tokens = get_token_service(request)

    token = credentials.credentials if credentials is not None else None
    if not token:
        raise MissingToken()

    try:
        claims = tokens.verify(token)
    except TokenError as e:
        _debug(f"token rejected: {type(e).__name__}")
        raise InvalidToken()

    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, int(claims["user_id"]))
    if row is None:
        _debug(f"token for unknown user_id={claims['user_id']}")
        raise InvalidToken()

    user = public_user(row)
    request.state.user = user
    request.state.user_id = int(user["user_id"])
    return user


def require_hoc(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    # Evaluated on the freshly loaded row, never on request input.
    if not user.get("is_hoc"):
        raise ForbiddenError("hoc_required")
    return user
