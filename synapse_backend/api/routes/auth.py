from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from synapse_backend.api.deps import ConfigDep, CurrentUser, TokenServiceDep
from synapse_backend.api.envelope import ok
from synapse_backend.auth.crud import (
    create_user,
    get_user_by_id,
    public_user,
    set_hoc,
    set_notification_preference,
    touch_last_login,
    update_profile,
    verify_user_credentials,
)
from synapse_backend.auth.security import TokenService
from synapse_backend.db import connect
from synapse_backend.errors import AuthError, NotFoundError, ValidationError
from synapse_backend.notifications.crud import create_notification
from synapse_backend.ratelimit import limit_auth_requests


router = APIRouter(prefix="/api/auth", tags=["Auth"])


def _debug(msg: str) -> None:
    print(f"[auth] {msg}")


class SignupRequest(BaseModel):
    full_name: str
    email: str
    password: str
    department: str
    academic_year: str


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = None
    department: Optional[str] = None
    academic_year: Optional[str] = None


class NotificationPreferenceRequest(BaseModel):
    enabled: bool


def _session(tokens: TokenService, user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "user": user,
        "token": tokens.issue(int(user["user_id"])),
        "token_type": "bearer",
        "expires_in": tokens.expires_minutes * 60,
    }


@router.post("/signup", status_code=201, dependencies=[Depends(limit_auth_requests)])
def signup(payload: SignupRequest, cfg: ConfigDep, tokens: TokenServiceDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        user = create_user(
            conn,
            email=payload.email,
            password=payload.password,
            full_name=payload.full_name,
            department=payload.department,
            academic_year=payload.academic_year,
            rounds=cfg.AUTH_PASSWORD_ROUNDS,
        )
        create_notification(
            conn,
            user_id=int(user["user_id"]),
            title="Welcome to Synapse!",
            message="Your student companion app is ready to use.",
            type="info",
            source="system",
        )
    _debug(f"Registered user_id={user['user_id']}")
    return ok(_session(tokens, user))


@router.post("/login", dependencies=[Depends(limit_auth_requests)])
def login(payload: LoginRequest, cfg: ConfigDep, tokens: TokenServiceDep) -> Dict[str, Any]:
    if not (payload.email or "").strip() or not payload.password:
        raise ValidationError("email_and_password_required")

    with connect(cfg.DB_DSN) as conn:
        row = verify_user_credentials(conn, payload.email, payload.password, rounds=cfg.AUTH_PASSWORD_ROUNDS)
        if row is None:
            # Same response whether the email is unknown or the password is wrong.
            raise AuthError("invalid_credentials")
        touch_last_login(conn, int(row["user_id"]))
        user = public_user(get_user_by_id(conn, int(row["user_id"])))

    return ok(_session(tokens, user))


@router.get("/me")
def me(user: CurrentUser) -> Dict[str, Any]:
    return ok({"user": user})


@router.put("/profile")
def update_my_profile(payload: ProfileUpdateRequest, user: CurrentUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        updated = update_profile(
            conn,
            int(user["user_id"]),
            full_name=payload.full_name,
            department=payload.department,
            academic_year=payload.academic_year,
        )
    return ok({"user": updated})


@router.put("/notification-preference")
def update_notification_preference(
    payload: NotificationPreferenceRequest,
    user: CurrentUser,
    cfg: ConfigDep,
) -> Dict[str, Any]:
    user_id = int(user["user_id"])
    with connect(cfg.DB_DSN) as conn:
        set_notification_preference(conn, user_id, payload.enabled)
        create_notification(
            conn,
            user_id=user_id,
            title="Notifications Enabled" if payload.enabled else "Notifications Disabled",
            message=(
                "Push notifications have been activated in your settings."
                if payload.enabled
                else "Push notifications have been turned off in your settings."
            ),
            type="settings",
            source="settings",
        )
        updated = public_user(get_user_by_id(conn, user_id))
    return ok({"user": updated})


@router.post("/force-enable-hoc")
def force_enable_hoc(user: CurrentUser, cfg: ConfigDep) -> Dict[str, Any]:
    """Grant the caller the head-of-class role (development escape hatch)."""
    if not cfg.AUTH_ALLOW_FORCE_HOC:
        raise NotFoundError("resource_not_found: /api/auth/force-enable-hoc")

    user_id = int(user["user_id"])
    with connect(cfg.DB_DSN) as conn:
        set_hoc(conn, user_id, True)
        updated = public_user(get_user_by_id(conn, user_id))
    _debug(f"force-enable-hoc used by user_id={user_id}")
    return ok({"user": updated})
