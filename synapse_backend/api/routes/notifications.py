from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Query
from pydantic import BaseModel

from synapse_backend.api.deps import ConfigDep, CurrentUser, ResourceId
from synapse_backend.api.envelope import ok
from synapse_backend.db import connect
from synapse_backend.errors import NotFoundError
from synapse_backend.notifications.crud import (
    delete_notification,
    list_notifications,
    mark_all_read,
    mark_read,
    register_push_token,
    remove_push_token,
    unread_count,
)


router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


class RegisterTokenRequest(BaseModel):
    push_token: str


@router.get("")
def list_mine(
    user: CurrentUser,
    cfg: ConfigDep,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    unread_only: bool = False,
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        rows = list_notifications(conn, int(user["user_id"]), limit=limit, offset=offset, unread_only=unread_only)
    return ok(rows)


# Static paths are registered before "/{notification_id}" so they are not parsed as ids.
@router.post("/register-token")
def register_token(payload: RegisterTokenRequest, user: CurrentUser, cfg: ConfigDep) -> Dict[str, Any]:
    # The owner comes from the bearer token, never from the request body.
    with connect(cfg.DB_DSN) as conn:
        register_push_token(conn, int(user["user_id"]), payload.push_token)
    return ok({"registered": True})


@router.delete("/register-token")
def unregister_token(user: CurrentUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        removed = remove_push_token(conn, int(user["user_id"]))
    return ok({"removed": removed})


@router.get("/unread-count")
def get_unread_count(user: CurrentUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        n = unread_count(conn, int(user["user_id"]))
    return ok({"unread_count": n})


@router.put("/read-all")
def read_all(user: CurrentUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        n = mark_all_read(conn, int(user["user_id"]))
    return ok({"updated": n})


@router.put("/{notification_id}/read")
def read_one(notification_id: ResourceId, user: CurrentUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        found = mark_read(conn, int(user["user_id"]), notification_id)
    if not found:
        raise NotFoundError("notification_not_found")
    return ok({"notification_id": notification_id, "is_read": True})


@router.delete("/{notification_id}")
def delete_one(notification_id: ResourceId, user: CurrentUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        found = delete_notification(conn, int(user["user_id"]), notification_id)
    if not found:
        raise NotFoundError("notification_not_found")
    return ok({"notification_id": notification_id, "deleted": True})


