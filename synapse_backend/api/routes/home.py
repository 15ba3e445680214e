from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from synapse_backend.api.deps import ConfigDep, CurrentUser
from synapse_backend.api.envelope import ok
from synapse_backend.db import connect
from synapse_backend.errors import ValidationError
from synapse_backend.home.dashboard import build_dashboard, recent_updates
from synapse_backend.notifications.crud import NOTIFICATION_SOURCES, create_notification


router = APIRouter(prefix="/api/home", tags=["Home"])


class LogActivityRequest(BaseModel):
    title: str
    description: Optional[str] = None
    activity_type: str
    source: str


@router.get("/dashboard")
def dashboard(user: CurrentUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return ok(build_dashboard(conn, user))


@router.get("/recent-updates")
def get_recent_updates(
    user: CurrentUser,
    cfg: ConfigDep,
    limit: int = Query(20, ge=1, le=100),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        updates = recent_updates(conn, int(user["user_id"]), limit=limit)
    return ok(updates)


@router.post("/log-activity", status_code=201)
def log_activity(payload: LogActivityRequest, user: CurrentUser, cfg: ConfigDep) -> Dict[str, Any]:
    """Record an activity (settings change, HOC action) in the caller's own feed."""
    activity_type = (payload.activity_type or "").strip().lower()
    source = (payload.source or "").strip().lower()
    if not activity_type:
        raise ValidationError("activity_type_required")
    if source not in NOTIFICATION_SOURCES:
        raise ValidationError("invalid_source")

    with connect(cfg.DB_DSN) as conn:
        n = create_notification(
            conn,
            user_id=int(user["user_id"]),
            title=payload.title,
            message=payload.description or "",
            type=activity_type,
            source=source,
        )
    return ok(n)
