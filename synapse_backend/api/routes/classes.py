from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter

from synapse_backend.api.deps import ConfigDep, CurrentUser, ResourceId
from synapse_backend.api.envelope import ok
from synapse_backend.classes.crud import enroll_student, list_student_classes, unenroll_student
from synapse_backend.db import connect
from synapse_backend.errors import NotFoundError


router = APIRouter(prefix="/api/classes", tags=["Classes"])


@router.get("")
def my_enrolled_classes(user: CurrentUser, cfg: ConfigDep, upcoming_only: bool = False) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        classes = list_student_classes(conn, int(user["user_id"]), upcoming_only=upcoming_only)
    return ok(classes)


@router.post("/{class_id}/enroll", status_code=201)
def enroll(class_id: ResourceId, user: CurrentUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        created = enroll_student(conn, class_id, int(user["user_id"]))
    return ok({"class_id": class_id, "enrolled": True, "created": created})


@router.delete("/{class_id}/enroll")
def leave(class_id: ResourceId, user: CurrentUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        removed = unenroll_student(conn, class_id, int(user["user_id"]))
    if not removed:
        raise NotFoundError("enrollment_not_found")
    return ok({"class_id": class_id, "enrolled": False})
