"""Head-of-class routes.

Every route depends on `require_hoc`; every class lookup is additionally scoped to the
caller as owner, so another HOC's class answers 404 just like a missing one.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from synapse_backend.api.deps import ConfigDep, HocUser, PushClientDep, ResourceId
from synapse_backend.api.envelope import ok
from synapse_backend.auth.crud import get_user_by_email
from synapse_backend.classes.crud import (
    cancel_class,
    complete_class,
    create_class,
    enroll_student,
    list_class_students,
    list_hoc_classes,
    public_class,
    require_owned_class,
    reschedule_class,
    unenroll_student,
)
from synapse_backend.db import connect
from synapse_backend.errors import NotFoundError, ValidationError
from synapse_backend.notifications.fanout import (
    deliver_push,
    deliver_push_best_effort,
    record_class_notification,
)
from synapse_backend.util.time import format_clock_time


router = APIRouter(prefix="/api/hoc", tags=["HOC"])


def _debug(msg: str) -> None:
    print(f"[classes] {msg}")


class CreateClassRequest(BaseModel):
    class_name: str
    start_time: str
    end_time: Optional[str] = None
    subject: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    capacity: Optional[int] = None


class RescheduleRequest(BaseModel):
    start_time: str
    end_time: Optional[str] = None
    location: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class AddStudentRequest(BaseModel):
    email: str


class ClassNotifyRequest(BaseModel):
    title: Optional[str] = None
    message: str


@router.post("/classes", status_code=201)
def create(payload: CreateClassRequest, user: HocUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        cls = create_class(
            conn,
            hoc_id=int(user["user_id"]),
            class_name=payload.class_name,
            start_time=payload.start_time,
            end_time=payload.end_time,
            subject=payload.subject,
            description=payload.description,
            location=payload.location,
            capacity=payload.capacity,
        )
    _debug(f"Created class_id={cls['class_id']} hoc_id={user['user_id']}")
    return ok(cls)


@router.get("/classes")
def my_classes(
    user: HocUser,
    cfg: ConfigDep,
    status: Optional[str] = None,
    upcoming_only: bool = False,
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        classes = list_hoc_classes(conn, int(user["user_id"]), status=status, upcoming_only=upcoming_only)
    return ok(classes)


@router.get("/classes/{class_id}")
def get_one(class_id: ResourceId, user: HocUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        cls = public_class(require_owned_class(conn, class_id, int(user["user_id"])))
        cls["students"] = list_class_students(conn, class_id)
    return ok(cls)


@router.put("/classes/{class_id}/reschedule")
def reschedule(
    class_id: ResourceId,
    payload: RescheduleRequest,
    user: HocUser,
    cfg: ConfigDep,
    push: PushClientDep,
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        cls = reschedule_class(
            conn,
            class_id,
            int(user["user_id"]),
            start_time=payload.start_time,
            end_time=payload.end_time,
            location=payload.location,
        )
        where = f" in {cls['location']}" if cls.get("location") else ""
        title = f"{cls['class_name']} Class Rescheduled"
        message = f"Your {cls['class_name']} class has been moved to {format_clock_time(cls['start_time'])}{where}."
        recipients, targets = record_class_notification(
            conn, class_id, title=title, message=message, type="reschedule"
        )

    push_summary = deliver_push_best_effort(
        cfg.DB_DSN,
        push,
        targets,
        title=title,
        body=message,
        data={"type": "reschedule", "class_id": class_id},
    )
    return ok({"class": cls, "notified": recipients, "push": push_summary})


@router.put("/classes/{class_id}/cancel")
def cancel(
    class_id: ResourceId,
    payload: CancelRequest,
    user: HocUser,
    cfg: ConfigDep,
    push: PushClientDep,
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        cls = cancel_class(conn, class_id, int(user["user_id"]), reason=payload.reason)
        title = f"{cls['class_name']} Class Cancelled"
        message = f"Your {cls['class_name']} class has been cancelled"
        message += f": {cls['cancel_reason']}" if cls.get("cancel_reason") else "."
        recipients, targets = record_class_notification(
            conn, class_id, title=title, message=message, type="cancel"
        )

    push_summary = deliver_push_best_effort(
        cfg.DB_DSN,
        push,
        targets,
        title=title,
        body=message,
        data={"type": "cancel", "class_id": class_id},
    )
    return ok({"class": cls, "notified": recipients, "push": push_summary})


@router.put("/classes/{class_id}/complete")
def complete(class_id: ResourceId, user: HocUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        cls = complete_class(conn, class_id, int(user["user_id"]))
    return ok({"class": cls})


@router.get("/classes/{class_id}/students")
def students(class_id: ResourceId, user: HocUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        require_owned_class(conn, class_id, int(user["user_id"]))
        rows = list_class_students(conn, class_id)
    return ok(rows)


@router.post("/classes/{class_id}/students", status_code=201)
def add_student(class_id: ResourceId, payload: AddStudentRequest, user: HocUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        require_owned_class(conn, class_id, int(user["user_id"]))
        student = get_user_by_email(conn, payload.email)
        if student is None:
            raise NotFoundError("student_not_found")
        created = enroll_student(conn, class_id, int(student["user_id"]))
    return ok({"class_id": class_id, "student_id": int(student["user_id"]), "created": created})


@router.delete("/classes/{class_id}/students/{student_id}")
def remove_student(class_id: ResourceId, student_id: ResourceId, user: HocUser, cfg: ConfigDep) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        require_owned_class(conn, class_id, int(user["user_id"]))
        removed = unenroll_student(conn, class_id, student_id)
    if not removed:
        raise NotFoundError("enrollment_not_found")
    return ok({"class_id": class_id, "student_id": student_id, "removed": True})


@router.post("/classes/{class_id}/notify")
def notify_class(
    class_id: ResourceId,
    payload: ClassNotifyRequest,
    user: HocUser,
    cfg: ConfigDep,
    push: PushClientDep,
) -> Dict[str, Any]:
    """Broadcast a message to every student enrolled in one of the caller's classes."""
    message = (payload.message or "").strip()
    if not message:
        raise ValidationError("message_required")

    with connect(cfg.DB_DSN) as conn:
        cls = require_owned_class(conn, class_id, int(user["user_id"]))
        title = (payload.title or "").strip() or f"{cls['class_name']}: Class Notification"
        recipients, targets = record_class_notification(
            conn, class_id, title=title, message=message, type="class_notification"
        )

    # Explicit broadcast: a provider outage is the caller's error to see.
    push_summary = deliver_push(
        cfg.DB_DSN,
        push,
        targets,
        title=title,
        body=message,
        data={"type": "class_notification", "class_id": class_id},
    )
    return ok({"class_id": class_id, "notified": recipients, "push": push_summary})
