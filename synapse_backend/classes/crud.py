"""Classes and enrollments.

Every mutation is scoped by `hoc_id` in the WHERE clause, so a class that exists but is
owned by someone else looks exactly like a class that does not exist (404).

Status rules:

    scheduled   -> rescheduled | cancelled | completed
    rescheduled -> rescheduled | cancelled | completed
    cancelled, completed: absorbing

A transition out of an absorbing status raises InvalidTransition (409) and changes nothing.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional

from synapse_backend.db import execute_returning
from synapse_backend.errors import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from synapse_backend.util.normalization import clean_text
from synapse_backend.util.time import parse_iso, to_iso, utcnow_iso


SCHEDULED = "scheduled"
RESCHEDULED = "rescheduled"
CANCELLED = "cancelled"
COMPLETED = "completed"

CLASS_STATUSES = (SCHEDULED, RESCHEDULED, CANCELLED, COMPLETED)
TERMINAL_STATUSES: FrozenSet[str] = frozenset({CANCELLED, COMPLETED})

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    SCHEDULED: frozenset({RESCHEDULED, CANCELLED, COMPLETED}),
    RESCHEDULED: frozenset({RESCHEDULED, CANCELLED, COMPLETED}),
    CANCELLED: frozenset(),
    COMPLETED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def source_statuses(target: str) -> List[str]:
    return sorted(s for s, targets in ALLOWED_TRANSITIONS.items() if target in targets)


def public_class(row: Any) -> Dict[str, Any]:
    return dict(row)


def _parse_time(value: str | None, field: str) -> datetime:
    """Parse a client timestamp at storage precision (whole seconds, UTC).

    Ordering checks run on this value, so they agree with what ends up in the row.
    """
    if not value or not str(value).strip():
        raise ValidationError(f"{field}_required")
    try:
        return parse_iso(str(value)).replace(microsecond=0)
    except ValueError:
        raise ValidationError(f"{field}_invalid")


def _check_capacity(capacity: Optional[int]) -> Optional[int]:
    if capacity is None:
        return None
    if int(capacity) < 1:
        raise ValidationError("capacity_must_be_positive")
    return int(capacity)


def create_class(
    conn: Any,
    *,
    hoc_id: int,
    class_name: str,
    start_time: str,
    end_time: Optional[str] = None,
    subject: Optional[str] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
    capacity: Optional[int] = None,
) -> Dict[str, Any]:
    name = clean_text(class_name)
    if not name:
        raise ValidationError("class_name_required")

    start = _parse_time(start_time, "start_time")
    end_iso: Optional[str] = None
    if end_time:
        end = _parse_time(end_time, "end_time")
        if end <= start:
            raise ValidationError("end_time_before_start_time")
        end_iso = to_iso(end)

    now = utcnow_iso()
    row = execute_returning(
        conn,
        """
        INSERT INTO classes (hoc_id, class_name, subject, description, start_time, end_time,
                             location, capacity, status, created_at, updated_at)
        VALUES (?,?,?,?,?,?,?,?,?,?,?)
        RETURNING *
        """,
        (
            int(hoc_id),
            name,
            clean_text(subject) or None,
            (description or "").strip() or None,
            to_iso(start),
            end_iso,
            clean_text(location) or None,
            _check_capacity(capacity),
            SCHEDULED,
            now,
            now,
        ),
    )
    return public_class(row)


def get_owned_class(conn: Any, class_id: int, hoc_id: int) -> Optional[Any]:
    return conn.execute(
        "SELECT * FROM classes WHERE class_id=? AND hoc_id=?",
        (int(class_id), int(hoc_id)),
    ).fetchone()


def require_owned_class(conn: Any, class_id: int, hoc_id: int) -> Any:
    row = get_owned_class(conn, class_id, hoc_id)
    if row is None:
        raise NotFoundError("class_not_found")
    return row


def get_class(conn: Any, class_id: int) -> Optional[Any]:
    return conn.execute("SELECT * FROM classes WHERE class_id=?", (int(class_id),)).fetchone()


def list_hoc_classes(
    conn: Any,
    hoc_id: int,
    *,
    status: Optional[str] = None,
    upcoming_only: bool = False,
) -> List[Dict[str, Any]]:
    sql = """
    SELECT c.*,
           (SELECT COUNT(*) FROM enrollments e WHERE e.class_id = c.class_id) AS enrolled_count
    FROM classes c
    WHERE c.hoc_id=?
    """
    params: List[Any] = [int(hoc_id)]
    if status is not None:
        if status not in CLASS_STATUSES:
            raise ValidationError("invalid_status")
        sql += " AND c.status=?"
        params.append(status)
    if upcoming_only:
        sql += " AND c.start_time >= ?"
        params.append(utcnow_iso())
    sql += " ORDER BY c.start_time ASC, c.class_id ASC"
    rows = conn.execute(sql, tuple(params)).fetchall()
    return [public_class(r) for r in rows]


def _guarded_update(
    conn: Any,
    class_id: int,
    hoc_id: int,
    target: str,
    sets: Dict[str, Any],
) -> Dict[str, Any]:
    """Single-statement status change guarded by ownership and allowed source statuses."""
    sources = source_statuses(target)
    fields = [("status", target)] + list(sets.items()) + [("updated_at", utcnow_iso())]
    set_sql = ", ".join([f"{k}=?" for k, _ in fields])
    in_sql = ",".join(["?"] * len(sources))
    cur = conn.execute(
        f"""
        UPDATE classes SET {set_sql}
        WHERE class_id=? AND hoc_id=? AND status IN ({in_sql})
        """,
        (*[v for _, v in fields], int(class_id), int(hoc_id), *sources),
    )
    if cur.rowcount == 0:
        row = get_owned_class(conn, class_id, hoc_id)
        if row is None:
            raise NotFoundError("class_not_found")
        raise InvalidTransition(str(row["status"]), target)

    row = get_owned_class(conn, class_id, hoc_id)
    assert row is not None
    return public_class(row)


def reschedule_class(
    conn: Any,
    class_id: int,
    hoc_id: int,
    *,
    start_time: str,
    end_time: Optional[str] = None,
    location: Optional[str] = None,
) -> Dict[str, Any]:
    """Move a class. Without an explicit end_time the previous duration is kept."""
    current = require_owned_class(conn, class_id, hoc_id)
    if not can_transition(str(current["status"]), RESCHEDULED):
        raise InvalidTransition(str(current["status"]), RESCHEDULED)

    start = _parse_time(start_time, "start_time")
    sets: Dict[str, Any] = {"start_time": to_iso(start)}

    if end_time:
        end = _parse_time(end_time, "end_time")
        if end <= start:
            raise ValidationError("end_time_before_start_time")
        sets["end_time"] = to_iso(end)
    elif current["end_time"]:
        duration = parse_iso(str(current["end_time"])) - parse_iso(str(current["start_time"]))
        sets["end_time"] = to_iso(start + duration)

    loc = clean_text(location)
    if loc:
        sets["location"] = loc

    return _guarded_update(conn, class_id, hoc_id, RESCHEDULED, sets)


def cancel_class(conn: Any, class_id: int, hoc_id: int, *, reason: Optional[str] = None) -> Dict[str, Any]:
    return _guarded_update(
        conn,
        class_id,
        hoc_id,
        CANCELLED,
        {"cancel_reason": (reason or "").strip() or None},
    )


def complete_class(conn: Any, class_id: int, hoc_id: int) -> Dict[str, Any]:
    return _guarded_update(conn, class_id, hoc_id, COMPLETED, {})


# -----------------------------
# Enrollments
# -----------------------------


def enrolled_count(conn: Any, class_id: int) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM enrollments WHERE class_id=?",
        (int(class_id),),
    ).fetchone()
    return int(row["n"])


def enroll_student(conn: Any, class_id: int, student_id: int) -> bool:
    """Add a student to a class. Returns False if already enrolled.

    Raises NotFoundError for unknown classes and ConflictError for closed or full ones.
    """
    cls = get_class(conn, class_id)
    if cls is None:
        raise NotFoundError("class_not_found")
    if str(cls["status"]) in TERMINAL_STATUSES:
        raise ConflictError("class_closed")
    if int(cls["hoc_id"]) == int(student_id):
        raise ValidationError("hoc_cannot_enroll_in_own_class")

    already = conn.execute(
        "SELECT 1 FROM enrollments WHERE class_id=? AND student_id=?",
        (int(class_id), int(student_id)),
    ).fetchone()
    if already is not None:
        return False

    capacity = cls["capacity"]
    if capacity is not None and enrolled_count(conn, class_id) >= int(capacity):
        raise ConflictError("class_full")

    inserted = execute_returning(
        conn,
        """
        INSERT INTO enrollments (class_id, student_id, enrolled_at) VALUES (?,?,?)
        ON CONFLICT(class_id, student_id) DO NOTHING
        RETURNING class_id
        """,
        (int(class_id), int(student_id), utcnow_iso()),
    )
    return inserted is not None


def unenroll_student(conn: Any, class_id: int, student_id: int) -> bool:
    cur = conn.execute(
        "DELETE FROM enrollments WHERE class_id=? AND student_id=?",
        (int(class_id), int(student_id)),
    )
    return cur.rowcount > 0


def list_class_students(conn: Any, class_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT u.user_id, u.email, u.full_name, u.department, u.academic_year, e.enrolled_at
        FROM enrollments e
        JOIN users u ON u.user_id = e.student_id
        WHERE e.class_id=?
        ORDER BY u.full_name ASC, u.user_id ASC
        """,
        (int(class_id),),
    ).fetchall()
    return [dict(r) for r in rows]


def list_student_classes(
    conn: Any,
    student_id: int,
    *,
    upcoming_only: bool = False,
) -> List[Dict[str, Any]]:
    sql = """
    SELECT c.*, COALESCE(h.full_name, 'TBA') AS instructor
    FROM classes c
    JOIN enrollments e ON e.class_id = c.class_id
    LEFT JOIN users h ON h.user_id = c.hoc_id
    WHERE e.student_id=?
    """
    params: List[Any] = [int(student_id)]
    if upcoming_only:
        sql += " AND c.start_time >= ? AND c.status IN ('scheduled','rescheduled')"
        params.append(utcnow_iso())
    sql += " ORDER BY c.start_time ASC, c.class_id ASC"
    rows = conn.execute(sql, tuple(params)).fetchall()
    return [public_class(r) for r in rows]
