from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from synapse_backend.notifications.crud import list_notifications, unread_count
from synapse_backend.util.time import format_clock_time, format_relative_time, iso_date, to_iso, utcnow


def next_class(conn: Any, user_id: int, now_iso: str) -> Optional[Dict[str, Any]]:
    """Earliest upcoming class the user is enrolled in that is still on."""
    row = conn.execute(
        """
        SELECT c.class_id, c.class_name, c.subject, c.start_time, c.end_time, c.location, c.status,
               COALESCE(h.full_name, 'TBA') AS instructor
        FROM classes c
        JOIN enrollments e ON e.class_id = c.class_id
        LEFT JOIN users h ON h.user_id = c.hoc_id
        WHERE e.student_id=?
          AND c.start_time >= ?
          AND c.status IN ('scheduled','rescheduled')
        ORDER BY c.start_time ASC
        LIMIT 1
        """,
        (int(user_id), now_iso),
    ).fetchone()
    return dict(row) if row is not None else None


def today_schedule(conn: Any, user_id: int, today: str) -> List[Dict[str, Any]]:
    # start_time is ISO text, so the first 10 characters are the UTC date.
    rows = conn.execute(
        """
        SELECT c.class_id, c.class_name, c.start_time, c.location, c.status
        FROM classes c
        JOIN enrollments e ON e.class_id = c.class_id
        WHERE e.student_id=?
          AND substr(c.start_time, 1, 10) = ?
        ORDER BY c.start_time ASC
        """,
        (int(user_id), today),
    ).fetchall()
    out: List[Dict[str, Any]] = []
    for r in rows:
        d = dict(r)
        d["time"] = format_clock_time(d.get("start_time"))
        out.append(d)
    return out


def recent_updates(conn: Any, user_id: int, *, limit: int = 5, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    updates = list_notifications(conn, user_id, limit=limit)
    for u in updates:
        u["time"] = format_relative_time(u.get("created_at"), now=now)
    return updates


def build_dashboard(conn: Any, user: Dict[str, Any], *, now: Optional[datetime] = None) -> Dict[str, Any]:
    ref = now or utcnow()
    user_id = int(user["user_id"])
    return {
        "user": user,
        "next_class": next_class(conn, user_id, to_iso(ref)),
        "today_schedule": today_schedule(conn, user_id, iso_date(ref)),
        "recent_updates": recent_updates(conn, user_id, limit=5, now=ref),
        "unread_count": unread_count(conn, user_id),
        "is_hoc": bool(user.get("is_hoc")),
    }
