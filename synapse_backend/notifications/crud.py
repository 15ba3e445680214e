from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from synapse_backend.db import execute_returning
from synapse_backend.errors import ValidationError
from synapse_backend.util.normalization import clean_text, is_expo_push_token
from synapse_backend.util.time import utcnow_iso


NOTIFICATION_TYPES = ("info", "reschedule", "cancel", "complete", "class_notification", "settings")
NOTIFICATION_SOURCES = ("system", "hoc", "settings")


def public_notification(row: Any) -> Dict[str, Any]:
    d = dict(row)
    d["is_read"] = bool(int(d.get("is_read") or 0))
    return d


def create_notification(
    conn: Any,
    *,
    user_id: int,
    title: str,
    message: str = "",
    type: str = "info",
    source: str = "system",
    class_id: Optional[int] = None,
) -> Dict[str, Any]:
    t = clean_text(title)
    if not t:
        raise ValidationError("title_required")
    row = execute_returning(
        conn,
        """
        INSERT INTO notifications (user_id, title, message, type, source, class_id, is_read, created_at)
        VALUES (?,?,?,?,?,?,0,?)
        RETURNING *
        """,
        (int(user_id), t, (message or "").strip(), type, source, class_id, utcnow_iso()),
    )
    return public_notification(row)


def create_for_users(
    conn: Any,
    user_ids: Iterable[int],
    *,
    title: str,
    message: str,
    type: str,
    source: str,
    class_id: Optional[int] = None,
) -> int:
    now = utcnow_iso()
    n = 0
    for uid in user_ids:
        conn.execute(
            """
            INSERT INTO notifications (user_id, title, message, type, source, class_id, is_read, created_at)
            VALUES (?,?,?,?,?,?,0,?)
            """,
            (int(uid), title, message, type, source, class_id, now),
        )
        n += 1
    return n


def list_notifications(
    conn: Any,
    user_id: int,
    *,
    limit: int = 50,
    offset: int = 0,
    unread_only: bool = False,
) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM notifications WHERE user_id=?"
    params: List[Any] = [int(user_id)]
    if unread_only:
        sql += " AND is_read=0"
    sql += " ORDER BY created_at DESC, notification_id DESC LIMIT ? OFFSET ?"
    params.extend([int(limit), int(offset)])
    rows = conn.execute(sql, tuple(params)).fetchall()
    return [public_notification(r) for r in rows]


def unread_count(conn: Any, user_id: int) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM notifications WHERE user_id=? AND is_read=0",
        (int(user_id),),
    ).fetchone()
    return int(row["n"])


def mark_read(conn: Any, user_id: int, notification_id: int) -> bool:
    """Returns False when the notification does not exist or belongs to someone else."""
    cur = conn.execute(
        """
        UPDATE notifications
        SET is_read=1, read_at=COALESCE(read_at, ?)
        WHERE notification_id=? AND user_id=?
        """,
        (utcnow_iso(), int(notification_id), int(user_id)),
    )
    return cur.rowcount > 0


def mark_all_read(conn: Any, user_id: int) -> int:
    cur = conn.execute(
        "UPDATE notifications SET is_read=1, read_at=? WHERE user_id=? AND is_read=0",
        (utcnow_iso(), int(user_id)),
    )
    return cur.rowcount


def delete_notification(conn: Any, user_id: int, notification_id: int) -> bool:
    cur = conn.execute(
        "DELETE FROM notifications WHERE notification_id=? AND user_id=?",
        (int(notification_id), int(user_id)),
    )
    return cur.rowcount > 0


# -----------------------------
# Push tokens
# -----------------------------


def register_push_token(conn: Any, user_id: int, push_token: str) -> None:
    token = (push_token or "").strip()
    if not is_expo_push_token(token):
        raise ValidationError("invalid_push_token")
    now = utcnow_iso()
    conn.execute(
        """
        INSERT INTO push_tokens (user_id, push_token, created_at, updated_at) VALUES (?,?,?,?)
        ON CONFLICT(user_id) DO UPDATE SET push_token=excluded.push_token, updated_at=excluded.updated_at
        """,
        (int(user_id), token, now, now),
    )


def get_push_token(conn: Any, user_id: int) -> Optional[str]:
    row = conn.execute("SELECT push_token FROM push_tokens WHERE user_id=?", (int(user_id),)).fetchone()
    if row is None:
        return None
    return str(row["push_token"])


def remove_push_token(conn: Any, user_id: int) -> bool:
    cur = conn.execute("DELETE FROM push_tokens WHERE user_id=?", (int(user_id),))
    return cur.rowcount > 0


def delete_push_tokens(conn: Any, tokens: Iterable[str]) -> int:
    n = 0
    for t in tokens:
        cur = conn.execute("DELETE FROM push_tokens WHERE push_token=?", (t,))
        n += cur.rowcount
    return n


def push_targets_for_class(conn: Any, class_id: int) -> List[Tuple[int, str]]:
    """(student_id, push_token) for enrolled students who allow notifications."""
    rows = conn.execute(
        """
        SELECT u.user_id, pt.push_token
        FROM enrollments e
        JOIN users u ON u.user_id = e.student_id
        JOIN push_tokens pt ON pt.user_id = u.user_id
        WHERE e.class_id=? AND u.notifications_enabled=1
        ORDER BY u.user_id
        """,
        (int(class_id),),
    ).fetchall()
    return [(int(r["user_id"]), str(r["push_token"])) for r in rows]
