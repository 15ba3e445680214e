from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from synapse_backend.db import connect
from synapse_backend.errors import DependencyError, PushDeliveryError

from .crud import create_for_users, delete_push_tokens, push_targets_for_class
from .expo import PushMessage, PushTicket


def _debug(msg: str) -> None:
    print(f"[notifications] {msg}")


class PushSender(Protocol):
    def send(self, messages: Sequence[PushMessage]) -> List[PushTicket]: ...


def enrolled_student_ids(conn: Any, class_id: int) -> List[int]:
    rows = conn.execute(
        "SELECT student_id FROM enrollments WHERE class_id=? ORDER BY student_id",
        (int(class_id),),
    ).fetchall()
    return [int(r["student_id"]) for r in rows]


def record_class_notification(
    conn: Any,
    class_id: int,
    *,
    title: str,
    message: str,
    type: str,
    source: str = "hoc",
) -> Tuple[int, List[Tuple[int, str]]]:
    """Insert one in-app notification per enrolled student, inside the caller's transaction.

    Returns (recipient_count, push_targets) so the push can be sent after commit.
    """
    student_ids = enrolled_student_ids(conn, class_id)
    n = create_for_users(
        conn,
        student_ids,
        title=title,
        message=message,
        type=type,
        source=source,
        class_id=class_id,
    )
    return n, push_targets_for_class(conn, class_id)


def _new_summary(targets: Sequence[Tuple[int, str]]) -> Dict[str, Any]:
    return {"attempted": len(targets), "sent": 0, "failed": 0, "tokens_removed": 0}


def _deliver(
    db_dsn: str,
    push: Optional[PushSender],
    targets: Sequence[Tuple[int, str]],
    summary: Dict[str, Any],
    *,
    title: str,
    body: str,
    data: Dict[str, Any],
) -> None:
    if not targets:
        return
    if push is None:
        raise DependencyError("push_not_configured")

    messages = [PushMessage(to=token, title=title, body=body, data=dict(data)) for _, token in targets]
    try:
        tickets = push.send(messages)
    except PushDeliveryError as e:
        # Chunks sent before the failure may still report dead devices.
        _apply_tickets(db_dsn, e.tickets, summary)
        raise
    _apply_tickets(db_dsn, tickets, summary)


def _apply_tickets(db_dsn: str, tickets: Sequence[PushTicket], summary: Dict[str, Any]) -> None:
    dead: List[str] = []
    for t in tickets:
        if t.ok:
            summary["sent"] += 1
            continue
        summary["failed"] += 1
        if t.device_not_registered:
            dead.append(t.token)
        else:
            _debug(f"push ticket error={t.error} message={t.message}")

    if dead:
        with connect(db_dsn) as conn:
            summary["tokens_removed"] += delete_push_tokens(conn, dead)
        _debug(f"Removed {len(dead)} unregistered push token(s)")


def deliver_push(
    db_dsn: str,
    push: Optional[PushSender],
    targets: Sequence[Tuple[int, str]],
    *,
    title: str,
    body: str,
    data: Dict[str, Any],
) -> Dict[str, Any]:
    """Send one push per target and drop tokens the provider reports as unregistered.

    Raises DependencyError when the provider is unreachable. Dead tokens reported by
    chunks sent before the failure are removed first.
    """
    summary = _new_summary(targets)
    _deliver(db_dsn, push, targets, summary, title=title, body=body, data=data)
    return summary


def deliver_push_best_effort(
    db_dsn: str,
    push: Optional[PushSender],
    targets: Sequence[Tuple[int, str]],
    *,
    title: str,
    body: str,
    data: Dict[str, Any],
) -> Dict[str, Any]:
    """Like deliver_push, but a provider outage is reported in the summary instead of raised.

    Used after a schedule change has already been committed: the in-app notifications
    exist, so the request itself succeeded.
    """
    summary = _new_summary(targets)
    try:
        _deliver(db_dsn, push, targets, summary, title=title, body=body, data=data)
    except DependencyError as e:
        _debug(f"push delivery incomplete: {e.message}")
        summary["failed"] = summary["attempted"] - summary["sent"]
        summary["error"] = e.message
    return summary
