from __future__ import annotations

from typing import Any, Dict, Optional

from synapse_backend.db import execute_returning
from synapse_backend.errors import DuplicateEmail, NotFoundError, ValidationError
from synapse_backend.util.normalization import clean_text, is_valid_email, normalize_email
from synapse_backend.util.time import utcnow_iso

from .security import DEFAULT_PASSWORD_ROUNDS, burn_password_check, hash_password, verify_password


MIN_PASSWORD_LENGTH = 8

_PROFILE_FIELDS = ("full_name", "department", "academic_year")


def public_user(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    d.pop("password_hash", None)
    d["is_hoc"] = bool(int(d.get("is_hoc") or 0))
    d["notifications_enabled"] = bool(int(d.get("notifications_enabled") or 0))
    return d


def get_user_by_email(conn: Any, email: str) -> Optional[Any]:
    e = normalize_email(email)
    if not e:
        return None
    return conn.execute(
        "SELECT * FROM users WHERE email=?",
        (e,),
    ).fetchone()


def get_user_by_id(conn: Any, user_id: int) -> Optional[Any]:
    return conn.execute(
        "SELECT * FROM users WHERE user_id=?",
        (int(user_id),),
    ).fetchone()


def verify_user_credentials(
    conn: Any,
    email: str,
    password: str,
    *,
    rounds: int = DEFAULT_PASSWORD_ROUNDS,
) -> Optional[Any]:
    """Return the user row when email + password match, else None.

    Unknown emails still pay for one hash verification.
    """
    row = get_user_by_email(conn, email)
    if row is None:
        burn_password_check(password, rounds=rounds)
        return None
    if not verify_password(password, str(row["password_hash"])):
        return None
    return row


def create_user(
    conn: Any,
    *,
    email: str,
    password: str,
    full_name: str,
    department: str,
    academic_year: str,
    is_hoc: bool = False,
    rounds: int = DEFAULT_PASSWORD_ROUNDS,
) -> Dict[str, Any]:
    e = normalize_email(email)
    if not is_valid_email(e):
        raise ValidationError("invalid_email")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError("password_too_short")

    fields = {
        "full_name": clean_text(full_name),
        "department": clean_text(department),
        "academic_year": clean_text(academic_year),
    }
    for name in _PROFILE_FIELDS:
        if not fields[name]:
            raise ValidationError(f"{name}_required")

    # Check on the normalized email first so the common case is a clean 409.
    existing = conn.execute("SELECT 1 FROM users WHERE email=?", (e,)).fetchone()
    if existing is not None:
        raise DuplicateEmail()

    now = utcnow_iso()
    inserted = execute_returning(
        conn,
        """
        INSERT INTO users (email, full_name, department, academic_year, password_hash,
                           is_hoc, notifications_enabled, created_at, updated_at)
        VALUES (?,?,?,?,?,?,1,?,?)
        ON CONFLICT(email) DO NOTHING
        RETURNING user_id
        """,
        (
            e,
            fields["full_name"],
            fields["department"],
            fields["academic_year"],
            hash_password(password, rounds=rounds),
            1 if is_hoc else 0,
            now,
            now,
        ),
    )
    if inserted is None:
        # Lost a race with a concurrent signup for the same email.
        raise DuplicateEmail()

    row = get_user_by_id(conn, int(inserted["user_id"]))
    assert row is not None
    return public_user(row)


def update_profile(
    conn: Any,
    user_id: int,
    *,
    full_name: str | None = None,
    department: str | None = None,
    academic_year: str | None = None,
) -> Dict[str, Any]:
    """Update the provided profile fields only. Blank strings are rejected."""
    provided = {"full_name": full_name, "department": department, "academic_year": academic_year}
    fields: list[tuple[str, Any]] = []
    for name in _PROFILE_FIELDS:
        raw = provided[name]
        if raw is None:
            continue
        value = clean_text(raw)
        if not value:
            raise ValidationError(f"{name}_blank")
        fields.append((name, value))

    if not fields:
        raise ValidationError("no_fields_to_update")

    fields.append(("updated_at", utcnow_iso()))
    sets = ", ".join([f"{k}=?" for k, _ in fields])
    params = [v for _, v in fields] + [int(user_id)]
    conn.execute(f"UPDATE users SET {sets} WHERE user_id=?", params)

    row = get_user_by_id(conn, user_id)
    if row is None:
        raise NotFoundError("user_not_found")
    return public_user(row)


def set_hoc(conn: Any, user_id: int, is_hoc: bool) -> bool:
    """Grant or revoke the head-of-class role. Returns False if the user does not exist."""
    cur = conn.execute(
        "UPDATE users SET is_hoc=?, updated_at=? WHERE user_id=?",
        (1 if is_hoc else 0, utcnow_iso(), int(user_id)),
    )
    return cur.rowcount > 0


def set_notification_preference(conn: Any, user_id: int, enabled: bool) -> bool:
    cur = conn.execute(
        "UPDATE users SET notifications_enabled=?, updated_at=? WHERE user_id=?",
        (1 if enabled else 0, utcnow_iso(), int(user_id)),
    )
    return cur.rowcount > 0


def touch_last_login(conn: Any, user_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET last_login_at=?, updated_at=? WHERE user_id=?",
        (now, now, int(user_id)),
    )
