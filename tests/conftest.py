from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import pytest
from fastapi.testclient import TestClient

from synapse_backend.api.server import create_app
from synapse_backend.auth.crud import get_user_by_email, set_hoc
from synapse_backend.config import Config
from synapse_backend.db import connect
from synapse_backend.errors import DependencyError, PushDeliveryError
from synapse_backend.notifications.expo import PushMessage, PushTicket


SECRET = "test-secret"
PASSWORD = "correct-horse-battery"


class FakePush:
    """Records messages instead of calling Expo."""

    def __init__(self) -> None:
        self.sent: List[PushMessage] = []
        self.unregistered: Set[str] = set()
        self.fail = False
        # Deliver this many messages, then fail the rest of the send.
        self.fail_after: Optional[int] = None

    def _ticket(self, m: PushMessage) -> PushTicket:
        self.sent.append(m)
        if m.to in self.unregistered:
            return PushTicket(token=m.to, status="error", error="DeviceNotRegistered", message="gone")
        return PushTicket(token=m.to, status="ok", ticket_id=f"ticket-{len(self.sent)}")

    def send(self, messages: Sequence[PushMessage]) -> List[PushTicket]:
        if self.fail:
            raise DependencyError("push_provider_unavailable")
        if self.fail_after is not None:
            delivered = [self._ticket(m) for m in messages[: self.fail_after]]
            raise PushDeliveryError("push_provider_unavailable", tickets=delivered)
        return [self._ticket(m) for m in messages]


@pytest.fixture
def cfg(tmp_path) -> Config:
    return Config(
        DB_DSN=str(tmp_path / "synapse.sqlite"),
        DB_CONNECT_RETRIES=1,
        DB_CONNECT_RETRY_DELAY_SECONDS=0,
        AUTH_JWT_SECRET=SECRET,
        AUTH_TOKEN_EXPIRE_MINUTES=60,
        AUTH_PASSWORD_ROUNDS=1000,
        AUTH_ALLOW_FORCE_HOC=False,
        AUTH_RATE_LIMIT_MAX=1000,
        AUTH_RATE_LIMIT_WINDOW_SECONDS=60,
        CORS_ALLOW_ORIGINS="",
    )


@pytest.fixture
def push() -> FakePush:
    return FakePush()


@pytest.fixture
def client(cfg, push):
    app = create_app(cfg, push_client=push)
    with TestClient(app) as c:
        yield c


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def signup(client: TestClient, email: str, **overrides: Any) -> Tuple[str, Dict[str, Any]]:
    body = {
        "full_name": "Test Student",
        "email": email,
        "password": PASSWORD,
        "department": "Computer Science",
        "academic_year": "3rd Year",
    }
    body.update(overrides)
    r = client.post("/api/auth/signup", json=body)
    assert r.status_code == 201, r.text
    data = r.json()["data"]
    return data["token"], data["user"]


def promote(cfg: Config, email: str) -> None:
    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_email(conn, email)
        assert row is not None
        assert set_hoc(conn, int(row["user_id"]), True)


@pytest.fixture
def hoc(client, cfg) -> Tuple[str, Dict[str, Any]]:
    token, user = signup(client, "hoc@uni.edu", full_name="Dr. Ada Lovelace")
    promote(cfg, "hoc@uni.edu")
    return token, user


def create_class(client: TestClient, token: str, **overrides: Any) -> Dict[str, Any]:
    body = {
        "class_name": "Data Structures",
        "subject": "CS201",
        "start_time": "2030-05-01T09:00:00Z",
        "end_time": "2030-05-01T10:30:00Z",
        "location": "Lab 302",
        "capacity": 40,
    }
    body.update(overrides)
    r = client.post("/api/hoc/classes", json=body, headers=bearer(token))
    assert r.status_code == 201, r.text
    return r.json()["data"]
