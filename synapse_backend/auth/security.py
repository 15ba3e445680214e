from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

import jwt
from passlib.context import CryptContext

from synapse_backend.errors import ConfigurationError, TokenExpired, TokenInvalid


_JWT_ALG = "HS256"
DEFAULT_PASSWORD_ROUNDS = 29000


@lru_cache(maxsize=8)
def _pwd(rounds: int) -> CryptContext:
    return CryptContext(
        schemes=["pbkdf2_sha256"],
        deprecated="auto",
        pbkdf2_sha256__default_rounds=max(1, int(rounds)),
    )


def hash_password(password: str, *, rounds: int = DEFAULT_PASSWORD_ROUNDS) -> str:
    if not password:
        raise ValueError("password_blank")
    return _pwd(rounds).hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash.

    Returns False (never raises) for blank input, unknown hash formats or backend errors,
    so callers cannot tell "wrong password" from "hashing failure".
    """
    if not password or not password_hash:
        return False
    try:
        return _pwd(DEFAULT_PASSWORD_ROUNDS).verify(password, password_hash)
    except Exception:
        return False


@lru_cache(maxsize=8)
def _dummy_hash(rounds: int) -> str:
    return hash_password("synapse-dummy-password", rounds=rounds)


def burn_password_check(password: str, *, rounds: int = DEFAULT_PASSWORD_ROUNDS) -> bool:
    """Spend the same work as a real check against a hash nobody can match.

    Used when the email is unknown so login latency does not reveal whether an account exists.
    """
    verify_password(password or "x", _dummy_hash(rounds))
    return False


class TokenService:
    """Issues and verifies signed, time-limited bearer tokens.

    Tokens carry `sub` (the user id as a string), `iat` and `exp`. Verification is
    stateless: a token stays valid until it expires or the secret is rotated.
    """

    def __init__(
        self,
        secret: str | None,
        *,
        expires_minutes: int = 1440,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if not secret:
            raise ConfigurationError("jwt_secret_missing")
        self._secret = secret
        self.expires_minutes = max(1, int(expires_minutes))
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def issue(self, user_id: int) -> str:
        if user_id is None or str(user_id).strip() == "":
            raise ValueError("user_id_missing")

        now = self._clock()
        exp = now + timedelta(minutes=self.expires_minutes)
        payload: Dict[str, Any] = {
            "sub": str(user_id),
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=_JWT_ALG)

    def verify(self, token: str) -> Dict[str, Any]:
        """Return {"user_id": int, "iat": int, "exp": int}.

        Raises TokenExpired past expiry and TokenInvalid for every other failure.
        """
        if not token or not isinstance(token, str):
            raise TokenInvalid("token_blank")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_JWT_ALG],
                options={"require": ["sub", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpired("token_expired") from e
        except jwt.InvalidTokenError as e:
            raise TokenInvalid(str(e) or "token_invalid") from e

        try:
            user_id = int(payload["sub"])
        except (TypeError, ValueError) as e:
            raise TokenInvalid("token_sub_not_int") from e

        return {"user_id": user_id, "iat": payload["iat"], "exp": payload["exp"]}
