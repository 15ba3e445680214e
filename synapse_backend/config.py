import os
import re
from dataclasses import dataclass
from typing import List, Optional

# Optional: load a local .env file if present.
try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    # If python-dotenv isn't installed, the process environment is used as-is.
    pass


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhdw]?)\s*$", re.IGNORECASE)
_DURATION_UNIT_MINUTES = {"s": 1 / 60, "m": 1, "h": 60, "d": 1440, "w": 10080}


def parse_duration_minutes(raw: str | None, default: int) -> int:
    """Parse a token lifetime such as ``1d``, ``12h``, ``30m`` or a bare minute count.

    Blank or unparseable values fall back to ``default``. The result is at least 1.
    """
    if raw is None or not str(raw).strip():
        return default
    m = _DURATION_RE.match(str(raw))
    if not m:
        return default
    amount = int(m.group(1))
    unit = (m.group(2) or "m").lower()
    return max(1, int(amount * _DURATION_UNIT_MINUTES[unit]))


def split_origins(raw: str | None) -> List[str]:
    return [o.strip() for o in (raw or "").split(",") if o.strip()]


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    Defaults are read from the environment (and a .env file) once, when this module is
    imported. Tests and scripts can build ``Config(...)`` with explicit values instead.

    IMPORTANT: Provide the JWT secret via environment variables or a .env file.
    Do not hardcode secrets in source code.
    """

    # -----------------
    # Database
    # -----------------
    # Preferred: set SYNAPSE_DATABASE_URL (or DATABASE_URL) to use Postgres.
    # Fallback: SYNAPSE_DB_PATH for SQLite.
    DB_DSN: str = (
        os.environ.get("SYNAPSE_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("SYNAPSE_DB_PATH", "./synapse.sqlite")
    )

    # Postgres connection pool bounds (ignored for SQLite).
    DB_POOL_MIN: int = int(os.environ.get("DB_POOL_MIN", "1"))
    DB_POOL_MAX: int = int(os.environ.get("DB_POOL_MAX", "10"))

    # Startup connectivity check. The API refuses to start once retries are exhausted.
    DB_CONNECT_RETRIES: int = int(os.environ.get("DB_CONNECT_RETRIES", "5"))
    DB_CONNECT_RETRY_DELAY_SECONDS: float = float(os.environ.get("DB_CONNECT_RETRY_DELAY_SECONDS", "5"))

    # -----------------
    # Auth (JWT)
    # -----------------
    # No default: the API will not start without a signing secret.
    AUTH_JWT_SECRET: str | None = (
        (os.environ.get("JWT_SECRET") or os.environ.get("AUTH_JWT_SECRET") or "").strip() or None
    )
    # JWT_EXPIRES_IN accepts 1d / 12h / 30m; AUTH_TOKEN_EXPIRE_MINUTES is a bare minute count.
    AUTH_TOKEN_EXPIRE_MINUTES: int = parse_duration_minutes(
        os.environ.get("JWT_EXPIRES_IN") or os.environ.get("AUTH_TOKEN_EXPIRE_MINUTES"),
        1440,  # 1 day
    )

    # pbkdf2_sha256 rounds (cost factor). Lower values are only appropriate for tests.
    AUTH_PASSWORD_ROUNDS: int = int(os.environ.get("AUTH_PASSWORD_ROUNDS", "29000"))

    # Escape hatch: lets an authenticated user grant themselves HOC. Keep disabled in production.
    AUTH_ALLOW_FORCE_HOC: bool = _env_bool("AUTH_ALLOW_FORCE_HOC", False) is True

    # Per-IP limit for /api/auth/login and /api/auth/signup.
    AUTH_RATE_LIMIT_MAX: int = int(os.environ.get("AUTH_RATE_LIMIT_MAX", "10"))
    AUTH_RATE_LIMIT_WINDOW_SECONDS: float = float(os.environ.get("AUTH_RATE_LIMIT_WINDOW_SECONDS", "60"))

    # -----------------
    # CORS
    # -----------------
    # Expo Go Metro bundler and Expo web dev server by default.
    # Native mobile clients send no Origin header and are unaffected.
    CORS_ALLOW_ORIGINS: str = os.environ.get(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:8081,http://localhost:19006",
    )

    # -----------------
    # Push (Expo)
    # -----------------
    EXPO_PUSH_URL: str = os.environ.get("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")
    EXPO_ACCESS_TOKEN: str | None = (os.environ.get("EXPO_ACCESS_TOKEN") or "").strip() or None
    PUSH_TIMEOUT_SECONDS: float = float(os.environ.get("PUSH_TIMEOUT_SECONDS", "15"))

    # -----------------
    # Server
    # -----------------
    API_HOST: str = os.environ.get("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.environ.get("API_PORT", "5000"))


def load_config() -> Config:
    return Config()
