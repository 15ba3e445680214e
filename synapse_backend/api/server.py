from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from synapse_backend import __version__
from synapse_backend.api.envelope import install_exception_handlers, ok
from synapse_backend.api.routes import auth, classes, hoc, home, notifications
from synapse_backend.auth.security import TokenService
from synapse_backend.config import Config, load_config, split_origins
from synapse_backend.db import close_pools, configure_pool, init_db, wait_for_db
from synapse_backend.notifications.expo import ExpoPushClient
from synapse_backend.notifications.fanout import PushSender
from synapse_backend.ratelimit import RateLimiter


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


def create_app(
    cfg: Optional[Config] = None,
    *,
    push_client: Optional[PushSender] = None,
    auth_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """Build the API.

    Raises ConfigurationError when no JWT secret is configured, so a misconfigured
    process never starts serving. The database is checked (with bounded retries) and
    its schema applied on startup.
    """
    cfg = cfg or load_config()
    tokens = TokenService(cfg.AUTH_JWT_SECRET, expires_minutes=cfg.AUTH_TOKEN_EXPIRE_MINUTES)

    app = FastAPI(title="Synapse Backend API", version=__version__)

    app.state.cfg = cfg
    app.state.tokens = tokens
    app.state.push = push_client or ExpoPushClient(
        cfg.EXPO_PUSH_URL,
        access_token=cfg.EXPO_ACCESS_TOKEN,
        timeout_seconds=cfg.PUSH_TIMEOUT_SECONDS,
    )
    app.state.auth_limiter = auth_limiter or RateLimiter(
        cfg.AUTH_RATE_LIMIT_MAX,
        cfg.AUTH_RATE_LIMIT_WINDOW_SECONDS,
    )

    # Browser origins only (Expo web / Metro). Native clients send no Origin header.
    cors_origins = split_origins(cfg.CORS_ALLOW_ORIGINS)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization"],
        )

    install_exception_handlers(app)

    @app.on_event("startup")
    def _on_startup() -> None:
        configure_pool(cfg.DB_DSN, minconn=cfg.DB_POOL_MIN, maxconn=cfg.DB_POOL_MAX)
        # Fatal if the database stays unreachable: the error propagates and startup aborts.
        wait_for_db(
            cfg.DB_DSN,
            retries=cfg.DB_CONNECT_RETRIES,
            delay_seconds=cfg.DB_CONNECT_RETRY_DELAY_SECONDS,
        )
        init_db(cfg.DB_DSN)
        _debug(f"Synapse API ready (token lifetime {tokens.expires_minutes} min)")

    @app.on_event("shutdown")
    def _on_shutdown() -> None:
        close_pools()

    @app.get("/", tags=["Info"])
    def root() -> Dict[str, Any]:
        return ok({"name": "Synapse Backend API", "version": __version__, "health": "/health"})

    @app.get("/health", tags=["Health"])
    def health() -> Dict[str, Any]:
        return ok({"status": "ok"})

    app.include_router(auth.router)
    app.include_router(home.router)
    app.include_router(classes.router)
    app.include_router(notifications.router)
    app.include_router(hoc.router)

    return app
