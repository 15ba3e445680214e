"""Shared FastAPI dependencies and type aliases for route modules."""

from __future__ import annotations

from typing import Annotated, Any, Dict, Optional

from fastapi import Depends, Path, Request

from synapse_backend.auth.deps import get_config, get_current_user, get_token_service, require_hoc
from synapse_backend.auth.security import TokenService
from synapse_backend.config import Config
from synapse_backend.notifications.fanout import PushSender


def get_push_client(request: Request) -> Optional[PushSender]:
    return getattr(request.app.state, "push", None)


ConfigDep = Annotated[Config, Depends(get_config)]
TokenServiceDep = Annotated[TokenService, Depends(get_token_service)]
CurrentUser = Annotated[Dict[str, Any], Depends(get_current_user)]
HocUser = Annotated[Dict[str, Any], Depends(require_hoc)]
PushClientDep = Annotated[Optional[PushSender], Depends(get_push_client)]

# Row ids are SQL BIGINT/INTEGER; anything outside that range is rejected as a 400.
MAX_ROW_ID = 2**63 - 1
ResourceId = Annotated[int, Path(ge=1, le=MAX_ROW_ID)]
