"""Request-scoped dependencies: app state accessors and API key guard."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from classifyx.config import Settings
    from classifyx.pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False, description="Required only when CLASSIFYX_API_KEY is set")


def app_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def app_pipeline(request: Request) -> PipelineOrchestrator:
    pipeline: PipelineOrchestrator = request.app.state.pipeline
    return pipeline


def require_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> None:
    """Guard for classification routes. A no-op while no API key is configured."""
    expected = app_settings(request).api_key
    if expected is None:
        return

    if credentials is not None and secrets.compare_digest(credentials.credentials.encode(), expected.encode()):
        return

    client = request.client.host if request.client is not None else "unknown"
    reason = "missing" if credentials is None else "wrong"
    logger.warning("Rejected %s %s from %s: %s API key", request.method, request.url.path, client, reason)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )
