"""Liveness endpoint.

``GET /health`` needs no authentication; it is limited per client address
by the memory-backed ``health_check`` policy so probes never touch the
database.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response

from eatlocal import __version__
from eatlocal.core.auth import Anonymous
from eatlocal.core.models import HealthResponse
from eatlocal.core.routes.rate_limit import enforce_policy

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request, response: Response) -> HealthResponse:
    """Return service status."""
    caller = Anonymous(request.client.host if request.client else None)
    await enforce_policy(request, response, caller.rate_limit_identifier, "health_check")
    return HealthResponse(status="ok", version=__version__)
