"""Rate-limit check endpoint and the shared policy guard used by other routes."""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from eatlocal.core.auth import ServiceCaller, require_service
from eatlocal.core.models import RateLimitCheckRequest, RateLimitCheckResponse
from eatlocal.core.policies import RateLimitPolicy
from eatlocal.core.rate_limit import RateLimitResult, rate_limit_headers
from eatlocal.errors import UnknownPolicyError

router = APIRouter()


async def enforce_policy(
    request: Request,
    response: Response,
    identifier: str,
    policy: str | RateLimitPolicy,
) -> RateLimitResult:
    """Count one request against *policy* and attach the rate-limit headers.

    Raises ``HTTPException(429)`` with ``Retry-After`` when the window is
    full.
    """
    result = await request.app.state.limiter.check_policy(identifier, policy)
    headers = rate_limit_headers(result)
    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded, retry in {math.ceil(result.retry_after or 0)}s",
            headers=headers,
        )
    response.headers.update(headers)
    return result


@router.post("/rate-limit/check", response_model=RateLimitCheckResponse)
async def check_rate_limit(
    body: RateLimitCheckRequest,
    request: Request,
    response: Response,
    _: ServiceCaller = Depends(require_service),
) -> RateLimitCheckResponse:
    """Count one request for another service.

    Responds 429 (with the same body) when the request is denied.
    """
    limiter = request.app.state.limiter
    if body.policy is not None:
        try:
            result = await limiter.check_policy(body.identifier, body.policy)
        except UnknownPolicyError:
            raise HTTPException(status_code=404, detail=f"Unknown policy: {body.policy}") from None
    else:
        result = await limiter.check(
            body.identifier, body.limit, body.window_seconds, endpoint=body.endpoint
        )

    response.headers.update(rate_limit_headers(result))
    if not result.allowed:
        response.status_code = 429
    return RateLimitCheckResponse(
        allowed=result.allowed,
        limit=result.limit,
        remaining=result.remaining,
        reset_at=result.reset_at,
        retry_after=result.retry_after,
        degraded=result.degraded,
    )
