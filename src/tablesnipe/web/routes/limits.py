"""Rate limiter observability route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from tablesnipe.rate_limiter import RateLimiter
from tablesnipe.web.deps import get_rate_limiter
from tablesnipe.web.schemas import LimitsResponse

router = APIRouter()


@router.get("", response_model=LimitsResponse)
async def limits(rate_limiter: RateLimiter = Depends(get_rate_limiter)):
    return LimitsResponse(limits=rate_limiter.get_all_status())
