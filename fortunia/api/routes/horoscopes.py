"""Daily horoscope routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from fortunia.api.deps import get_bearer_token, get_services
from fortunia.container import Services
from fortunia.responses import success_response
from fortunia.schemas.horoscope import DailyHoroscopeRequest

router = APIRouter()


@router.post("/horoscopes/daily")
async def daily_horoscope(
    body: DailyHoroscopeRequest,
    request: Request,
    services: Annotated[Services, Depends(get_services)],
    bearer_token: Annotated[str | None, Depends(get_bearer_token)],
) -> dict:
    """Generate today's horoscope for a zodiac sign. Consumes no quota.

    Returns:
        {"success": true, "sign", "prediction", "ratings": {love, career, health}, "date"}
    """
    principal = await run_in_threadpool(services.resolver.resolve, bearer_token, body.user_id)
    request.state.principal_id = principal.principal_id

    horoscope = await services.horoscope.generate(body.sign)
    return success_response(**horoscope.to_dict())
