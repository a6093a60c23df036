"""Reading routes.

POST /readings runs the reading pipeline for a registered user (bearer token)
or a guest (user_id in the body). Failures carry processing_time.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from fortunia.api.deps import get_bearer_token, get_services
from fortunia.container import Services
from fortunia.responses import success_response
from fortunia.schemas.readings import CreateReadingRequest
from fortunia.services.readings import ReadingFailed, ReadingRequest

router = APIRouter()


@router.post("/readings")
async def create_reading(
    body: CreateReadingRequest,
    request: Request,
    services: Annotated[Services, Depends(get_services)],
    bearer_token: Annotated[str | None, Depends(get_bearer_token)],
) -> dict:
    """Generate a fortune reading.

    Returns:
        {"success": true, "result", "reading_type", "cultural_origin",
         "share_card_url", "processing_time", "reading_id"}

    Errors:
        E_INVALID_REQUEST (400), E_UNAUTHENTICATED (401), E_QUOTA_EXHAUSTED (429),
        E_MEDIA_FETCH_FAILED / E_INFERENCE_FAILED / E_PERSISTENCE_FAILED /
        E_ENTITLEMENT_UNAVAILABLE / E_AUTH_UNAVAILABLE (500)
    """
    try:
        outcome = await services.readings.run(
            ReadingRequest(
                reading_type=body.reading_type,
                cultural_origin=body.cultural_origin,
                image_url=body.image_url,
                user_id=body.user_id,
            ),
            bearer_token,
        )
    except ReadingFailed as e:
        request.state.principal_id = e.principal_id
        raise

    request.state.principal_id = outcome.principal_id
    return success_response(**outcome.to_dict())
