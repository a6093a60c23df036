"""Share card routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from fortunia.api.deps import get_bearer_token, get_services
from fortunia.auth.identity import Registered
from fortunia.container import Services
from fortunia.errors import ApiErrorCode, ForbiddenError, InvalidRequestError
from fortunia.responses import success_response
from fortunia.schemas.readings import CreateShareCardRequest

router = APIRouter()


def _same_user(user_id: str, principal: Registered) -> bool:
    return user_id.strip().lower() == principal.principal_id


@router.post("/share-cards")
def create_share_card(
    body: CreateShareCardRequest,
    request: Request,
    services: Annotated[Services, Depends(get_services)],
    bearer_token: Annotated[str | None, Depends(get_bearer_token)],
) -> dict:
    """Render a share card for a reading.

    Returns:
        {"success": true, "share_card_url": "..."}; the URL is a placeholder
        when rendering or upload failed.
    """
    principal = services.resolver.require_registered(bearer_token)
    request.state.principal_id = principal.principal_id

    missing = body.missing_fields()
    if missing:
        raise InvalidRequestError(message=f"Missing required fields: {', '.join(missing)}")
    if not _same_user(body.user_id, principal):
        raise ForbiddenError(
            ApiErrorCode.E_IDENTITY_MISMATCH, "user_id does not match authenticated user"
        )

    url = services.share_cards.create(
        principal,
        body.fortune_text,
        body.reading_type,
        body.cultural_origin,
        reading_id=body.reading_id,
    )
    return success_response(share_card_url=url)
