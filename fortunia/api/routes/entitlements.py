"""Quota and subscription routes.

- POST /quota: current entitlement state (guest or registered)
- POST /subscriptions: reconcile a store purchase (registered only)
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from fortunia.api.deps import get_bearer_token, get_services
from fortunia.container import Services
from fortunia.errors import ApiError, ApiErrorCode
from fortunia.responses import success_response
from fortunia.schemas.entitlements import QuotaRequest, UpsertSubscriptionRequest
from fortunia.services.entitlements import EntitlementStoreError

router = APIRouter()


@router.post("/quota")
def get_quota(
    request: Request,
    services: Annotated[Services, Depends(get_services)],
    bearer_token: Annotated[str | None, Depends(get_bearer_token)],
    body: QuotaRequest | None = None,
) -> dict:
    """Return quota state for the caller.

    A user_id that conflicts with the bearer token is rejected (403).
    When the store is unreachable a recent cached snapshot is served with
    "stale": true.
    """
    principal = services.resolver.resolve(
        bearer_token, body.user_id if body else None, strict=True
    )
    request.state.principal_id = principal.principal_id

    try:
        state, stale = services.quota_cache.read_through(
            services.entitlements, principal.principal_id
        )
    except EntitlementStoreError as e:
        raise ApiError(
            ApiErrorCode.E_ENTITLEMENT_UNAVAILABLE, "Quota service unavailable"
        ) from e

    return success_response(**state.to_dict(), stale=stale)


@router.post("/subscriptions")
def upsert_subscription(
    body: UpsertSubscriptionRequest,
    request: Request,
    services: Annotated[Services, Depends(get_services)],
    bearer_token: Annotated[str | None, Depends(get_bearer_token)],
) -> dict:
    """Upsert subscription state keyed on transaction_id.

    Returns:
        {"success": true, "data": SubscriptionState}
    """
    principal = services.resolver.require_registered(bearer_token)
    request.state.principal_id = principal.principal_id

    state = services.subscriptions.upsert(principal.principal_id, body.to_input())
    return success_response(data=state.to_dict())
