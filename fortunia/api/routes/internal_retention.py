"""Internal-only retention operator routes.

Not exposed to mobile clients; guarded by the X-Fortunia-Internal header.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from fortunia.api.deps import get_services, require_internal_secret
from fortunia.container import Services
from fortunia.errors import ApiError, ApiErrorCode
from fortunia.logging import get_logger
from fortunia.responses import success_response
from fortunia.services.retention import default_cutoff
from fortunia.storage.client import StorageError

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_internal_secret)])


@router.post("/internal/retention/sweep")
def retention_sweep_endpoint(services: Annotated[Services, Depends(get_services)]) -> dict:
    """Run a retention sweep now with the configured retention window.

    Returns:
        {"success": true, "summary": {deletedReadings, deletedShareCards, cutoffDate, ...}}
    """
    cutoff = default_cutoff(services.clock(), services.settings.retention_days)
    try:
        summary = services.retention.sweep(cutoff)
    except StorageError as e:
        logger.error("retention.sweep_failed", error=e.message)
        raise ApiError(ApiErrorCode.E_STORAGE_ERROR, "Retention sweep failed") from e
    return success_response(summary=summary.to_summary())
