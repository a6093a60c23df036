"""Pydantic schemas for request models.

All schemas are re-exported here for convenient imports.
"""

from fortunia.schemas.entitlements import QuotaRequest, UpsertSubscriptionRequest
from fortunia.schemas.horoscope import DailyHoroscopeRequest
from fortunia.schemas.readings import CreateReadingRequest, CreateShareCardRequest

__all__ = [
    # Reading schemas
    "CreateReadingRequest",
    "CreateShareCardRequest",
    # Entitlement schemas
    "QuotaRequest",
    "UpsertSubscriptionRequest",
    # Horoscope schemas
    "DailyHoroscopeRequest",
]
