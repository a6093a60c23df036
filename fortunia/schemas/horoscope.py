"""Horoscope request schema."""

from pydantic import BaseModel, ConfigDict, Field


class DailyHoroscopeRequest(BaseModel):
    """Request body for POST /horoscopes/daily."""

    sign: str = Field(..., min_length=1, max_length=32)
    user_id: str | None = Field(default=None, max_length=128)

    model_config = ConfigDict(extra="ignore")
