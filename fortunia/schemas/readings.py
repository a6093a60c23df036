"""Reading and share card request schemas.

Reading fields are optional at the schema level: missing or unknown values
are rejected by the reading pipeline so the failure carries processing_time.
"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CreateReadingRequest(BaseModel):
    """Request body for POST /readings."""

    reading_type: str | None = None
    cultural_origin: str | None = None
    image_url: str | None = Field(default=None, max_length=2048)
    user_id: str | None = Field(default=None, max_length=128)

    model_config = ConfigDict(extra="ignore")


class CreateShareCardRequest(BaseModel):
    """Request body for POST /share-cards.

    reading_id is optional; when it names one of the caller's readings the
    card URL is stored on that reading.
    """

    fortune_text: str | None = Field(default=None, max_length=10000)
    reading_type: str | None = None
    cultural_origin: str | None = None
    user_id: str | None = None
    reading_id: UUID | None = None

    model_config = ConfigDict(extra="ignore")

    def missing_fields(self) -> list[str]:
        return [
            name
            for name in ("fortune_text", "reading_type", "cultural_origin", "user_id")
            if not (getattr(self, name) or "").strip()
        ]
