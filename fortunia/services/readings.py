"""Reading orchestrator - the fortune reading pipeline.

Stages run in a fixed order:

    Validating → Authenticating → CheckingQuota → FetchingMedia (skipped for tarot)
    → ComposingPrompt → InvokingInference → Persisting → ConsumingQuota → Done

Any stage may end the run with a ReadingFailed carrying the stage and an
API error code.

Invariants:
- No media fetch or inference call for a principal whose quota is exhausted
- Quota is consumed only after the reading row is persisted
- A consume failure after persistence is logged, never surfaced
- Identity is resolved once; later stages only see the Principal

Sync stores (SQLAlchemy) are called through run_in_threadpool. The run is not
tied to the client connection and completes server-side after a disconnect.
"""

import re
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from fortunia.auth.identity import IdentityResolver, Principal
from fortunia.db.models import Reading, UserProfile
from fortunia.db.session import transaction
from fortunia.errors import ApiError, ApiErrorCode
from fortunia.logging import get_logger, set_principal_context
from fortunia.services.clock import Clock, utc_now
from fortunia.services.entitlements import (
    EntitlementState,
    EntitlementStore,
    EntitlementStoreError,
    QuotaExhausted,
)
from fortunia.services.llm import ImagePart, InferenceClient, InferenceError
from fortunia.services.media import MediaFetcher, MediaFetchError
from fortunia.services.prompts import BirthProfile, compose
from fortunia.services.redact import safe_kv

logger = get_logger(__name__)

CULTURAL_ORIGIN_PATTERN = re.compile(r"^[a-z_]{1,40}$")
KNOWN_CULTURAL_ORIGINS = frozenset({"chinese", "middle_eastern", "european"})

QUOTA_EXCEEDED_MESSAGE = "Daily quota exceeded. Upgrade to Premium for unlimited readings."


class ReadingType(str, Enum):
    FACE = "face"
    PALM = "palm"
    TAROT = "tarot"
    COFFEE = "coffee"

    @property
    def requires_image(self) -> bool:
        return self is not ReadingType.TAROT


class ReadingStage(str, Enum):
    VALIDATING = "validating"
    AUTHENTICATING = "authenticating"
    CHECKING_QUOTA = "checking_quota"
    FETCHING_MEDIA = "fetching_media"
    COMPOSING_PROMPT = "composing_prompt"
    INVOKING_INFERENCE = "invoking_inference"
    PERSISTING = "persisting"
    CONSUMING_QUOTA = "consuming_quota"
    DONE = "done"


class PersistenceError(Exception):
    """The reading row could not be written."""


class ReadingFailed(ApiError):
    """Terminal failure of a reading run.

    Attributes:
        stage: Stage the pipeline was in when it failed.
        processing_time: Milliseconds spent before failing.
        principal_id: Resolved principal, or None if authentication never succeeded.
    """

    def __init__(
        self,
        stage: ReadingStage,
        code: ApiErrorCode,
        message: str,
        processing_time: int,
        principal_id: str | None = None,
    ):
        self.stage = stage
        self.processing_time = processing_time
        self.principal_id = principal_id
        super().__init__(code, message, details={"processing_time": processing_time})


@dataclass(frozen=True)
class ReadingRequest:
    """Incoming reading request as supplied by the client (unvalidated)."""

    reading_type: str | None
    cultural_origin: str | None
    image_url: str | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class ValidatedReading:
    reading_type: ReadingType
    cultural_origin: str
    image_url: str | None
    user_id: str | None


@dataclass(frozen=True)
class ReadingRecord:
    """Persisted reading as returned by the repository."""

    id: UUID
    principal_id: str
    reading_type: str
    cultural_origin: str
    image_url: str | None
    is_premium_at_time: bool
    created_at: datetime


@dataclass(frozen=True)
class ReadingOutcome:
    """Successful reading run."""

    reading_id: UUID
    result: str
    reading_type: str
    cultural_origin: str
    processing_time: int
    principal_id: str
    share_card_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": self.result,
            "reading_type": self.reading_type,
            "cultural_origin": self.cultural_origin,
            "share_card_url": self.share_card_url,
            "processing_time": self.processing_time,
            "reading_id": str(self.reading_id),
        }


def validate_reading_request(request: ReadingRequest) -> ValidatedReading:
    """Check request shape.

    Raises:
        ValueError: With a client-facing message.
    """
    missing = [
        name
        for name, value in (
            ("reading_type", request.reading_type),
            ("cultural_origin", request.cultural_origin),
        )
        if not value
    ]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")

    try:
        reading_type = ReadingType(request.reading_type)
    except ValueError:
        raise ValueError(f"Unknown reading_type: {request.reading_type}") from None

    cultural_origin = request.cultural_origin.strip().lower()
    if not CULTURAL_ORIGIN_PATTERN.match(cultural_origin):
        raise ValueError("Invalid cultural_origin")
    if cultural_origin not in KNOWN_CULTURAL_ORIGINS:
        # Still served; the prompt falls back to a generic tradition
        logger.info("reading.unfamiliar_origin", cultural_origin=cultural_origin)

    image_url = (request.image_url or "").strip() or None
    if reading_type.requires_image and image_url is None:
        raise ValueError(f"image_url is required for {reading_type.value} readings")
    if not reading_type.requires_image and image_url is not None:
        logger.info("reading.image_ignored", reading_type=reading_type.value)
        image_url = None

    return ValidatedReading(
        reading_type=reading_type,
        cultural_origin=cultural_origin,
        image_url=image_url,
        user_id=request.user_id,
    )


def _profile_id(principal: Principal) -> UUID | None:
    if not principal.is_guest:
        return principal.user_id
    try:
        return UUID(principal.principal_id)
    except ValueError:
        return None


class ReadingRepository:
    """Reading rows and the profile lookup used for personalization."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def insert(
        self,
        *,
        principal_id: str,
        reading_type: str,
        cultural_origin: str,
        image_url: str | None,
        result_text: str,
        is_premium_at_time: bool,
        created_at: datetime,
    ) -> ReadingRecord:
        """Insert a reading row.

        Raises:
            PersistenceError: On database failure.
        """
        try:
            with self._session_factory() as db, transaction(db):
                reading = Reading(
                    principal_id=principal_id,
                    reading_type=reading_type,
                    cultural_origin=cultural_origin,
                    image_url=image_url,
                    result_text=result_text,
                    share_card_url=None,
                    is_premium_at_time=is_premium_at_time,
                    created_at=created_at,
                )
                db.add(reading)
                db.flush()
                record = ReadingRecord(
                    id=reading.id,
                    principal_id=reading.principal_id,
                    reading_type=reading.reading_type,
                    cultural_origin=reading.cultural_origin,
                    image_url=reading.image_url,
                    is_premium_at_time=reading.is_premium_at_time,
                    created_at=reading.created_at,
                )
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to save reading") from e
        return record

    def get_profile(self, principal: Principal) -> BirthProfile | None:
        """Birth profile keyed by the principal id.

        Guests provisioned server-side carry a UUID device id and may have a
        profile row; any other device id has none.
        """
        profile_id = _profile_id(principal)
        if profile_id is None:
            return None
        try:
            with self._session_factory() as db:
                profile = db.execute(
                    select(UserProfile).where(UserProfile.id == profile_id)
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to load profile") from e

        if profile is None:
            return None
        return BirthProfile(
            birth_date=profile.birth_date,
            birth_time=profile.birth_time,
            birth_city=profile.birth_city,
            birth_country=profile.birth_country,
        )

    def set_share_card_url(self, reading_id: UUID, principal_id: str, url: str | None) -> bool:
        """Fill in share_card_url on a reading owned by principal_id.

        Returns:
            True if a row was updated.
        """
        try:
            with self._session_factory() as db, transaction(db):
                result = db.execute(
                    update(Reading)
                    .where(Reading.id == reading_id, Reading.principal_id == principal_id)
                    .values(share_card_url=url)
                )
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to update share card url") from e
        return result.rowcount > 0


class ReadingOrchestrator:
    """Runs one reading request through the pipeline stages."""

    def __init__(
        self,
        resolver: IdentityResolver,
        entitlements: EntitlementStore,
        media: MediaFetcher,
        inference: InferenceClient,
        repository: ReadingRepository,
        *,
        clock: Clock = utc_now,
    ):
        self._resolver = resolver
        self._entitlements = entitlements
        self._media = media
        self._inference = inference
        self._repository = repository
        self._clock = clock

    async def run(self, request: ReadingRequest, bearer_token: str | None) -> ReadingOutcome:
        """Execute the pipeline.

        Raises:
            ReadingFailed: On any terminal failure.
        """
        start = time.monotonic()
        stage = ReadingStage.VALIDATING
        principal: Principal | None = None

        def elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        def principal_id() -> str | None:
            return principal.principal_id if principal is not None else None

        def fail(code: ApiErrorCode, message: str) -> ReadingFailed:
            logger.info(
                "reading.stage.failed",
                stage=stage.value,
                error_code=code.value,
                processing_time=elapsed_ms(),
            )
            return ReadingFailed(stage, code, message, elapsed_ms(), principal_id())

        try:
            # Validating
            try:
                validated = validate_reading_request(request)
            except ValueError as e:
                raise fail(ApiErrorCode.E_INVALID_REQUEST, str(e)) from e

            # Authenticating
            stage = ReadingStage.AUTHENTICATING
            try:
                principal = await run_in_threadpool(
                    self._resolver.resolve, bearer_token, validated.user_id
                )
            except ApiError as e:
                raise fail(e.code, e.message) from e
            set_principal_context(principal.principal_id)

            # CheckingQuota
            stage = ReadingStage.CHECKING_QUOTA
            try:
                status: EntitlementState = await run_in_threadpool(
                    self._entitlements.get_status, principal.principal_id
                )
            except EntitlementStoreError as e:
                logger.warning("quota.status_failed", error=str(e))
                raise fail(
                    ApiErrorCode.E_ENTITLEMENT_UNAVAILABLE, "Quota service unavailable"
                ) from e
            if not status.can_consume:
                raise fail(ApiErrorCode.E_QUOTA_EXHAUSTED, QUOTA_EXCEEDED_MESSAGE)

            # FetchingMedia
            image: ImagePart | None = None
            if validated.reading_type.requires_image:
                stage = ReadingStage.FETCHING_MEDIA
                try:
                    media = await self._media.fetch(validated.image_url)
                except MediaFetchError as e:
                    logger.info(
                        "media.fetch_failed", reason=e.message, upstream_status=e.status_code
                    )
                    raise fail(ApiErrorCode.E_MEDIA_FETCH_FAILED, "Failed to fetch image") from e
                image = ImagePart(mime_type=media.mime_type, data_b64=media.data_b64)

            # ComposingPrompt
            stage = ReadingStage.COMPOSING_PROMPT
            prompt = compose(
                validated.reading_type.value,
                validated.cultural_origin,
                await self._load_profile(principal),
                today=self._clock().date(),
            )

            # InvokingInference
            stage = ReadingStage.INVOKING_INFERENCE
            try:
                response = await self._inference.generate(prompt, image)
            except InferenceError as e:
                raise fail(
                    ApiErrorCode.E_INFERENCE_FAILED, "Failed to generate reading. Please try again."
                ) from e

            # Persisting
            stage = ReadingStage.PERSISTING
            try:
                record = await run_in_threadpool(
                    lambda: self._repository.insert(
                        principal_id=principal.principal_id,
                        reading_type=validated.reading_type.value,
                        cultural_origin=validated.cultural_origin,
                        image_url=validated.image_url,
                        result_text=response.text,
                        is_premium_at_time=status.is_premium,
                        created_at=self._clock(),
                    )
                )
            except PersistenceError as e:
                logger.error("reading.persist_failed", error=str(e))
                raise fail(ApiErrorCode.E_PERSISTENCE_FAILED, "Failed to save reading") from e

            # ConsumingQuota
            stage = ReadingStage.CONSUMING_QUOTA
            await self._consume(principal.principal_id)

        except ReadingFailed:
            raise
        except Exception as e:
            logger.exception("reading.unexpected_error", stage=stage.value)
            raise ReadingFailed(
                stage,
                ApiErrorCode.E_INTERNAL,
                "Internal server error",
                elapsed_ms(),
                principal_id(),
            ) from e

        processing_time = elapsed_ms()
        logger.info(
            "reading.completed",
            **safe_kv(
                reading_id=str(record.id),
                reading_type=record.reading_type,
                cultural_origin=record.cultural_origin,
                is_premium=status.is_premium,
                result_chars=len(response.text),
                processing_time=processing_time,
            ),
        )
        return ReadingOutcome(
            reading_id=record.id,
            result=response.text,
            reading_type=record.reading_type,
            cultural_origin=record.cultural_origin,
            processing_time=processing_time,
            principal_id=principal.principal_id,
        )

    async def _load_profile(self, principal: Principal) -> BirthProfile | None:
        try:
            return await run_in_threadpool(self._repository.get_profile, principal)
        except PersistenceError as e:
            logger.warning("reading.profile_lookup_failed", error=str(e))
            return None

    async def _consume(self, principal_id: str) -> None:
        try:
            await run_in_threadpool(self._entitlements.consume, principal_id)
        except (QuotaExhausted, EntitlementStoreError) as e:
            logger.warning("quota.consume_failed", reason=type(e).__name__)
