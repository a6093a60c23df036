"""Composition root.

Builds every service once per process and hands them to request handlers
through ``app.state.services``. Tests build a Services container from
in-memory doubles and pass it to ``create_app``.
"""

from dataclasses import dataclass

import httpx
import redis
from sqlalchemy.orm import Session, sessionmaker

from fortunia.auth.identity import IdentityResolver
from fortunia.auth.verifier import SupabaseJwksVerifier, TokenVerifier
from fortunia.config import Settings
from fortunia.db.session import get_session_factory
from fortunia.services.clock import Clock, utc_now
from fortunia.services.entitlements import EntitlementStore, SqlEntitlementStore
from fortunia.services.horoscope import HoroscopeService
from fortunia.services.llm import GeminiAdapter, InferenceClient
from fortunia.services.media import MediaFetcher
from fortunia.services.quota_cache import QuotaCache
from fortunia.services.readings import ReadingOrchestrator, ReadingRepository
from fortunia.services.retention import RetentionSweeper
from fortunia.services.share_cards import ShareCardService
from fortunia.services.subscriptions import SubscriptionReconciler
from fortunia.storage.client import StorageClientBase, get_storage_client


@dataclass
class Services:
    settings: Settings
    resolver: IdentityResolver
    entitlements: EntitlementStore
    quota_cache: QuotaCache
    subscriptions: SubscriptionReconciler
    readings: ReadingOrchestrator
    share_cards: ShareCardService
    horoscope: HoroscopeService
    retention: RetentionSweeper
    clock: Clock = utc_now


def create_token_verifier(settings: Settings) -> SupabaseJwksVerifier:
    """Supabase JWKS verifier; only env values differ between environments."""
    return SupabaseJwksVerifier(
        jwks_url=settings.supabase_jwks_url,  # type: ignore[arg-type]
        issuer=settings.normalized_issuer,  # type: ignore[arg-type]
        audiences=settings.audience_list,
    )


def create_inference_client(settings: Settings, http_client: httpx.AsyncClient) -> InferenceClient:
    return InferenceClient(
        GeminiAdapter(http_client),
        api_key=settings.gemini_api_key,
        model_name=settings.gemini_model,
        max_attempts=settings.inference_max_attempts,
        attempt_timeout_s=settings.inference_attempt_timeout_s,
        backoff_base_s=settings.inference_backoff_base_s,
        backoff_max_s=settings.inference_backoff_max_s,
    )


def create_retention_sweeper(
    settings: Settings,
    session_factory: sessionmaker[Session],
    storage: StorageClientBase,
    *,
    clock: Clock = utc_now,
) -> RetentionSweeper:
    return RetentionSweeper(
        session_factory,
        storage,
        batch_size=settings.retention_batch_size,
        list_limit=settings.retention_list_limit,
        clock=clock,
    )


def build_services(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient,
    redis_client: redis.Redis | None = None,
    token_verifier: TokenVerifier | None = None,
    session_factory: sessionmaker[Session] | None = None,
    storage: StorageClientBase | None = None,
    entitlements: EntitlementStore | None = None,
    inference: InferenceClient | None = None,
    clock: Clock = utc_now,
) -> Services:
    """Wire the production object graph.

    Keyword overrides let tests swap individual collaborators while keeping
    the rest of the wiring real.
    """
    session_factory = session_factory or get_session_factory()
    storage = storage or get_storage_client(settings)
    resolver = IdentityResolver(token_verifier or create_token_verifier(settings))
    entitlements = entitlements or SqlEntitlementStore(
        session_factory, default_limit=settings.free_daily_quota, clock=clock
    )
    inference = inference or create_inference_client(settings, http_client)
    repository = ReadingRepository(session_factory)

    return Services(
        settings=settings,
        resolver=resolver,
        entitlements=entitlements,
        quota_cache=QuotaCache(redis_client, ttl_s=settings.quota_cache_ttl_s),
        subscriptions=SubscriptionReconciler(session_factory, clock=clock),
        readings=ReadingOrchestrator(
            resolver,
            entitlements,
            MediaFetcher(
                http_client,
                max_bytes=settings.max_image_bytes,
                timeout_s=settings.media_fetch_timeout_s,
            ),
            inference,
            repository,
            clock=clock,
        ),
        share_cards=ShareCardService(storage, repository, clock=clock),
        horoscope=HoroscopeService(inference, clock=clock),
        retention=create_retention_sweeper(settings, session_factory, storage, clock=clock),
        clock=clock,
    )
