"""Advisory quota cache using Redis.

Cache-aside wrapper for the /quota display endpoint only. The entitlement
store remains authoritative: a fresh read always refreshes the cache, and
the cached copy is served (flagged stale) only when the store cannot be
reached. consume() never consults this cache.

Redis keys:
- quota:{principal_id} - JSON EntitlementState, TTL 5 minutes

Fail modes:
- Redis unavailable: cache is skipped, store errors surface unchanged
"""

import json

import redis

from fortunia.logging import get_logger
from fortunia.services.entitlements import EntitlementState, EntitlementStore, EntitlementStoreError

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 300


class QuotaCache:
    """Stale-tolerant quota snapshots keyed by principal."""

    def __init__(self, redis_client: redis.Redis | None = None, ttl_s: int = DEFAULT_TTL_SECONDS):
        """Initialize the cache.

        Args:
            redis_client: Sync Redis client (decode_responses=True). None disables caching.
            ttl_s: Snapshot lifetime in seconds.
        """
        self._redis = redis_client
        self._ttl_s = ttl_s

    @staticmethod
    def _key(principal_id: str) -> str:
        return f"quota:{principal_id}"

    def get(self, principal_id: str) -> EntitlementState | None:
        if self._redis is None:
            return None
        try:
            raw = self._redis.get(self._key(principal_id))
        except redis.RedisError as e:
            logger.warning("quota_cache.read_failed", error_type=type(e).__name__)
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return EntitlementState.build(
                int(data["quota_used"]), int(data["quota_limit"]), bool(data["is_premium"])
            )
        except (ValueError, KeyError, TypeError):
            logger.warning("quota_cache.corrupt_entry")
            return None

    def put(self, principal_id: str, state: EntitlementState) -> None:
        if self._redis is None:
            return
        try:
            self._redis.set(self._key(principal_id), json.dumps(state.to_dict()), ex=self._ttl_s)
        except redis.RedisError as e:
            logger.warning("quota_cache.write_failed", error_type=type(e).__name__)

    def read_through(
        self, store: EntitlementStore, principal_id: str
    ) -> tuple[EntitlementState, bool]:
        """Read from the store, falling back to the cached snapshot on failure.

        Returns:
            (state, stale) where stale is True if the snapshot was served.

        Raises:
            EntitlementStoreError: Store failed and no snapshot is cached.
        """
        try:
            state = store.get_status(principal_id)
        except EntitlementStoreError:
            cached = self.get(principal_id)
            if cached is None:
                raise
            logger.warning("quota_cache.serving_stale")
            return cached, True

        self.put(principal_id, state)
        return state, False
