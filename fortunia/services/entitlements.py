"""Entitlement store: daily free quota and premium bypass.

Contract:
- get_status(principal_id): read-only, safe to call concurrently. A
  principal with no ledger row reads as zero used.
- consume(principal_id): atomically takes one unit. Fails with
  QuotaExhausted if the principal is not premium and has nothing left.

Atomicity comes from the backing store, never from in-process locks:
SqlEntitlementStore issues a single conditional UPDATE that performs the
day rollover, the ceiling check and the increment together. Two requests
racing for the last unit cannot both match the WHERE clause.

The daily reset is a UTC date boundary stored in the ledger row
(quota_date). Rows from a previous day read as zero used, and the next
consume resets and increments in the same statement.
"""

import threading
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol

from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fortunia.db.models import QuotaLedger
from fortunia.db.session import insert_ignoring_conflict, transaction
from fortunia.logging import get_logger
from fortunia.services.clock import Clock, utc_now
from fortunia.services.subscriptions import has_active_subscription

logger = get_logger(__name__)

DEFAULT_QUOTA_LIMIT = 3


@dataclass(frozen=True)
class EntitlementState:
    """Quota and premium state for one principal.

    quota_remaining is limit minus used, floored at zero.
    """

    quota_used: int
    quota_limit: int
    quota_remaining: int
    is_premium: bool

    @classmethod
    def build(cls, quota_used: int, quota_limit: int, is_premium: bool) -> "EntitlementState":
        return cls(
            quota_used=quota_used,
            quota_limit=quota_limit,
            quota_remaining=max(quota_limit - quota_used, 0),
            is_premium=is_premium,
        )

    @property
    def can_consume(self) -> bool:
        return self.is_premium or self.quota_remaining > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "quota_used": self.quota_used,
            "quota_limit": self.quota_limit,
            "quota_remaining": self.quota_remaining,
            "is_premium": self.is_premium,
        }


class QuotaExhausted(Exception):
    """The principal has no free readings left today and is not premium.

    An expected, user-facing condition (HTTP 429), not a system failure.
    """

    def __init__(self, principal_id: str, state: EntitlementState):
        self.principal_id = principal_id
        self.state = state
        super().__init__("Daily quota exceeded")


class EntitlementStoreError(Exception):
    """The entitlement backend could not be reached or failed."""


class EntitlementStore(Protocol):
    """Interface the reading pipeline and quota endpoint depend on."""

    def get_status(self, principal_id: str) -> EntitlementState: ...

    def consume(self, principal_id: str) -> EntitlementState: ...


class SqlEntitlementStore:
    """Entitlement store backed by the quota_ledger and subscriptions tables."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        default_limit: int = DEFAULT_QUOTA_LIMIT,
        clock: Clock = utc_now,
    ):
        self._session_factory = session_factory
        self._default_limit = default_limit
        self._clock = clock

    def get_status(self, principal_id: str) -> EntitlementState:
        """Read current quota state without creating or mutating anything.

        Raises:
            EntitlementStoreError: On database failure.
        """
        now = self._clock()
        try:
            with self._session_factory() as db:
                row = db.execute(
                    select(QuotaLedger.quota_date, QuotaLedger.quota_used, QuotaLedger.quota_limit)
                    .where(QuotaLedger.principal_id == principal_id)
                ).one_or_none()
                is_premium = has_active_subscription(db, principal_id, now)
        except SQLAlchemyError as e:
            raise EntitlementStoreError("Failed to read entitlement state") from e

        if row is None:
            return EntitlementState.build(0, self._default_limit, is_premium)

        used = row.quota_used if row.quota_date == now.date() else 0
        return EntitlementState.build(used, row.quota_limit, is_premium)

    def consume(self, principal_id: str) -> EntitlementState:
        """Atomically consume one unit.

        Raises:
            QuotaExhausted: Not premium and no units left today.
            EntitlementStoreError: On database failure.
        """
        now = self._clock()
        today = now.date()
        try:
            with self._session_factory() as db, transaction(db):
                self._ensure_row(db, principal_id, today)
                is_premium = has_active_subscription(db, principal_id, now)
                result = db.execute(self._consume_statement(principal_id, today, is_premium, now))
                row = result.one_or_none()
        except SQLAlchemyError as e:
            raise EntitlementStoreError("Failed to consume quota") from e

        if row is None:
            state = self.get_status(principal_id)
            logger.info(
                "quota.exhausted",
                quota_used=state.quota_used,
                quota_limit=state.quota_limit,
            )
            raise QuotaExhausted(principal_id, state)

        return EntitlementState.build(row.quota_used, row.quota_limit, is_premium)

    def _ensure_row(self, db: Session, principal_id: str, today: date) -> None:
        """Create the ledger row if missing (no-op if it already exists)."""
        insert_ignoring_conflict(
            db,
            QuotaLedger,
            [QuotaLedger.principal_id],
            principal_id=principal_id,
            quota_date=today,
            quota_used=0,
            quota_limit=self._default_limit,
            total_consumed=0,
            updated_at=self._clock(),
        )

    @staticmethod
    def _consume_statement(principal_id: str, today: date, is_premium: bool, now):
        """Single-statement rollover + ceiling check + increment.

        SET expressions see the pre-update row, so quota_date in the CASE
        refers to the stored day, not the new value.
        """
        same_day = QuotaLedger.quota_date == today
        stmt = update(QuotaLedger).where(QuotaLedger.principal_id == principal_id)
        if not is_premium:
            stmt = stmt.where(
                or_(
                    and_(~same_day, QuotaLedger.quota_limit > 0),
                    QuotaLedger.quota_used < QuotaLedger.quota_limit,
                )
            )
        return stmt.values(
            quota_used=case((same_day, QuotaLedger.quota_used + 1), else_=1),
            quota_date=today,
            total_consumed=QuotaLedger.total_consumed + 1,
            updated_at=now,
        ).returning(QuotaLedger.quota_used, QuotaLedger.quota_limit)


class InMemoryEntitlementStore:
    """Lock-protected in-process store with the same semantics.

    Used by tests and local development without a database. Exposes call
    counters and failure switches so pipeline tests can assert which stages
    touched the store.
    """

    def __init__(
        self,
        default_limit: int = DEFAULT_QUOTA_LIMIT,
        premium: set[str] | None = None,
        clock: Clock = utc_now,
    ):
        self._default_limit = default_limit
        self._clock = clock
        self._lock = threading.Lock()
        self._ledger: dict[str, tuple[date, int]] = {}
        self.premium: set[str] = set(premium or ())
        self.fail_status = False
        self.fail_consume = False
        self.status_calls = 0
        self.consume_calls = 0

    def set_used(self, principal_id: str, quota_used: int) -> None:
        """Seed today's usage for a principal (test helper)."""
        with self._lock:
            self._ledger[principal_id] = (self._clock().date(), quota_used)

    def get_status(self, principal_id: str) -> EntitlementState:
        with self._lock:
            self.status_calls += 1
            if self.fail_status:
                raise EntitlementStoreError("Simulated status failure")
            return self._state(principal_id)

    def consume(self, principal_id: str) -> EntitlementState:
        with self._lock:
            self.consume_calls += 1
            if self.fail_consume:
                raise EntitlementStoreError("Simulated consume failure")
            state = self._state(principal_id)
            if not state.can_consume:
                raise QuotaExhausted(principal_id, state)
            self._ledger[principal_id] = (self._clock().date(), state.quota_used + 1)
            return self._state(principal_id)

    def _state(self, principal_id: str) -> EntitlementState:
        today = self._clock().date()
        quota_date, used = self._ledger.get(principal_id, (today, 0))
        if quota_date != today:
            used = 0
        return EntitlementState.build(used, self._default_limit, principal_id in self.premium)
