"""Subscription reconciliation.

Store purchases are reported by the client after the app store confirms
them. Each report is upserted keyed on the store's transaction_id:

- Unknown transaction_id: insert a new row.
- Known transaction_id, same or newer purchase_date: overwrite the mutable
  fields (last write wins). Re-sending an identical payload changes nothing.
- Known transaction_id, older purchase_date: stale write, stored state is
  returned untouched.
- Known transaction_id owned by another principal: rejected.

Premium status is always derived from this table (an active subscription
whose expires_at is in the future). Nothing else may grant premium.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from fortunia.db.models import Subscription, SubscriptionEnvironment, SubscriptionStatus
from fortunia.db.session import transaction
from fortunia.errors import ApiErrorCode, ForbiddenError, InvalidRequestError
from fortunia.logging import get_logger
from fortunia.services.clock import Clock, utc_now

logger = get_logger(__name__)

_MUTABLE_FIELDS = ("product_id", "status", "expires_at", "purchase_date", "environment")


@dataclass(frozen=True)
class SubscriptionInput:
    """A subscription report from the client."""

    product_id: str
    status: str
    expires_at: datetime
    transaction_id: str
    purchase_date: datetime
    environment: str


@dataclass(frozen=True)
class SubscriptionState:
    """Stored subscription after reconciliation.

    Attributes:
        applied: False when the report was older than the stored state and ignored.
        is_premium: Whether the principal holds any active, unexpired subscription.
    """

    principal_id: str
    product_id: str
    status: str
    expires_at: datetime
    transaction_id: str
    purchase_date: datetime
    environment: str
    is_premium: bool
    applied: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.principal_id,
            "product_id": self.product_id,
            "status": self.status,
            "expires_at": self.expires_at.isoformat(),
            "transaction_id": self.transaction_id,
            "purchase_date": self.purchase_date.isoformat(),
            "environment": self.environment,
            "is_premium": self.is_premium,
            "applied": self.applied,
        }


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def has_active_subscription(db: Session, principal_id: str, now: datetime) -> bool:
    """Whether principal_id holds an active subscription that has not expired."""
    stmt = select(
        exists().where(
            Subscription.principal_id == principal_id,
            Subscription.status == SubscriptionStatus.active.value,
            Subscription.expires_at > now,
        )
    )
    return bool(db.execute(stmt).scalar())


class SubscriptionReconciler:
    """Idempotent upsert of subscription state keyed on transaction_id."""

    def __init__(self, session_factory: sessionmaker[Session], *, clock: Clock = utc_now):
        self._session_factory = session_factory
        self._clock = clock

    def upsert(self, principal_id: str, data: SubscriptionInput) -> SubscriptionState:
        """Insert or update the subscription for ``data.transaction_id``.

        Raises:
            InvalidRequestError: Unknown status or environment, or empty ids.
            ForbiddenError: The transaction belongs to another principal.
        """
        data = self._validate(data)
        with self._session_factory() as db:
            try:
                with transaction(db):
                    return self._apply(db, principal_id, data)
            except IntegrityError:
                # A concurrent request inserted the same transaction first;
                # the retry takes the update path.
                logger.info("subscription_upsert_race", transaction_id=data.transaction_id)
                with transaction(db):
                    return self._apply(db, principal_id, data)

    def is_premium(self, principal_id: str) -> bool:
        with self._session_factory() as db:
            return has_active_subscription(db, principal_id, self._clock())

    def _validate(self, data: SubscriptionInput) -> SubscriptionInput:
        if not data.product_id.strip() or not data.transaction_id.strip():
            raise InvalidRequestError(message="product_id and transaction_id must be non-empty")
        if data.status not in {s.value for s in SubscriptionStatus}:
            raise InvalidRequestError(message=f"Invalid subscription status: {data.status}")
        if data.environment not in {e.value for e in SubscriptionEnvironment}:
            raise InvalidRequestError(message=f"Invalid environment: {data.environment}")
        return SubscriptionInput(
            product_id=data.product_id,
            status=data.status,
            expires_at=_as_utc(data.expires_at),
            transaction_id=data.transaction_id,
            purchase_date=_as_utc(data.purchase_date),
            environment=data.environment,
        )

    def _apply(self, db: Session, principal_id: str, data: SubscriptionInput) -> SubscriptionState:
        now = self._clock()
        row = db.execute(
            select(Subscription)
            .where(Subscription.transaction_id == data.transaction_id)
            .with_for_update()
        ).scalar_one_or_none()

        applied = True
        if row is None:
            row = Subscription(
                principal_id=principal_id,
                transaction_id=data.transaction_id,
                created_at=now,
                updated_at=now,
                **{field: getattr(data, field) for field in _MUTABLE_FIELDS},
            )
            db.add(row)
            db.flush()
            logger.info(
                "subscription_created",
                transaction_id=data.transaction_id,
                status=data.status,
                environment=data.environment,
            )
        elif row.principal_id != principal_id:
            logger.warning(
                "subscription_owner_conflict",
                transaction_id=data.transaction_id,
            )
            raise ForbiddenError(
                ApiErrorCode.E_FORBIDDEN, "Transaction belongs to another account"
            )
        elif data.purchase_date < row.purchase_date:
            applied = False
            logger.info(
                "subscription_stale_write_ignored",
                transaction_id=data.transaction_id,
            )
        else:
            changed = [f for f in _MUTABLE_FIELDS if getattr(row, f) != getattr(data, f)]
            for field in changed:
                setattr(row, field, getattr(data, field))
            if changed:
                row.updated_at = now
                db.flush()
                logger.info(
                    "subscription_updated",
                    transaction_id=data.transaction_id,
                    changed_fields=changed,
                )

        return SubscriptionState(
            principal_id=row.principal_id,
            product_id=row.product_id,
            status=row.status,
            expires_at=row.expires_at,
            transaction_id=row.transaction_id,
            purchase_date=row.purchase_date,
            environment=row.environment,
            is_premium=has_active_subscription(db, principal_id, now),
            applied=applied,
        )
