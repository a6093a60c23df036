"""Tests for the entitlement store.

Covers the free daily quota, the UTC day rollover, premium bypass derived
from subscriptions, and the at-most-limit guarantee under concurrent
consumes.
"""

import threading
from collections.abc import Generator
from datetime import timedelta

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from fortunia.db.models import Base, QuotaLedger
from fortunia.db.session import create_session_factory
from fortunia.services.entitlements import (
    EntitlementState,
    EntitlementStoreError,
    InMemoryEntitlementStore,
    QuotaExhausted,
    SqlEntitlementStore,
)
from fortunia.services.subscriptions import SubscriptionInput, SubscriptionReconciler
from tests.helpers import create_guest_id, create_test_user_id


@pytest.fixture
def store(session_factory, clock) -> SqlEntitlementStore:
    return SqlEntitlementStore(session_factory, default_limit=3, clock=clock)


def grant_subscription(session_factory, clock, principal_id: str, *, expires_in_days: int = 30):
    SubscriptionReconciler(session_factory, clock=clock).upsert(
        principal_id,
        SubscriptionInput(
            product_id="fortunia.premium.monthly",
            status="active",
            expires_at=clock() + timedelta(days=expires_in_days),
            transaction_id=f"txn-{principal_id}",
            purchase_date=clock() - timedelta(days=1),
            environment="production",
        ),
    )


class TestEntitlementState:
    def test_remaining_is_floored_at_zero(self):
        state = EntitlementState.build(quota_used=5, quota_limit=3, is_premium=False)
        assert state.quota_remaining == 0
        assert state.can_consume is False

    def test_premium_can_always_consume(self):
        assert EntitlementState.build(9, 3, is_premium=True).can_consume is True


class TestSqlEntitlementStore:
    def test_new_principal_reads_as_unused(self, store):
        state = store.get_status(create_guest_id())
        assert state.to_dict() == {
            "quota_used": 0,
            "quota_limit": 3,
            "quota_remaining": 3,
            "is_premium": False,
        }

    def test_get_status_creates_nothing(self, store, session_factory):
        store.get_status(create_guest_id())
        with session_factory() as db:
            assert db.execute(select(func.count()).select_from(QuotaLedger)).scalar() == 0

    def test_consume_until_exhausted(self, store):
        principal_id = create_guest_id()
        remaining = [store.consume(principal_id).quota_remaining for _ in range(3)]
        assert remaining == [2, 1, 0]

        with pytest.raises(QuotaExhausted) as exc_info:
            store.consume(principal_id)
        assert exc_info.value.state.quota_used == 3
        assert exc_info.value.state.quota_remaining == 0

        assert store.get_status(principal_id).quota_used == 3

    def test_principals_are_independent(self, store):
        a, b = create_guest_id(), create_guest_id()
        store.consume(a)
        store.consume(a)
        assert store.get_status(b).quota_used == 0

    def test_next_utc_day_resets_usage(self, store, clock):
        principal_id = create_guest_id()
        for _ in range(3):
            store.consume(principal_id)

        clock.advance(days=1)
        assert store.get_status(principal_id).quota_used == 0

        state = store.consume(principal_id)
        assert state.quota_used == 1
        assert state.quota_remaining == 2

    def test_total_consumed_survives_rollover(self, store, clock, session_factory):
        principal_id = create_guest_id()
        store.consume(principal_id)
        clock.advance(days=1)
        store.consume(principal_id)

        with session_factory() as db:
            row = db.get(QuotaLedger, principal_id)
        assert row.total_consumed == 2
        assert row.quota_used == 1

    def test_active_subscription_bypasses_limit(self, store, session_factory, clock):
        principal_id = str(create_test_user_id())
        grant_subscription(session_factory, clock, principal_id)

        for _ in range(5):
            state = store.consume(principal_id)
        assert state.is_premium is True
        assert state.quota_used == 5
        assert store.get_status(principal_id).can_consume is True

    def test_expired_subscription_is_not_premium(self, store, session_factory, clock):
        principal_id = str(create_test_user_id())
        grant_subscription(session_factory, clock, principal_id, expires_in_days=1)
        clock.advance(days=2)

        assert store.get_status(principal_id).is_premium is False

    def test_zero_limit_never_consumes(self, session_factory, clock):
        store = SqlEntitlementStore(session_factory, default_limit=0, clock=clock)
        with pytest.raises(QuotaExhausted):
            store.consume(create_guest_id())


@pytest.fixture
def file_session_factory(tmp_path) -> Generator[sessionmaker[Session], None, None]:
    """Session factory over an on-disk SQLite file, one connection per thread."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield create_session_factory(engine)
    engine.dispose()


def race_consumes(store, principal_id: str, workers: int) -> tuple[list, list, list]:
    successes = []
    exhausted = []
    errors = []
    barrier = threading.Barrier(workers)

    def worker():
        barrier.wait()
        try:
            successes.append(store.consume(principal_id))
        except QuotaExhausted:
            exhausted.append(principal_id)
        except EntitlementStoreError as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return successes, exhausted, errors


class TestSqlEntitlementStoreConcurrency:
    """Concurrent consumes against separate database connections."""

    def test_racing_for_the_last_unit(self, file_session_factory, clock):
        store = SqlEntitlementStore(file_session_factory, default_limit=3, clock=clock)
        principal_id = create_guest_id()
        store.consume(principal_id)
        store.consume(principal_id)

        successes, exhausted, errors = race_consumes(store, principal_id, 8)

        assert errors == []
        assert len(successes) == 1
        assert len(exhausted) == 7
        assert successes[0].quota_remaining == 0
        assert store.get_status(principal_id).quota_used == 3

    def test_fresh_principal_never_exceeds_limit(self, file_session_factory, clock):
        store = SqlEntitlementStore(file_session_factory, default_limit=3, clock=clock)
        principal_id = create_guest_id()

        successes, exhausted, errors = race_consumes(store, principal_id, 10)

        assert errors == []
        assert len(successes) == 3
        assert len(exhausted) == 7
        assert sorted(state.quota_used for state in successes) == [1, 2, 3]
        with file_session_factory() as db:
            row = db.get(QuotaLedger, principal_id)
            assert row.quota_used == 3
            assert row.total_consumed == 3


class TestInMemoryEntitlementStore:
    def test_same_semantics_as_sql_store(self, entitlements):
        principal_id = create_guest_id()
        for _ in range(3):
            entitlements.consume(principal_id)
        with pytest.raises(QuotaExhausted):
            entitlements.consume(principal_id)

    def test_premium_set(self, clock):
        store = InMemoryEntitlementStore(default_limit=1, premium={"vip"}, clock=clock)
        store.consume("vip")
        store.consume("vip")
        assert store.get_status("vip").quota_used == 2

    def test_concurrent_consumes_never_exceed_limit(self, entitlements):
        principal_id = create_guest_id()
        successes = []
        failures = []
        barrier = threading.Barrier(12)

        def worker():
            barrier.wait()
            try:
                successes.append(entitlements.consume(principal_id))
            except QuotaExhausted:
                failures.append(principal_id)

        threads = [threading.Thread(target=worker) for _ in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(successes) == 3
        assert len(failures) == 9
        assert entitlements.get_status(principal_id).quota_used == 3
