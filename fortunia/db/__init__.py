"""Database module for Fortunia.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from fortunia.db.engine import create_db_engine, get_engine
from fortunia.db.models import (
    Base,
    QuotaLedger,
    Reading,
    Subscription,
    SubscriptionEnvironment,
    SubscriptionStatus,
    UserProfile,
)
from fortunia.db.session import (
    create_session_factory,
    get_session_factory,
    insert_ignoring_conflict,
    transaction,
)

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "create_session_factory",
    "get_session_factory",
    "insert_ignoring_conflict",
    "transaction",
    # Base
    "Base",
    # Enums
    "SubscriptionStatus",
    "SubscriptionEnvironment",
    # Models
    "UserProfile",
    "QuotaLedger",
    "Subscription",
    "Reading",
]
