"""Injectable wall clock.

Services take a ``clock`` callable instead of calling ``datetime.now``
directly so tests can pin "now" (quota day rollover, birth-date age,
retention cutoffs, share-card file names).
"""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)
