"""Storage path building utilities.

All object keys inside the bucket are built here so the folder layout
(and the test-run prefix) is applied in exactly one place.

Path Invariant:
    - Source images: readings/... (uploaded by clients)
    - Share cards:   share_cards/{principal_id}-{epoch_ms}.png
    - Test runs:     test_runs/{run_id}/ prepended to both

Rules:
    - No leading slash
    - Prefix applied exactly once
"""

import os
from urllib.parse import unquote, urlparse

# Environment variable for test run prefix
TEST_PREFIX_ENV_VAR = "STORAGE_TEST_PREFIX"

READINGS_FOLDER = "readings"
SHARE_CARDS_FOLDER = "share_cards"


def _get_test_prefix() -> str:
    """Empty string in production, "test_runs/{run_id}/" in test."""
    prefix = os.environ.get(TEST_PREFIX_ENV_VAR, "")
    if prefix and not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return prefix


def folder_path(folder: str) -> str:
    """Return the prefixed folder key (no trailing slash)."""
    return f"{_get_test_prefix()}{folder}"


def build_share_card_path(principal_id: str, epoch_ms: int) -> str:
    """Build the object key for a rendered share card.

    Example:
        >>> build_share_card_path("d1", 1700000000000)
        'share_cards/d1-1700000000000.png'
    """
    return f"{folder_path(SHARE_CARDS_FOLDER)}/{principal_id}-{epoch_ms}.png"


def path_in_bucket_from_url(url: str | None, bucket: str) -> str | None:
    """Extract the object key from a Supabase Storage URL for ``bucket``.

    Recognizes public, signed and authenticated object URLs:
    .../storage/v1/object/{public|sign|authenticated/}{bucket}/{key}

    Returns:
        The object key, or None if the URL does not point into the bucket.
    """
    if not url:
        return None
    path = unquote(urlparse(url).path)
    marker = "/storage/v1/object/"
    idx = path.find(marker)
    if idx < 0:
        return None
    rest = path[idx + len(marker) :]
    for access in ("public/", "sign/", "authenticated/"):
        if rest.startswith(access):
            rest = rest[len(access) :]
            break
    if not rest.startswith(f"{bucket}/"):
        return None
    key = rest[len(bucket) + 1 :]
    return key or None
