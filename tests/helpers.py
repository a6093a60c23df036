"""Test helpers for authentication and common test operations.

Provides:
- Token minting for test authentication
- Header generation for test requests
- Small image payloads for media tests
- Reading rows with matching stored objects for retention tests
"""

import io
import time
from uuid import UUID, uuid4

import jwt
from PIL import Image
from sqlalchemy import select

from fortunia.config import Settings
from fortunia.db.models import Reading
from tests.support.mock_verifier import MockJwtVerifier

# Default test token settings
DEFAULT_ISSUER = "test-issuer"
DEFAULT_AUDIENCE = "test-audience"
DEFAULT_EXPIRES_IN = 3600  # 1 hour

TAROT_TEXT = "The Star, the Moon and the Sun rise in turn across your path."


def mint_test_token(
    user_id: UUID | str,
    expires_in: int = DEFAULT_EXPIRES_IN,
    issuer: str = DEFAULT_ISSUER,
    audience: str = DEFAULT_AUDIENCE,
    **extra_claims,
) -> str:
    """Mint a valid test JWT token.

    Args:
        user_id: The user ID to set as the `sub` claim.
        expires_in: Token validity in seconds from now.
        issuer: The `iss` claim value.
        audience: The `aud` claim value.
        **extra_claims: Additional claims to include in the token.

    Returns:
        A signed JWT token string.
    """
    private_key = MockJwtVerifier.get_private_key()

    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        **extra_claims,
    }

    return jwt.encode(payload, private_key, algorithm="RS256")


def mint_expired_token(user_id: UUID | str) -> str:
    """Mint a token that expired 1 hour ago (well past the clock skew)."""
    return mint_test_token(user_id=user_id, expires_in=-3600)


def auth_headers(user_id: UUID | str, **token_kwargs) -> dict[str, str]:
    """Authorization header carrying a freshly minted token."""
    return {"Authorization": f"Bearer {mint_test_token(user_id, **token_kwargs)}"}


def create_test_user_id() -> UUID:
    """Generate a random registered user id."""
    return uuid4()


def create_guest_id() -> str:
    """Generate a device id of the shape mobile clients send."""
    return f"device-{uuid4().hex[:16]}"


def png_bytes(size: tuple[int, int] = (8, 8), color: str = "purple") -> bytes:
    """Encode a tiny solid-color PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_settings(**overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {
        "DATABASE_URL": "sqlite://",
        "FORTUNIA_ENV": "test",
        "SUPABASE_JWKS_URL": "http://localhost:54321/auth/v1/.well-known/jwks.json",
        "SUPABASE_ISSUER": "test-issuer",
        "SUPABASE_AUDIENCES": "test-audience",
        "GEMINI_API_KEY": "test-gemini-key",
        "GEMINI_MODEL": "gemini-test",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def add_reading(session_factory, storage, *, name, created_at, with_card=True, with_image=False):
    """Insert a reading plus the objects its URLs point to."""
    card_path = f"share_cards/{name}.png"
    image_path = f"readings/{name}.jpg"
    if with_card:
        storage.put_object(card_path, b"png", created_at=created_at)
    if with_image:
        storage.put_object(image_path, b"jpg", content_type="image/jpeg", created_at=created_at)

    with session_factory() as db:
        reading = Reading(
            principal_id=f"device-{name}",
            reading_type="palm" if with_image else "tarot",
            cultural_origin="chinese",
            image_url=storage.public_url(image_path) if with_image else None,
            result_text="text",
            share_card_url=storage.public_url(card_path) if with_card else None,
            is_premium_at_time=False,
            created_at=created_at,
        )
        db.add(reading)
        db.commit()
        return reading.id


def reading_ids(session_factory) -> set:
    with session_factory() as db:
        return set(db.execute(select(Reading.id)).scalars())
