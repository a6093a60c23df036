"""Authentication module.

This module provides:
- Token verification (Supabase JWKS verifier)
- Principal resolution for registered and guest callers

Test-only verifiers are in tests/support/mock_verifier.py
"""

from fortunia.auth.identity import (
    Guest,
    IdentityResolver,
    Principal,
    Registered,
    extract_bearer_token,
)
from fortunia.auth.verifier import SupabaseJwksVerifier, TokenVerifier

__all__ = [
    "Guest",
    "IdentityResolver",
    "Principal",
    "Registered",
    "extract_bearer_token",
    "SupabaseJwksVerifier",
    "TokenVerifier",
]
