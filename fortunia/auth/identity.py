"""Identity resolution for registered and guest callers.

Every request acts on behalf of exactly one Principal:
- Registered: a verified Supabase JWT; the token's sub claim is authoritative
- Guest: no valid token, identified by a client-held device id

Resolution happens once per request. Later stages receive the Principal
and never re-derive identity from the raw request.
"""

import re
from dataclasses import dataclass
from uuid import UUID

from fortunia.auth.verifier import TokenVerifier
from fortunia.errors import (
    ApiError,
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    UnauthenticatedError,
)
from fortunia.logging import get_logger
from fortunia.services.redact import hash_text

logger = get_logger(__name__)

GUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


@dataclass(frozen=True)
class Registered:
    """Caller authenticated by a verified bearer token."""

    user_id: UUID

    @property
    def principal_id(self) -> str:
        return str(self.user_id)

    @property
    def is_guest(self) -> bool:
        return False


@dataclass(frozen=True)
class Guest:
    """Anonymous caller identified by a device id provisioned for the client."""

    device_id: str

    @property
    def principal_id(self) -> str:
        return self.device_id

    @property
    def is_guest(self) -> bool:
        return True


Principal = Registered | Guest


def extract_bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header.

    Returns:
        The token, or None if the header is absent, not a bearer header, or empty.
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization[7:].strip()
    return token or None


def _same_identity(supplied: str, user_id: UUID) -> bool:
    try:
        return UUID(supplied) == user_id
    except ValueError:
        return False


class IdentityResolver:
    """Resolves the acting Principal from a bearer token and/or a supplied user id."""

    def __init__(self, verifier: TokenVerifier):
        self._verifier = verifier

    def resolve(
        self,
        bearer_token: str | None,
        supplied_user_id: str | None,
        *,
        strict: bool = False,
    ) -> Principal:
        """Resolve the principal for one request.

        Args:
            bearer_token: Raw token from the Authorization header, if any.
            supplied_user_id: Client-supplied user or device id, if any.
            strict: Reject (403) instead of overriding when the supplied id
                conflicts with a valid token.

        Returns:
            Registered when the token verifies, otherwise Guest.

        Raises:
            ApiError(E_UNAUTHENTICATED): No valid token and no supplied id.
            ApiError(E_IDENTITY_MISMATCH): strict and ids conflict.
            ApiError(E_INVALID_REQUEST): Supplied guest id is malformed.
            ApiError(E_AUTH_UNAVAILABLE): Token verification infrastructure is down.
        """
        supplied = (supplied_user_id or "").strip() or None

        if bearer_token:
            try:
                claims = self._verifier.verify(bearer_token)
            except ApiError as e:
                if e.code != ApiErrorCode.E_UNAUTHENTICATED or supplied is None:
                    raise
                logger.info("auth_fallback_to_guest", reason=e.message)
                return self._guest(supplied)

            principal = Registered(user_id=UUID(claims["sub"]))
            if supplied is not None and not _same_identity(supplied, principal.user_id):
                logger.warning(
                    "identity_mismatch",
                    authenticated_id=principal.principal_id,
                    supplied_id_hash=hash_text(supplied),
                    strict=strict,
                )
                if strict:
                    raise ForbiddenError(
                        ApiErrorCode.E_IDENTITY_MISMATCH,
                        "user_id does not match authenticated user",
                    )
            return principal

        if supplied is not None:
            return self._guest(supplied)

        raise UnauthenticatedError(message="Unauthorized: missing JWT or user_id")

    def require_registered(self, bearer_token: str | None) -> Registered:
        """Resolve a principal that must hold a valid token (no guest fallback)."""
        if not bearer_token:
            raise UnauthenticatedError(message="Missing or invalid Authorization header")
        claims = self._verifier.verify(bearer_token)
        return Registered(user_id=UUID(claims["sub"]))

    def _guest(self, device_id: str) -> Guest:
        if not GUEST_ID_PATTERN.match(device_id):
            raise InvalidRequestError(message="Invalid user_id")
        return Guest(device_id=device_id)
