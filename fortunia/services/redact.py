"""Redaction, hashing, and log guard utilities.

- hash_text: stable SHA-256 hex digest for log correlation
- safe_kv: log guard that blocks forbidden keys at call site

Never-log policy:
- API keys and bearer tokens
- Rendered prompts
- Generated reading or horoscope text
- Raw image bytes or base64 payloads
- Birth details

Allowed (with suffix):
- _chars, _length: length of text
- _sha256, _hash: hash of text
"""

import hashlib
import os

import structlog

FORBIDDEN_KEYS = frozenset(
    {
        "prompt",
        "content",
        "api_key",
        "bearer",
        "token",
        "secret",
        "result_text",
        "fortune_text",
        "prediction",
        "image_data",
        "birth_date",
        "birth_time",
        "raw_body",
    }
)

REDACTED_SUFFIXES = ("_sha256", "_hash", "_length", "_chars")


def hash_text(value: str) -> str:
    """SHA-256 hex digest of a string.

    Used for log correlation without exposing content.
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _has_redacted_suffix(key: str) -> bool:
    return any(key.endswith(suffix) for suffix in REDACTED_SUFFIXES)


def safe_kv(*, _env: str | None = None, **kwargs) -> dict:
    """Validate that no forbidden keys are present unless already redacted.

    Raises ValueError in local/test environments if a forbidden key is used
    without a redacted suffix. In staging/prod the offending keys are dropped
    and a warning is logged instead.

    Usage:
        logger.info("inference.request.finished", **safe_kv(
            model_name="gemini-2.0-flash-exp",
            prompt_chars=1234,        # OK: _chars suffix
            prompt_sha256="abc123",   # OK: _sha256 suffix
            # prompt="...",           # BLOCKED: forbidden key
        ))

    Args:
        _env: Override for FORTUNIA_ENV (test-only). If None, reads from env.
        **kwargs: Keyword arguments to validate and return.

    Returns:
        The validated kwargs.

    Raises:
        ValueError: In local/test, if a forbidden key is used without redacted suffix.
    """
    violations = [
        key for key in kwargs if key in FORBIDDEN_KEYS and not _has_redacted_suffix(key)
    ]

    if violations:
        msg = f"Forbidden log keys without redacted suffix: {violations}"
        env = _env or os.environ.get("FORTUNIA_ENV", "local")
        if env in ("local", "test"):
            raise ValueError(msg)
        structlog.get_logger("fortunia.services.redact").warning(
            "safe_kv_violation", forbidden_keys=violations
        )
        return {k: v for k, v in kwargs.items() if k not in violations}

    return kwargs
