"""Random strings and PKCE challenge derivation.

State values and PKCE verifiers are drawn from the RFC 3986 *unreserved*
alphabet (``A-Z a-z 0-9 - . _ ~``), which is also the alphabet :rfc:`7636`
mandates for ``code_verifier``.

When the operating system offers no secure entropy source the functions
here refuse to run (:class:`~oauthflow.exceptions.InsecureRandomError`)
unless the caller explicitly opts into a weaker generator with
``allow_insecure=True``. :func:`random_string_with_source` reports which
generator produced a value.
"""

from __future__ import annotations

import base64
import enum
import hashlib
import logging
import os
import random
import secrets
import string

from oauthflow.exceptions import InsecureRandomError

logger = logging.getLogger(__name__)

UNRESERVED_CHARS = string.ascii_letters + string.digits + "-._~"

STATE_LENGTH = 32
VERIFIER_LENGTH = 128


class RandomSource(str, enum.Enum):
    """Which generator produced a random string."""

    SECURE = "secure"
    INSECURE = "insecure"


def _secure_source_available() -> bool:
    """Return True when ``os.urandom`` is backed by an OS entropy source."""
    try:
        os.urandom(1)
    except NotImplementedError:
        return False
    return True


def random_string_with_source(
    length: int, *, allow_insecure: bool = False
) -> tuple[str, RandomSource]:
    """Generate a random unreserved-alphabet string and report its source.

    Args:
        length: Number of characters, must be positive.
        allow_insecure: Fall back to :class:`random.Random` when no secure
            source exists instead of raising.

    Returns:
        A tuple of ``(value, source)``.

    Raises:
        ValueError: If *length* is not positive.
        InsecureRandomError: If no secure source exists and
            *allow_insecure* is false.
    """
    if length <= 0:
        raise ValueError(f"length must be positive, got {length}")

    if _secure_source_available():
        value = "".join(secrets.choice(UNRESERVED_CHARS) for _ in range(length))
        return value, RandomSource.SECURE

    if not allow_insecure:
        raise InsecureRandomError(
            "No cryptographically secure random source is available; "
            "refusing to generate OAuth2 state or PKCE values"
        )

    logger.warning("Secure random source unavailable, using insecure fallback generator")
    rng = random.Random()
    value = "".join(rng.choice(UNRESERVED_CHARS) for _ in range(length))
    return value, RandomSource.INSECURE


def random_string(length: int, *, allow_insecure: bool = False) -> str:
    """Generate a random string from the unreserved alphabet.

    See :func:`random_string_with_source` for the failure behaviour.
    """
    value, _ = random_string_with_source(length, allow_insecure=allow_insecure)
    return value


def pkce_challenge(verifier: str) -> str:
    """Derive the S256 ``code_challenge`` for *verifier*.

    Returns:
        ``base64url(sha256(verifier))`` without ``=`` padding (43 characters).
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce_pair(*, allow_insecure: bool = False) -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.
    """
    verifier = random_string(VERIFIER_LENGTH, allow_insecure=allow_insecure)
    return verifier, pkce_challenge(verifier)
