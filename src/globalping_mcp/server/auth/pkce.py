"""PKCE (RFC 7636) and random state generation."""

from __future__ import annotations

import secrets
from typing import Final, NamedTuple

from authlib.common.security import generate_token
from authlib.oauth2.rfc7636 import create_s256_code_challenge

CODE_VERIFIER_LENGTH: Final[int] = 64
MIN_CODE_VERIFIER_LENGTH: Final[int] = 43
MAX_CODE_VERIFIER_LENGTH: Final[int] = 128
STATE_ENTROPY_BYTES: Final[int] = 32


class PKCEPair(NamedTuple):
    code_verifier: str
    code_challenge: str


def generate_pkce_pair(length: int = CODE_VERIFIER_LENGTH) -> PKCEPair:
    """Generate a PKCE code verifier and its S256 challenge.

    The verifier is drawn from [A-Za-z0-9] with a system random source; the
    challenge is base64url(SHA-256(verifier)) without padding.
    """
    if not MIN_CODE_VERIFIER_LENGTH <= length <= MAX_CODE_VERIFIER_LENGTH:
        raise ValueError(
            f"PKCE code verifier length must be between {MIN_CODE_VERIFIER_LENGTH} "
            f"and {MAX_CODE_VERIFIER_LENGTH}, got {length}"
        )
    code_verifier = generate_token(length)
    return PKCEPair(code_verifier, create_s256_code_challenge(code_verifier))


def verify_code_challenge(code_verifier: str, code_challenge: str) -> bool:
    """Check an S256 challenge against a verifier in constant time."""
    return secrets.compare_digest(
        create_s256_code_challenge(code_verifier), code_challenge
    )


def generate_state() -> str:
    """Generate an opaque OAuth state value with 32 bytes of entropy."""
    return secrets.token_urlsafe(STATE_ENTROPY_BYTES)
