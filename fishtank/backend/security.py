"""Security helpers for nonces, addresses and challenge signatures."""

from __future__ import annotations

import hashlib
import hmac
import re
import secrets


NONCE_BYTES = 16
ZERO_ADDRESS = "0x" + "0" * 40
ZERO_RUN_ID = "0x" + "0" * 64

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_HEX_REF_RE = re.compile(r"^0x[a-fA-F0-9]+$")


def generate_nonce() -> str:
    """Generate random hex used to salt run identifiers."""
    return secrets.token_hex(NONCE_BYTES)


def is_address(value: str | None) -> bool:
    return bool(value) and _ADDRESS_RE.match(value) is not None


def is_hex_reference(value: str | None) -> bool:
    """True for a 0x-prefixed hex string such as a tx hash or address."""
    return bool(value) and _HEX_REF_RE.match(value) is not None


def sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def sign_challenge(expires_at: int, secret: str) -> str:
    """Create a stateless challenge id via hmac-sha256(secret, expires_at)."""
    digest = hmac.new(secret.encode("utf-8"), str(expires_at).encode("utf-8"), hashlib.sha256)
    return f"{expires_at}.{digest.hexdigest()}"


def verify_challenge(challenge_id: str | None, secret: str, now: float) -> bool:
    """Check a challenge id signature and that it has not expired."""
    if not challenge_id or "." not in challenge_id:
        return False
    raw_expiry, _ = challenge_id.split(".", maxsplit=1)
    try:
        expires_at = int(raw_expiry)
    except ValueError:
        return False
    if expires_at < now:
        return False
    expected = sign_challenge(expires_at, secret).encode("utf-8")
    return hmac.compare_digest(expected, challenge_id.encode("utf-8"))
