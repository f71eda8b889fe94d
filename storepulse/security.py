"""Security utilities for tenant JWTs, credential encryption and webhook HMAC.

WHAT:
    - Symmetric (Fernet) encryption for Shopify access tokens and webhook
      secrets before they are persisted.
    - HS256 JWT helpers; the `tenant_id` claim is the verified tenant identity
      consumed by every authenticated route.
    - Shopify webhook signature verification.

WHY:
    - Keeps store credentials out of plaintext storage.
    - Webhook payloads are only trusted after a constant-time HMAC check.
"""

import base64
import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from jose import jwt, JWTError

from .config import get_settings
from .errors import SignatureVerificationError


logger = logging.getLogger(__name__)


@lru_cache()
def _get_cipher() -> Fernet:
    key = get_settings().TOKEN_ENCRYPTION_KEY
    if not key:
        raise RuntimeError(
            "TOKEN_ENCRYPTION_KEY is not set. Generate a 32-byte Fernet key and export it "
            "or add it to .env."
        )
    try:
        # Validate key length by decoding without storing plaintext material.
        base64.urlsafe_b64decode(key.encode("utf-8"))
        return Fernet(key)
    except (ValueError, TypeError) as exc:
        raise RuntimeError(
            "TOKEN_ENCRYPTION_KEY must be a URL-safe base64-encoded 32-byte string. "
            "Generate with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
        ) from exc


def encrypt_secret(plaintext: str, *, context: str) -> str:
    """Encrypt a store secret before persisting.

    Args:
        plaintext: Raw secret to encrypt (e.g., Shopify access token).
        context:   Friendly label for logs (tenant/purpose).

    Returns:
        URL-safe base64 ciphertext suitable for DB storage.
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty secret.")

    ciphertext = _get_cipher().encrypt(plaintext.encode("utf-8")).decode("utf-8")
    logger.info("[TOKEN_ENCRYPT] Secret encrypted for %s (length=%d)", context, len(plaintext))
    return ciphertext


def decrypt_secret(ciphertext: str, *, context: str) -> str:
    """Reverse `encrypt_secret` using the shared Fernet key.

    Raises:
        ValueError: If the stored value cannot be decrypted.
    """
    if not ciphertext:
        raise ValueError("Cannot decrypt empty secret.")

    try:
        plaintext = _get_cipher().decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        logger.debug("[TOKEN_DECRYPT] Secret decrypted for %s", context)
        return plaintext
    except InvalidToken as exc:
        logger.error("[TOKEN_DECRYPT] Invalid ciphertext for %s", context)
        raise ValueError("Unable to decrypt stored token.") from exc


def create_access_token(tenant_id: str, subject: Optional[str] = None, expires_minutes: int = 60 * 24) -> str:
    """Create a signed JWT carrying the tenant identity.

    Token issuance belongs to the auth service; this helper exists for tooling
    and tests that need a valid bearer token.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes)
    to_encode: Dict[str, Any] = {
        "sub": subject or tenant_id,
        "tenant_id": tenant_id,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT, returning its payload.

    Raises jose.JWTError on failure.
    """
    settings = get_settings()
    if not settings.JWT_SECRET:
        raise JWTError("JWT_SECRET is not configured")
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


def compute_webhook_signature(body: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of the raw body, as Shopify sends it."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    """Validate a webhook signature using the shared secret.

    Accepts the bare base64 digest and the `sha256=<digest>` form.

    Raises:
        SignatureVerificationError: secret missing, header missing, or mismatch.
    """
    if not secret:
        raise SignatureVerificationError("No webhook secret configured")

    if not signature:
        raise SignatureVerificationError("Missing HMAC header")

    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]

    expected = compute_webhook_signature(body, secret)

    # Constant-time comparison to prevent timing attacks
    if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
        raise SignatureVerificationError("Invalid HMAC signature")
