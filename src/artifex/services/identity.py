"""HMAC verification of caller identity headers.

Session verification happens in the web frontend. It forwards the verified user id and
subscription tier together with a signature so the API can trust both values.

Security Note:
    verify_identity_signature MUST be called before the headers are used. Return
    401 Unauthorized immediately if verification fails.
"""

import hashlib
import hmac


def sign_identity(user_id: str, tier: str, signing_key: str) -> str:
    """Hex-encoded HMAC-SHA256 of ``"{user_id}:{tier}"``."""
    return hmac.new(
        key=signing_key.encode("utf-8"),
        msg=f"{user_id}:{tier}".encode("utf-8"),
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify_identity_signature(user_id: str, tier: str, signature: str, signing_key: str) -> bool:
    """Validate the identity signature using HMAC-SHA256.

    Args:
        user_id: Value of the X-User-Id header
        tier: Value of the X-User-Tier header
        signature: Value of the X-Auth-Signature header (hex)
        signing_key: Shared secret (AUTH_SIGNING_SECRET)

    Returns:
        True if the signature matches, False otherwise (also for an empty key).

    Security:
        - Uses hmac.compare_digest() for constant-time comparison. Never use == for
          signature comparison.

    Example:
        >>> signature = sign_identity("user-1", "pro", "secret")
        >>> verify_identity_signature("user-1", "pro", signature, "secret")
        True
    """
    if not signing_key or not signature or not signature.isascii():
        return False

    expected = sign_identity(user_id, tier, signing_key)

    # hexdigest() is lowercase; accept uppercase input
    return hmac.compare_digest(expected.lower(), signature.lower())
