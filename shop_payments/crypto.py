import hashlib
import hmac


def compute_signature(secret: str, message) -> str:
    """HMAC-SHA256 of ``message`` keyed by ``secret``, hex encoded.

    ``message`` may be text or the raw bytes of a request body; bytes are
    signed as received.
    """
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_equal(a: str, b: str) -> bool:
    """Constant-time comparison of two signature strings."""
    if a is None or b is None:
        return False
    # compare fixed-length digests so differing lengths take the same path
    digest_a = hashlib.sha256(a.encode("utf-8")).digest()
    digest_b = hashlib.sha256(b.encode("utf-8")).digest()
    return hmac.compare_digest(digest_a, digest_b)
