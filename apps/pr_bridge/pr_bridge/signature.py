"""GitHub webhook signature verification."""

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def compute_github_signature(body: bytes, secret: str) -> str:
    """Compute the ``X-Hub-Signature-256`` value GitHub sends for a body.

    Args:
        body: Raw (unparsed) request body bytes
        secret: The repository's webhook secret

    Returns:
        ``sha256=`` followed by the lowercase hex HMAC-SHA256 digest
    """
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_github_signature(body: bytes, signature: str, secret: str) -> bool:
    """Verify a GitHub webhook signature in constant time.

    Args:
        body: Raw request body bytes
        signature: The X-Hub-Signature-256 header value
        secret: The webhook signing secret

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature or not secret:
        return False

    expected = compute_github_signature(body, secret).encode("utf-8")
    provided = signature.encode("utf-8")

    # compare_digest leaks length, never content; reject mismatches up front
    if len(expected) != len(provided):
        return False

    return hmac.compare_digest(expected, provided)
