"""Opaque token generation and PKCE verification.

Access and refresh tokens are opaque random strings looked up in the
in-memory state store. Nothing here is signed, so the JWKS endpoint
publishes an empty key set.
"""

import base64
import hashlib
import hmac
import secrets

# Byte lengths before hex encoding
CLIENT_ID_BYTES = 16
STATE_BYTES = 16
SECRET_BYTES = 32

# Lifetimes in seconds
ACCESS_TOKEN_EXPIRE_SECONDS = 60 * 60  # 1 hour
AUTHORIZATION_TTL_SECONDS = 10 * 60  # pending authorizations and codes


def generate_token(nbytes: int = SECRET_BYTES) -> str:
    """Return a cryptographically random hex string built from nbytes bytes."""
    return secrets.token_hex(nbytes)


def compute_code_challenge(verifier: str) -> str:
    """Return the S256 challenge for a verifier: base64url(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_pkce(verifier: str, challenge: str) -> bool:
    """Check a PKCE verifier against a stored S256 challenge.

    Empty values never verify. Non-ASCII verifiers are rejected rather than
    raising, since RFC 7636 restricts verifiers to unreserved characters.
    """
    if not verifier or not challenge:
        return False
    try:
        computed = compute_code_challenge(verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(computed.encode("ascii"), challenge.encode("utf-8"))
