import base64
import hashlib
import secrets
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from errors import AuthenticationFailed, CryptoError

TOKEN_BYTES = 48
KEY_BYTES = 32
NONCE_BYTES = 16
TAG_BYTES = 16


def generate_token() -> bytes:
    return secrets.token_bytes(TOKEN_BYTES)


def derive_lookup_hash(token: bytes) -> str:
    """Return the storage key for a token: unpadded base64url SHA-256 of the raw bytes."""
    digest = hashlib.sha256(token).digest()
    return encode_b64url(digest)


def encode_b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_b64url(encoded: str, expected_length: Optional[int] = None) -> bytes:
    """Decode URL-safe base64, accepting omitted padding."""
    cleaned = encoded.strip()
    padding = "=" * (-len(cleaned) % 4)
    try:
        raw = base64.b64decode(cleaned + padding, altchars=b"-_", validate=True)
    except Exception as exc:
        raise ValueError("Invalid base64url encoding") from exc
    if expected_length is not None and len(raw) != expected_length:
        raise ValueError(f"Expected {expected_length} bytes, got {len(raw)}")
    return raw


def _split_token(token: bytes) -> Tuple[bytes, bytes]:
    if len(token) != TOKEN_BYTES:
        raise CryptoError(f"Token must be {TOKEN_BYTES} bytes")
    return token[:KEY_BYTES], token[-NONCE_BYTES:]


def encrypt_payload(token: bytes, plaintext: bytes) -> Tuple[bytes, bytes]:
    """Encrypt under the token's own key and nonce segments.

    AESGCM appends the tag to the ciphertext; it is split off and returned
    separately so it never has to be persisted beside the record.
    """
    key, nonce = _split_token(token)
    sealed = AESGCM(key).encrypt(nonce, plaintext, None)
    return sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]


def decrypt_payload(token: bytes, auth_tag: bytes, ciphertext: bytes) -> bytes:
    key, nonce = _split_token(token)
    try:
        return AESGCM(key).decrypt(nonce, ciphertext + auth_tag, None)
    except InvalidTag as exc:
        raise AuthenticationFailed("Authentication tag did not verify") from exc
