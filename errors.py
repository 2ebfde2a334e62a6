class VaultError(Exception):
    """Base class for every failure raised by the secret vault."""


class ValidationError(VaultError):
    """Caller input is malformed or out of range. Nothing was written."""


class NotFound(VaultError):
    """The secret is absent, expired or exhausted."""


class ConflictError(VaultError):
    """A record with the same lookup hash already exists."""


class ExhaustedError(VaultError):
    """Token generation kept colliding with existing records."""


class StoreError(VaultError):
    """The persistence backend failed."""


class CryptoError(VaultError):
    """A cryptographic primitive rejected its input."""


class AuthenticationFailed(CryptoError):
    """The authentication tag did not verify against the ciphertext."""
