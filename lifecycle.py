"""Secret creation and consumption.

A secret is stored under the hash of a random token and encrypted with key
material taken from that same token, so the rows on disk are useless without
it. Reads spend one view each; the last view deletes the row.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, NamedTuple, Optional, Union

from crypto_utils import decrypt_payload, derive_lookup_hash, encrypt_payload, generate_token
from errors import AuthenticationFailed, ConflictError, ExhaustedError, NotFound, ValidationError
from models import to_naive_utc, utcnow
from store import SecretStore

logger = logging.getLogger(__name__)

MAX_TOKEN_ATTEMPTS = 3
DEFAULT_MAX_VIEWS = 100
DEFAULT_MAX_TTL = timedelta(days=30)
DEFAULT_DATA_SIZE_LIMIT = 128 * 1024


class CreatedSecret(NamedTuple):
    token: bytes
    auth_tag: bytes


class RevealedSecret(NamedTuple):
    plaintext: str
    views_remaining: int
    expiration_date: datetime


class SecretLifecycle:
    def __init__(
        self,
        store: SecretStore,
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[], bytes] = generate_token,
        max_views: int = DEFAULT_MAX_VIEWS,
        max_ttl: timedelta = DEFAULT_MAX_TTL,
        data_size_limit: int = DEFAULT_DATA_SIZE_LIMIT,
    ):
        self.store = store
        self.clock = clock
        self.token_factory = token_factory
        self.max_views = max_views
        self.max_ttl = max_ttl
        self.data_size_limit = data_size_limit

    def _validate(self, plaintext: Union[str, bytes], view_limit: int, expiration_date: datetime) -> bytes:
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        if not isinstance(plaintext, bytes) or not plaintext:
            raise ValidationError("Secret cannot be empty")
        if len(plaintext) > self.data_size_limit:
            raise ValidationError(f"Secret exceeds {self.data_size_limit} bytes")
        if isinstance(view_limit, bool) or not isinstance(view_limit, int):
            raise ValidationError("View limit must be an integer")
        if not 1 <= view_limit <= self.max_views:
            raise ValidationError(f"View limit must be between 1 and {self.max_views}")
        if not isinstance(expiration_date, datetime):
            raise ValidationError("Expiration date must be a datetime")
        if to_naive_utc(expiration_date) > self.clock() + self.max_ttl:
            raise ValidationError("Expiration date is too far in the future")
        return plaintext

    def create(
        self,
        plaintext: Union[str, bytes],
        view_limit: int,
        expiration_date: datetime,
    ) -> CreatedSecret:
        payload = self._validate(plaintext, view_limit, expiration_date)
        for attempt in range(1, MAX_TOKEN_ATTEMPTS + 1):
            token = self.token_factory()
            lookup_hash = derive_lookup_hash(token)
            ciphertext, auth_tag = encrypt_payload(token, payload)
            try:
                self.store.insert(lookup_hash, ciphertext, view_limit, expiration_date)
            except ConflictError:
                logger.warning("Token collision on attempt %d, regenerating", attempt)
                continue
            logger.info(
                "Created secret %s with %d view(s), expires %s",
                lookup_hash[:8],
                view_limit,
                to_naive_utc(expiration_date).isoformat(),
            )
            return CreatedSecret(token=token, auth_tag=auth_tag)
        raise ExhaustedError(f"No free token after {MAX_TOKEN_ATTEMPTS} attempts")

    def consume(self, token: bytes, auth_tag: bytes) -> str:
        """Spend one view of the secret and return its plaintext."""
        return self.reveal(token, auth_tag).plaintext

    def reveal(self, token: bytes, auth_tag: bytes) -> RevealedSecret:
        """Spend one view and return the plaintext with the views left and the expiry.

        Absent, expired and exhausted secrets all raise NotFound. A wrong tag
        raises AuthenticationFailed after the view has already been spent.
        """
        lookup_hash = derive_lookup_hash(token)
        record = self.store.fetch(lookup_hash)
        if record is None:
            raise NotFound()

        if record.expiration_date < self.clock():
            self.store.delete(lookup_hash)
            logger.info("Secret %s expired, deleted on access", lookup_hash[:8])
            raise NotFound()

        if record.views_remaining <= 0:
            self.store.delete(lookup_hash)
            raise NotFound()

        remaining: Optional[int] = self.store.decrement_views(lookup_hash)
        if remaining is None:
            # Another reader took the last view between fetch and decrement.
            raise NotFound()
        if remaining <= 0:
            self.store.delete(lookup_hash)
            logger.info("Secret %s used its last view, deleted", lookup_hash[:8])

        try:
            plaintext = decrypt_payload(token, auth_tag, record.ciphertext)
        except AuthenticationFailed:
            logger.warning("Secret %s presented with a bad authentication tag", lookup_hash[:8])
            raise
        return RevealedSecret(
            plaintext=plaintext.decode("utf-8", errors="replace"),
            views_remaining=max(remaining, 0),
            expiration_date=record.expiration_date,
        )
