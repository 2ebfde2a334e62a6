import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import ConflictError, StoreError
from models import SecretRecord, db, to_naive_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredSecret:
    lookup_hash: str
    ciphertext: bytes
    views_remaining: int
    expiration_date: datetime


class SecretStore:
    """Persistence for secret records, addressed only by lookup hash.

    Every method runs inside the current app context's session and leaves it
    committed or rolled back; no transaction is held open between calls.
    """

    def __init__(self, session=None):
        self._session = session if session is not None else db.session

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self._session.rollback()
            logger.error("Secret store %s failed: %s", action, exc.__class__.__name__)
            raise StoreError(f"Secret store {action} failed") from exc
        except BaseException:
            self._session.rollback()
            raise

    def insert(
        self,
        lookup_hash: str,
        ciphertext: bytes,
        views_remaining: int,
        expiration_date: datetime,
    ) -> None:
        statement = insert(SecretRecord).values(
            lookup_hash=lookup_hash,
            ciphertext=ciphertext,
            views_remaining=views_remaining,
            expiration_date=to_naive_utc(expiration_date),
        )
        try:
            self._session.execute(statement)
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            raise ConflictError("Lookup hash already exists") from exc
        except SQLAlchemyError as exc:
            self._session.rollback()
            logger.error("Secret store insert failed: %s", exc.__class__.__name__)
            raise StoreError("Secret store insert failed") from exc

    def fetch(self, lookup_hash: str) -> Optional[StoredSecret]:
        with self._guard("fetch"):
            row = (
                self._session.query(
                    SecretRecord.ciphertext,
                    SecretRecord.views_remaining,
                    SecretRecord.expiration_date,
                )
                .filter(SecretRecord.lookup_hash == lookup_hash)
                .first()
            )
            # Release the read so the next write starts a fresh transaction.
            self._session.commit()
        if row is None:
            return None
        return StoredSecret(
            lookup_hash=lookup_hash,
            ciphertext=row.ciphertext,
            views_remaining=row.views_remaining,
            expiration_date=row.expiration_date,
        )

    def decrement_views(self, lookup_hash: str) -> Optional[int]:
        """Take one view and return what is left, or None if no view was available.

        The conditional UPDATE holds the row's write lock until commit, so the
        value read back belongs to this caller alone.
        """
        with self._guard("decrement"):
            updated = (
                self._session.query(SecretRecord)
                .filter(
                    SecretRecord.lookup_hash == lookup_hash,
                    SecretRecord.views_remaining > 0,
                )
                .update(
                    {SecretRecord.views_remaining: SecretRecord.views_remaining - 1},
                    synchronize_session=False,
                )
            )
            if updated == 0:
                self._session.rollback()
                return None
            remaining = (
                self._session.query(SecretRecord.views_remaining)
                .filter(SecretRecord.lookup_hash == lookup_hash)
                .scalar()
            )
            self._session.commit()
        return remaining

    def delete(self, lookup_hash: str) -> None:
        with self._guard("delete"):
            (
                self._session.query(SecretRecord)
                .filter(SecretRecord.lookup_hash == lookup_hash)
                .delete(synchronize_session=False)
            )
            self._session.commit()

    def delete_expired(self, now: datetime) -> int:
        with self._guard("delete_expired"):
            removed = (
                self._session.query(SecretRecord)
                .filter(SecretRecord.expiration_date < to_naive_utc(now))
                .delete(synchronize_session=False)
            )
            self._session.commit()
        return removed
