from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow() -> datetime:
    """Naive UTC, matching what the DateTime columns hand back on every backend."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class SecretRecord(db.Model):
    __tablename__ = "secrets"

    lookup_hash = db.Column(db.String(64), primary_key=True)
    ciphertext = db.Column(db.LargeBinary, nullable=False)
    views_remaining = db.Column(db.Integer, nullable=False)
    expiration_date = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("views_remaining >= 0", name="ck_secrets_views_remaining"),
    )
