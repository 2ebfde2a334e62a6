"""Shared fixtures: a throwaway SQLite database per test, no scheduler, no consume limiter."""
from datetime import datetime, timedelta

import pytest

from app import create_app
from config_loader import DEFAULT_CONFIG
from lifecycle import SecretLifecycle
from models import db, utcnow


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def settings(tmp_path):
    settings = DEFAULT_CONFIG.copy()
    settings.update(
        {
            "database_url": f"sqlite:///{tmp_path / 'test.db'}",
            "scheduler_enabled": False,
            "rate_limit_enabled": False,
            "log_level": "WARNING",
        }
    )
    return settings


@pytest.fixture
def app(settings):
    flask_app = create_app(settings)
    flask_app.config["TESTING"] = True
    with flask_app.app_context():
        yield flask_app
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return app.extensions["onceread"]["store"]


@pytest.fixture
def clock():
    return FakeClock(utcnow())


@pytest.fixture
def lifecycle(store, clock):
    return SecretLifecycle(store, clock=clock)
