"""Shared fixtures: a testing app on in-memory SQLite and a clock tests can move."""

from datetime import date, datetime, time

import pytest

from app import create_app
from extensions import db


class FixedClock:
    """Clock pinned to a settable day, noon UTC."""

    def __init__(self, today):
        self.current = today

    def now(self):
        return datetime.combine(self.current, time(12, 0))

    def today(self):
        return self.current

    def utcnow(self):
        return self.now()

    def advance(self, days=1):
        self.current = date.fromordinal(self.current.toordinal() + days)


@pytest.fixture
def clock():
    return FixedClock(date(2024, 3, 1))


@pytest.fixture
def app(clock):
    app = create_app('testing')
    app.extensions['gamification'].clock = clock
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def service(app):
    return app.extensions['gamification']
