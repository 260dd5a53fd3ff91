"""
Pytest configuration for the tracking API tests.

Every test gets a freshly built application, so shipments and events never leak between tests.
"""

import datetime

import pytest

from app import create_app
from settings import DEFAULT_SETTINGS


@pytest.fixture
def app():
    app = create_app(settings=dict(DEFAULT_SETTINGS["SERVER"]))
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def now():
    return datetime.datetime(2026, 10, 19, 12, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture
def shipment_payload():
    return {
        "trackingNumber": "PX100",
        "contents": "Books",
        "origin": "Cape Town",
        "destination": "Durban",
        "status": "Picked Up",
        "statusTime": "2026-10-19T10:00:00.000Z",
    }
