from __future__ import annotations

import os
from datetime import datetime, timedelta

import mongomock
import pytest

os.environ["MONGODB_URI"] = "mongodb://127.0.0.1:27017/toilet_finder_test"
os.environ["MONGODB_DB_NAME"] = "toilet_finder_test"
os.environ["FLASK_SECRET_KEY"] = "test-secret"
os.environ["MAPBOX_TOKEN"] = "test-token"

# The app builds its MongoClient at import time, so the patch must be live first.
_mongo_patch = mongomock.patch(servers=(("127.0.0.1", 27017),), on_new="create")
_mongo_patch.start()

import app as app_module  # noqa: E402
from geocoding import GeocodeResult  # noqa: E402


@pytest.fixture(autouse=True)
def clean_db():
    for name in ("users", "toilets", "reviews"):
        app_module.mongo_db[name].delete_many({})
    yield


@pytest.fixture
def flask_app():
    app_module.app.config.update(TESTING=True)
    return app_module.app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def make_user():
    def _make(username="alice", email=None, password="password123"):
        return app_module.User.register(username, email or f"{username}@example.com", password)

    return _make


@pytest.fixture
def login(client):
    def _login(username="alice", password="password123"):
        return client.post("/login", data={"username": username, "password": password})

    return _login


@pytest.fixture
def make_toilet():
    counter = {"n": 0}

    def _make(author, **overrides):
        counter["n"] += 1
        doc = {
            "name": f"Toilet {counter['n']}",
            "description": "Near the bus stand",
            "location": "Sitabuldi, Nagpur",
            "is_paid": False,
            "cleanliness_rating": 3,
            "geometry": {"type": "Point", "coordinates": [79.08, 21.14]},
            "images": [],
            "author_id": author.mongo_id,
            "created_at": datetime.utcnow() + timedelta(seconds=counter["n"]),
        }
        doc.update(overrides)
        app_module.mongo_db.toilets.insert_one(doc)
        return doc

    return _make


@pytest.fixture
def flashes(client):
    def _read():
        with client.session_transaction() as sess:
            return [message for _category, message in sess.get("_flashes", [])]

    return _read


@pytest.fixture
def nagpur():
    return GeocodeResult(79.0882, 21.1458, "Nagpur, Maharashtra, India")
