import mongomock
import pytest

import database


@pytest.fixture
def mongo(monkeypatch):
    """A fresh in-memory database standing in for DATABASE_URL."""
    test_db = mongomock.MongoClient()["menumetrics_test"]
    monkeypatch.setattr(database, "db", test_db)
    return test_db
