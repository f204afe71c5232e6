"""
Shared fixtures for the test suite.
"""
import pytest
from fastapi.testclient import TestClient

import app as app_module
import config
import database
from session import SessionStore


@pytest.fixture
def saved_scores(monkeypatch):
    """Capture score records instead of writing them to MySQL."""
    records = []
    monkeypatch.setattr(config, "SAVE_TEST_SCORES", True)
    monkeypatch.setattr(database, "save_test_score", records.append)
    return records


@pytest.fixture
def client(monkeypatch, saved_scores):
    """Test client with a fresh session store and no database."""
    monkeypatch.setattr(app_module, "sessions", SessionStore())
    monkeypatch.setattr(database, "init_db", lambda: None)
    monkeypatch.setattr(database, "record_test_view", lambda *args: None)
    return TestClient(app_module.app)
