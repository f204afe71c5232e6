"""
Tests for the MySQL persistence functions, against a fake connection.
"""
from datetime import datetime

import pytest

import database


class FakeCursor:
    def __init__(self, fetchone_results=(), fetchall_results=()):
        self.executed = []
        self.lastrowid = 7
        self.closed = False
        self._fetchone = list(fetchone_results)
        self._fetchall = list(fetchall_results)

    def execute(self, query, params=None):
        self.executed.append((" ".join(query.split()), params))

    def fetchone(self):
        return self._fetchone.pop(0)

    def fetchall(self):
        return self._fetchall.pop(0)

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor
        self.committed = False
        self.closed = False

    def cursor(self, dictionary=False):
        return self._cursor

    def commit(self):
        self.committed = True

    def close(self):
        self.closed = True


@pytest.fixture
def fake_db(monkeypatch):
    def install(cursor):
        conn = FakeConnection(cursor)
        monkeypatch.setattr(database, "get_connection", lambda: conn)
        return conn
    return install


def make_record(**overrides):
    values = dict(
        book="book-13",
        module="reading",
        test_number=1,
        score=31,
        total_questions=40,
        percentage=78,
        ielts_band_score=7.0,
        time_taken=3120,
        user_id=None,
    )
    values.update(overrides)
    return database.TestScoreRecord(**values)


class TestSaveTestScore:
    """Tests for save_test_score()."""

    def test_inserts_row(self, fake_db):
        cursor = FakeCursor()
        conn = fake_db(cursor)

        score_id = database.save_test_score(make_record(user_id="user-1"))

        assert score_id == 7
        query, params = cursor.executed[0]
        assert query.startswith("INSERT INTO test_scores")
        assert params == ("user-1", "book-13", "reading", 1, 31, 40, 78, 7.0, 3120)
        assert conn.committed and conn.closed and cursor.closed

    def test_anonymous_attempt(self, fake_db):
        cursor = FakeCursor()
        fake_db(cursor)

        database.save_test_score(make_record(time_taken=None))

        _, params = cursor.executed[0]
        assert params[0] is None
        assert params[-1] is None


class TestHistoryAndStatistics:
    """Tests for history, view tracking and statistics queries."""

    def test_user_history(self, fake_db):
        rows = [
            {"score": 28, "created_at": datetime(2024, 5, 2)},
            {"score": 33, "created_at": datetime(2024, 5, 1)},
        ]
        cursor = FakeCursor(fetchall_results=[rows])
        fake_db(cursor)

        history = database.get_user_test_history("book-13", "reading", 1, "user-1")

        assert history["best_score"] == 33
        assert history["total_attempts"] == 2
        assert history["test_history"] == rows
        assert cursor.executed[0][1] == ("book-13", "reading", 1, "user-1")

    def test_empty_history(self, fake_db):
        fake_db(FakeCursor(fetchall_results=[[]]))

        history = database.get_user_test_history("book-13", "reading", 1, "user-1")

        assert history == {"test_history": [], "best_score": None, "total_attempts": 0}

    def test_record_test_view(self, fake_db):
        cursor = FakeCursor()
        conn = fake_db(cursor)

        database.record_test_view("book-8", "listening", 4)

        query, params = cursor.executed[0]
        assert "ON DUPLICATE KEY UPDATE click_count = click_count + 1" in query
        assert params == ("book-8", "listening", 4)
        assert conn.committed

    def test_statistics_anonymous(self, fake_db):
        cursor = FakeCursor(fetchone_results=[{"total": 120}, {"count": 14}])
        fake_db(cursor)

        stats = database.get_test_statistics("book-8", "listening", 4)

        assert stats == {"total_views": 120, "total_attempts": 14, "user": None}
        assert len(cursor.executed) == 2

    def test_statistics_for_user(self, fake_db):
        rows = [{"score": 25}, {"score": 30}, {"score": 22}]
        cursor = FakeCursor(
            fetchone_results=[{"total": 5}, {"count": 3}],
            fetchall_results=[rows],
        )
        fake_db(cursor)

        stats = database.get_test_statistics("book-8", "listening", 4, user_id="user-1")

        assert stats["user"] == {"attempts": 3, "best_score": 30, "latest_score": 25}


class TestConnection:
    """Connection pool handling."""

    def test_no_pool_raises(self, monkeypatch):
        monkeypatch.setattr(database, "connection_pool", None)
        monkeypatch.setattr(database, "init_db", lambda: None)

        with pytest.raises(RuntimeError):
            database.get_connection()
