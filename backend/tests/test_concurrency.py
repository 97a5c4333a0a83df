"""
Retry helper tests.

Verifies:
- Lock conflicts are replayed up to DB_RETRY_ATTEMPTS times
- Other errors propagate on the first failure
"""

import pytest
from sqlalchemy.exc import OperationalError

from kardex.services import concurrency
from kardex.services.concurrency import run_with_retry


def _lock_conflict():
    return OperationalError("UPDATE stocks ...", {}, Exception("database is locked"))


class TestRunWithRetry:

    def test_replays_until_success(self, app, db_session, monkeypatch):
        monkeypatch.setattr(concurrency.time, "sleep", lambda seconds: None)
        calls = []

        def _op():
            calls.append(1)
            if len(calls) < 3:
                raise _lock_conflict()
            return "done"

        assert run_with_retry(_op) == "done"
        assert len(calls) == 3

    def test_gives_up_after_configured_attempts(self, app, db_session, monkeypatch):
        monkeypatch.setattr(concurrency.time, "sleep", lambda seconds: None)
        monkeypatch.setitem(app.config, "DB_RETRY_ATTEMPTS", 2)
        calls = []

        def _op():
            calls.append(1)
            raise _lock_conflict()

        with pytest.raises(OperationalError):
            run_with_retry(_op)
        assert len(calls) == 2

    def test_other_errors_are_not_retried(self, app, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            run_with_retry(_op)
        assert calls == [1]
