"""Tests for the cooldown tracker and its SQLite repository."""

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from tradedesk.repos.cooldown_repo import CooldownRepo
from tradedesk.repos.db import init_db
from tradedesk.risk.cooldown import CooldownTracker

T0 = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _make_tracker(tmp_path=None, clock=None) -> CooldownTracker:
    repo = None
    if tmp_path is not None:
        db_path = str(tmp_path / "cooldowns.db")
        init_db(db_path)
        repo = CooldownRepo(db_path)
    tracker = CooldownTracker(repo=repo, clock=clock or _Clock())
    tracker.init()
    return tracker


def _record(tracker, direction="long", grade="B", strategy="rsi-bounce", **kwargs):
    return tracker.record("EURUSD", "intraday", strategy, direction, grade, **kwargs)


def _check(tracker, direction="long", grade="B", strategy="rsi-bounce"):
    return tracker.check("EURUSD", "intraday", strategy, direction, grade)


class TestCooldownMonotonicity:
    def test_no_entry_allows(self):
        assert _check(_make_tracker()).allowed

    def test_same_direction_same_grade_blocks(self):
        tracker = _make_tracker()
        _record(tracker, grade="B")
        result = _check(tracker, grade="B")
        assert not result.allowed
        assert result.reason == "Cooldown active: 240min remaining (B long)"
        assert result.remaining_minutes == 240

    def test_lower_grade_blocks(self):
        tracker = _make_tracker()
        _record(tracker, grade="A")
        assert not _check(tracker, grade="B+").allowed

    def test_upgrade_allows(self):
        tracker = _make_tracker()
        _record(tracker, grade="B")
        result = _check(tracker, grade="A")
        assert result.allowed
        assert result.existing.grade == "B"

    def test_reversal_allows(self):
        tracker = _make_tracker()
        _record(tracker, direction="long", grade="A+")
        assert _check(tracker, direction="short", grade="C").allowed

    def test_expiry_allows_and_evicts(self):
        clock = _Clock()
        tracker = _make_tracker(clock=clock)
        _record(tracker)
        clock.advance(hours=4)
        assert _check(tracker).allowed
        assert tracker.get("EURUSD", "intraday", "rsi-bounce") is None

    def test_none_and_no_trade_pass_through(self):
        tracker = _make_tracker()
        _record(tracker)
        assert _check(tracker, direction="none").allowed
        assert _check(tracker, grade="no-trade").allowed

    def test_remaining_minutes_shrink(self):
        clock = _Clock()
        tracker = _make_tracker(clock=clock)
        _record(tracker)
        clock.advance(minutes=90)
        assert _check(tracker).remaining_minutes == 150


class TestCooldownKeys:
    def test_strategies_are_isolated(self):
        tracker = _make_tracker()
        _record(tracker, strategy="rsi-bounce")
        assert not _check(tracker, strategy="rsi-bounce").allowed
        assert _check(tracker, strategy="cci-zero").allowed

    def test_styles_are_isolated(self):
        tracker = _make_tracker()
        tracker.record("EURUSD", "swing", "rsi-bounce", "long", "B")
        assert tracker.check("EURUSD", "intraday", "rsi-bounce", "long", "B").allowed


class TestCooldownExpiry:
    def test_style_defaults(self):
        tracker = _make_tracker()
        intraday = tracker.record("EURUSD", "intraday", "rsi-bounce", "long", "B")
        swing = tracker.record("EURUSD", "swing", "rsi-bounce", "long", "B")
        assert intraday.expires_at == T0 + timedelta(hours=4)
        assert swing.expires_at == T0 + timedelta(hours=24)

    def test_explicit_expiry_wins(self):
        tracker = _make_tracker()
        entry = _record(tracker, expires_at=T0 + timedelta(minutes=60))
        assert entry.expires_at == T0 + timedelta(minutes=60)

    def test_sweep_evicts_expired(self):
        clock = _Clock()
        tracker = _make_tracker(clock=clock)
        _record(tracker, strategy="rsi-bounce", expires_at=T0 + timedelta(minutes=30))
        _record(tracker, strategy="cci-zero")
        clock.advance(hours=1)
        assert tracker.sweep() == 1
        assert [e.strategy_id for e in tracker.active_entries()] == ["cci-zero"]

    def test_clear_and_stats(self):
        tracker = _make_tracker()
        _record(tracker, strategy="rsi-bounce")
        _record(tracker, strategy="cci-zero")
        assert tracker.stats()["active"] == 2
        assert tracker.clear("EURUSD", "intraday", "rsi-bounce") is True
        assert tracker.clear_all() == 1
        assert tracker.stats()["active"] == 0


class TestCooldownPersistence:
    def test_entries_restored_after_restart(self, tmp_path):
        clock = _Clock()
        first = _make_tracker(tmp_path, clock=clock)
        _record(first, grade="A")
        assert not first.degraded

        second = _make_tracker(tmp_path, clock=clock)
        result = _check(second, grade="A")
        assert not result.allowed
        assert result.existing.grade == "A"

    def test_expired_entries_not_restored(self, tmp_path):
        clock = _Clock()
        first = _make_tracker(tmp_path, clock=clock)
        _record(first)
        clock.advance(hours=5)
        second = _make_tracker(tmp_path, clock=clock)
        assert second.active_entries() == []

    def test_clear_all_removes_rows(self, tmp_path):
        tracker = _make_tracker(tmp_path)
        _record(tracker)
        tracker.clear_all()
        assert _make_tracker(tmp_path).active_entries() == []


class TestCooldownDegraded:
    def test_init_failure_degrades(self, caplog):
        repo = MagicMock()
        repo.load_active.side_effect = sqlite3.OperationalError("disk I/O error")
        tracker = CooldownTracker(repo=repo, clock=_Clock())
        with caplog.at_level(logging.WARNING, logger="tradedesk.cooldown"):
            tracker.init()
        assert tracker.degraded
        assert "memory only" in caplog.text
        # Still enforces in memory.
        _record(tracker)
        assert not _check(tracker).allowed
        repo.upsert.assert_not_called()

    def test_write_failure_degrades_without_blocking(self):
        repo = MagicMock()
        repo.load_active.return_value = []
        repo.upsert.side_effect = sqlite3.OperationalError("database is locked")
        tracker = CooldownTracker(repo=repo, clock=_Clock())
        tracker.init()
        entry = _record(tracker)
        assert entry.grade == "B"
        assert tracker.degraded
        assert not _check(tracker).allowed

    def test_memory_only_tracker(self):
        tracker = CooldownTracker(clock=_Clock())
        tracker.init()
        assert tracker.degraded
        _record(tracker)
        assert tracker.stats()["active"] == 1


class TestCooldownRepo:
    def test_upsert_replaces_row(self, tmp_path):
        db_path = str(tmp_path / "repo.db")
        init_db(db_path)
        repo = CooldownRepo(db_path)
        tracker = CooldownTracker(repo=repo, clock=_Clock())
        _record(tracker, grade="B")
        _record(tracker, grade="A")
        rows = repo.load_active(T0)
        assert len(rows) == 1
        assert rows[0].grade == "A"
        assert rows[0].expires_at == T0 + timedelta(hours=4)

    def test_delete_expired(self, tmp_path):
        db_path = str(tmp_path / "repo.db")
        init_db(db_path)
        repo = CooldownRepo(db_path)
        tracker = CooldownTracker(repo=repo, clock=_Clock())
        _record(tracker)
        assert repo.delete_expired(T0 + timedelta(hours=5)) == 1
        assert repo.load_active(T0) == []


@pytest.mark.parametrize("grade", ["C", "B", "B+", "A", "A+"])
def test_every_grade_blocks_its_own_repeat(grade):
    tracker = _make_tracker()
    _record(tracker, grade=grade)
    assert not _check(tracker, grade=grade).allowed
