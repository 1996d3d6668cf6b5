"""Distraction ledger: counters, persistence, session XP."""

import pytest

from focus_companion.ledger import Ledger, level_for_xp, xp_for_minutes


@pytest.fixture
def db_uri(tmp_path):
    return f"sqlite:///{tmp_path / 'ledger.db'}"


def test_xp_and_level_rules():
    assert xp_for_minutes(12.7) == 25
    assert xp_for_minutes(0.4) == 0
    assert xp_for_minutes(-3) == 0
    assert level_for_xp(0) == 1
    assert level_for_xp(99) == 1
    assert level_for_xp(100) == 2
    assert level_for_xp(250) == 3


def test_distractions_are_counted_and_persisted(db_uri):
    ledger = Ledger(db_uri)
    ledger.begin_session()
    ledger.add_distraction(source="phone")
    ledger.add_distraction(source="visibility")
    assert ledger.session_distractions == 2
    assert ledger.total_distractions == 2
    sources = [d["source"] for d in ledger.recent_distractions()]
    assert sources == ["visibility", "phone"]
    ledger.close()

    reopened = Ledger(db_uri)
    assert reopened.total_distractions == 2
    assert reopened.session_distractions == 0
    reopened.close()


def test_end_session_awards_xp(db_uri):
    ledger = Ledger(db_uri)
    session_id = ledger.begin_session()
    assert session_id is not None
    ledger.add_distraction()
    summary = ledger.end_session(55.0)
    assert summary["xp_awarded"] == 110
    assert summary["distractions"] == 1
    assert summary["level"] == 2
    assert ledger.session_id is None
    ledger.close()

    reopened = Ledger(db_uri)
    assert reopened.xp == 110
    assert reopened.level == 2
    reopened.close()


def test_add_xp_ignores_non_positive_amounts():
    ledger = Ledger("sqlite://")
    ledger.add_xp(0)
    ledger.add_xp(-5)
    assert ledger.xp == 0
    ledger.add_xp(7)
    assert ledger.stats()["xp"] == 7
    ledger.close()


def test_distraction_without_session_is_still_counted():
    ledger = Ledger("sqlite://")
    ledger.add_distraction()
    assert ledger.total_distractions == 1
    assert ledger.recent_distractions()[0]["session_id"] is None
    ledger.close()
