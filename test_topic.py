"""Topic relevance oracle."""

from focus_companion.topic import is_on_topic

NOTES = "Today we covered the Krebs cycle and oxidative phosphorylation."


def test_short_or_empty_notes_are_on_topic():
    assert is_on_topic("", ["biology"])
    assert is_on_topic("   short note   ", ["biology"])
    assert is_on_topic(None, ["biology"])


def test_no_keywords_means_on_topic():
    assert is_on_topic(NOTES, [])
    assert is_on_topic(NOTES, ["  ", ""])


def test_keyword_match_is_case_insensitive():
    assert is_on_topic(NOTES, ["KREBS"])
    assert not is_on_topic(NOTES, ["calculus", "derivative"])


def test_whitelist_keywords_count():
    assert is_on_topic(NOTES, ["calculus"], ["phosphorylation"])
    assert not is_on_topic(NOTES, ["calculus"], ["history"])
