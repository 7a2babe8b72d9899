"""Fuzzy match scoring."""

import pytest

from codehub.matchscore import FULL_MATCH, NO_MATCH, match_score


def test_empty_term_is_full_match():
    assert match_score("anything", "") == FULL_MATCH
    assert match_score(None, None) == FULL_MATCH


def test_empty_text_never_matches():
    assert match_score("", "a") == NO_MATCH
    assert match_score(None, "a") == NO_MATCH


def test_exact_match_ignores_case():
    assert match_score("Alice", "aLiCe") == FULL_MATCH


def test_prefix_beats_infix():
    assert match_score("alice", "ali") > match_score("malice", "ali")


def test_substring_scores():
    assert match_score("alice", "ali") == pytest.approx(0.6 + 0.3 * 3 / 5 + 0.1)
    assert match_score("malik", "ali") == pytest.approx(0.6 + 0.3 * 3 / 5)


def test_longer_coverage_scores_higher():
    assert match_score("alice", "alic") > match_score("alice", "al")


def test_subsequence_scores_below_substring():
    score = match_score("john smith", "jsm")
    assert 0.0 < score < 0.5
    assert score == pytest.approx(0.5 * 3 / 7)
    assert score < match_score("john smith", "smi")


def test_tighter_subsequence_scores_higher():
    assert match_score("jxsm", "jsm") > match_score("jxxxxsm", "jsm")


def test_tightest_window_is_used():
    """A later, tighter window wins over the first one."""
    assert match_score("axxb aqb", "ab") == pytest.approx(0.5 * 2 / 3)


def test_no_match():
    assert match_score("alice", "bob") == NO_MATCH
    assert match_score("alice", "eca") == NO_MATCH


@pytest.mark.parametrize(
    "text, term",
    [("alice", "a"), ("Bob Builder", "bb"), ("x", "xyz"), ("abc", "cba")],
)
def test_score_is_bounded(text, term):
    assert 0.0 <= match_score(text, term) <= 1.0
