"""Fuzzy match scoring for user pickers and search.

Scores are in [0.0, 1.0] and depend only on the two input strings:

- empty term: 1.0 for any text, so an empty search keeps every candidate
- exact match (case-insensitive): 1.0
- contiguous substring: between 0.6 and 1.0, prefixes and terms covering
  more of the text score higher
- ordered subsequence ("jsm" in "john smith"): between 0.0 and 0.5,
  tighter spans score higher
- anything else: 0.0
"""

from typing import Optional

NO_MATCH = 0.0
FULL_MATCH = 1.0


def match_score(text: Optional[str], term: Optional[str]) -> float:
    """Score how well term matches text."""
    if not term:
        return FULL_MATCH
    if not text:
        return NO_MATCH

    text = text.lower()
    term = term.lower()
    if text == term:
        return FULL_MATCH

    index = text.find(term)
    if index != -1:
        coverage = len(term) / len(text)
        score = 0.6 + 0.3 * coverage
        if index == 0:
            score += 0.1
        return score

    span = _tightest_span(text, term)
    if span is None:
        return NO_MATCH
    # span > len(term) here, otherwise the substring branch would have hit
    return 0.5 * len(term) / span


def _tightest_span(text: str, term: str) -> Optional[int]:
    """Length of the shortest window of text containing term as a subsequence."""
    best = None
    for start, char in enumerate(text):
        if char != term[0]:
            continue
        pos = start
        for wanted in term[1:]:
            pos = text.find(wanted, pos + 1)
            if pos == -1:
                return best
        span = pos - start + 1
        if best is None or span < best:
            best = span
    return best
