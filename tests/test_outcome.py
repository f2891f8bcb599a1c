import pytest
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from bet_escrow.models import BetTerms
from bet_escrow.outcome import evaluate, resolve_threshold

OVER = BetTerms(sport_event="NBA_1", selected_team="Boston Celtics", threshold=100, is_more_line=True)
UNDER = BetTerms(sport_event="NBA_1", selected_team="Boston Celtics", threshold=100, is_more_line=False)


@pytest.mark.parametrize("terms,observed,completed,expected", [
    (OVER, 101, False, True),
    (OVER, 99, False, None),
    (OVER, 100, False, None),
    (OVER, 99, True, False),
    (OVER, 100, True, False),
    (UNDER, 101, False, False),
    (UNDER, 99, False, None),
    (UNDER, 99, True, True),
    (UNDER, 100, True, False),
])
def test_resolve_threshold(terms, observed, completed, expected):
    assert resolve_threshold(terms, observed, completed) is expected


def test_negative_score_rejected():
    with pytest.raises(ValueError):
        resolve_threshold(OVER, -1, True)


def test_evaluate_marks_early_exit():
    res = evaluate(OVER, 110, completed=False)
    assert res["outcome"] is True
    assert res["early"] is True
    assert "Boston Celtics" in res["evidence"]
    pending = evaluate(OVER, 90, completed=False)
    assert pending["decided"] is False


def test_terms_summary():
    assert OVER.summary() == "Boston Celtics will score more than 100 points"
    assert UNDER.summary() == "Boston Celtics will score less than 100 points"
