import math

import pytest

from qryeval.feedback import (
    combine_queries,
    expand_query,
    format_expansion,
    is_expansion_candidate,
    score_expansion_terms,
    select_expansion_terms,
)
from qryeval.ranking import ScoreList


@pytest.fixture
def initial_ranking():
    return ScoreList([(0, 0.5), (2, 0.3), (4, 0.1)])


def test_term_scores_without_smoothing(index, initial_ranking):
    # fbMu = 0: p(t|d) is the maximum-likelihood estimate; |C| = 16
    scores = score_expansion_terms(initial_ranking, index, fb_docs=2, fb_mu=0)
    assert set(scores) == {"apple", "banana", "cherry", "date"}
    assert scores["apple"] == pytest.approx(math.log(16 / 3) * (2 / 3 * 0.5 + 1 / 3 * 0.3))
    assert scores["banana"] == pytest.approx(math.log(8) * (1 / 3 * 0.5))


def test_absent_documents_contribute_with_smoothing(index, initial_ranking):
    mu = 10.0
    scores = score_expansion_terms(initial_ranking, index, fb_docs=2, fb_mu=mu)
    p = 2 / 16
    in_d0 = (1 + mu * p) / (3 + mu) * math.log(1 / p) * 0.5
    absent_d2 = (0 + mu * p) / (3 + mu) * math.log(1 / p) * 0.3
    assert scores["banana"] == pytest.approx(in_d0 + absent_d2)


def test_select_breaks_ties_by_term():
    scores = {"date": 0.2, "cherry": 0.2, "apple": 0.7, "banana": 0.3}
    assert select_expansion_terms(scores, 3) == [("apple", 0.7), ("banana", 0.3), ("cherry", 0.2)]


def test_expand_query(index, initial_ranking):
    expansion = expand_query(initial_ranking, index, fb_docs=2, fb_terms=3, fb_mu=0)
    assert expansion == "#wand ( 0.7254 apple 0.3466 banana 0.2079 cherry )"


def test_expand_empty_ranking(index):
    assert expand_query(ScoreList(), index, fb_docs=10, fb_terms=10, fb_mu=0) == ""


@pytest.mark.parametrize(
    "term, expected",
    [("apple", True), ("u.s", False), ("1,000", False), ("", False)],
)
def test_expansion_candidates(term, expected):
    assert is_expansion_candidate(term) is expected


def test_format_drops_zero_weights():
    assert format_expansion([("a", 0.00001)]) == ""
    assert format_expansion([("a", 1.0), ("b", 0.00004)]) == "#wand ( 1.0000 a )"


def test_combine_queries():
    combined = combine_queries("apple pie", "#wand ( 1.0000 tart )", "#and", 0.75)
    assert combined == "#wand ( 0.75 #and( apple pie ) 0.25 #wand ( 1.0000 tart ) )"
