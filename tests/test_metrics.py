import math

import pytest

from qryeval.metrics import (
    average_precision,
    evaluate_run,
    ndcg_at_k,
    precision_at_k,
    recall_at_k,
    reciprocal_rank,
)

JUDGMENTS = {"a": 1, "b": 1, "n": 0}


def test_precision_and_recall():
    retrieved = ["a", "x", "b", "y"]
    assert precision_at_k(JUDGMENTS, retrieved, 2) == 0.5
    assert precision_at_k(JUDGMENTS, retrieved, 0) == 0.0
    assert recall_at_k(JUDGMENTS, retrieved, 2) == 0.5
    assert recall_at_k(JUDGMENTS, retrieved, 4) == 1.0
    assert recall_at_k({"n": 0}, retrieved, 4) == 0.0


def test_average_precision():
    assert average_precision(JUDGMENTS, ["a", "x", "b"]) == pytest.approx((1 + 2 / 3) / 2)
    # b is never retrieved
    assert average_precision(JUDGMENTS, ["x", "a"]) == pytest.approx(0.5 / 2)


def test_ndcg_uses_graded_gains():
    judgments = {"a": 2, "b": 1}
    dcg = 1 / 1 + 2 / math.log2(3)
    idcg = 2 / 1 + 1 / math.log2(3)
    assert ndcg_at_k(judgments, ["b", "a"], 10) == pytest.approx(dcg / idcg)
    assert ndcg_at_k(judgments, ["a", "b"], 10) == pytest.approx(1.0)
    assert ndcg_at_k({}, ["a"], 10) == 0.0


def test_reciprocal_rank():
    assert reciprocal_rank(JUDGMENTS, ["x", "n", "b"]) == pytest.approx(1 / 3)
    assert reciprocal_rank(JUDGMENTS, ["x"]) == 0.0


def test_evaluate_run():
    run = {"1": ["a", "x"], "3": ["z"]}
    qrels = {"1": {"a": 1, "b": 1}, "2": {"c": 1}}
    metrics = evaluate_run(run, qrels, k=2)
    assert metrics["num_queries"] == 2
    assert metrics["map"] == pytest.approx(0.25)
    assert metrics["p@2"] == pytest.approx(0.25)
    assert metrics["mrr"] == pytest.approx(0.5)
    assert set(metrics) == {"map", "p@2", "recall@2", "ndcg@2", "mrr", "num_queries"}
