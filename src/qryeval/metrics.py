"""
Run evaluation against graded relevance judgments.

``retrieved`` is a list of external document ids in rank order; ``judgments``
maps external ids to relevance grades. A document is relevant when its grade
is positive.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import numpy as np


def _relevant(judgments: Mapping[str, float]) -> set[str]:
    return {doc for doc, grade in judgments.items() if grade > 0}


def precision_at_k(judgments: Mapping[str, float], retrieved: Sequence[str], k: int) -> float:
    """
    Computes Precision@K.

    Args:
        judgments: External id -> relevance grade.
        retrieved: Ranked external ids.
        k: Top-k cutoff.

    Returns:
        Precision at rank k.
    """
    if k == 0:
        return 0.0
    relevant = _relevant(judgments)
    hits = sum(1 for doc in retrieved[:k] if doc in relevant)
    return hits / k


def recall_at_k(judgments: Mapping[str, float], retrieved: Sequence[str], k: int) -> float:
    relevant = _relevant(judgments)
    if not relevant:
        return 0.0
    hits = sum(1 for doc in retrieved[:k] if doc in relevant)
    return hits / len(relevant)


def average_precision(judgments: Mapping[str, float], retrieved: Sequence[str]) -> float:
    """
    Computes Average Precision (AP) for a single query.

    Returns:
        Mean of the precision values at the rank of each relevant document,
        over all relevant documents (retrieved or not).
    """
    relevant = _relevant(judgments)
    if not relevant:
        return 0.0

    hits, sum_precisions = 0, 0.0
    for i, doc in enumerate(retrieved, start=1):
        if doc in relevant:
            hits += 1
            sum_precisions += hits / i
    return sum_precisions / len(relevant)


def ndcg_at_k(judgments: Mapping[str, float], retrieved: Sequence[str], k: int) -> float:
    """
    Computes Normalized Discounted Cumulative Gain at rank K with graded gains.

    Returns:
        DCG@k of the run divided by DCG@k of the ideal ordering.
    """
    gains = np.array([max(judgments.get(doc, 0.0), 0.0) for doc in retrieved[:k]], dtype=float)
    discounts = np.log2(np.arange(2, k + 2))  # rank 1 -> log2(2) = 1
    dcg = float(np.sum(gains / discounts[: len(gains)]))

    ideal = np.sort(np.array([g for g in judgments.values() if g > 0], dtype=float))[::-1][:k]
    idcg = float(np.sum(ideal / discounts[: len(ideal)]))
    return dcg / idcg if idcg > 0 else 0.0


def reciprocal_rank(judgments: Mapping[str, float], retrieved: Sequence[str]) -> float:
    """Reciprocal rank of the first relevant document (0.0 if none is retrieved)."""
    relevant = _relevant(judgments)
    for i, doc in enumerate(retrieved, start=1):
        if doc in relevant:
            return 1.0 / i
    return 0.0


def evaluate_run(
    run: Mapping[str, Sequence[str]],
    qrels: Mapping[str, Mapping[str, float]],
    k: int = 10,
) -> dict[str, float]:
    """
    Mean metrics over the judged queries of a run.

    Queries without judgments are skipped; judged queries missing from the
    run count as empty rankings.
    """
    per_query = {
        "map": [],
        f"p@{k}": [],
        f"recall@{k}": [],
        f"ndcg@{k}": [],
        "mrr": [],
    }
    for qid, judgments in qrels.items():
        retrieved = list(run.get(qid, []))
        per_query["map"].append(average_precision(judgments, retrieved))
        per_query[f"p@{k}"].append(precision_at_k(judgments, retrieved, k))
        per_query[f"recall@{k}"].append(recall_at_k(judgments, retrieved, k))
        per_query[f"ndcg@{k}"].append(ndcg_at_k(judgments, retrieved, k))
        per_query["mrr"].append(reciprocal_rank(judgments, retrieved))

    results = {name: float(np.mean(values)) if values else 0.0 for name, values in per_query.items()}
    results["num_queries"] = float(len(qrels))
    return results
