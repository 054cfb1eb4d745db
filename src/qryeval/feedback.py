"""
Pseudo-relevance feedback (Indri-style query expansion).

For every candidate term t drawn from the body term vectors of the top
``fb_docs`` documents of an initial ranking:

    score(t) = Σ_{d in top docs} p(t|d) * score(d) * log(1 / P(t|C))
    p(t|d)   = (tf(t, d) + μ_fb * P(t|C)) / (|d| + μ_fb)

Documents that do not contain t still contribute, with tf(t, d) = 0. The
``fb_terms`` best terms form a ``#wand`` clause that is combined with the
original query and evaluated again.
"""

from __future__ import annotations

import heapq
import logging
import math

from qryeval.index import IndexStore
from qryeval.ranking import ScoreList

logger = logging.getLogger(__name__)

FEEDBACK_FIELD = "body"


def is_expansion_candidate(stem: str) -> bool:
    """Terms containing '.' or ',' cannot be written back into a query."""
    return bool(stem) and "." not in stem and "," not in stem


def score_expansion_terms(
    ranking: ScoreList,
    index: IndexStore,
    fb_docs: int,
    fb_mu: float,
    field: str = FEEDBACK_FIELD,
) -> dict[str, float]:
    """Accumulate the expansion score of every candidate term over the top documents."""
    top = [ranking[i] for i in range(min(fb_docs, len(ranking)))]
    collection_length = index.sum_of_field_lengths(field)
    p_mle: dict[str, float] = {}
    scores: dict[str, float] = {}

    def contribution(term: str, tf: int, docid: int, doc_score: float) -> float:
        p = p_mle[term]
        p_td = (tf + fb_mu * p) / (index.field_length(field, docid) + fb_mu)
        return p_td * math.log(1.0 / p) * doc_score

    vectors = {}
    for entry in top:
        vector = index.term_vector(entry.docid, field)
        vectors[entry.docid] = vector
        for stem, tf in vector:
            if not is_expansion_candidate(stem):
                continue
            if stem not in p_mle:
                p_mle[stem] = index.total_term_freq(field, stem) / collection_length
            scores[stem] = scores.get(stem, 0.0) + contribution(stem, tf, entry.docid, entry.score)

    for term in scores:
        for entry in top:
            if term not in vectors[entry.docid]:
                scores[term] += contribution(term, 0, entry.docid, entry.score)
    return scores


def select_expansion_terms(scores: dict[str, float], fb_terms: int) -> list[tuple[str, float]]:
    """The ``fb_terms`` highest-scoring terms, best first; ties go to the smaller term."""
    return heapq.nsmallest(fb_terms, scores.items(), key=lambda item: (-item[1], item[0]))


def format_expansion(terms: list[tuple[str, float]]) -> str:
    """``#wand ( w1 t1 w2 t2 ... )`` with weights rounded to 4 decimals; zero weights are dropped."""
    pairs = []
    for term, score in terms:
        weight = f"{score:.4f}"
        if float(weight) <= 0.0:
            logger.debug("Dropping expansion term %r with weight %s", term, weight)
            continue
        pairs.append(f"{weight} {term}")
    if not pairs:
        return ""
    return f"#wand ( {' '.join(pairs)} )"


def expand_query(
    ranking: ScoreList,
    index: IndexStore,
    fb_docs: int,
    fb_terms: int,
    fb_mu: float,
) -> str:
    """Build the expansion clause for an initial ranking (empty string if none)."""
    scores = score_expansion_terms(ranking, index, fb_docs, fb_mu)
    return format_expansion(select_expansion_terms(scores, fb_terms))


def combine_queries(query: str, expansion: str, default_operator: str, orig_weight: float) -> str:
    """Weight the original query (under the default operator) against the expansion clause."""
    return (
        f"#wand ( {orig_weight} {default_operator}( {query} ) "
        f"{1.0 - orig_weight} {expansion} )"
    )
