"""
Query evaluation: parse, run the operator tree document-at-a-time, rank.
"""

from __future__ import annotations

import logging
from pathlib import Path

from tqdm import tqdm

from qryeval.config import FeedbackConfig
from qryeval.feedback import combine_queries, expand_query
from qryeval.index import IndexStore
from qryeval.parser import parse_query, wrap_query
from qryeval.ranking import ScoreList
from qryeval.retrieval_models import RetrievalModel
from qryeval.trec_io import (
    DEFAULT_RUN_TAG,
    append_expansion_query,
    append_ranking,
    read_query_file,
    read_ranking_file,
)

logger = logging.getLogger(__name__)


class QueryEvaluator:
    """
    Evaluates queries against one index under one retrieval model.

    Args:
        index: The index store.
        model: Retrieval model used for every query.
    """

    def __init__(self, index: IndexStore, model: RetrievalModel):
        self.index = index
        self.model = model

    def evaluate(self, query: str) -> ScoreList:
        """
        Rank every document matching ``query`` (wrapped in the model's default
        operator). The result is unsorted, in docid order.
        """
        root = parse_query(wrap_query(query, self.model.default_operator))
        logger.debug("    --> %r", root)
        ranking = ScoreList()
        if root is None:
            return ranking

        root.initialize(self.model, self.index)
        while root.has_match():
            docid = root.doc()
            ranking.add(docid, root.get_score())
            root.advance_past(docid)
        return ranking

    def rank(self, query: str) -> ScoreList:
        """``evaluate`` followed by ``sort``."""
        ranking = self.evaluate(query)
        ranking.sort()
        return ranking

    def rank_with_feedback(
        self,
        qid: str,
        query: str,
        feedback: FeedbackConfig,
        initial_rankings: dict[str, ScoreList] | None = None,
    ) -> ScoreList:
        """
        Expand ``query`` from an initial ranking and rank the combined query.

        The initial ranking is taken from ``initial_rankings`` when given,
        otherwise it is computed with ``rank``.
        """
        if initial_rankings is not None:
            initial = initial_rankings.get(qid, ScoreList())
            initial.sort()
        else:
            initial = self.rank(query)

        expansion = expand_query(
            initial, self.index, feedback.fb_docs, feedback.fb_terms, feedback.fb_mu
        )
        if feedback.expansion_query_file is not None:
            append_expansion_query(feedback.expansion_query_file, qid, expansion)
        logger.info("Query %s expansion: %s", qid, expansion or "(none)")

        if not expansion or feedback.fb_orig_weight >= 1.0:
            return self.rank(query)
        if feedback.fb_orig_weight <= 0.0:
            return self.rank(expansion)
        combined = combine_queries(
            query, expansion, self.model.default_operator, feedback.fb_orig_weight
        )
        return self.rank(combined)

    def process_query_file(
        self,
        query_file: str | Path,
        output_path: str | Path,
        output_length: int,
        feedback: FeedbackConfig | None = None,
        tag: str = DEFAULT_RUN_TAG,
    ) -> dict[str, ScoreList]:
        """
        Rank every query of ``query_file`` and append the results to ``output_path``.

        Returns:
            qid -> sorted ranking, for every query processed.
        """
        queries = read_query_file(query_file)
        initial_rankings = None
        if feedback is not None and feedback.initial_ranking_file is not None:
            initial_rankings = read_ranking_file(feedback.initial_ranking_file, self.index)

        results: dict[str, ScoreList] = {}
        for qid, query in tqdm(queries, desc="Queries", unit="query", disable=None):
            logger.info("Query %s: %s", qid, query)
            if feedback is None:
                ranking = self.rank(query)
            else:
                ranking = self.rank_with_feedback(qid, query, feedback, initial_rankings)
            append_ranking(output_path, qid, ranking, self.index, output_length, tag)
            results[qid] = ranking
        return results
