"""
Search result diversification over query intents.

Each query comes with a base ranking (intent 0) and one ranking per intent.
Their scores are merged into an ``IntentScoreMap`` and a greedy algorithm
picks one document per step:

PM2 (proportional allocation). Each intent holds ``votes = k / m`` seats;
the intent with the largest quotient ``votes / (2 * slots_i + 1)`` is served
next. Documents are scored by

    λ * q_c * s(d, c) + (1 - λ) * Σ_{i≠c} q_i * s(d, i)

and the chosen document fills ``s(d, i) / score(d)`` of every intent's slots.

xQuAD (explicit query aspects). Documents are scored by

    (1 - λ) * s(d, 0) + λ * Σ_i (1/m) * penalty_i * s(d, i)

and every selection multiplies ``penalty_i`` by ``1 - s(d, i)``.

Ties between intents go to the lowest intent id and ties between documents
to the lowest docid.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from qryeval.config import DiversityConfig
from qryeval.engine import QueryEvaluator
from qryeval.errors import ConfigurationError
from qryeval.index import IndexStore
from qryeval.ranking import ScoreList
from qryeval.trec_io import (
    DEFAULT_RUN_TAG,
    append_ranking,
    qid_sort_key,
    read_intent_ranking_file,
    read_intents_file,
    read_query_file,
)

logger = logging.getLogger(__name__)

BASE_INTENT = 0


# =============================================================================
# Per-query intent scores
# =============================================================================


@dataclass
class IntentScoreMap:
    """
    Normalized scores of every candidate document for one query.

    Attributes:
        qid: Query id.
        intents: Declared intent ids (excluding the base ranking), ascending.
        scores: docid -> intent id -> score; intent 0 is the base ranking.
    """

    qid: str
    intents: tuple[int, ...]
    scores: dict[int, dict[int, float]] = field(default_factory=dict)

    @classmethod
    def build(cls, qid: str, base: ScoreList, intents: Mapping[int, ScoreList]) -> IntentScoreMap:
        """
        Merge the rankings. If any raw score exceeds 1.0, every score is divided
        by the largest per-ranking score sum.
        """
        intent_map = cls(qid, tuple(sorted(intents)))
        rankings = [(BASE_INTENT, base)] + [(i, intents[i]) for i in intent_map.intents]
        sums = []
        needs_norm = False
        for intent, ranking in rankings:
            total = 0.0
            for entry in ranking:
                intent_map.scores.setdefault(entry.docid, {})[intent] = entry.score
                total += entry.score
                needs_norm = needs_norm or entry.score > 1.0
            sums.append(total)

        norm = max(sums, default=0.0)
        if needs_norm and norm > 0:
            for by_intent in intent_map.scores.values():
                for intent in by_intent:
                    by_intent[intent] /= norm
        return intent_map

    @property
    def candidates(self) -> list[int]:
        return sorted(self.scores)

    def score(self, docid: int, intent: int) -> float:
        return self.scores[docid].get(intent, 0.0)


# =============================================================================
# Greedy algorithms
# =============================================================================


def _select(candidates: list[int], placed: set[int], score: Callable[[int], float]) -> tuple[int, float] | None:
    best: tuple[int, float] | None = None
    for docid in candidates:
        if docid in placed:
            continue
        value = score(docid)
        if best is None or value > best[1]:
            best = (docid, value)
    return best


def pm2(intent_map: IntentScoreMap, output_length: int, lambda_: float) -> ScoreList:
    """Diversify with PM2; the result is in selection order."""
    intents = intent_map.intents
    candidates = intent_map.candidates
    result = ScoreList()
    if not intents:
        return result

    votes = min(output_length, len(candidates)) / len(intents)
    slots = dict.fromkeys(intents, 0.0)
    placed: set[int] = set()
    while len(result) < output_length:
        quotients = {i: votes / (2 * slots[i] + 1) for i in intents}
        chosen_intent = intents[0]
        for i in intents:
            if quotients[i] > quotients[chosen_intent]:
                chosen_intent = i

        def score(docid: int) -> float:
            total = lambda_ * quotients[chosen_intent] * intent_map.score(docid, chosen_intent)
            for i in intents:
                if i != chosen_intent:
                    total += (1.0 - lambda_) * quotients[i] * intent_map.score(docid, i)
            return total

        selected = _select(candidates, placed, score)
        if selected is None:
            break
        docid, value = selected
        placed.add(docid)
        result.add(docid, value)
        if value > 0:
            for i in intents:
                slots[i] += intent_map.score(docid, i) / value
    return result


def xquad(intent_map: IntentScoreMap, output_length: int, lambda_: float) -> ScoreList:
    """Diversify with xQuAD; the result is in selection order."""
    intents = intent_map.intents
    candidates = intent_map.candidates
    result = ScoreList()
    weight = 1.0 / len(intents) if intents else 0.0
    penalty = dict.fromkeys(intents, 1.0)
    placed: set[int] = set()
    while len(result) < output_length:

        def score(docid: int) -> float:
            total = (1.0 - lambda_) * intent_map.score(docid, BASE_INTENT)
            for i in intents:
                total += lambda_ * weight * penalty[i] * intent_map.score(docid, i)
            return total

        selected = _select(candidates, placed, score)
        if selected is None:
            break
        docid, value = selected
        placed.add(docid)
        result.add(docid, value)
        for i in intents:
            penalty[i] *= 1.0 - intent_map.score(docid, i)
    return result


ALGORITHMS: dict[str, Callable[[IntentScoreMap, int, float], ScoreList]] = {
    "pm2": pm2,
    "xquad": xquad,
}


# =============================================================================
# Diversification runs
# =============================================================================


class Diversifier:
    """
    Diversifies every query of a run and writes the results.

    Args:
        config: Diversification parameters.
        index: Index used to map document ids in input and output files.
        evaluator: Used to rank queries and intents when no initial ranking file is given.

    Raises:
        ConfigurationError: Unknown algorithm, or no way to obtain input rankings.
    """

    def __init__(
        self,
        config: DiversityConfig,
        index: IndexStore,
        evaluator: QueryEvaluator | None = None,
    ):
        if config.algorithm not in ALGORITHMS:
            raise ConfigurationError(f"Unknown diversification algorithm {config.algorithm}")
        if config.initial_ranking_file is None and evaluator is None:
            raise ConfigurationError("Diversification without an initial ranking file needs a retrieval model.")
        self.config = config
        self.index = index
        self.evaluator = evaluator
        self.algorithm = ALGORITHMS[config.algorithm]

    def load_rankings(
        self, query_file: str | Path | None = None
    ) -> dict[str, tuple[ScoreList, dict[int, ScoreList]]]:
        """qid -> (base ranking, intent id -> ranking), each truncated to the input length."""
        if self.config.initial_ranking_file is not None:
            base, intents = read_intent_ranking_file(self.config.initial_ranking_file, self.index)
            inputs = {qid: (ranking, intents.get(qid, {})) for qid, ranking in base.items()}
            for qid in sorted(set(intents) - set(base), key=qid_sort_key):
                logger.warning("Query %s has intent rankings but no base ranking; skipping it", qid)
        else:
            if query_file is None:
                raise ConfigurationError("Diversification needs queryFilePath to rank intents.")
            intent_queries = read_intents_file(self.config.intents_file)
            inputs = {}
            for qid, query in read_query_file(query_file):
                logger.info("Query %s: %s", qid, query)
                inputs[qid] = (
                    self.evaluator.rank(query),
                    {
                        intent: self.evaluator.rank(text)
                        for intent, text in intent_queries.get(qid, {}).items()
                    },
                )

        length = self.config.max_input_rankings_length
        for ranking, intents in inputs.values():
            ranking.sort()
            ranking.truncate(length)
            for intent_ranking in intents.values():
                intent_ranking.sort()
                intent_ranking.truncate(length)
        return inputs

    def diversify(self, qid: str, base: ScoreList, intents: Mapping[int, ScoreList]) -> ScoreList:
        """Diversified ranking for one query, sorted by its diversified scores."""
        if not intents:
            logger.warning("Query %s has no intents; writing its base ranking", qid)
            result = ScoreList(base)
        else:
            intent_map = IntentScoreMap.build(qid, base, intents)
            result = self.algorithm(
                intent_map, self.config.max_result_ranking_length, self.config.lambda_
            )
        result.sort()
        result.truncate(self.config.max_result_ranking_length)
        return result

    def run(
        self,
        output_path: str | Path,
        query_file: str | Path | None = None,
        tag: str = DEFAULT_RUN_TAG,
    ) -> dict[str, ScoreList]:
        inputs = self.load_rankings(query_file)
        results = {}
        for qid in sorted(inputs, key=qid_sort_key):
            base, intents = inputs[qid]
            ranking = self.diversify(qid, base, intents)
            append_ranking(
                output_path, qid, ranking, self.index, self.config.max_result_ranking_length, tag
            )
            results[qid] = ranking
        return results
