"""
Learning to rank: feature extraction and re-ranking with an external ranker.

Every (query, document) pair is described by 18 features:

     1  spam score (``spamScore`` attribute)
     2  URL depth (number of '/' in ``rawUrl``, without ``http://``)
     3  Wikipedia URL (``rawUrl`` contains ``wikipedia.org``)
     4  PageRank (``PageRank`` attribute)
     5  BM25, body        6  Indri, body        7  term overlap, body
     8  BM25, title       9  Indri, title      10  term overlap, title
    11  BM25, url        12  Indri, url        13  term overlap, url
    14  BM25, inlink     15  Indri, inlink     16  term overlap, inlink
    17  inlink field length
    18  title field length

A feature is missing (NaN) when its attribute is absent or its field is
empty. Features are min-max normalized per query over the documents where
they are present; missing values and constant features become 0.

The ranker itself is an external collaborator with two operations, ``train``
and ``classify``. ``SvmRankRanker`` drives the SVMrank command-line tools.
"""

from __future__ import annotations

import logging
import math
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import numpy as np

from qryeval.config import LetorConfig
from qryeval.engine import QueryEvaluator
from qryeval.errors import RankerError
from qryeval.index import IndexStore, tokenize
from qryeval.ranking import ScoreList
from qryeval.retrieval_models import BM25, Indri, bm25_term_score, indri_term_score
from qryeval.trec_io import DEFAULT_RUN_TAG, append_ranking, read_qrels, read_query_file

logger = logging.getLogger(__name__)

NUM_FEATURES = 18
FEATURE_FIELDS = ("body", "title", "url", "inlink")


@dataclass
class FeatureVector:
    qid: str
    external_id: str
    label: float
    values: np.ndarray

    def to_svmrank(self, disabled: frozenset[int] = frozenset()) -> str:
        features = " ".join(
            f"{i}:{float(v)}"
            for i, v in enumerate(self.values, start=1)
            if i not in disabled
        )
        return f"{self.label:g} qid:{self.qid} {features} # {self.external_id}"


# =============================================================================
# Feature extraction
# =============================================================================


class FeatureExtractor:
    """
    Computes raw (unnormalized) feature values.

    Args:
        index: Index store providing attributes, term vectors and statistics.
        bm25: Parameters for the BM25 features.
        indri: Parameters for the Indri features.
        disabled: 1-based ids of features to leave out.
    """

    def __init__(self, index: IndexStore, bm25: BM25, indri: Indri, disabled: frozenset[int] = frozenset()):
        self.index = index
        self.bm25 = bm25
        self.indri = indri
        self.disabled = disabled

    def extract(self, terms: Sequence[str], docid: int) -> np.ndarray:
        values = np.full(NUM_FEATURES, np.nan)
        values[0] = self._float_attribute("spamScore", docid)
        raw_url = self.index.attribute("rawUrl", docid)
        if raw_url is not None:
            values[1] = raw_url.replace("http://", "").count("/")
            values[2] = 1.0 if "wikipedia.org" in raw_url else 0.0
        values[3] = self._float_attribute("PageRank", docid)
        for i, field in enumerate(FEATURE_FIELDS):
            base = 4 + 3 * i
            values[base : base + 3] = self._field_features(terms, docid, field)
        values[16] = self.index.field_length("inlink", docid)
        values[17] = self.index.field_length("title", docid)
        for feature in self.disabled:
            if 1 <= feature <= NUM_FEATURES:
                values[feature - 1] = np.nan
        return values

    def _float_attribute(self, name: str, docid: int) -> float:
        value = self.index.attribute(name, docid)
        if value is None:
            return np.nan
        try:
            return float(value)
        except ValueError:
            logger.warning("Attribute %s of document %d is not numeric: %r", name, docid, value)
            return np.nan

    def _field_features(self, terms: Sequence[str], docid: int, field: str) -> tuple[float, float, float]:
        """(BM25, Indri, term overlap) for one field; NaN when the field is empty."""
        vector = self.index.term_vector(docid, field)
        if len(vector) == 0 or not terms:
            return (np.nan, np.nan, np.nan)

        index = self.index
        doc_length = index.field_length(field, docid)
        collection_length = index.sum_of_field_lengths(field)
        avg_doc_length = collection_length / max(index.doc_count(field), 1)

        bm25 = 0.0
        indri = 1.0
        matched = 0
        for term in terms:
            tf = vector.freq(term)
            if tf > 0:
                matched += 1
                bm25 += bm25_term_score(
                    tf, vector.df(term), index.num_docs(), doc_length, avg_doc_length,
                    self.bm25.k1, self.bm25.b,
                )
            indri *= indri_term_score(
                tf, doc_length, index.total_term_freq(field, term), collection_length,
                self.indri.mu, self.indri.lambda_,
            )
        indri = indri ** (1.0 / len(terms)) if matched else 0.0
        return (bm25, indri, matched / len(terms))


def normalize_features(raw: np.ndarray) -> np.ndarray:
    """Min-max normalize each column over its non-missing values; missing -> 0."""
    if raw.size == 0:
        return raw.copy()
    present = ~np.isnan(raw)
    lo = np.min(np.where(present, raw, np.inf), axis=0)
    hi = np.max(np.where(present, raw, -np.inf), axis=0)
    span = hi - lo
    with np.errstate(invalid="ignore", divide="ignore"):
        scaled = (raw - lo) / span
    return np.where(present & (span > 0), scaled, 0.0)


def write_feature_vectors(
    path: str | Path, vectors: Sequence[FeatureVector], disabled: frozenset[int] = frozenset()
) -> None:
    with open(path, "w", encoding="utf-8") as f:
        for vector in vectors:
            f.write(vector.to_svmrank(disabled) + "\n")


# =============================================================================
# Rankers
# =============================================================================


class Ranker(Protocol):
    """An external rank learner."""

    def train(self, vectors: Sequence[FeatureVector]) -> Path: ...

    def classify(self, vectors: Sequence[FeatureVector], model: Path) -> list[float]: ...


def run_command(cmd: list[str]) -> None:
    """
    Run an external tool to completion, capturing (and so draining) stdout and stderr.

    Raises:
        RankerError: The tool cannot be started or exits with a non-zero status.
    """
    logger.info("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise RankerError(f"Cannot run {cmd[0]}: {e}") from e
    for line in result.stdout.splitlines():
        logger.debug("%s: %s", Path(cmd[0]).name, line)
    for line in result.stderr.splitlines():
        logger.debug("%s (stderr): %s", Path(cmd[0]).name, line)
    if result.returncode != 0:
        raise RankerError(
            f"{cmd[0]} exited with status {result.returncode}: {result.stderr.strip()[-500:]}"
        )


def read_document_scores(path: str | Path) -> list[float]:
    """One score per line; ``nan`` is read as 0."""
    scores = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            score = float(line)
            scores.append(0.0 if math.isnan(score) else score)
    return scores


class SvmRankRanker:
    """``Ranker`` backed by ``svm_rank_learn`` and ``svm_rank_classify``."""

    def __init__(self, config: LetorConfig):
        self.config = config

    def train(self, vectors: Sequence[FeatureVector]) -> Path:
        config = self.config
        write_feature_vectors(config.training_feature_vectors_file, vectors, config.feature_disable)
        run_command([
            config.svm_rank_learn_path,
            "-c",
            str(config.svm_rank_param_c),
            str(config.training_feature_vectors_file),
            str(config.svm_rank_model_file),
        ])
        return config.svm_rank_model_file

    def classify(self, vectors: Sequence[FeatureVector], model: Path) -> list[float]:
        config = self.config
        write_feature_vectors(config.testing_feature_vectors_file, vectors, config.feature_disable)
        run_command([
            config.svm_rank_classify_path,
            str(config.testing_feature_vectors_file),
            str(model),
            str(config.testing_document_scores),
        ])
        scores = read_document_scores(config.testing_document_scores)
        if len(scores) != len(vectors):
            raise RankerError(
                f"Expected {len(vectors)} scores from {config.svm_rank_classify_path}, got {len(scores)}"
            )
        return scores


# =============================================================================
# Pipeline
# =============================================================================


class LetorPipeline:
    """
    Train a ranker on judged queries, then re-rank an initial BM25 run.

    Args:
        index: Index store.
        bm25: BM25 parameters (initial ranking and BM25 features).
        indri: Indri parameters (Indri features).
        ranker: The rank learner.
        disabled: 1-based ids of features to leave out.
    """

    def __init__(
        self,
        index: IndexStore,
        bm25: BM25,
        indri: Indri,
        ranker: Ranker,
        disabled: frozenset[int] = frozenset(),
    ):
        self.index = index
        self.bm25 = bm25
        self.ranker = ranker
        self.extractor = FeatureExtractor(index, bm25, indri, disabled)

    def query_vectors(self, qid: str, query: str, labels: dict[str, float]) -> list[FeatureVector]:
        """Normalized feature vectors for the judged documents of one query."""
        terms = tokenize(query)
        docs = []
        for external_id, label in labels.items():
            try:
                docid = self.index.internal_docid(external_id)
            except KeyError:
                logger.debug("Skipping unknown document %s for query %s", external_id, qid)
                continue
            docs.append((external_id, label, docid))
        if not docs:
            return []

        raw = np.vstack([self.extractor.extract(terms, docid) for _, _, docid in docs])
        normalized = normalize_features(raw)
        return [
            FeatureVector(qid, external_id, label, normalized[row])
            for row, (external_id, label, _) in enumerate(docs)
        ]

    def train(self, query_file: str | Path, qrels_file: str | Path) -> Path:
        qrels = read_qrels(qrels_file)
        vectors = []
        for qid, query in read_query_file(query_file):
            vectors.extend(self.query_vectors(qid, query, qrels.get(qid, {})))
        logger.info("Training ranker on %d feature vectors", len(vectors))
        return self.ranker.train(vectors)

    def rerank(
        self,
        query_file: str | Path,
        model: Path,
        output_path: str | Path,
        output_length: int,
        tag: str = DEFAULT_RUN_TAG,
    ) -> dict[str, ScoreList]:
        """Rank each query with BM25, then re-order its top documents by ranker score."""
        evaluator = QueryEvaluator(self.index, self.bm25)
        queries = read_query_file(query_file)
        candidates = {}
        vectors: list[FeatureVector] = []
        for qid, query in queries:
            initial = evaluator.rank(query)
            initial.truncate(output_length)
            labels = {self.index.external_docid(entry.docid): 0.0 for entry in initial}
            query_vectors = self.query_vectors(qid, query, labels)
            candidates[qid] = query_vectors
            vectors.extend(query_vectors)

        scores = iter(self.ranker.classify(vectors, model) if vectors else [])
        results = {}
        for qid, _ in queries:
            ranking = ScoreList(
                (self.index.internal_docid(v.external_id), next(scores)) for v in candidates[qid]
            )
            ranking.sort()
            append_ranking(output_path, qid, ranking, self.index, output_length, tag)
            results[qid] = ranking
        return results
