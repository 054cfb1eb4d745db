"""
Retrieval models and their leaf scoring formulas.

A retrieval model is chosen once per run. It decides the default operator
that wraps a bare query and which (operator, model) scoring paths are legal;
the operators in ``qryeval.operators`` look their strategy up by
``ModelKind``.

BM25 (Robertson/Sparck Jones weight, no query-term saturation):
    score(t, D) = idf(t) * tf / (tf + k1 * ((1 - b) + b * |D| / avgdl))
    idf(t)      = max(0, log((N - df + 0.5) / (df + 0.5)))

Indri (Dirichlet prior, then linear interpolation with the collection model):
    score(t, D) = (1 - λ) * (tf + μ * P(t|C)) / (|D| + μ) + λ * P(t|C)
    P(t|C)      = ctf / |C|, with ctf = 0.5 for terms absent from the collection
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union

from qryeval.config import Parameters
from qryeval.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ModelKind(Enum):
    UNRANKED_BOOLEAN = "unrankedboolean"
    RANKED_BOOLEAN = "rankedboolean"
    BM25 = "bm25"
    INDRI = "indri"


# =============================================================================
# Models
# =============================================================================


@dataclass(frozen=True)
class UnrankedBoolean:
    kind: ClassVar[ModelKind] = ModelKind.UNRANKED_BOOLEAN
    name: ClassVar[str] = "UnrankedBoolean"
    default_operator: ClassVar[str] = "#or"


@dataclass(frozen=True)
class RankedBoolean:
    kind: ClassVar[ModelKind] = ModelKind.RANKED_BOOLEAN
    name: ClassVar[str] = "RankedBoolean"
    default_operator: ClassVar[str] = "#or"


@dataclass(frozen=True)
class BM25:
    """
    Args:
        k1: TF saturation parameter.
        b: Length normalization parameter.
        k3: Query TF saturation; every query term occurs once, so its factor is 1.
    """

    k1: float = 1.2
    b: float = 0.75
    k3: float = 0.0

    kind: ClassVar[ModelKind] = ModelKind.BM25
    name: ClassVar[str] = "BM25"
    default_operator: ClassVar[str] = "#sum"


@dataclass(frozen=True)
class Indri:
    """
    Args:
        mu: Dirichlet prior strength.
        lambda_: Weight of the collection model in the linear interpolation.
    """

    mu: float = 2500.0
    lambda_: float = 0.4

    kind: ClassVar[ModelKind] = ModelKind.INDRI
    name: ClassVar[str] = "Indri"
    default_operator: ClassVar[str] = "#and"


RetrievalModel = Union[UnrankedBoolean, RankedBoolean, BM25, Indri]


# =============================================================================
# Leaf scoring formulas
# =============================================================================


def bm25_idf(num_docs: int, df: float) -> float:
    """RSJ weight, floored at 0: max(0, log((N - df + 0.5) / (df + 0.5)))"""
    return max(0.0, math.log((num_docs - df + 0.5) / (df + 0.5)))


def bm25_tf_weight(tf: float, doc_length: float, avg_doc_length: float, k1: float, b: float) -> float:
    """Saturated, length-normalized term frequency: tf / (tf + k1 * norm)"""
    if tf <= 0:
        return 0.0
    norm = (1.0 - b) + b * (doc_length / (avg_doc_length or 1e-9))
    return tf / (tf + k1 * norm)


def bm25_term_score(
    tf: float,
    df: float,
    num_docs: int,
    doc_length: float,
    avg_doc_length: float,
    k1: float,
    b: float,
) -> float:
    return bm25_idf(num_docs, df) * bm25_tf_weight(tf, doc_length, avg_doc_length, k1, b)


def indri_term_score(
    tf: float,
    doc_length: float,
    ctf: float,
    collection_length: float,
    mu: float,
    lambda_: float,
) -> float:
    """
    Two-stage smoothed term probability.

    Values above 1.0 are possible for short collections and a large λ·P(t|C);
    they are logged and returned unchanged so scores stay reproducible.
    """
    if ctf == 0:
        ctf = 0.5
    p_mle = ctf / max(collection_length, 1)
    denominator = doc_length + mu
    p_doc = (tf + mu * p_mle) / denominator if denominator > 0 else p_mle
    score = (1.0 - lambda_) * p_doc + lambda_ * p_mle
    if score > 1.0:
        logger.warning(
            "Indri term score %.6f exceeds 1.0 (tf=%s, doc_length=%s, lambda*P_mle=%.6f)",
            score,
            tf,
            doc_length,
            lambda_ * p_mle,
        )
    return score


# =============================================================================
# Construction from parameters
# =============================================================================


def create_model(parameters: Parameters) -> RetrievalModel:
    """
    Build the retrieval model named by ``retrievalAlgorithm``.

    Raises:
        ConfigurationError: The model name is unknown or its parameters are missing.
    """
    name = parameters.require("retrievalAlgorithm").strip().lower()
    if name == ModelKind.UNRANKED_BOOLEAN.value:
        return UnrankedBoolean()
    if name == ModelKind.RANKED_BOOLEAN.value:
        return RankedBoolean()
    if name == ModelKind.BM25.value:
        return BM25(
            k1=parameters.get_float("BM25:k_1"),
            b=parameters.get_float("BM25:b"),
            k3=parameters.get_float("BM25:k_3"),
        )
    if name == ModelKind.INDRI.value:
        return Indri(
            mu=parameters.get_float("Indri:mu"),
            lambda_=parameters.get_float("Indri:lambda"),
        )
    raise ConfigurationError(f"Unknown retrieval model {parameters['retrievalAlgorithm']}")
