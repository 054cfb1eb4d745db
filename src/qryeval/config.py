"""
Parameter files and typed run configuration.

A parameter file holds one ``key=value`` pair per line. Keys keep the names
used by existing experiment files (``BM25:k_1``, ``diversity:lambda``, ...).
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path

from qryeval.errors import ConfigurationError, FormatError

REQUIRED_PARAMETERS = (
    "indexPath",
    "queryFilePath",
    "trecEvalOutputPath",
    "trecEvalOutputLength",
    "retrievalAlgorithm",
)

_TRUE = {"true", "yes", "1", "on"}
_FALSE = {"false", "no", "0", "off"}


class Parameters(Mapping[str, str]):
    """Read-only mapping of parameter names to raw string values, with typed accessors."""

    def __init__(self, values: Mapping[str, str] | None = None):
        self._values = dict(values or {})

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Parameters({self._values!r})"

    def require(self, key: str) -> str:
        try:
            return self._values[key]
        except KeyError:
            raise ConfigurationError(f"Required parameter {key} is missing.") from None

    def get_int(self, key: str, default: int | None = None) -> int:
        if key not in self._values and default is not None:
            return default
        value = self.require(key)
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"Parameter {key} must be an integer, got {value!r}.") from None

    def get_float(self, key: str, default: float | None = None) -> float:
        if key not in self._values and default is not None:
            return default
        value = self.require(key)
        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(f"Parameter {key} must be a number, got {value!r}.") from None

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._values.get(key)
        if value is None:
            return default
        if value.strip().lower() in _TRUE:
            return True
        if value.strip().lower() in _FALSE:
            return False
        raise ConfigurationError(f"Parameter {key} must be true or false, got {value!r}.")

    def get_path(self, key: str) -> Path | None:
        value = self._values.get(key)
        return Path(value) if value else None


def read_parameter_file(path: str | Path) -> Parameters:
    """
    Read ``key=value`` lines; blank lines and ``#`` comments are skipped.

    Raises:
        OSError: The file cannot be read.
        FormatError: A line has no ``=``.
        ConfigurationError: Required parameters are missing.
    """
    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            key, sep, value = line.partition("=")
            if not sep:
                raise FormatError(f"{path}:{lineno}: missing '=' in parameter line {line!r}")
            values[key.strip()] = value.strip()

    parameters = Parameters(values)
    if not parameters.get_bool("diversity"):
        missing = [key for key in REQUIRED_PARAMETERS if key not in parameters]
        if missing:
            raise ConfigurationError(
                f"Required parameters were missing from the parameter file: {', '.join(missing)}"
            )
    return parameters


# =============================================================================
# Typed sections
# =============================================================================


@dataclass(frozen=True)
class FeedbackConfig:
    fb_docs: int
    fb_terms: int
    fb_mu: float
    fb_orig_weight: float
    initial_ranking_file: Path | None = None
    expansion_query_file: Path | None = None

    @classmethod
    def from_parameters(cls, parameters: Parameters) -> FeedbackConfig:
        config = cls(
            fb_docs=parameters.get_int("fbDocs"),
            fb_terms=parameters.get_int("fbTerms"),
            fb_mu=parameters.get_float("fbMu"),
            fb_orig_weight=parameters.get_float("fbOrigWeight"),
            initial_ranking_file=parameters.get_path("fbInitialRankingFile"),
            expansion_query_file=parameters.get_path("fbExpansionQueryFile"),
        )
        if not 0.0 <= config.fb_orig_weight <= 1.0:
            raise ConfigurationError("fbOrigWeight must be between 0 and 1.")
        return config


@dataclass(frozen=True)
class DiversityConfig:
    algorithm: str
    lambda_: float
    max_input_rankings_length: int
    max_result_ranking_length: int
    initial_ranking_file: Path | None = None
    intents_file: Path | None = None

    @classmethod
    def from_parameters(cls, parameters: Parameters) -> DiversityConfig:
        config = cls(
            algorithm=parameters.require("diversity:algorithm").strip().lower(),
            lambda_=parameters.get_float("diversity:lambda"),
            max_input_rankings_length=parameters.get_int("diversity:maxInputRankingsLength"),
            max_result_ranking_length=parameters.get_int("diversity:maxResultRankingLength"),
            initial_ranking_file=parameters.get_path("diversity:initialRankingFile"),
            intents_file=parameters.get_path("diversity:intentsFile"),
        )
        if config.initial_ranking_file is None and config.intents_file is None:
            raise ConfigurationError(
                "Diversification needs diversity:initialRankingFile or diversity:intentsFile."
            )
        return config


@dataclass(frozen=True)
class LetorConfig:
    training_query_file: Path
    training_qrels_file: Path
    training_feature_vectors_file: Path
    testing_feature_vectors_file: Path
    testing_document_scores: Path
    svm_rank_learn_path: str
    svm_rank_classify_path: str
    svm_rank_model_file: Path
    svm_rank_param_c: float = 0.001
    feature_disable: frozenset[int] = frozenset()

    @classmethod
    def from_parameters(cls, parameters: Parameters) -> LetorConfig:
        disabled = parameters.get("letor:featureDisable", "")
        try:
            feature_disable = frozenset(int(f) for f in disabled.split(",") if f.strip())
        except ValueError:
            raise ConfigurationError(f"Invalid letor:featureDisable {disabled!r}") from None
        return cls(
            training_query_file=Path(parameters.require("letor:trainingQueryFile")),
            training_qrels_file=Path(parameters.require("letor:trainingQrelsFile")),
            training_feature_vectors_file=Path(parameters.require("letor:trainingFeatureVectorsFile")),
            testing_feature_vectors_file=Path(parameters.require("letor:testingFeatureVectorsFile")),
            testing_document_scores=Path(parameters.require("letor:testingDocumentScores")),
            svm_rank_learn_path=parameters.require("letor:svmRankLearnPath"),
            svm_rank_classify_path=parameters.require("letor:svmRankClassifyPath"),
            svm_rank_model_file=Path(parameters.require("letor:svmRankModelFile")),
            svm_rank_param_c=parameters.get_float("letor:svmRankParamC", 0.001),
            feature_disable=feature_disable,
        )
