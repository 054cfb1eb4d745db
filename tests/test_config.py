from pathlib import Path

import pytest

from qryeval.config import (
    DiversityConfig,
    FeedbackConfig,
    LetorConfig,
    Parameters,
    read_parameter_file,
)
from qryeval.errors import ConfigurationError, FormatError

BASE = """\
# experiment 1
indexPath=index/corpus.jsonl
queryFilePath = queries.txt
trecEvalOutputPath=out.teIn

trecEvalOutputLength=100
retrievalAlgorithm=BM25
BM25:k_1=1.2
"""


def test_read_parameter_file(tmp_path):
    path = tmp_path / "exp.param"
    path.write_text(BASE)
    parameters = read_parameter_file(path)
    assert parameters["queryFilePath"] == "queries.txt"
    assert parameters.get_int("trecEvalOutputLength") == 100
    assert parameters.get_float("BM25:k_1") == 1.2
    assert "# experiment 1" not in parameters


def test_line_without_equals_is_format_error(tmp_path):
    path = tmp_path / "exp.param"
    path.write_text(BASE + "fbDocs 10\n")
    with pytest.raises(FormatError, match="missing '='"):
        read_parameter_file(path)


def test_missing_required_parameters(tmp_path):
    path = tmp_path / "exp.param"
    path.write_text("indexPath=x\n")
    with pytest.raises(ConfigurationError, match="queryFilePath"):
        read_parameter_file(path)


def test_diversity_runs_need_fewer_parameters(tmp_path):
    path = tmp_path / "exp.param"
    path.write_text("indexPath=x\ndiversity=true\n")
    assert read_parameter_file(path).get_bool("diversity")


def test_typed_accessors():
    parameters = Parameters({"n": "3", "x": "abc", "flag": "Yes", "bad": "maybe"})
    assert parameters.get_int("n") == 3
    assert parameters.get_int("missing", 7) == 7
    assert parameters.get_float("missing", 0.5) == 0.5
    assert parameters.get_bool("flag")
    assert not parameters.get_bool("missing")
    assert parameters.get_path("missing") is None
    with pytest.raises(ConfigurationError):
        parameters.get_int("x")
    with pytest.raises(ConfigurationError):
        parameters.get_bool("bad")
    with pytest.raises(ConfigurationError, match="Required parameter missing"):
        parameters.require("missing")


def test_feedback_config():
    config = FeedbackConfig.from_parameters(
        Parameters({
            "fbDocs": "10",
            "fbTerms": "5",
            "fbMu": "0",
            "fbOrigWeight": "0.5",
            "fbExpansionQueryFile": "expansion.qry",
        })
    )
    assert config.fb_docs == 10
    assert config.fb_terms == 5
    assert config.initial_ranking_file is None
    assert config.expansion_query_file == Path("expansion.qry")


def test_feedback_weight_out_of_range():
    with pytest.raises(ConfigurationError):
        FeedbackConfig.from_parameters(
            Parameters({"fbDocs": "10", "fbTerms": "5", "fbMu": "0", "fbOrigWeight": "1.5"})
        )


def test_diversity_config():
    values = {
        "diversity:algorithm": "PM2",
        "diversity:lambda": "0.5",
        "diversity:maxInputRankingsLength": "100",
        "diversity:maxResultRankingLength": "50",
    }
    with pytest.raises(ConfigurationError):
        DiversityConfig.from_parameters(Parameters(values))

    config = DiversityConfig.from_parameters(
        Parameters({**values, "diversity:intentsFile": "intents.txt"})
    )
    assert config.algorithm == "pm2"
    assert config.max_result_ranking_length == 50
    assert config.intents_file == Path("intents.txt")


def test_letor_config():
    values = {
        "letor:trainingQueryFile": "train.qry",
        "letor:trainingQrelsFile": "train.qrels",
        "letor:trainingFeatureVectorsFile": "train.fv",
        "letor:testingFeatureVectorsFile": "test.fv",
        "letor:testingDocumentScores": "test.scores",
        "letor:svmRankLearnPath": "svm_rank_learn",
        "letor:svmRankClassifyPath": "svm_rank_classify",
        "letor:svmRankModelFile": "model.svm",
        "letor:featureDisable": "1, 3,17",
    }
    config = LetorConfig.from_parameters(Parameters(values))
    assert config.feature_disable == frozenset({1, 3, 17})
    assert config.svm_rank_param_c == 0.001

    with pytest.raises(ConfigurationError):
        LetorConfig.from_parameters(Parameters({**values, "letor:featureDisable": "1,x"}))
