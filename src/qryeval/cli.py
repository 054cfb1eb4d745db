"""
Command-line entry point.

Run with:
    uv run qryeval run experiment.param
    uv run qryeval evaluate output.teIn qrels.txt -k 10
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time

from qryeval.config import DiversityConfig, FeedbackConfig, LetorConfig, Parameters, read_parameter_file
from qryeval.diversification import Diversifier
from qryeval.engine import QueryEvaluator
from qryeval.errors import ConfigurationError, QryEvalError
from qryeval.index import InMemoryIndex
from qryeval.letor import LetorPipeline, SvmRankRanker
from qryeval.metrics import evaluate_run
from qryeval.retrieval_models import BM25, Indri, create_model
from qryeval.trec_io import DEFAULT_RUN_TAG, read_qrels, read_run

logger = logging.getLogger("qryeval")


def run_experiment(parameters: Parameters) -> None:
    """Dispatch a parameter file to LETOR, diversification, or plain ranking."""
    index = InMemoryIndex.from_jsonl(parameters.require("indexPath"))
    tag = parameters.get("trecEvalTag", DEFAULT_RUN_TAG)
    algorithm = parameters.get("retrievalAlgorithm", "").strip().lower()

    if parameters.get_bool("diversity"):
        config = DiversityConfig.from_parameters(parameters)
        evaluator = QueryEvaluator(index, create_model(parameters)) if algorithm else None
        diversifier = Diversifier(config, index, evaluator)
        diversifier.run(
            parameters.require("trecEvalOutputPath"),
            query_file=parameters.get("queryFilePath"),
            tag=tag,
        )
        return

    output_length = parameters.get_int("trecEvalOutputLength")
    if algorithm == "letor":
        config = LetorConfig.from_parameters(parameters)
        pipeline = LetorPipeline(
            index,
            BM25(
                k1=parameters.get_float("BM25:k_1"),
                b=parameters.get_float("BM25:b"),
                k3=parameters.get_float("BM25:k_3"),
            ),
            Indri(mu=parameters.get_float("Indri:mu"), lambda_=parameters.get_float("Indri:lambda")),
            SvmRankRanker(config),
            config.feature_disable,
        )
        model = pipeline.train(config.training_query_file, config.training_qrels_file)
        pipeline.rerank(
            parameters.require("queryFilePath"),
            model,
            parameters.require("trecEvalOutputPath"),
            output_length,
            tag,
        )
        return

    evaluator = QueryEvaluator(index, create_model(parameters))
    feedback = FeedbackConfig.from_parameters(parameters) if parameters.get_bool("fb") else None
    evaluator.process_query_file(
        parameters.require("queryFilePath"),
        parameters.require("trecEvalOutputPath"),
        output_length,
        feedback=feedback,
        tag=tag,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="qryeval", description="Structured query evaluation")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the experiment described by a parameter file")
    run.add_argument("parameter_file", help="File of key=value parameters")

    evaluate = subparsers.add_parser("evaluate", help="Score a run file against qrels")
    evaluate.add_argument("run_file", help="Run file (qid Q0 docid rank score tag)")
    evaluate.add_argument("qrels_file", help="Qrels file (qid 0 docid grade)")
    evaluate.add_argument("-k", type=int, default=10, help="Cutoff for @k metrics (default: 10)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    start = time.perf_counter()
    try:
        if args.command == "run":
            run_experiment(read_parameter_file(args.parameter_file))
        else:
            metrics = evaluate_run(read_run(args.run_file), read_qrels(args.qrels_file), k=args.k)
            print(json.dumps(metrics, indent=2))
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return 1
    except (QryEvalError, OSError) as e:
        logger.error("%s", e)
        return 1
    logger.info("Time: %.2fs", time.perf_counter() - start)
    return 0


if __name__ == "__main__":
    sys.exit(main())
