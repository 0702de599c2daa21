import argparse
import sys
from typing import List, Optional

import structlog

from packages.issue_classifier.config import Settings, TrainingConfig, get_settings
from packages.issue_classifier.data_loader import load_records
from packages.issue_classifier.errors import ClassifierError
from packages.issue_classifier.evaluator import evaluate
from packages.issue_classifier.logging import setup_logging
from packages.issue_classifier.model_store import load, save
from packages.issue_classifier.pipeline import train_pipeline
from packages.issue_classifier.prediction import predict_batch, predict_file, predict_one
from packages.issue_classifier.schema import EvaluationMetrics, Record

logger = structlog.get_logger()

# Sample issues used by the end-to-end run
SAMPLE_ISSUE = Record(
    title="WebSockets communication is slow in my machine",
    description=(
        "The WebSockets communication used under the covers by SignalR "
        "looks like is going slow in my development machine.."
    ),
)
SAMPLE_BATCH = [
    Record(
        title="Entity Framework crashes",
        description="When connecting to the database, EF is crashing",
    ),
    Record(
        title="Github Down",
        description="When going to the website, github says it is down",
    ),
]


def print_metrics(metrics: EvaluationMetrics):
    print("*" * 80)
    print("*       Metrics for Multi-class Classification model - Test Data")
    print("*" + "-" * 79)
    print(f"*       MicroAccuracy:    {metrics.micro_accuracy:.3f}")
    print(f"*       MacroAccuracy:    {metrics.macro_accuracy:.3f}")
    print(f"*       LogLoss:          {metrics.log_loss:.3f}")
    print(f"*       LogLossReduction: {metrics.log_loss_reduction:.3f}")
    print(f"*       Top-{metrics.top_k} Accuracy:   {metrics.top_k_accuracy:.3f}")
    print("*" * 80)


def _training_config(args, settings: Settings) -> TrainingConfig:
    config = TrainingConfig(seed=settings.SEED)
    if getattr(args, "l2", None) is not None:
        config.l2 = args.l2
    if getattr(args, "max_passes", None) is not None:
        config.max_passes = args.max_passes
    if getattr(args, "no_cache", False):
        config.cache_features = False
    return config


def train(args, settings: Settings):
    records = load_records(args.train or settings.TRAIN_DATA_PATH)
    pipeline = train_pipeline(records, _training_config(args, settings))
    model_path = args.model or settings.MODEL_PATH
    save(pipeline, model_path)
    print(f"Trained on {len(records)} records, {len(pipeline.labels)} areas.")
    print(f"Model saved to {model_path}")


def evaluate_cmd(args, settings: Settings):
    pipeline = load(args.model or settings.MODEL_PATH)
    records = load_records(args.test or settings.TEST_DATA_PATH)
    print_metrics(evaluate(pipeline, records, top_k=args.top_k))


def predict(args, settings: Settings):
    pipeline = load(args.model or settings.MODEL_PATH)

    if args.file:
        for record, result in predict_file(pipeline, args.file):
            print(f"*-> Title: {record.title} | Prediction: {result.predicted_label}")
        return

    result = predict_one(pipeline, Record(title=args.title, description=args.description or ""))
    print(f"Prediction: {result.predicted_label} (confidence {result.confidence:.3f})")


def run(args, settings: Settings):
    """Train, evaluate, save, reload and predict in one pass."""
    model_path = args.model or settings.MODEL_PATH

    records = load_records(args.train or settings.TRAIN_DATA_PATH)
    pipeline = train_pipeline(records, _training_config(args, settings))

    prediction = predict_one(pipeline, SAMPLE_ISSUE)
    print(f"=== Single Prediction just-trained-model - Result: {prediction.predicted_label} ===")

    test_records = load_records(args.test or settings.TEST_DATA_PATH)
    print_metrics(evaluate(pipeline, test_records, top_k=args.top_k))
    save(pipeline, model_path)

    loaded = load(model_path)

    single = predict_one(loaded, SAMPLE_BATCH[0])
    print(f"=== Single Prediction - Result: {single.predicted_label} ===")

    print("=== Enumerable-based Batch Predictions ===")
    for record, result in zip(SAMPLE_BATCH, predict_batch(loaded, SAMPLE_BATCH)):
        print(f"*-> Title: {record.title} | Prediction: {result.predicted_label}")

    print("=== File-based Batch Predictions ===")
    for record, result in predict_file(loaded, args.predict_file or settings.PREDICT_DATA_PATH):
        print(f"*-> Title: {record.title} | Prediction: {result.predicted_label}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Issue area classifier CLI")
    subparsers = parser.add_subparsers(dest="command")

    # Train
    train_parser = subparsers.add_parser("train", help="Fit and save a model")
    train_parser.add_argument("--train", type=str, default=None, help="Training TSV")
    train_parser.add_argument("--model", type=str, default=None, help="Model output path")
    train_parser.add_argument("--l2", type=float, default=None)
    train_parser.add_argument("--max-passes", type=int, default=None)
    train_parser.add_argument("--no-cache", action="store_true")

    # Evaluate
    eval_parser = subparsers.add_parser("evaluate", help="Score a saved model")
    eval_parser.add_argument("--test", type=str, default=None, help="Test TSV")
    eval_parser.add_argument("--model", type=str, default=None)
    eval_parser.add_argument("--top-k", type=int, default=5)

    # Predict
    pred_parser = subparsers.add_parser("predict", help="Predict with a saved model")
    pred_parser.add_argument("--model", type=str, default=None)
    source = pred_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--title", type=str, default=None)
    source.add_argument("--file", type=str, default=None, help="TSV of issues")
    pred_parser.add_argument("--description", type=str, default=None)

    # Run
    run_parser = subparsers.add_parser("run", help="Train, evaluate, save, reload, predict")
    run_parser.add_argument("--train", type=str, default=None)
    run_parser.add_argument("--test", type=str, default=None)
    run_parser.add_argument("--predict-file", type=str, default=None)
    run_parser.add_argument("--model", type=str, default=None)
    run_parser.add_argument("--top-k", type=int, default=5)
    run_parser.add_argument("--l2", type=float, default=None)
    run_parser.add_argument("--max-passes", type=int, default=None)
    run_parser.add_argument("--no-cache", action="store_true")

    return parser


COMMANDS = {
    "train": train,
    "evaluate": evaluate_cmd,
    "predict": predict,
    "run": run,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        return 2
    if args.command == "predict" and args.file and args.description is not None:
        parser.error("--description is only valid with --title")

    settings = get_settings()
    setup_logging(log_level=settings.LOG_LEVEL, json_output=settings.JSON_LOGS)

    try:
        COMMANDS[args.command](args, settings)
    except ClassifierError as e:
        logger.error(
            "command_failed",
            command=args.command,
            error=type(e).__name__,
            stage=e.stage,
            record_id=e.record_id,
            detail=e.detail,
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
