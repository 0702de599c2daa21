"""
Issue Area Classifier

Text featurization, multiclass training, evaluation, persistence and
prediction for short labeled issue records.
"""

__version__ = "0.1.0"

from .schema import Record, PredictionResult, EvaluationMetrics
from .pipeline import FittedPipeline, train_pipeline
from .evaluator import evaluate
from .model_store import save, load
from .prediction import predict_one, predict_batch, predict_file

__all__ = [
    "Record",
    "PredictionResult",
    "EvaluationMetrics",
    "FittedPipeline",
    "train_pipeline",
    "evaluate",
    "save",
    "load",
    "predict_one",
    "predict_batch",
    "predict_file",
]
