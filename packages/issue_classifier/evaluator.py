"""Multiclass evaluation against held-out records.

Scores test records with the pipeline's fitted feature stage (never
refitted) and computes accuracy, log-loss and confusion statistics.
"""

import math
from typing import Any, Iterable

import numpy as np
import structlog

from .errors import EvaluationDataEmptyError
from .pipeline import FittedPipeline
from .schema import EvaluationMetrics, coerce_record

logger = structlog.get_logger()

# Floor applied to p(true class) before the log
PROBABILITY_FLOOR = 1e-15


def evaluate(
    pipeline: FittedPipeline,
    records: Iterable[Any],
    top_k: int = 5,
) -> EvaluationMetrics:
    """
    Evaluate a fitted pipeline on labeled test records.

    Metrics:
        micro_accuracy: correct predictions / total records
        macro_accuracy: mean per-class recall over classes present in the test set
        log_loss: mean -log(p(true class)), probabilities floored at 1e-15
        log_loss_reduction: 1 - log_loss / log(K), relative to a uniform classifier
        top_k_accuracy: fraction of records whose true class is in the top k scores

    Raises:
        EvaluationDataEmptyError: no test records
        SchemaMismatchError: a record lacks text fields or a label
        UnknownLabelError: a test label was not seen during training
    """
    test = [coerce_record(r, position=i) for i, r in enumerate(records)]
    if not test:
        raise EvaluationDataEmptyError()

    labels = pipeline.labels
    num_classes = len(labels)
    y_true = labels.encode_records(test)

    probs = pipeline.predict_proba(test)
    y_pred = probs.argmax(axis=1)
    n = len(test)
    rows = np.arange(n)

    micro = float((y_pred == y_true).mean())

    confusion = np.zeros((num_classes, num_classes), dtype=np.int64)
    np.add.at(confusion, (y_true, y_pred), 1)
    support = confusion.sum(axis=1)
    present = support > 0
    recall = np.diag(confusion)[present] / support[present]
    macro = float(recall.mean())

    p_true = np.clip(probs[rows, y_true], PROBABILITY_FLOOR, 1.0)
    losses = -np.log(p_true)
    log_loss = float(losses.mean())
    log_loss_reduction = 1.0 - log_loss / math.log(num_classes)

    per_class_loss = np.zeros(num_classes, dtype=np.float64)
    np.add.at(per_class_loss, y_true, losses)
    per_class_loss[present] /= support[present]

    k = max(1, min(top_k, num_classes))
    ranked = np.argsort(-probs, axis=1, kind="stable")[:, :k]
    top_k_accuracy = float((ranked == y_true[:, None]).any(axis=1).mean())

    metrics = EvaluationMetrics(
        micro_accuracy=micro,
        macro_accuracy=macro,
        log_loss=log_loss,
        log_loss_reduction=log_loss_reduction,
        top_k=k,
        top_k_accuracy=top_k_accuracy,
        labels=list(labels.labels),
        per_class_log_loss=per_class_loss.tolist(),
        confusion_matrix=confusion.tolist(),
        num_records=n,
    )
    logger.info(
        "evaluation_finished",
        records=n,
        micro_accuracy=round(micro, 4),
        macro_accuracy=round(macro, 4),
        log_loss=round(log_loss, 4),
        log_loss_reduction=round(log_loss_reduction, 4),
    )
    return metrics
