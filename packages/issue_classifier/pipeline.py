"""Training entry point and the immutable fitted pipeline.

``train_pipeline`` runs featurization and training once and returns a
``FittedPipeline``. Evaluation and every prediction path score records
through ``FittedPipeline.predict_proba``, so there is a single
transform+score code path.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence

import numpy as np
import structlog
import torch

from .config import TrainingConfig
from .errors import TrainingDataEmptyError
from .featurizer import (
    FeatureCache,
    FeatureExtractionPipeline,
    FittedFeatureStage,
    LabelEncoding,
    to_torch_sparse,
)
from .schema import Record, coerce_record
from .trainer import ClassifierWeights, MaxEntTrainer

logger = structlog.get_logger()


@dataclass(frozen=True)
class FittedPipeline:
    """Feature stage, label encoding and classifier weights. Read-only after training."""

    features: FittedFeatureStage
    classifier: ClassifierWeights
    config: TrainingConfig = field(default_factory=TrainingConfig)

    @property
    def labels(self) -> LabelEncoding:
        return self.features.labels

    def predict_proba(self, records: Sequence[Record]) -> np.ndarray:
        """Softmax class probabilities, shape (n, num_classes), columns in key order."""
        if not records:
            return np.zeros((0, len(self.labels)), dtype=np.float64)
        x = to_torch_sparse(self.features.transform(records))
        with torch.no_grad():
            probs = self.classifier.probabilities(x)
        return probs.numpy()

    def decode(self, key: int) -> str:
        return self.labels.decode(key)


def _coerce_training_records(records: Iterable[Any]) -> List[Record]:
    return [coerce_record(r, position=i) for i, r in enumerate(records)]


def train_pipeline(
    records: Iterable[Any],
    config: Optional[TrainingConfig] = None,
    cancel_event: Optional[threading.Event] = None,
) -> FittedPipeline:
    """
    Fit the feature stage and classifier on labeled training records.

    Args:
        records: Records or mappings with id, label, title and description
        config: Hyperparameters; defaults to ``TrainingConfig()``
        cancel_event: Optional flag checked between optimizer passes

    Returns:
        An immutable FittedPipeline

    Raises:
        SchemaMismatchError: a record lacks text fields or a label
        TrainingDataEmptyError: no records or fewer than 2 distinct labels
        TrainingCancelledError: ``cancel_event`` was set during training
    """
    config = config or TrainingConfig()
    training = _coerce_training_records(records)

    if not training:
        raise TrainingDataEmptyError("No training records supplied")

    stage = FeatureExtractionPipeline(config).fit(training)
    if len(stage.labels) < 2:
        raise TrainingDataEmptyError(
            f"Multiclass training needs at least 2 distinct labels, got {len(stage.labels)}"
        )

    keys = stage.labels.encode_records(training)
    cache = FeatureCache(stage, training, enabled=config.cache_features)
    weights = MaxEntTrainer(config).fit(
        cache, keys, num_classes=len(stage.labels), cancel_event=cancel_event
    )

    logger.info(
        "pipeline_trained",
        records=len(training),
        classes=len(stage.labels),
        dim=stage.dim,
        passes=len(weights.history),
    )
    return FittedPipeline(features=stage, classifier=weights, config=config)
