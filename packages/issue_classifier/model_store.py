"""Model artifact persistence.

A fitted pipeline is written as a single ``torch.save`` file holding only
plain data (dicts, lists, strings, numbers, tensors), so it is read back
with ``torch.load(weights_only=True)`` and never executes pickled code:

    {
        "format": "issue-classifier",
        "format_version": 1,
        "schema": {"input": {...}, "output": {...}},
        "labels": [...],
        "features": {"title": {...}, "description": {...}},
        "classifier": {"weights": Tensor, "bias": Tensor, "history": [...]},
        "config": {...},
        "created_at": "...",
    }

Saves are atomic: the artifact is written to a temporary file next to the
target and moved into place with ``os.replace``.
"""

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Union

import structlog
import torch

from .config import TrainingConfig
from .errors import ArtifactCorruptError, PathNotFoundError
from .featurizer import FittedFeatureStage, LabelEncoding, TextFeaturizer
from .pipeline import FittedPipeline
from .schema import INPUT_SCHEMA, OUTPUT_SCHEMA
from .trainer import ClassifierWeights

logger = structlog.get_logger()

ARTIFACT_FORMAT = "issue-classifier"
FORMAT_VERSION = 1

PathLike = Union[str, os.PathLike]


def pipeline_to_artifact(pipeline: FittedPipeline) -> Dict:
    """Flatten a fitted pipeline into the artifact dictionary."""
    return {
        "format": ARTIFACT_FORMAT,
        "format_version": FORMAT_VERSION,
        "schema": {"input": dict(INPUT_SCHEMA), "output": dict(OUTPUT_SCHEMA)},
        "labels": list(pipeline.labels.labels),
        "features": {
            "title": pipeline.features.title.to_state(),
            "description": pipeline.features.description.to_state(),
        },
        "classifier": {
            "weights": pipeline.classifier.weights.detach().cpu().contiguous(),
            "bias": pipeline.classifier.bias.detach().cpu().contiguous(),
            "history": list(pipeline.classifier.history),
        },
        "config": pipeline.config.to_dict(),
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


def artifact_to_pipeline(artifact: Dict, path: str = "") -> FittedPipeline:
    """Validate an artifact dictionary and rebuild the fitted pipeline."""
    if not isinstance(artifact, dict):
        raise ArtifactCorruptError("Artifact is not a mapping", path=path)

    if artifact.get("format") != ARTIFACT_FORMAT:
        raise ArtifactCorruptError(
            f"Unexpected artifact format {artifact.get('format')!r}", path=path
        )
    if artifact.get("format_version") != FORMAT_VERSION:
        raise ArtifactCorruptError(
            f"Unsupported artifact version {artifact.get('format_version')!r}, "
            f"expected {FORMAT_VERSION}",
            path=path,
        )

    schema = artifact.get("schema")
    expected = {"input": INPUT_SCHEMA, "output": OUTPUT_SCHEMA}
    if schema != expected:
        raise ArtifactCorruptError(
            f"Schema descriptor {schema!r} does not match expected {expected!r}",
            path=path,
        )

    try:
        labels = LabelEncoding(labels=tuple(str(label) for label in artifact["labels"]))
        features = FittedFeatureStage(
            labels=labels,
            title=TextFeaturizer.from_state(artifact["features"]["title"]),
            description=TextFeaturizer.from_state(artifact["features"]["description"]),
        )
        classifier_state = artifact["classifier"]
        classifier = ClassifierWeights(
            weights=classifier_state["weights"].to(torch.float64),
            bias=classifier_state["bias"].to(torch.float64),
            history=tuple(float(v) for v in classifier_state.get("history", [])),
        )
        config = TrainingConfig.from_dict(artifact.get("config", {}))
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ArtifactCorruptError(f"Malformed artifact: {e}", path=path) from e

    if len(labels) < 2 or len(set(labels.labels)) != len(labels):
        raise ArtifactCorruptError("Label table must hold at least 2 distinct labels", path=path)

    expected_weights = (features.dim, len(labels))
    if tuple(classifier.weights.shape) != expected_weights:
        raise ArtifactCorruptError(
            f"Weight shape {tuple(classifier.weights.shape)} does not match "
            f"feature/label dimensions {expected_weights}",
            path=path,
        )
    if tuple(classifier.bias.shape) != (len(labels),):
        raise ArtifactCorruptError(
            f"Bias shape {tuple(classifier.bias.shape)} does not match {len(labels)} labels",
            path=path,
        )

    return FittedPipeline(features=features, classifier=classifier, config=config)


def save(pipeline: FittedPipeline, path: PathLike) -> None:
    """Write the pipeline to ``path`` atomically, creating parent directories."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    artifact = pipeline_to_artifact(pipeline)

    fd, tmp_name = tempfile.mkstemp(
        dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as f:
            torch.save(artifact, f)
        os.replace(tmp_name, target)
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)

    logger.info(
        "model_saved",
        path=str(target),
        classes=len(pipeline.labels),
        dim=pipeline.features.dim,
    )


def load(path: PathLike) -> FittedPipeline:
    """
    Load a pipeline saved with :func:`save`.

    Raises:
        PathNotFoundError: nothing exists at ``path``
        ArtifactCorruptError: unreadable bytes, wrong format/version,
            schema mismatch or inconsistent shapes
    """
    source = Path(path)
    if not source.is_file():
        raise PathNotFoundError(str(source))

    try:
        with open(source, "rb") as f:
            artifact = torch.load(f, map_location="cpu", weights_only=True)
    except Exception as e:
        raise ArtifactCorruptError(
            f"Could not read model artifact: {e}", path=str(source)
        ) from e

    pipeline = artifact_to_pipeline(artifact, path=str(source))
    logger.info(
        "model_loaded",
        path=str(source),
        classes=len(pipeline.labels),
        dim=pipeline.features.dim,
        created_at=artifact.get("created_at"),
    )
    return pipeline
