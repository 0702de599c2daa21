"""Typed record shapes for training, evaluation and prediction.

Records are pydantic models. Entry points also accept plain mappings
(e.g. rows from a TSV file or a JSON payload) and coerce them with
``coerce_record``, which turns any validation failure into a
``SchemaMismatchError`` naming the record.
"""

from collections.abc import Mapping
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import SchemaMismatchError

# Structural descriptor persisted with every model artifact and checked on load.
INPUT_SCHEMA: dict[str, str] = {
    "id": "str",
    "label": "str",
    "title": "str",
    "description": "str",
}
OUTPUT_SCHEMA: dict[str, str] = {
    "predicted_label": "str",
    "scores": "list[float]",
}


class Record(BaseModel):
    """A single issue: id, optional area label, title and description."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    label: Optional[str] = None
    title: str
    description: str


class PredictionResult(BaseModel):
    """Decoded prediction with per-class scores aligned to the label encoding."""

    model_config = ConfigDict(frozen=True)

    predicted_label: str
    scores: list[float]

    @property
    def confidence(self) -> float:
        return max(self.scores) if self.scores else 0.0


class EvaluationMetrics(BaseModel):
    """Aggregate multiclass metrics over a test set."""

    model_config = ConfigDict(frozen=True)

    micro_accuracy: float
    macro_accuracy: float
    log_loss: float
    log_loss_reduction: float
    top_k: int = 1
    top_k_accuracy: float = 0.0
    labels: list[str] = Field(default_factory=list)
    per_class_log_loss: list[float] = Field(default_factory=list)
    confusion_matrix: list[list[int]] = Field(default_factory=list)
    num_records: int = 0


def coerce_record(
    obj: Any, position: Optional[int] = None, ignore_label: bool = False
) -> Record:
    """
    Return ``obj`` as a :class:`Record` or raise ``SchemaMismatchError``.

    Accepts Records, mappings and objects exposing the record fields as
    attributes. With ``ignore_label`` the label is dropped, as prediction
    inputs never need one.
    """
    if isinstance(obj, Record):
        return obj.model_copy(update={"label": None}) if ignore_label else obj

    if isinstance(obj, Mapping):
        data = dict(obj)
    else:
        data = {name: getattr(obj, name) for name in Record.model_fields if hasattr(obj, name)}
    if ignore_label:
        data.pop("label", None)

    record_id = data.get("id")
    try:
        return Record.model_validate(data)
    except ValidationError as e:
        bad_fields = sorted(
            ".".join(str(p) for p in err["loc"]) for err in e.errors()
        )
        if record_id is None and position is not None:
            record_id = f"#{position}"
        raise SchemaMismatchError(
            f"Record does not match schema (fields: {', '.join(bad_fields)})",
            record_id=None if record_id is None else str(record_id),
        ) from e
