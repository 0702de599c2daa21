"""Error taxonomy for the classification pipeline.

Every error carries the pipeline stage it was raised from and, where one
is involved, the offending record id, so callers can decide between
skip-and-continue (a bad prediction record) and abort (a corrupt model).
"""

from typing import Optional


class ClassifierError(Exception):
    """Base pipeline error."""

    def __init__(
        self,
        detail: str,
        stage: str = "pipeline",
        record_id: Optional[str] = None,
    ):
        self.detail = detail
        self.stage = stage
        self.record_id = record_id
        super().__init__(detail)

    def __str__(self) -> str:
        where = f"[{self.stage}]"
        if self.record_id is not None:
            where += f" record {self.record_id!r}"
        return f"{where}: {self.detail}"


class SchemaMismatchError(ClassifierError):
    """Input record is missing a required field or has the wrong type."""

    def __init__(self, detail: str, stage: str = "schema", record_id: Optional[str] = None):
        super().__init__(detail=detail, stage=stage, record_id=record_id)


class TrainingDataEmptyError(ClassifierError):
    """No training records, or fewer than two distinct labels."""

    def __init__(self, detail: str = "Training requires records with at least 2 distinct labels"):
        super().__init__(detail=detail, stage="train")


class EvaluationDataEmptyError(ClassifierError):
    """Evaluation was called with no test records."""

    def __init__(self, detail: str = "Evaluation requires at least one test record"):
        super().__init__(detail=detail, stage="evaluate")


class UnknownLabelError(ClassifierError):
    """A label was not part of the encoding fixed at training time."""

    def __init__(self, label: str, record_id: Optional[str] = None, stage: str = "evaluate"):
        self.label = label
        super().__init__(
            detail=f"Label {label!r} was not seen during training",
            stage=stage,
            record_id=record_id,
        )


class TrainingCancelledError(ClassifierError):
    """Training was aborted between optimizer passes. No model is produced."""

    def __init__(self, completed_passes: int):
        self.completed_passes = completed_passes
        super().__init__(
            detail=f"Training cancelled after {completed_passes} pass(es)",
            stage="train",
        )


class ArtifactCorruptError(ClassifierError):
    """Model artifact is unreadable or does not match the expected schema."""

    def __init__(self, detail: str, path: str = ""):
        self.path = path
        super().__init__(detail=detail, stage="load")


class PathNotFoundError(ClassifierError, FileNotFoundError):
    """Model artifact or data file does not exist."""

    def __init__(self, path: str, stage: str = "load"):
        self.path = path
        super().__init__(detail=f"Path not found: {path}", stage=stage)
