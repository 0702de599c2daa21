"""Centralized configuration via Pydantic Settings.

Loads file locations, logging and reproducibility knobs from environment
variables (``ISSUE_CLASSIFIER_*``) or a ``.env`` file. Training
hyperparameters live in ``TrainingConfig`` and are passed explicitly to
``train_pipeline``; there is no shared global context.
"""

from dataclasses import asdict, dataclass, fields
from typing import Dict, Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Data
    TRAIN_DATA_PATH: str = Field(
        default="data/issues_train.tsv", description="Labeled training records (TSV)"
    )
    TEST_DATA_PATH: str = Field(
        default="data/issues_test.tsv", description="Labeled test records (TSV)"
    )
    PREDICT_DATA_PATH: str = Field(
        default="data/my_test_data.tsv",
        description="Unlabeled records for file-based batch prediction (TSV)",
    )

    # Model
    MODEL_PATH: str = Field(default="models/model.pt", description="Model artifact path")

    # Reproducibility
    SEED: int = Field(default=0, description="Random seed passed to training")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Python log level")
    JSON_LOGS: bool = Field(
        default=False, description="Emit JSON log lines instead of console output"
    )

    model_config = SettingsConfigDict(
        env_prefix="ISSUE_CLASSIFIER_", env_file=".env", extra="ignore"
    )


def get_settings() -> Settings:
    """Factory for Settings, overridable in tests."""
    return Settings()


@dataclass
class TrainingConfig:
    """Hyperparameters for featurization and the linear classifier."""

    # Reproducibility
    seed: int = 0

    # Text featurization
    word_ngram_range: Tuple[int, int] = (1, 2)
    char_ngram_range: Tuple[int, int] = (3, 3)
    min_df: int = 1
    max_features: Optional[int] = None  # per analyzer, per text field

    # Optimizer
    l2: float = 1e-4
    max_passes: int = 50
    lbfgs_max_iter: int = 20  # L-BFGS iterations per pass
    tolerance: float = 1e-7  # relative objective change that ends training

    # Caching checkpoint: featurize the training set once and reuse it
    cache_features: bool = True

    # Torch intra-op threads (None keeps the torch default)
    num_threads: Optional[int] = None

    def to_dict(self) -> Dict:
        """Convert config to a dictionary of plain values."""
        data = asdict(self)
        data["word_ngram_range"] = list(self.word_ngram_range)
        data["char_ngram_range"] = list(self.char_ngram_range)
        return data

    @classmethod
    def from_dict(cls, config_dict: Dict) -> "TrainingConfig":
        """Create config from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in config_dict.items() if k in known}
        for key in ("word_ngram_range", "char_ngram_range"):
            if key in values:
                values[key] = tuple(values[key])
        return cls(**values)
