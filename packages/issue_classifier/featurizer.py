"""
Feature extraction for issue records.

Fixed-order stages:
1. Label encoding (sorted distinct labels -> dense keys 0..K-1)
2. Title featurization (word 1-2 grams + char 3-grams, L2-normalized counts)
3. Description featurization (same algorithm, independent vocabulary)
4. Concatenation: title block, then description block
5. Caching checkpoint: training matrix materialized once for the optimizer

Vocabularies are fixed at fit time. A fitted stage is rebuilt from its
vocabularies alone, so a stage restored from an artifact featurizes text
exactly like the one that was trained.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp
import structlog
import torch
from sklearn.feature_extraction.text import CountVectorizer
from sklearn.preprocessing import LabelEncoder, normalize

from .config import TrainingConfig
from .errors import SchemaMismatchError, UnknownLabelError
from .schema import Record, coerce_record

logger = structlog.get_logger()

WORD_TOKEN_PATTERN = r"(?u)\b\w+\b"


# ---------------------------------------------------------------------------
# Label encoding
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LabelEncoding:
    """Bijection between label strings and dense integer keys."""

    labels: Tuple[str, ...]

    @classmethod
    def fit(cls, labels: Iterable[str]) -> "LabelEncoding":
        """Keys follow sorted label order, so the mapping is independent of input order."""
        encoder = LabelEncoder().fit(list(labels))
        return cls(labels=tuple(str(label) for label in encoder.classes_))

    def __len__(self) -> int:
        return len(self.labels)

    @property
    def _index(self) -> Dict[str, int]:
        return {label: key for key, label in enumerate(self.labels)}

    def encode(self, label: Optional[str], record_id: Optional[str] = None) -> int:
        if label is None:
            raise SchemaMismatchError(
                "Record has no label", stage="encode_label", record_id=record_id
            )
        key = self._index.get(label)
        if key is None:
            raise UnknownLabelError(label, record_id=record_id)
        return key

    def encode_records(self, records: Sequence[Record]) -> np.ndarray:
        index = self._index
        keys = np.empty(len(records), dtype=np.int64)
        for i, record in enumerate(records):
            if record.label is None:
                raise SchemaMismatchError(
                    "Record has no label", stage="encode_label", record_id=record.id or f"#{i}"
                )
            if record.label not in index:
                raise UnknownLabelError(record.label, record_id=record.id or f"#{i}")
            keys[i] = index[record.label]
        return keys

    def decode(self, key: int) -> str:
        return self.labels[int(key)]


# ---------------------------------------------------------------------------
# Text featurization
# ---------------------------------------------------------------------------


def _word_vectorizer(ngram_range, vocabulary=None, min_df=1, max_features=None):
    return CountVectorizer(
        analyzer="word",
        lowercase=True,
        token_pattern=WORD_TOKEN_PATTERN,
        ngram_range=tuple(ngram_range),
        vocabulary=vocabulary,
        min_df=min_df,
        max_features=max_features,
        dtype=np.float64,
    )


def _char_vectorizer(ngram_range, vocabulary=None, min_df=1, max_features=None):
    return CountVectorizer(
        analyzer="char_wb",
        lowercase=True,
        ngram_range=tuple(ngram_range),
        vocabulary=vocabulary,
        min_df=min_df,
        max_features=max_features,
        dtype=np.float64,
    )


def _fit_vocabulary(vectorizer: CountVectorizer, texts: List[str]) -> Dict[str, int]:
    try:
        vectorizer.fit(texts)
    except ValueError:
        # Every text empty, or everything pruned by min_df
        return {}
    return {str(term): int(idx) for term, idx in vectorizer.vocabulary_.items()}


class TextFeaturizer:
    """
    Bag-of-n-grams featurizer for one text field.

    Produces word n-gram counts followed by character n-gram counts, the
    combined row scaled to unit L2 norm. Deterministic for a given
    vocabulary; dimension is fixed once fitted.
    """

    def __init__(
        self,
        field: str,
        word_vocabulary: Dict[str, int],
        char_vocabulary: Dict[str, int],
        word_ngram_range: Tuple[int, int] = (1, 2),
        char_ngram_range: Tuple[int, int] = (3, 3),
    ):
        self.field = field
        self.word_vocabulary = dict(word_vocabulary)
        self.char_vocabulary = dict(char_vocabulary)
        self.word_ngram_range = tuple(word_ngram_range)
        self.char_ngram_range = tuple(char_ngram_range)

        self._word = (
            _word_vectorizer(self.word_ngram_range, vocabulary=self.word_vocabulary)
            if self.word_vocabulary
            else None
        )
        self._char = (
            _char_vectorizer(self.char_ngram_range, vocabulary=self.char_vocabulary)
            if self.char_vocabulary
            else None
        )

    @classmethod
    def fit(cls, field: str, texts: List[str], config: TrainingConfig) -> "TextFeaturizer":
        word_vocabulary = _fit_vocabulary(
            _word_vectorizer(
                config.word_ngram_range,
                min_df=config.min_df,
                max_features=config.max_features,
            ),
            texts,
        )
        char_vocabulary = _fit_vocabulary(
            _char_vectorizer(
                config.char_ngram_range,
                min_df=config.min_df,
                max_features=config.max_features,
            ),
            texts,
        )
        featurizer = cls(
            field,
            word_vocabulary,
            char_vocabulary,
            word_ngram_range=config.word_ngram_range,
            char_ngram_range=config.char_ngram_range,
        )
        logger.info(
            "text_featurizer_fitted",
            field=field,
            word_features=len(word_vocabulary),
            char_features=len(char_vocabulary),
        )
        return featurizer

    @property
    def dim(self) -> int:
        return len(self.word_vocabulary) + len(self.char_vocabulary)

    def transform(self, texts: List[str]) -> sp.csr_matrix:
        n = len(texts)
        if self.dim == 0 or n == 0:
            return sp.csr_matrix((n, self.dim), dtype=np.float64)

        blocks = []
        for vectorizer, size in (
            (self._word, len(self.word_vocabulary)),
            (self._char, len(self.char_vocabulary)),
        ):
            if vectorizer is None:
                blocks.append(sp.csr_matrix((n, size), dtype=np.float64))
            else:
                blocks.append(vectorizer.transform(texts))
        counts = sp.hstack(blocks, format="csr", dtype=np.float64)
        return normalize(counts, norm="l2", axis=1, copy=False)

    def to_state(self) -> Dict:
        return {
            "field": self.field,
            "word_ngram_range": list(self.word_ngram_range),
            "char_ngram_range": list(self.char_ngram_range),
            "word_vocabulary": dict(self.word_vocabulary),
            "char_vocabulary": dict(self.char_vocabulary),
        }

    @classmethod
    def from_state(cls, state: Dict) -> "TextFeaturizer":
        for key in ("word_vocabulary", "char_vocabulary"):
            indices = sorted(int(i) for i in state[key].values())
            if indices != list(range(len(indices))):
                raise ValueError(f"{key} indices for {state['field']!r} are not contiguous")
        return cls(
            state["field"],
            state["word_vocabulary"],
            state["char_vocabulary"],
            word_ngram_range=tuple(state["word_ngram_range"]),
            char_ngram_range=tuple(state["char_ngram_range"]),
        )


# ---------------------------------------------------------------------------
# Fitted stage + pipeline
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FittedFeatureStage:
    """Label encoding plus per-field featurizers, fixed at fit time."""

    labels: LabelEncoding
    title: TextFeaturizer
    description: TextFeaturizer

    @property
    def dim(self) -> int:
        return self.title.dim + self.description.dim

    @property
    def title_slice(self) -> slice:
        return slice(0, self.title.dim)

    @property
    def description_slice(self) -> slice:
        return slice(self.title.dim, self.dim)

    def transform(self, records: Sequence[Record]) -> sp.csr_matrix:
        """Featurize records into an (n, dim) sparse matrix, title block first."""
        titles = [r.title for r in records]
        descriptions = [r.description for r in records]
        return sp.hstack(
            [self.title.transform(titles), self.description.transform(descriptions)],
            format="csr",
            dtype=np.float64,
        )

    def transform_record(self, record) -> np.ndarray:
        """Dense feature vector for a single record."""
        return self.transform([coerce_record(record)]).toarray()[0]


class FeatureExtractionPipeline:
    """Fits label encoding and text featurizers on training records."""

    def __init__(self, config: Optional[TrainingConfig] = None):
        self.config = config or TrainingConfig()

    def fit(self, records: Sequence[Record]) -> FittedFeatureStage:
        labels = []
        for i, record in enumerate(records):
            if record.label is None:
                raise SchemaMismatchError(
                    "Training record has no label",
                    stage="fit_features",
                    record_id=record.id or f"#{i}",
                )
            labels.append(record.label)

        encoding = LabelEncoding.fit(labels)
        title = TextFeaturizer.fit("title", [r.title for r in records], self.config)
        description = TextFeaturizer.fit(
            "description", [r.description for r in records], self.config
        )
        stage = FittedFeatureStage(labels=encoding, title=title, description=description)
        logger.info(
            "feature_stage_fitted",
            records=len(records),
            classes=len(encoding),
            dim=stage.dim,
        )
        return stage


# ---------------------------------------------------------------------------
# Caching checkpoint
# ---------------------------------------------------------------------------


def to_torch_sparse(matrix: sp.spmatrix) -> torch.Tensor:
    """Convert a scipy sparse matrix to a coalesced float64 torch COO tensor."""
    coo = matrix.tocoo()
    indices = torch.from_numpy(np.vstack([coo.row, coo.col]).astype(np.int64))
    values = torch.from_numpy(coo.data.astype(np.float64))
    return torch.sparse_coo_tensor(indices, values, size=coo.shape, dtype=torch.float64).coalesce()


class FeatureCache:
    """
    Supplies the training matrix to the optimizer once per pass.

    With ``enabled=True`` the records are featurized on first use and the
    tensor is reused for every later pass. With ``enabled=False`` the
    matrix is rebuilt on each call. Both produce identical tensors.
    """

    def __init__(self, stage: FittedFeatureStage, records: Sequence[Record], enabled: bool = True):
        self.stage = stage
        self.records = records
        self.enabled = enabled
        self._cached: Optional[torch.Tensor] = None
        self.builds = 0

    def _build(self) -> torch.Tensor:
        self.builds += 1
        return to_torch_sparse(self.stage.transform(self.records))

    def __call__(self) -> torch.Tensor:
        if not self.enabled:
            return self._build()
        if self._cached is None:
            self._cached = self._build()
            logger.debug("feature_cache_materialized", shape=tuple(self._cached.shape))
        return self._cached
