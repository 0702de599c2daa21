"""Stateless prediction over a fitted pipeline.

Single, in-memory batch and file-based batch prediction all go through
``FittedPipeline.predict_proba``, the same transform+score path used by
evaluation. Batch functions are generators: records are pulled from the
input only as results are consumed, in chunks of ``chunk_size``, and
results come out in input order. Input labels are ignored.
"""

import os
from itertools import islice
from typing import Any, Iterable, Iterator, List, Tuple, Union

import numpy as np

from .data_loader import iter_records
from .pipeline import FittedPipeline
from .schema import PredictionResult, Record, coerce_record

DEFAULT_CHUNK_SIZE = 256


def _to_result(pipeline: FittedPipeline, probs: np.ndarray) -> PredictionResult:
    return PredictionResult(
        predicted_label=pipeline.decode(int(probs.argmax())),
        scores=[float(p) for p in probs],
    )


def _predict_chunk(pipeline: FittedPipeline, chunk: List[Record]) -> List[PredictionResult]:
    probs = pipeline.predict_proba(chunk)
    return [_to_result(pipeline, row) for row in probs]


def _chunks(records: Iterable[Any], chunk_size: int) -> Iterator[List[Record]]:
    iterator = iter(records)
    position = 0
    while True:
        raw = list(islice(iterator, chunk_size))
        if not raw:
            return
        yield [
            coerce_record(r, position=position + i, ignore_label=True)
            for i, r in enumerate(raw)
        ]
        position += len(raw)


def predict_one(pipeline: FittedPipeline, record: Any) -> PredictionResult:
    """Predict the label of a single record."""
    return _predict_chunk(pipeline, [coerce_record(record, ignore_label=True)])[0]


def predict_batch(
    pipeline: FittedPipeline,
    records: Iterable[Any],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[PredictionResult]:
    """Lazily predict a sequence of records, preserving input order."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    for chunk in _chunks(records, chunk_size):
        yield from _predict_chunk(pipeline, chunk)


def predict_file(
    pipeline: FittedPipeline,
    path: Union[str, os.PathLike],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    has_header: bool = True,
) -> Iterator[Tuple[Record, PredictionResult]]:
    """Lazily predict every record of a TSV file, yielding (record, result) pairs."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    for chunk in _chunks(iter_records(path, has_header=has_header), chunk_size):
        yield from zip(chunk, _predict_chunk(pipeline, chunk))
