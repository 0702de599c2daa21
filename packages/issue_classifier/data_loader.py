"""Lazy reader for tab-separated issue files.

Columns are positional: ``ID``, ``Area`` (label), ``Title``, ``Description``.
The first line is a header by default; it is skipped rather than used for
column names, so every row is checked against the fixed four-column
layout. Every cell is read as a string, empty cells stay empty strings and
an empty ``Area`` becomes an unset label. Rows are yielded one at a time;
pandas reads the file in chunks so large prediction files are never fully
materialized.
"""

import csv
import os
from pathlib import Path
from typing import Iterator, List, Union

import pandas as pd
import structlog

from .errors import PathNotFoundError, SchemaMismatchError
from .schema import Record

logger = structlog.get_logger()

COLUMNS = ("id", "label", "title", "description")


def _reject_long_row(source: Path):
    def on_bad_lines(fields: List[str]):
        raise SchemaMismatchError(
            f"Expected {len(COLUMNS)} columns, found {len(fields)} in {source.name}",
            stage="read",
            record_id=str(fields[0]),
        )

    return on_bad_lines


def iter_records(
    path: Union[str, os.PathLike],
    has_header: bool = True,
    chunksize: int = 1000,
) -> Iterator[Record]:
    """
    Yield Records from a TSV file as they are read.

    Raises:
        PathNotFoundError: the file does not exist
        SchemaMismatchError: a row has too few or too many columns, a text
            cell is missing, or the file is not valid UTF-8
    """
    source = Path(path)
    if not source.is_file():
        raise PathNotFoundError(str(source), stage="read")

    first_line = 2 if has_header else 1
    line = first_line
    try:
        # No header inference: a wide first row must not become an index
        reader = pd.read_csv(
            source,
            sep="\t",
            header=None,
            skiprows=1 if has_header else 0,
            dtype=str,
            keep_default_na=False,
            quoting=csv.QUOTE_NONE,
            engine="python",
            on_bad_lines=_reject_long_row(source),
            chunksize=chunksize,
            encoding="utf-8",
        )
    except pd.errors.EmptyDataError:
        logger.warning("empty_data_file", path=str(source))
        return
    except UnicodeDecodeError as e:
        raise SchemaMismatchError(
            f"File is not valid UTF-8: {e.reason}", stage="read", record_id=source.name
        ) from e

    with reader:
        try:
            for chunk in reader:
                if chunk.shape[1] != len(COLUMNS):
                    raise SchemaMismatchError(
                        f"Expected {len(COLUMNS)} columns, found {chunk.shape[1]}",
                        stage="read",
                        record_id=f"{source.name}:{first_line}",
                    )
                for row in chunk.itertuples(index=False, name=None):
                    record_id, label, title, description = row
                    if not isinstance(title, str) or not isinstance(description, str):
                        raise SchemaMismatchError(
                            "Missing title or description cell",
                            stage="read",
                            record_id=f"{source.name}:{line}",
                        )
                    yield Record(
                        id=record_id if isinstance(record_id, str) else "",
                        label=label if isinstance(label, str) and label else None,
                        title=title,
                        description=description,
                    )
                    line += 1
        except pd.errors.ParserError as e:
            raise SchemaMismatchError(
                f"Malformed row: {e}", stage="read", record_id=source.name
            ) from e
        except UnicodeDecodeError as e:
            raise SchemaMismatchError(
                f"File is not valid UTF-8: {e.reason}",
                stage="read",
                record_id=f"{source.name}:{line}",
            ) from e


def load_records(path: Union[str, os.PathLike], has_header: bool = True) -> List[Record]:
    """Read a whole TSV file into memory (training and test sets)."""
    records = list(iter_records(path, has_header=has_header))
    logger.info("records_loaded", path=str(path), count=len(records))
    return records
