"""
Write the reassembled output rows to CSV with pandas.
"""

import csv
from typing import Any, AsyncIterator, Dict, List, Sequence

import pandas as pd
import logging

logger = logging.getLogger(__name__)


async def write_csv(
    rows: AsyncIterator[Dict[str, Any]],
    fields: Sequence[str],
    path: str,
    delimiter: str = ",",
    enclosure: str = '"',
    chunk_size: int = 1000
) -> int:
    """
    Stream rows to ``path`` in chunks. Columns are exactly ``fields``;
    missing values are written as empty cells.

    Returns:
        Number of data rows written
    """
    columns = list(fields)
    written = 0
    header = True
    chunk: List[Dict[str, Any]] = []

    with open(path, "w", newline="", encoding="utf-8") as fh:
        async for row in rows:
            chunk.append(row)
            if len(chunk) >= chunk_size:
                _write_chunk(fh, chunk, columns, header, delimiter, enclosure)
                written += len(chunk)
                header = False
                chunk = []

        if chunk or header:
            _write_chunk(fh, chunk, columns, header, delimiter, enclosure)
            written += len(chunk)

    logger.info(f"Wrote {written} rows to {path}")
    return written


def _write_chunk(fh, chunk, columns, header, delimiter, enclosure) -> None:
    # object dtype keeps ids with gaps as integers
    frame = pd.DataFrame(chunk, columns=columns, dtype=object)
    frame.to_csv(
        fh,
        sep=delimiter,
        quotechar=enclosure,
        quoting=csv.QUOTE_MINIMAL,
        header=header,
        index=False,
    )
