from __future__ import annotations

import csv
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CSV_PATH = "output.csv"


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    # nested arrays/objects have no flat rendering
    return ""


def save_rows_as_csv(
    rows: Iterable[Any],
    path: str | Path,
    *,
    delimiter: str = ";",
) -> int:
    """Write result rows to a delimited file.

    The header is the key set of the first record. Later records are rendered
    against that header, so missing keys become empty cells and extra keys
    are dropped. Records that are not JSON objects are skipped.

    Returns the number of data rows written.
    """
    path = Path(path)
    header: list[str] | None = None
    written = 0
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, delimiter=delimiter)
        for index, record in enumerate(rows):
            if index == 0 and isinstance(record, Mapping):
                header = [str(key) for key in record.keys()]
                writer.writerow(header)
            if header is None or not isinstance(record, Mapping):
                continue
            writer.writerow([_cell(record.get(key)) for key in header])
            written += 1
    logger.info("wrote %d rows to %s", written, path)
    return written
