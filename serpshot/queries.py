# serpshot/queries.py
"""
Query extraction from CSV input.

One comma-delimited reader with quote support, plus the column
resolution rules used by the CLI (numeric index, exact header name,
partial header name, then column 0).
"""
from __future__ import annotations
from pathlib import Path
from typing import Iterable, List, Sequence, Union
import csv
import io
import logging

from .errors import CsvInputError
from .types import CaptureRequest, DeviceMode, Engine


logger = logging.getLogger(__name__)

DEFAULT_QUERY_HEADER = "query"

ColumnSelector = Union[str, int, None]


def parse_csv(text: str) -> List[List[str]]:
    """
    Parse comma-separated text into trimmed rows.

    Double-quoted cells may contain commas and doubled quotes. Lines that
    are empty or whitespace-only are dropped.
    """
    rows: List[List[str]] = []
    reader = csv.reader(io.StringIO(text), delimiter=",", quotechar='"', skipinitialspace=True)
    for raw in reader:
        row = [cell.strip() for cell in raw]
        if not any(row):
            continue
        rows.append(row)
    return rows


def resolve_column_index(headers: Sequence[str], column: ColumnSelector = None) -> int:
    """
    Work out which column holds the queries.

    A numeric literal is used as-is. Otherwise the header names are tried
    for an exact case-insensitive match, then a case-insensitive substring
    match. Anything unresolved falls back to column 0.
    """
    if column is None or (isinstance(column, str) and not column.strip()):
        for idx, header in enumerate(headers):
            if header.lower() == DEFAULT_QUERY_HEADER:
                logger.info(f"[Queries] Found \"{DEFAULT_QUERY_HEADER}\" column at index {idx}")
                return idx
        logger.info(
            f"[Queries] No \"{DEFAULT_QUERY_HEADER}\" column found. "
            f"Using default index 0: \"{_header_at(headers, 0)}\""
        )
        return 0

    if isinstance(column, int):
        return _numeric_index(headers, column)

    selector = column.strip()
    try:
        return _numeric_index(headers, int(selector))
    except ValueError:
        pass

    wanted = selector.lower()
    for idx, header in enumerate(headers):
        if header.lower() == wanted:
            logger.info(f"[Queries] Found exact column name match: \"{header}\" at index {idx}")
            return idx

    for idx, header in enumerate(headers):
        if wanted in header.lower():
            logger.info(f"[Queries] Found partial column name match: \"{header}\" at index {idx}")
            return idx

    logger.warning(
        f"[Queries] No column match found for \"{selector}\". "
        f"Using default index 0: \"{_header_at(headers, 0)}\""
    )
    return 0


def _numeric_index(headers: Sequence[str], index: int) -> int:
    if index < 0:
        logger.warning(f"[Queries] Negative column index {index} not supported. Using index 0")
        return 0
    logger.info(f"[Queries] Using column index {index}: \"{_header_at(headers, index)}\"")
    return index


def _header_at(headers: Sequence[str], index: int) -> str:
    return headers[index] if index < len(headers) else "OUT OF BOUNDS"


def extract_queries(text: str, column: ColumnSelector = None) -> List[str]:
    """
    Pull the ordered, trimmed, non-empty queries out of CSV text.

    Duplicates are kept. Fewer than two lines (header plus one row) yields
    an empty list; whether that is fatal is up to the caller.
    """
    rows = parse_csv(text)
    if len(rows) < 2:
        logger.warning("[Queries] Not enough lines in CSV - need headers and at least one data row")
        return []

    headers, data_rows = rows[0], rows[1:]
    logger.debug(f"[Queries] CSV headers found: {headers}")
    index = resolve_column_index(headers, column)

    queries: List[str] = []
    for row in data_rows:
        if index >= len(row):
            continue
        value = row[index].strip()
        if value:
            queries.append(value)

    logger.info(f"[Queries] Extracted {len(queries)} queries from {len(data_rows)} rows")
    return queries


def read_queries(csv_file: Union[str, Path], column: ColumnSelector = None) -> List[str]:
    """Read a CSV file from disk and extract its queries."""
    path = Path(csv_file)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except FileNotFoundError as exc:
        raise CsvInputError(f"CSV file not found: {path}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise CsvInputError(f"Unable to read CSV file {path}: {exc}") from exc
    return extract_queries(text, column)


def build_requests(
    queries: Iterable[str],
    engine: Engine,
    device: DeviceMode,
) -> List[CaptureRequest]:
    """Wrap queries as CaptureRequests, numbered in input order."""
    return [
        CaptureRequest(sequence_index=i, query=query, engine=engine, device=device)
        for i, query in enumerate(queries)
    ]
