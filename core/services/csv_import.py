# =============================================================================
# core/services/csv_import.py - Shared CSV Import Helpers
# =============================================================================
# Reading an uploaded CSV into rows for the flight log, fleet and user
# importers. Each importer validates and writes its own rows; these helpers
# only cover the parts they share:
# - parsing with pandas and checking the header
# - spreadsheet line numbers (header is line 1)
# - which errors count as database errors for a row
# =============================================================================

import io
from collections.abc import Iterator
from typing import Any

import httpx
import pandas as pd
from postgrest.exceptions import APIError

from lib.supabase_client import SupabaseClientError
from app.exceptions import FileReadError

# Errors from the database layer that fail a single row, not the import
DATABASE_ERRORS = (SupabaseClientError, APIError, httpx.HTTPError)


def read_import_rows(
    content: bytes,
    filename: str,
    required_columns: list[str],
) -> Iterator[tuple[int, dict[str, str]]]:
    """
    Parse CSV bytes and yield (line number, values) per data row.

    Values are stripped strings; empty cells are left out so model
    defaults apply.

    Raises:
        FileReadError: If the CSV can't be parsed, is empty, or lacks a
            required column
    """
    try:
        df = pd.read_csv(io.BytesIO(content), dtype=str, keep_default_na=False)
    except (ValueError, pd.errors.ParserError) as e:
        raise FileReadError(filename, str(e))

    if df.empty:
        raise FileReadError(filename, "File is empty or contains no data")

    df.columns = [str(c).strip() for c in df.columns]
    missing = [c for c in required_columns if c not in df.columns]
    if missing:
        raise FileReadError(filename, f"Missing required columns: {', '.join(missing)}")

    # Header checks run on call, before the first row is yielded
    return _iter_rows(df)


def _iter_rows(df: pd.DataFrame) -> Iterator[tuple[int, dict[str, str]]]:
    for index, record in enumerate(df.to_dict(orient="records")):
        values = {k: v.strip() for k, v in record.items() if isinstance(v, str) and v.strip()}
        yield index + 2, values


def database_error_detail(error: Exception) -> str:
    """Row error text for a failed database call."""
    detail = getattr(error, "message", None) or str(error)
    return f"Database error: {detail}"


def template_csv(columns: list[str], rows: list[dict[str, Any]]) -> str:
    """Render an import template: header plus example rows."""
    csv_buffer = io.StringIO()
    pd.DataFrame(rows, columns=columns).to_csv(csv_buffer, index=False)
    return csv_buffer.getvalue()
