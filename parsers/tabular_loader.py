"""
Tabular loader for invoice and sales receipt exports.

Turns an uploaded spreadsheet (.xlsx/.xls) or delimited text export into
a matrix of strings, then splits off the header row when there is one.
Everything downstream works on that matrix only.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from io import BytesIO, StringIO
import re
from typing import Optional
import structlog

import pandas as pd

from exceptions import TabularParseError

logger = structlog.get_logger(__name__)

SPREADSHEET_EXTENSIONS = ("xlsx", "xls")
TEXT_SEPARATORS = ("\t", ",", ";")
MAX_TITLE_LINES = 3
_NUMERIC = re.compile(r"^[0-9]+$")


@dataclass
class TabularData:
    """Header names plus data rows of a loaded file."""
    columns: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def _cell_to_str(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if pd.isna(value):
        return ""
    if isinstance(value, (datetime, date)):
        # Spreadsheet date cells come back as timestamps
        return value.strftime("%Y-%m-%d")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def load_matrix(content: bytes, filename: str) -> list[list[str]]:
    """
    Read a file into a matrix of strings.

    Spreadsheets are read from their first sheet without a header. Anything
    else is decoded as text and read as tab, comma or semicolon delimited;
    rows with only blank cells are dropped.

    Args:
        content: Raw file bytes
        filename: Original filename (extension decides the reader)

    Returns:
        List of rows, each a list of cell strings

    Raises:
        TabularParseError: If the file cannot be read
    """
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    logger.info("loading_tabular_file", filename=filename, extension=ext, size=len(content))

    if ext in SPREADSHEET_EXTENSIONS:
        try:
            frame = pd.read_excel(
                BytesIO(content),
                sheet_name=0,
                header=None,
                dtype=object,
                engine="openpyxl" if ext == "xlsx" else "xlrd",
            )
        except Exception as e:
            logger.error("spreadsheet_read_failed", filename=filename, error=str(e))
            raise TabularParseError(
                "Failed to read spreadsheet",
                details={"filename": filename, "original_error": str(e)}
            )
        return _frame_to_matrix(frame)

    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")

    frame = _read_delimited(text, filename)
    if frame is None:
        return []
    return _frame_to_matrix(frame)


def _frame_to_matrix(frame: pd.DataFrame) -> list[list[str]]:
    matrix = [
        [_cell_to_str(cell) for cell in record]
        for record in frame.itertuples(index=False, name=None)
    ]
    return [row for row in matrix if any(cell.strip() for cell in row)]


def _read_delimited(text: str, filename: str) -> Optional[pd.DataFrame]:
    """
    Read delimited text, trying separators and leading title lines in turn.

    The first attempt that yields more than one column wins. Returns None
    when every attempt reads a single column.

    Raises:
        TabularParseError: If no attempt parses and at least one failed
    """
    last_error = None
    for skip_rows in range(MAX_TITLE_LINES + 1):
        for sep in TEXT_SEPARATORS:
            try:
                frame = pd.read_csv(
                    StringIO(text),
                    sep=sep,
                    header=None,
                    dtype=str,
                    keep_default_na=False,
                    skip_blank_lines=True,
                    skiprows=skip_rows,
                )
            except pd.errors.EmptyDataError:
                break
            except (pd.errors.ParserError, ValueError) as e:
                last_error = e
                continue

            if frame.shape[1] > 1:
                logger.debug(
                    "delimited_text_loaded",
                    filename=filename,
                    separator=sep,
                    skip_rows=skip_rows,
                    columns=frame.shape[1]
                )
                return frame

    if last_error is not None:
        logger.error("delimited_text_read_failed", filename=filename, error=str(last_error))
        raise TabularParseError(
            "Failed to read delimited text",
            details={"filename": filename, "original_error": str(last_error)}
        )
    return None


def is_header_row(row: list[str]) -> bool:
    """A header row has only non-empty, non-numeric cells."""
    return bool(row) and all(
        isinstance(cell, str) and len(cell) > 0 and not _NUMERIC.match(cell)
        for cell in row
    )


def split_header(matrix: list[list[str]]) -> TabularData:
    """
    Separate header names from data rows.

    When the first row is not a header, columns are named "Column 1".."Column N"
    and every row is data.
    """
    if not matrix:
        return TabularData()

    first = matrix[0]
    if is_header_row(first):
        columns = [
            cell.strip() or f"Column {i + 1}"
            for i, cell in enumerate(first)
        ]
        return TabularData(columns=columns, rows=matrix[1:])

    columns = [f"Column {i + 1}" for i in range(len(first))]
    return TabularData(columns=columns, rows=list(matrix))


def load_tabular(content: bytes, filename: str) -> TabularData:
    """Load a file and split its header in one call."""
    data = split_header(load_matrix(content, filename))
    logger.info(
        "tabular_file_loaded",
        filename=filename,
        columns=len(data.columns),
        rows=data.row_count
    )
    return data
