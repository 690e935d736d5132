"""
Bulk import of inventory records from spreadsheet files.

Columns are matched by header text (see ``config.FIELD_LABELS``, contract
version ``config.IMPORT_TEMPLATE_VERSION``), so the column order in the file
does not matter. Each row goes through the lenient validator and the shared
code deriver; rows that fail are reported and skipped, the rest are returned
for a single batched write.
"""

import io
import logging
import re
import time
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

import config
from codes import apply_codes
from schema import (ValidationError, ValidationMode, validate_record, parse_date,
                    is_blank, new_record_id)

logger = logging.getLogger(__name__)

EXCEL_ENGINES = {".xlsx": "openpyxl", ".xls": "xlrd"}
SUPPORTED_EXTENSIONS = [".xlsx", ".xls", ".csv"]
DATE_FIELDS = ["procurement_date", "disposal_date"]


class ImportFileError(Exception):
    """The file as a whole could not be read. Nothing was imported."""


class ImportOptions:
    def __init__(self, skip_rows=0, mode=ValidationMode.LENIENT):
        self.skip_rows = skip_rows
        self.mode = mode


class ImportResult:
    """Outcome of one import: valid records plus a log line per rejected row."""

    def __init__(self, filename=None):
        self.filename = filename
        self.total_rows = 0
        self.records = []
        self.errors = []
        self.warnings = []

    @property
    def succeeded(self):
        return len(self.records)

    @property
    def failed(self):
        return len(self.errors)

    def add_error(self, row_number, messages):
        entry = f"Row {row_number}: " + "; ".join(messages)
        logger.warning("Import %s: %s", self.filename or "<rows>", entry)
        self.errors.append(entry)

    def to_dict(self):
        return {
            "filename": self.filename,
            "total_rows": self.total_rows,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "record_ids": [r.record_id for r in self.records],
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


def _normalize_header(text):
    return re.sub(r"\s+", " ", str(text)).strip().casefold()


HEADER_LOOKUP = {}
for _field, _label in config.FIELD_LABELS.items():
    HEADER_LOOKUP[_normalize_header(_label)] = _field
    HEADER_LOOKUP[_normalize_header(_field)] = _field


def _clean_cell(value):
    if is_blank(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, str):
        return value.strip()
    return value


def parse_date_cell(value):
    """Date from a native date, a spreadsheet serial or text; None if unreadable."""
    return parse_date(_clean_cell(value))


def read_table(data: bytes, filename: str, options: Optional[ImportOptions] = None) -> pd.DataFrame:
    options = options or ImportOptions()
    ext = Path(filename).suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise ImportFileError(f"Unsupported file type '{ext or filename}'. Use .xlsx, .xls or .csv")
    try:
        if ext == ".csv":
            df = pd.read_csv(io.BytesIO(data), dtype=str, keep_default_na=False,
                             skiprows=options.skip_rows, encoding="utf-8-sig")
        else:
            df = pd.read_excel(io.BytesIO(data), sheet_name=0, dtype=object,
                               skiprows=options.skip_rows, engine=EXCEL_ENGINES[ext])
    except Exception as e:
        logger.error("Could not read %s: %s", filename, e)
        raise ImportFileError(f"Could not read '{filename}' as a spreadsheet: {e}") from e
    if df.empty:
        raise ImportFileError(f"'{filename}' contains no data rows")
    return df


def map_columns(columns: Iterable) -> Tuple[Dict[str, str], List[str]]:
    """Map sheet headers to record fields. Returns (header -> field, warnings)."""
    mapping = {}
    warnings = []
    used = set()
    for column in columns:
        field = HEADER_LOOKUP.get(_normalize_header(column))
        if field is None:
            warnings.append(f"Column '{column}' is not recognised and was ignored")
        elif field in used:
            warnings.append(f"Column '{column}' repeats '{config.FIELD_LABELS[field]}' and was ignored")
        else:
            mapping[column] = field
            used.add(field)
    return mapping, warnings


def frame_to_rows(df: pd.DataFrame, mapping: Mapping[str, str]) -> List[Dict]:
    rows = []
    for values in df.to_dict(orient="records"):
        rows.append({field: values[column] for column, field in mapping.items()})
    return rows


def import_rows(rows: Iterable[Mapping], mode=ValidationMode.LENIENT, result=None) -> ImportResult:
    """Validate and code each row. Row numbers are 1-based data rows; blank rows are skipped."""
    result = result if result is not None else ImportResult()
    batch_millis = int(time.time() * 1000)
    seen = set()
    for row_number, row in enumerate(rows, start=1):
        raw = {field: _clean_cell(value) for field, value in row.items()}
        if all(value is None for value in raw.values()):
            continue
        result.total_rows += 1
        for name in DATE_FIELDS:
            # Unreadable dates stay as-is for the validator to report or drop
            if raw.get(name) is not None:
                raw[name] = parse_date_cell(raw[name]) or raw[name]
        if raw.get("record_id") is None:
            raw["record_id"] = new_record_id(suffix=row_number, millis=batch_millis)
        try:
            record = validate_record(raw, mode)
        except ValidationError as e:
            result.add_error(row_number, e.messages())
            continue
        if record.record_id in seen:
            result.add_error(row_number, [f"record_id: duplicates an earlier row ({record.record_id})"])
            continue
        seen.add(record.record_id)
        result.records.append(apply_codes(record))
    return result


def import_file(data: bytes, filename: str, options: Optional[ImportOptions] = None) -> ImportResult:
    options = options or ImportOptions()
    df = read_table(data, filename, options)
    mapping, warnings = map_columns(df.columns)
    if not mapping:
        raise ImportFileError(f"'{filename}' has no recognised column headers")
    result = ImportResult(filename)
    result.warnings.extend(warnings)
    for warning in warnings:
        logger.info("Import %s: %s", filename, warning)
    import_rows(frame_to_rows(df, mapping), options.mode, result)
    logger.info("Import %s: %d rows, %d valid, %d rejected",
                filename, result.total_rows, result.succeeded, result.failed)
    return result


def build_import_template(fmt="xlsx") -> bytes:
    """Empty sheet carrying the expected headers, derived-code columns left out."""
    labels = [config.FIELD_LABELS[f] for f in config.COLUMN_ORDER if f not in config.DERIVED_FIELDS]
    df = pd.DataFrame(columns=labels)
    if fmt == "csv":
        return df.to_csv(index=False).encode("utf-8-sig")
    if fmt == "xlsx":
        buf = io.BytesIO()
        df.to_excel(buf, index=False, sheet_name="Template", engine="openpyxl")
        return buf.getvalue()
    raise ValueError(f"unsupported template format: {fmt}")
