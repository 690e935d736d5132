"""
Report generation.

``build_report`` narrows the record set by report type (and, for procurement
reports only, by procurement date), relabels the columns with
``config.FIELD_LABELS`` and writes CSV, Excel or PDF bytes ready to download.
"""

import enum
import io
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

import pandas as pd
from fpdf import FPDF
from fpdf.enums import XPos, YPos

import config
from schema import DisposalStatus, InventoryRecord

logger = logging.getLogger(__name__)

DOTTED_THOUSANDS = re.compile(r"-?\d{1,3}(\.\d{3})+")


class ReportType(str, enum.Enum):
    ALL = "all"
    ACTIVE = "active"
    DISPOSED = "disposed"
    PROCUREMENT = "procurement"

    @property
    def heading(self):
        return REPORT_TITLES[self]


REPORT_TITLES = {
    ReportType.ALL: "Laporan Seluruh Inventaris",
    ReportType.ACTIVE: "Laporan Barang Aktif",
    ReportType.DISPOSED: "Laporan Barang Dihapus",
    ReportType.PROCUREMENT: "Laporan Pengadaan",
}


class ExportFormat(str, enum.Enum):
    CSV = "csv"
    XLSX = "xlsx"
    PDF = "pdf"


MIME_TYPES = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.XLSX: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ExportFormat.PDF: "application/pdf",
}


class ReportError(Exception):
    pass


class EmptyReportError(ReportError):
    """No record matched the report filters; no file is produced."""


@dataclass
class Report:
    filename: str
    mime: str
    data: bytes
    row_count: int
    warnings: List[str] = field(default_factory=list)


def _as_date(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def filter_records(records, report_type, date_from=None, date_to=None):
    """Apply the status filter, then the procurement date range. Returns (records, warnings)."""
    report_type = ReportType(report_type)
    date_from, date_to = _as_date(date_from), _as_date(date_to)
    warnings = []

    if report_type is ReportType.ACTIVE:
        records = [r for r in records if r.disposal_status is DisposalStatus.ACTIVE]
    elif report_type is ReportType.DISPOSED:
        records = [r for r in records if r.disposal_status is DisposalStatus.DISPOSED]
    else:
        records = list(records)

    if date_from or date_to:
        if date_from and date_to and date_from > date_to:
            raise ReportError(f"Start date {date_from} is after end date {date_to}")
        if report_type is ReportType.PROCUREMENT:
            records = [
                r for r in records
                if r.procurement_date is not None
                and (date_from is None or r.procurement_date >= date_from)
                and (date_to is None or r.procurement_date <= date_to)
            ]
        else:
            warnings.append(
                f"The date range only applies to '{ReportType.PROCUREMENT.heading}'; "
                f"it was not applied to '{report_type.heading}'."
            )
    return records, warnings


def export_columns(report_type):
    report_type = ReportType(report_type)
    if report_type in (ReportType.ACTIVE, ReportType.PROCUREMENT):
        return [f for f in config.COLUMN_ORDER if f not in config.DISPOSAL_ONLY_FIELDS]
    return list(config.COLUMN_ORDER)


def _cell(field_name, value, native_dates):
    if value is None:
        return ""
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, date):
        return value if native_dates else value.isoformat()
    if field_name == "estimated_price":
        return _price(value, native_dates)
    return value


def _price(value, native):
    value = float(value)
    if value.is_integer():
        return int(value)
    if native:
        return value
    # "12.345" would read back as 12345 (dotted thousands)
    text = repr(value)
    if DOTTED_THOUSANDS.fullmatch(text):
        text += "0"
    return text


def records_to_frame(records: List[InventoryRecord], columns, native_dates=False) -> pd.DataFrame:
    labels = [config.FIELD_LABELS[c] for c in columns]
    rows = []
    for record in records:
        rows.append([_cell(c, getattr(record, c), native_dates) for c in columns])
    return pd.DataFrame(rows, columns=labels)


def report_filename(report_type, fmt, today=None):
    today = today or date.today()
    stem = ReportType(report_type).heading.replace(" ", "_")
    return f"{stem}_{today.isoformat()}.{ExportFormat(fmt).value}"


# --- PDF ---
def _latin1(text):
    # Core PDF fonts only cover latin-1
    return str(text).encode("latin-1", "replace").decode("latin-1")


def _clip(text, limit=52):
    text = str(text)
    return text if len(text) <= limit else text[:limit - 3] + "..."


class ReportPDF(FPDF):
    def __init__(self, title, generated_on):
        super().__init__(orientation="P", unit="mm", format="A4")
        self.report_title = title
        self.generated_on = generated_on

    def header(self):
        self.set_font("Helvetica", "B", 14)
        self.cell(0, 8, _latin1(self.report_title), align="C", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.set_font("Helvetica", size=9)
        self.cell(0, 5, _latin1(f"{config.APP_TITLE} - dibuat {self.generated_on.isoformat()}"),
                  align="C", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.line(self.l_margin, self.get_y() + 1, self.w - self.r_margin, self.get_y() + 1)
        self.ln(4)

    def footer(self):
        self.set_y(-15)
        self.set_font("Helvetica", "I", 8)
        self.cell(0, 10, f"Halaman {self.page_no()}/{{nb}}", align="C")


CARD_TITLE_H = 7
CARD_LINE_H = 5
CARD_PADDING = 4
FOOTER_SPACE = 20


def render_pdf(records, columns, title, generated_on=None):
    pdf = ReportPDF(title, generated_on or date.today())
    pdf.alias_nb_pages()
    pdf.set_margins(10, 10, 10)
    pdf.set_auto_page_break(False)
    pdf.add_page()

    pdf.set_font("Helvetica", size=9)
    pdf.cell(0, 6, f"Jumlah data: {len(records)}", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(2)

    fields = [f for f in config.PDF_CARD_FIELDS if f in columns]
    width = pdf.w - pdf.l_margin - pdf.r_margin
    half = width / 2
    height = CARD_TITLE_H + math.ceil(len(fields) / 2) * CARD_LINE_H + CARD_PADDING
    bottom = pdf.h - FOOTER_SPACE

    for record in records:
        if pdf.get_y() + height > bottom:
            pdf.add_page()
        top = pdf.get_y()
        pdf.rect(pdf.l_margin, top, width, height - 2)

        pdf.set_xy(pdf.l_margin + 2, top + 1)
        pdf.set_font("Helvetica", "B", 10)
        pdf.cell(width - 4, CARD_TITLE_H - 2, _latin1(_clip(f"{record.record_id} - {record.item_type}", 90)))

        pdf.set_font("Helvetica", size=8)
        for i, name in enumerate(fields):
            pdf.set_xy(pdf.l_margin + 2 + (i % 2) * half, top + CARD_TITLE_H + (i // 2) * CARD_LINE_H)
            value = _cell(name, getattr(record, name), native_dates=False)
            pdf.cell(half - 4, CARD_LINE_H, _latin1(_clip(f"{config.FIELD_LABELS[name]}: {value}")))

        pdf.set_xy(pdf.l_margin, top + height)

    return bytes(pdf.output())


# --- ENTRY POINT ---
def build_report(records, report_type, fmt, date_from=None, date_to=None, today=None) -> Report:
    report_type = ReportType(report_type)
    fmt = ExportFormat(fmt)
    today = today or date.today()

    selected, warnings = filter_records(records, report_type, date_from, date_to)
    for warning in warnings:
        logger.warning(warning)
    if not selected:
        raise EmptyReportError(f"No records match '{report_type.heading}' with the chosen filters")

    columns = export_columns(report_type)
    if fmt is ExportFormat.CSV:
        df = records_to_frame(selected, columns)
        data = df.to_csv(index=False).encode("utf-8-sig")
    elif fmt is ExportFormat.XLSX:
        df = records_to_frame(selected, columns, native_dates=True)
        buf = io.BytesIO()
        df.to_excel(buf, index=False, sheet_name="Inventaris", engine="openpyxl")
        data = buf.getvalue()
    else:
        data = render_pdf(selected, columns, report_type.heading, today)

    filename = report_filename(report_type, fmt, today)
    logger.info("Built %s with %d rows", filename, len(selected))
    return Report(filename, MIME_TYPES[fmt], data, len(selected), warnings)
