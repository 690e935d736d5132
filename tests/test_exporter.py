from __future__ import annotations

import io
import sys
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from exporter import (
    build_report, filter_records, export_columns, report_filename,
    ReportType, ExportFormat, ReportError, EmptyReportError,
)
from codes import apply_codes
from importer import import_file, import_rows
from schema import validate_record, ValidationMode


def _records():
    rows = [
        {"record_id": "1", "item_type": "MEJA", "main_item_letter": "A", "sub_item_type_code": "01",
         "sub_item_order": "1001", "funding_source": "BOS", "procurement_date": date(2023, 1, 1),
         "estimated_price": 500000, "quantity": 2, "disposal_status": "aktif"},
        {"record_id": "2", "item_type": "KURSI", "procurement_date": date(2023, 6, 30),
         "estimated_price": 150000, "disposal_status": "aktif", "procurement_status": "baru"},
        {"record_id": "3", "item_type": "LEMARI", "procurement_date": date(2023, 7, 1),
         "disposal_status": "dihapus", "disposal_date": date(2024, 1, 15)},
        {"record_id": "4", "item_type": "PROYEKTOR", "disposal_status": "dihapus",
         "disposal_date": date(2022, 3, 3)},
        {"record_id": "5", "item_type": "KOMPUTER", "disposal_status": "aktif"},
    ]
    result = import_rows(rows)
    assert result.failed == 0
    return result.records


def _read_csv(data: bytes) -> pd.DataFrame:
    return pd.read_csv(io.BytesIO(data), encoding="utf-8-sig", dtype=str, keep_default_na=False)


# -----------------
# Filtering
# -----------------

def test_active_csv_contains_only_active_items():
    report = build_report(_records(), ReportType.ACTIVE, ExportFormat.CSV)
    frame = _read_csv(report.data)
    assert report.row_count == 3
    assert set(frame["Status Barang"]) == {"aktif"}
    assert "Tanggal Hapus" not in frame.columns
    assert "Kode Rekap Hapus" not in frame.columns


def test_disposed_report_ignores_date_range_with_warning():
    report = build_report(_records(), ReportType.DISPOSED, ExportFormat.CSV,
                          date_from=date(2023, 1, 1), date_to=date(2023, 12, 31))
    frame = _read_csv(report.data)
    assert list(frame["No. Data"]) == ["3", "4"]
    assert len(report.warnings) == 1
    assert "Laporan Pengadaan" in report.warnings[0]


def test_procurement_range_is_inclusive():
    selected, warnings = filter_records(_records(), "procurement", date(2023, 1, 1), date(2023, 6, 30))
    assert [r.record_id for r in selected] == ["1", "2"]
    assert warnings == []


def test_procurement_open_ended_range_skips_undated():
    selected, _ = filter_records(_records(), ReportType.PROCUREMENT, date_from=date(2023, 6, 1))
    assert [r.record_id for r in selected] == ["2", "3"]


def test_inverted_range_is_rejected():
    with pytest.raises(ReportError):
        filter_records(_records(), ReportType.PROCUREMENT, date(2024, 1, 1), date(2023, 1, 1))


def test_empty_selection_produces_no_file():
    active_only = [r for r in _records() if not r.is_disposed]
    with pytest.raises(EmptyReportError):
        build_report(active_only, ReportType.DISPOSED, ExportFormat.XLSX)


def test_export_columns():
    assert "disposal_date" in export_columns(ReportType.ALL)
    assert "disposal_date" in export_columns(ReportType.DISPOSED)
    assert "disposal_date" not in export_columns(ReportType.ACTIVE)
    assert "disposal_recap_code" not in export_columns(ReportType.PROCUREMENT)


# -----------------
# Formats
# -----------------

def test_csv_has_bom_and_labelled_headers():
    report = build_report(_records(), ReportType.ALL, ExportFormat.CSV)
    assert report.data.startswith(b"\xef\xbb\xbf")
    assert report.mime == "text/csv"
    frame = _read_csv(report.data)
    assert list(frame.columns)[:2] == ["No. Data", "Jenis Barang"]
    first = frame.iloc[0]
    assert first["Harga (Rp)"] == "500000"
    assert first["Tanggal Pengadaan"] == "2023-01-01"
    assert first["Kode Verifikasi Barang"] == "A.01.1001"


def test_filename_carries_title_and_date():
    report = build_report(_records(), ReportType.ACTIVE, ExportFormat.CSV, today=date(2024, 3, 5))
    assert report.filename == "Laporan_Barang_Aktif_2024-03-05.csv"
    assert report_filename("procurement", "pdf", date(2024, 3, 5)) == "Laporan_Pengadaan_2024-03-05.pdf"


def test_xlsx_is_readable():
    report = build_report(_records(), ReportType.ALL, ExportFormat.XLSX)
    frame = pd.read_excel(io.BytesIO(report.data), sheet_name="Inventaris", engine="openpyxl")
    assert len(frame) == 5
    assert "Tanggal Hapus" in frame.columns


def test_pdf_output_paginates():
    records = _records()
    small = build_report(records, ReportType.ALL, ExportFormat.PDF)
    assert small.data.startswith(b"%PDF")
    assert small.mime == "application/pdf"

    many = import_rows([{"item_type": f"MEJA {i}", "notes": "ruang guru – lantai 2"}
                        for i in range(60)]).records
    big = build_report(many, ReportType.ALL, ExportFormat.PDF)
    pages = big.data.count(b"/Type /Page") - big.data.count(b"/Type /Pages")
    assert pages > 1


# -----------------
# Round trip
# -----------------

def test_csv_export_imports_back_unchanged():
    records = _records()
    report = build_report(records, ReportType.ALL, ExportFormat.CSV)
    result = import_file(report.data, report.filename)
    assert result.failed == 0
    assert result.warnings == []
    assert result.records == records


def _form_records():
    forms = [
        {"record_id": "S1", "item_type": "Meja Guru", "brand": "Olympic", "area": "Kantor",
         "unit": "buah", "quantity": 1, "condition": "Baik", "disposal_status": "aktif",
         "estimated_price": 12.345, "procurement_date": date(2023, 2, 14)},
        {"record_id": "S2", "item_type": "Proyektor", "brand": "Epson", "area": "Aula",
         "unit": "unit", "quantity": 2, "condition": "Rusak Berat", "disposal_status": "dihapus",
         "disposal_date": date(2024, 8, 1), "estimated_price": 4500000, "main_item_letter": "B",
         "sub_item_type_code": "02", "sub_item_order": "7", "procurement_status": "bekas"},
    ]
    return [apply_codes(validate_record(f, ValidationMode.STRICT)) for f in forms]


@pytest.mark.parametrize("fmt", [ExportFormat.CSV, ExportFormat.XLSX])
def test_form_records_survive_export_and_import(fmt):
    records = _form_records()
    report = build_report(records, ReportType.ALL, fmt)
    result = import_file(report.data, report.filename)
    assert result.failed == 0
    assert result.records == records


def test_price_with_three_decimals_is_not_read_as_thousands():
    report = build_report(_form_records(), ReportType.ALL, ExportFormat.CSV)
    frame = _read_csv(report.data)
    assert frame.iloc[0]["Harga (Rp)"] == "12.3450"
    assert import_file(report.data, report.filename).records[0].estimated_price == 12.345


def test_active_export_imports_back():
    records = [r for r in _records() if not r.is_disposed]
    report = build_report(records, ReportType.ACTIVE, ExportFormat.XLSX)
    result = import_file(report.data, report.filename)
    assert result.failed == 0
    assert [r.record_id for r in result.records] == ["1", "2", "5"]
    assert result.records[0].procurement_date == date(2023, 1, 1)
