from __future__ import annotations

import io
import sys
from datetime import datetime, date
from pathlib import Path

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from importer import (
    import_file, import_rows, build_import_template, map_columns, read_table,
    parse_date_cell, ImportFileError, ImportOptions,
)
from schema import DisposalStatus, ValidationMode


def _csv(text: str) -> bytes:
    return text.encode("utf-8")


def _xlsx(frame: pd.DataFrame) -> bytes:
    buf = io.BytesIO()
    frame.to_excel(buf, index=False, engine="openpyxl")
    return buf.getvalue()


SCENARIO_A = _csv(
    "Jenis Barang,Merk/Tipe,Harga (Rp),Jumlah,Status Barang\n"
    "MEJA,Olympic,500000,2,aktif\n"
    "KURSI,Chitose,-100,1,aktif\n"
    "LEMARI,Brother,750000,1,aktif\n"
)


def test_bad_row_is_reported_and_others_imported():
    result = import_file(SCENARIO_A, "barang.csv")
    assert result.total_rows == 3
    assert result.succeeded == 2
    assert result.failed == 1
    assert result.errors[0].startswith("Row 2: estimated_price")
    assert [r.item_type for r in result.records] == ["MEJA", "LEMARI"]


def test_missing_ids_are_generated_per_row():
    result = import_file(SCENARIO_A, "barang.csv")
    ids = [r.record_id for r in result.records]
    assert all(i.startswith("INV-") for i in ids)
    assert ids[0].endswith("-1")
    assert ids[1].endswith("-3")
    assert len(set(ids)) == 2


def test_lenient_defaults_fill_missing_columns():
    record = import_file(SCENARIO_A, "barang.csv").records[0]
    assert record.quantity == 2
    assert record.estimated_price == 500000
    assert record.unit == "buah"
    assert record.area == "-"
    assert record.disposal_status is DisposalStatus.ACTIVE


def test_codes_are_derived_on_import():
    data = _csv(
        "No. Data,Jenis Barang,Induk Huruf Barang,Sub Kode Jenis,Urut Sub Barang,"
        "Sumber Dana,Urut Barang Dana,Status Barang,Tanggal Hapus\n"
        "B7,MEJA,A,01,1021,BOS,1021,dihapus,2024-02-01\n"
    )
    record = import_file(data, "codes.csv").records[0]
    assert record.record_id == "B7"
    assert record.item_verification_code == "A.01.1021"
    assert record.funding_verification_code == "BOS.1021.A01"
    assert record.disposal_recap_code == "A01-HAPUS"
    assert record.disposal_date == date(2024, 2, 1)


def test_disposed_row_without_date_is_rejected():
    data = _csv(
        "Jenis Barang,Status Barang,Tanggal Hapus\n"
        "MEJA,dihapus,\n"
        "KURSI,aktif,\n"
    )
    result = import_file(data, "hapus.csv")
    assert result.succeeded == 1
    assert result.errors == [
        "Row 1: disposal_date: is required when the item status is 'dihapus'"
    ]


def test_every_bad_row_is_isolated():
    lines = ["Jenis Barang,Jumlah"]
    for i in range(10):
        lines.append(f"BARANG {i},{0 if i % 3 == 0 else 1}")
    result = import_file(_csv("\n".join(lines) + "\n"), "many.csv")
    assert result.total_rows == 10
    assert result.failed == 4
    assert result.succeeded == 6
    assert [e.split(":")[0] for e in result.errors] == ["Row 1", "Row 4", "Row 7", "Row 10"]


def test_duplicate_ids_in_one_file():
    data = _csv(
        "No. Data,Jenis Barang\n"
        "A1,MEJA\n"
        "A1,KURSI\n"
    )
    result = import_file(data, "dupe.csv")
    assert result.succeeded == 1
    assert result.errors == ["Row 2: record_id: duplicates an earlier row (A1)"]


def test_blank_rows_are_skipped():
    data = _csv(
        "Jenis Barang,Merk/Tipe\n"
        "MEJA,X\n"
        ",\n"
        "KURSI,Y\n"
    )
    result = import_file(data, "blank.csv")
    assert result.total_rows == 2
    assert result.succeeded == 2
    assert result.failed == 0


def test_headers_match_loosely_and_unknown_ones_warn():
    data = _csv(
        "  jenis   barang ,item_type,Warna,quantity\n"
        "MEJA,KURSI,merah,3\n"
    )
    result = import_file(data, "loose.csv")
    record = result.records[0]
    assert record.item_type == "MEJA"
    assert record.quantity == 3
    assert len(result.warnings) == 2
    assert any("Warna" in w for w in result.warnings)


def test_skip_rows_option():
    data = _csv(
        "Daftar Inventaris SD Negeri 1\n"
        "Jenis Barang,Jumlah\n"
        "MEJA,4\n"
    )
    result = import_file(data, "title.csv", ImportOptions(skip_rows=1))
    assert result.succeeded == 1
    assert result.records[0].quantity == 4


def test_xlsx_with_serial_and_native_dates():
    frame = pd.DataFrame({
        "Jenis Barang": ["MEJA", "KURSI", "LEMARI"],
        "Tanggal Pengadaan": [45047, datetime(2022, 8, 17), "bukan tanggal"],
        "Harga (Rp)": [1500000, 250000.0, None],
        "Urut Sub Barang": [1021, 1022, 1023],
    })
    result = import_file(_xlsx(frame), "barang.xlsx")
    assert result.failed == 0
    dates = [r.procurement_date for r in result.records]
    assert dates == [date(2023, 5, 1), date(2022, 8, 17), None]
    assert [r.estimated_price for r in result.records] == [1500000, 250000, 0]
    assert result.records[0].sub_item_order == "1021"


def test_parse_date_cell():
    assert parse_date_cell(pd.Timestamp("2024-02-01 08:30")) == date(2024, 2, 1)
    assert parse_date_cell(45047) == date(2023, 5, 1)
    assert parse_date_cell(" 17/08/2022 ") == date(2022, 8, 17)
    assert parse_date_cell(pd.NaT) is None
    assert parse_date_cell("kemarin") is None


def test_unreadable_date_is_reported_in_strict_import():
    data = _csv(
        "Jenis Barang,Merk/Tipe,Area/Ruang,Satuan,Jumlah,Kondisi,Status Barang,Tanggal Pengadaan\n"
        "MEJA,Olympic,Kelas,buah,1,Baik,aktif,kemarin\n"
        "KURSI,Chitose,Kelas,buah,1,Baik,aktif,45047\n"
    )
    result = import_file(data, "tanggal.csv", ImportOptions(mode=ValidationMode.STRICT))
    assert result.errors == ["Row 1: procurement_date: is not a valid date ('kemarin')"]
    assert result.records[0].procurement_date == date(2023, 5, 1)


def test_strict_mode_is_selectable():
    result = import_file(SCENARIO_A, "barang.csv", ImportOptions(mode=ValidationMode.STRICT))
    # area and unit are required in strict mode and the sheet has neither
    assert result.succeeded == 0
    assert result.failed == 3


def test_import_rows_without_a_file():
    rows = [{"item_type": "MEJA", "quantity": 2}, {"item_type": None, "quantity": None}]
    result = import_rows(rows)
    assert result.total_rows == 1
    assert result.records[0].quantity == 2
    assert result.to_dict()["succeeded"] == 1


def test_unsupported_extension():
    with pytest.raises(ImportFileError):
        import_file(b"whatever", "barang.txt")


def test_corrupt_workbook():
    with pytest.raises(ImportFileError):
        import_file(b"this is not a zip archive", "barang.xlsx")


def test_empty_sheet():
    with pytest.raises(ImportFileError):
        read_table(_csv("Jenis Barang,Jumlah\n"), "kosong.csv")


def test_no_recognised_headers():
    with pytest.raises(ImportFileError):
        import_file(_csv("a,b\n1,2\n"), "asing.csv")


def test_map_columns_ignores_repeats():
    mapping, warnings = map_columns(["Jenis Barang", "item_type", "Harga (Rp)"])
    assert mapping == {"Jenis Barang": "item_type", "Harga (Rp)": "estimated_price"}
    assert len(warnings) == 1


def test_template_lists_input_columns_only():
    header = build_import_template("csv").decode("utf-8-sig").splitlines()[0]
    columns = header.split(",")
    assert columns[0] == "No. Data"
    assert "Jenis Barang" in columns
    assert "Kode Verifikasi Barang" not in columns
    assert "Kode Rekap Hapus" not in columns

    frame = pd.read_excel(io.BytesIO(build_import_template("xlsx")), engine="openpyxl")
    assert list(frame.columns) == columns

    with pytest.raises(ValueError):
        build_import_template("ods")
