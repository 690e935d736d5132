# config.py
import logging
import os

APP_VERSION = "1.4.0 Inventaris Sekolah"
APP_TITLE = "Inventaris Sekolah"

# Database
DB_URL = os.environ.get("INVENTARIS_DB_URL", "sqlite:///inventaris.db")
INVENTORY_COLLECTION = "inventory"
SEED_SAMPLE_DATA = os.environ.get("INVENTARIS_SEED_SAMPLE_DATA", "0") == "1"

DEFAULT_ADMIN_USERNAME = os.environ.get("INVENTARIS_ADMIN_USER", "admin")
DEFAULT_ADMIN_PASSWORD = os.environ.get("INVENTARIS_ADMIN_PASSWORD", "admin123")

# Roles
ROLE_ADMIN = "admin"    # Full access: create, edit, delete, import, export
ROLE_USER = "user"      # Read, detail view, copy identifier
ROLES = [ROLE_ADMIN, ROLE_USER]

# Logging
LOG_LEVEL = os.environ.get("INVENTARIS_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Placeholder written into unset text fields on import
EMPTY_PLACEHOLDER = "-"

# Field -> human readable column label (import/export contract)
FIELD_LABELS = {
    "record_id": "No. Data",
    "item_type": "Jenis Barang",
    "main_item_number": "Induk No. Barang",
    "main_item_letter": "Induk Huruf Barang",
    "sub_item_type": "Sub Jenis Barang",
    "brand": "Merk/Tipe",
    "sub_item_type_code": "Sub Kode Jenis",
    "sub_item_order": "Urut Sub Barang",
    "funding_source": "Sumber Dana",
    "funding_item_order": "Urut Barang Dana",
    "area": "Area/Ruang",
    "sub_area": "Sub-Area/Ruang",
    "procurement_date": "Tanggal Pengadaan",
    "supplier": "Supplier",
    "estimated_price": "Harga (Rp)",
    "procurement_status": "Status Pengadaan",
    "disposal_status": "Status Barang",
    "disposal_date": "Tanggal Hapus",
    "item_verification_code": "Kode Verifikasi Barang",
    "funding_verification_code": "Kode Verifikasi Dana",
    "total_recap_code": "Kode Rekap Total",
    "disposal_recap_code": "Kode Rekap Hapus",
    "funding_recap_code": "Kode Rekap Dana",
    "quantity": "Jumlah",
    "unit": "Satuan",
    "condition": "Kondisi",
    "notes": "Keterangan",
}

# Column order of exported sheets and of the import template.
# Bump IMPORT_TEMPLATE_VERSION whenever a label or the order changes.
IMPORT_TEMPLATE_VERSION = 1
COLUMN_ORDER = list(FIELD_LABELS.keys())

DERIVED_FIELDS = [
    "item_verification_code",
    "funding_verification_code",
    "total_recap_code",
    "disposal_recap_code",
    "funding_recap_code",
]

# Only meaningful for disposed items
DISPOSAL_ONLY_FIELDS = ["disposal_date", "disposal_recap_code"]

# Fields shown on a PDF report card
PDF_CARD_FIELDS = [
    "item_type", "brand", "area", "sub_area", "procurement_date",
    "estimated_price", "quantity", "unit", "condition", "disposal_status",
    "disposal_date", "item_verification_code", "funding_verification_code",
    "notes",
]

DEFAULT_UNIT = "buah"
PAGE_SIZE = 50


def setup_logging(level=None):
    logging.basicConfig(level=(level or LOG_LEVEL).upper(), format=LOG_FORMAT)
