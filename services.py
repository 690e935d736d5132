import dataclasses
import logging
import math
from collections import Counter

import config
from auth import require_admin
from codes import apply_codes
from exporter import build_report
from importer import import_file, build_import_template
from schema import (validate_record, ValidationMode, ValidationError, FieldError,
                    DisposalStatus, new_record_id)

logger = logging.getLogger(__name__)


class RecordNotFound(LookupError):
    pass


class InventoryService:
    """Record lifecycle: validate, derive codes, persist. Writes require an admin."""

    def __init__(self, db):
        self.db = db

    # --- READS (any role) ---
    def list_records(self):
        return self.db.get_all_records()

    def get_record(self, record_id):
        record = self.db.get_record(record_id)
        if record is None:
            raise RecordNotFound(record_id)
        return record

    def subscribe(self, listener):
        return self.db.subscribe(listener)

    # --- WRITES (admin) ---
    def create_record(self, user, values):
        require_admin(user, "add records")
        record = validate_record(values, ValidationMode.STRICT)
        if record.record_id is None:
            record = dataclasses.replace(record, record_id=new_record_id())
        elif self.db.get_record(record.record_id) is not None:
            raise ValidationError([FieldError("record_id", f"'{record.record_id}' already exists")])
        record = apply_codes(record)
        self.db.upsert_record(record)
        logger.info("%s added record %s", user.username, record.record_id)
        return record

    def update_record(self, user, record_id, values):
        require_admin(user, "edit records")
        existing = self.get_record(record_id)
        # Fields the form does not show keep their stored values
        merged = {**existing.to_document(), **values, "record_id": record_id}
        record = apply_codes(validate_record(merged, ValidationMode.STRICT))
        self.db.upsert_record(record)
        logger.info("%s updated record %s", user.username, record_id)
        return record

    def delete_records(self, user, record_ids):
        require_admin(user, "delete records")
        record_ids = list(record_ids)
        if not record_ids:
            return 0
        if len(record_ids) == 1:
            deleted = 1 if self.db.delete_record(record_ids[0]) else 0
        else:
            deleted = self.db.delete_records(record_ids)
        logger.info("%s deleted %d records", user.username, deleted)
        return deleted

    def import_file(self, user, data, filename, options=None):
        require_admin(user, "import records")
        result = import_file(data, filename, options)
        if result.records:
            self.db.upsert_records(result.records)
        logger.info("%s imported %s: %d saved, %d rejected",
                    user.username, filename, result.succeeded, result.failed)
        return result

    def import_template(self, user, fmt="xlsx"):
        require_admin(user, "download the import template")
        return build_import_template(fmt)

    def export_report(self, user, report_type, fmt, date_from=None, date_to=None, records=None):
        require_admin(user, "export reports")
        if records is None:
            records = self.db.get_all_records()
        return build_report(records, report_type, fmt, date_from, date_to)


def paginate(records, page, page_size=config.PAGE_SIZE):
    """Return (records on page, page count). Out-of-range pages are clamped."""
    records = list(records)
    pages = max(1, math.ceil(len(records) / page_size))
    page = min(max(int(page), 1), pages)
    start = (page - 1) * page_size
    return records[start:start + page_size], pages


def inventory_stats(records):
    records = list(records)
    active = sum(1 for r in records if r.disposal_status is DisposalStatus.ACTIVE)
    per_year = Counter(r.procurement_date.year for r in records if r.procurement_date)
    return {
        "total": len(records),
        "active": active,
        "disposed": len(records) - active,
        "total_value": sum(r.estimated_price or 0 for r in records),
        "per_year": sorted(per_year.items()),
    }
