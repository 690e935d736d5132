"""Derived identifier codes for inventory records.

Every entry point (form create, edit-save, each imported row) calls
``apply_codes``; nothing else writes the derived fields.
"""

import dataclasses

import config
from schema import DisposalStatus, InventoryRecord

DISPOSAL_SUFFIX = "-HAPUS"


def _part(value):
    if value is None:
        return ""
    value = str(value).strip()
    return "" if value == config.EMPTY_PLACEHOLDER else value


def _dotted(*segments):
    return ".".join(s for s in segments if s)


def derive_codes(main_item_letter, sub_item_type_code, sub_item_order,
                 funding_source, funding_item_order, disposal_status):
    letter = _part(main_item_letter)
    type_code = _part(sub_item_type_code)
    order = _part(sub_item_order)
    source = _part(funding_source)
    funding_order = _part(funding_item_order)
    total = letter + type_code

    codes = {
        "item_verification_code": _dotted(letter, type_code, order),
        "funding_verification_code": _dotted(source, funding_order, total),
        "total_recap_code": total,
        "funding_recap_code": total + source,
        "disposal_recap_code": None,
    }
    if disposal_status == DisposalStatus.DISPOSED:
        codes["disposal_recap_code"] = total + DISPOSAL_SUFFIX
    return codes


def apply_codes(record: InventoryRecord) -> InventoryRecord:
    codes = derive_codes(
        record.main_item_letter,
        record.sub_item_type_code,
        record.sub_item_order,
        record.funding_source,
        record.funding_item_order,
        record.disposal_status,
    )
    return dataclasses.replace(record, **codes)
