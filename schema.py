"""
Inventory record schema and validation.

A record enters the system from two places: the add/edit form and the rows of
an imported spreadsheet. Both go through ``validate_record``; the entry point
picks the policy with ``ValidationMode``:

* ``STRICT``  - form entry. Required fields must be filled in explicitly and
  unparsable numbers or dates are reported as field errors.
* ``LENIENT`` - bulk import. Blank cells take the field default, unparsable
  numbers fall back to the default and unparsable dates become ``None``.

Range checks, enum membership and the disposal rule apply in both modes. Blank
optional text is stored as ``config.EMPTY_PLACEHOLDER`` either way, so a record
exported and imported again comes back unchanged.
"""

import dataclasses
import enum
import logging
import math
import numbers
import re
import secrets
import string
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional

import config

logger = logging.getLogger(__name__)

# Spreadsheet date serials count days from this anchor
SPREADSHEET_EPOCH = date(1899, 12, 30)

DATE_FORMATS = ["%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y/%m/%d"]
DATETIME_FORMATS = ["%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S", "%d/%m/%Y %H:%M"]


class DisposalStatus(str, enum.Enum):
    ACTIVE = "aktif"
    DISPOSED = "dihapus"


class ProcurementStatus(str, enum.Enum):
    NEW = "baru"
    USED = "bekas"
    SECOND_HAND = "second"


class Condition(str, enum.Enum):
    GOOD = "Baik"
    LIGHTLY_DAMAGED = "Rusak Ringan"
    HEAVILY_DAMAGED = "Rusak Berat"


class ValidationMode(enum.Enum):
    STRICT = "strict"
    LENIENT = "lenient"


def _enum_key(value):
    return re.sub(r"[\s\-]+", "_", str(value).strip()).casefold()


def parse_enum(enum_cls, value):
    """Resolve a stored value ('aktif') or an English name ('active', 'second-hand')."""
    if isinstance(value, enum_cls):
        return value
    key = _enum_key(value)
    for member in enum_cls:
        if key in (_enum_key(member.value), member.name.casefold()):
            return member
    raise ValueError(f"unknown {enum_cls.__name__} value: {value!r}")


@dataclass
class InventoryRecord:
    record_id: Optional[str] = None
    item_type: str = ""
    sub_item_type: str = ""
    sub_item_type_code: str = ""
    main_item_number: str = ""
    main_item_letter: str = ""
    brand: str = ""
    funding_source: str = ""
    funding_item_order: str = ""
    sub_item_order: str = ""
    area: str = ""
    sub_area: str = ""
    procurement_date: Optional[date] = None
    supplier: str = ""
    estimated_price: float = 0.0
    procurement_status: Optional[ProcurementStatus] = None
    disposal_status: DisposalStatus = DisposalStatus.ACTIVE
    disposal_date: Optional[date] = None
    quantity: int = 1
    unit: str = ""
    condition: Condition = Condition.GOOD
    notes: str = ""
    item_verification_code: str = ""
    funding_verification_code: str = ""
    total_recap_code: str = ""
    funding_recap_code: str = ""
    disposal_recap_code: Optional[str] = None

    @property
    def is_disposed(self):
        return self.disposal_status is DisposalStatus.DISPOSED

    def to_document(self) -> Dict:
        """Plain dict for storage/export. Unset (None) fields are left out."""
        doc = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, enum.Enum):
                value = value.value
            doc[f.name] = value
        return doc

    @classmethod
    def from_document(cls, doc: Mapping) -> "InventoryRecord":
        names = {f.name for f in dataclasses.fields(cls)}
        data = {k: v for k, v in doc.items() if k in names}
        if data.get("disposal_status") is not None:
            data["disposal_status"] = parse_enum(DisposalStatus, data["disposal_status"])
        if data.get("procurement_status") is not None:
            data["procurement_status"] = parse_enum(ProcurementStatus, data["procurement_status"])
        if data.get("condition") is not None:
            data["condition"] = parse_enum(Condition, data["condition"])
        return cls(**data)


@dataclass(frozen=True)
class FieldError:
    field: str
    reason: str

    def __str__(self):
        return f"{self.field}: {self.reason}"


class ValidationError(ValueError):
    """Raised with every field error found in one input, not just the first."""

    def __init__(self, errors: Iterable[FieldError]):
        self.errors = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))

    def by_field(self) -> Dict[str, List[str]]:
        out = {}
        for err in self.errors:
            out.setdefault(err.field, []).append(err.reason)
        return out

    def messages(self) -> List[str]:
        return [str(e) for e in self.errors]


def new_record_id(suffix=None, millis=None) -> str:
    """INV-<epoch millis>-<suffix>. Without a suffix a random base-36 token is used."""
    if suffix is None:
        alphabet = string.ascii_lowercase + string.digits
        suffix = "".join(secrets.choice(alphabet) for _ in range(5))
    if millis is None:
        millis = int(time.time() * 1000)
    return f"INV-{millis}-{suffix}"


# --- COERCION HELPERS ---
def is_blank(value):
    if value is None:
        return True
    try:
        if value != value:  # NaN, NaT
            return True
    except (TypeError, ValueError):
        pass
    if isinstance(value, str) and not value.strip():
        return True
    return False


def _to_text(value):
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    return str(value).strip()


def parse_number(value) -> float:
    """Coerce ints, floats and numeric strings ('Rp 1.500.000', '2,5') to float."""
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, numbers.Real):
        number = float(value)
    elif isinstance(value, str):
        s = re.sub(r"^rp\.?", "", value.strip(), flags=re.IGNORECASE).replace(" ", "")
        if re.fullmatch(r"-?\d{1,3}(\.\d{3})+", s):
            s = s.replace(".", "")
        elif re.fullmatch(r"-?\d{1,3}(,\d{3})+(\.\d+)?", s):
            s = s.replace(",", "")
        elif re.fullmatch(r"-?\d+,\d+", s):
            s = s.replace(",", ".")
        number = float(s)
    else:
        raise ValueError(f"not a number: {value!r}")
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {value!r}")
    return number


def parse_date(value) -> Optional[date]:
    """Normalize a date, datetime, spreadsheet serial or text to a date.

    Returns None for anything it cannot read; never raises.
    """
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, numbers.Real):
        return _from_serial(value)
    if isinstance(value, str):
        s = value.strip()
        if re.fullmatch(r"\d+(\.\d+)?", s):
            return _from_serial(float(s))
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(s, fmt).date()
            except ValueError:
                continue
        for fmt in DATETIME_FORMATS:
            try:
                return datetime.strptime(s, fmt).date()
            except ValueError:
                continue
    return None


def _from_serial(serial):
    if isinstance(serial, float) and not math.isfinite(serial):
        return None
    if serial < 1:
        return None
    try:
        return SPREADSHEET_EPOCH + timedelta(days=int(serial))
    except OverflowError:
        return None


# --- VALIDATION ---
REQUIRED_TEXT_FIELDS = ["item_type", "brand", "unit", "area"]
OPTIONAL_TEXT_FIELDS = [
    "sub_item_type", "sub_item_type_code", "main_item_number", "main_item_letter",
    "funding_source", "funding_item_order", "sub_item_order", "sub_area",
    "supplier", "notes",
]
LENIENT_TEXT_DEFAULTS = {"unit": config.DEFAULT_UNIT}


def validate_record(raw: Mapping, mode: ValidationMode = ValidationMode.STRICT) -> InventoryRecord:
    strict = mode is ValidationMode.STRICT
    errors: List[FieldError] = []
    values = {}

    def text(name, required):
        value = raw.get(name)
        if is_blank(value):
            if strict and required:
                errors.append(FieldError(name, "must not be empty"))
                return ""
            # Unset optional text is stored as the placeholder in both modes
            return LENIENT_TEXT_DEFAULTS.get(name, config.EMPTY_PLACEHOLDER)
        return _to_text(value)

    def number(name, default, integral=False):
        value = raw.get(name)
        if is_blank(value):
            if strict and name == "quantity":
                errors.append(FieldError(name, "is required"))
                return None
            return default
        try:
            parsed = parse_number(value)
        except ValueError:
            if strict:
                errors.append(FieldError(name, f"is not a number ({value!r})"))
                return None
            logger.debug("Unparsable %s %r replaced by %r", name, value, default)
            return default
        if integral:
            if not parsed.is_integer():
                errors.append(FieldError(name, "must be a whole number"))
                return None
            return int(parsed)
        return parsed

    def choice(name, enum_cls, default, required):
        value = raw.get(name)
        if is_blank(value):
            if strict and required:
                errors.append(FieldError(name, "must be selected"))
            return default
        try:
            return parse_enum(enum_cls, value)
        except ValueError:
            allowed = ", ".join(m.value for m in enum_cls)
            errors.append(FieldError(name, f"must be one of: {allowed}"))
            return None

    def day(name):
        value = raw.get(name)
        if is_blank(value):
            return None
        parsed = parse_date(value)
        if parsed is None:
            if strict:
                errors.append(FieldError(name, f"is not a valid date ({value!r})"))
            else:
                logger.debug("Unparsable %s %r treated as empty", name, value)
        return parsed

    record_id = raw.get("record_id")
    values["record_id"] = None if is_blank(record_id) else _to_text(record_id)

    for name in REQUIRED_TEXT_FIELDS:
        values[name] = text(name, required=True)
    for name in OPTIONAL_TEXT_FIELDS:
        values[name] = text(name, required=False)

    price = number("estimated_price", 0.0)
    if price is not None and price < 0:
        errors.append(FieldError("estimated_price", "must not be negative"))
    values["estimated_price"] = price

    quantity = number("quantity", 1, integral=True)
    if quantity is not None and quantity < 1:
        errors.append(FieldError("quantity", "must be at least 1"))
    values["quantity"] = quantity

    values["condition"] = choice("condition", Condition, Condition.GOOD, required=True)
    values["disposal_status"] = choice("disposal_status", DisposalStatus, DisposalStatus.ACTIVE, required=True)
    values["procurement_status"] = choice("procurement_status", ProcurementStatus, None, required=False)

    values["procurement_date"] = day("procurement_date")
    values["disposal_date"] = day("disposal_date")

    already_flagged = any(e.field == "disposal_date" for e in errors)
    status = values["disposal_status"]
    if not already_flagged:
        if status is DisposalStatus.DISPOSED and values["disposal_date"] is None:
            errors.append(FieldError("disposal_date", "is required when the item status is 'dihapus'"))
        elif status is DisposalStatus.ACTIVE and values["disposal_date"] is not None:
            errors.append(FieldError("disposal_date", "must be empty unless the item status is 'dihapus'"))

    if errors:
        raise ValidationError(errors)
    return InventoryRecord(**values)
