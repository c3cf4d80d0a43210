"""Translation between :class:`Transaction` and the macro's wire records.

The remote spreadsheet has been through several header conventions, so one
logical field may arrive under different keys.  :data:`FIELD_ALIASES` is the
single ordered table of those keys: the first entry is the canonical header
(the only one ever written), the rest are legacy names consulted in order
when reading.  Nothing outside this module sees the aliases.

Reading never fails on a malformed row: numbers coerce to ``0``, strings to
``""`` or a documented default, booleans to ``False``.
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional

from .dates import DEFAULT_TIMEZONE, normalise_date, today
from .models import (
    DEFAULT_ACCOUNT_CATEGORY,
    DEFAULT_MACHINE_CATEGORY,
    SYSTEM_OPERATOR,
    UNNAMED_MATERIAL,
    Transaction,
    TransactionKind,
)

logger = logging.getLogger(__name__)

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "ID", "編號"),
    "date": ("date", "日期", "單據日期"),
    "kind": ("type", "類別", "紀錄類別"),
    "material_name": ("materialName", "料件名稱", "維修零件/主體"),
    "material_number": ("materialNumber", "料件編號", "料件編號(PN)"),
    "machine_number": ("機台編號", "machineNumber", "機台 ID"),
    "quantity": ("quantity", "數量"),
    "unit_price": ("unitPrice", "單價", "維修單價", "費用"),
    "total": ("total", "總額", "維修總額", "小計", "結算總額"),
    "note": ("note", "備註"),
    "machine_category": ("機台種類", "machineCategory"),
    "operator": ("操作人員", "operator"),
    "account_category": ("帳目類別", "accountCategory"),
    "is_received": ("是否收貨", "isReceived"),
    "sn": ("sn", "序號", "設備序號(SN)"),
    "fault_reason": ("故障原因", "faultReason"),
    "is_scrapped": ("是否報廢", "isScrapped"),
    "sent_date": ("送修日期", "sentDate"),
    "repair_date": ("完修日期", "repairDate"),
    "install_date": ("上機日期", "installDate"),
}

COMMON_FIELDS: tuple[str, ...] = (
    "id",
    "date",
    "kind",
    "material_name",
    "material_number",
    "machine_number",
    "quantity",
    "unit_price",
    "total",
    "note",
    "machine_category",
    "operator",
)
ACCOUNT_FIELDS: tuple[str, ...] = ("account_category",)
INBOUND_FIELDS: tuple[str, ...] = ("is_received",)
REPAIR_FIELDS: tuple[str, ...] = (
    "sn",
    "fault_reason",
    "is_scrapped",
    "sent_date",
    "repair_date",
    "install_date",
)

NUMERIC_FIELDS = frozenset({"quantity", "unit_price", "total"})
BOOLEAN_FIELDS = frozenset({"is_received", "is_scrapped"})
DATE_FIELDS = frozenset({"date", "sent_date", "repair_date", "install_date"})

TRUTHY_STRINGS = frozenset({"true", "1", "yes", "y", "是", "已收貨"})


def fields_for_kind(kind: TransactionKind) -> tuple[str, ...]:
    """Fields that belong to ``kind``, in canonical column order."""

    if kind is TransactionKind.REPAIR:
        return COMMON_FIELDS + REPAIR_FIELDS
    if kind is TransactionKind.INBOUND:
        return COMMON_FIELDS + ACCOUNT_FIELDS + INBOUND_FIELDS
    return COMMON_FIELDS + ACCOUNT_FIELDS


def resolve_field(raw: Mapping[str, Any], field_name: str) -> Any:
    """Return the first non-null value among the aliases of ``field_name``."""

    for key in FIELD_ALIASES[field_name]:
        value = raw.get(key)
        if value is not None:
            return value
    return None


# ---------------------------------------------------------------------------
# Inbound (fetch-all)
# ---------------------------------------------------------------------------

def from_wire(
    raw: Mapping[str, Any],
    position: int,
    timezone: str = DEFAULT_TIMEZONE,
    fallback_date: Optional[str] = None,
) -> Transaction:
    """Build a :class:`Transaction` from one raw record.

    ``position`` is the 1-based index of the row in the response and names
    rows that arrive without an id.
    """

    kind = TransactionKind.parse(resolve_field(raw, "kind")) or TransactionKind.INBOUND
    owned = set(fields_for_kind(kind))

    record_id = _clean_string(resolve_field(raw, "id")) or f"row-{position}"
    record_date = normalise_date(resolve_field(raw, "date"), timezone) or fallback_date or today(timezone)

    tx = Transaction(
        id=record_id,
        date=record_date,
        kind=kind,
        material_name=_clean_string(resolve_field(raw, "material_name")) or UNNAMED_MATERIAL,
        material_number=_clean_string(resolve_field(raw, "material_number")),
        machine_category=_clean_string(resolve_field(raw, "machine_category")) or DEFAULT_MACHINE_CATEGORY,
        machine_number=_clean_string(resolve_field(raw, "machine_number")),
        quantity=int(_parse_number(resolve_field(raw, "quantity"))),
        unit_price=_parse_number(resolve_field(raw, "unit_price")),
        total=_parse_number(resolve_field(raw, "total")),
        note=_clean_string(resolve_field(raw, "note")),
        operator=_clean_string(resolve_field(raw, "operator")) or SYSTEM_OPERATOR,
    )
    if "account_category" in owned:
        tx.account_category = _clean_string(resolve_field(raw, "account_category")) or DEFAULT_ACCOUNT_CATEGORY
    if "is_received" in owned:
        tx.is_received = parse_flag(resolve_field(raw, "is_received"))
    if kind is TransactionKind.REPAIR:
        tx.sn = _clean_string(resolve_field(raw, "sn"))
        tx.fault_reason = _clean_string(resolve_field(raw, "fault_reason"))
        tx.is_scrapped = parse_flag(resolve_field(raw, "is_scrapped"))
        tx.sent_date = normalise_date(resolve_field(raw, "sent_date"), timezone)
        tx.repair_date = normalise_date(resolve_field(raw, "repair_date"), timezone)
        tx.install_date = normalise_date(resolve_field(raw, "install_date"), timezone)
    return tx


def records_from_wire(
    payload: Any,
    timezone: str = DEFAULT_TIMEZONE,
) -> list[Transaction]:
    """Convert a fetch-all response body; anything but a list yields ``[]``."""

    if not isinstance(payload, list):
        logger.warning("Fetch-all returned %s instead of a list", type(payload).__name__)
        return []
    fallback = today(timezone)
    records: list[Transaction] = []
    for index, raw in enumerate(payload, start=1):
        if not isinstance(raw, Mapping):
            logger.warning("Skipping non-object row %d in fetch-all response", index)
            continue
        records.append(from_wire(raw, index, timezone, fallback))
    return records


# ---------------------------------------------------------------------------
# Outbound (insert/update/delete/login)
# ---------------------------------------------------------------------------

def to_wire(tx: Transaction, timezone: str = DEFAULT_TIMEZONE) -> dict[str, Any]:
    """Field map for ``tx`` keyed by canonical header, limited to its kind's fields."""

    data: dict[str, Any] = {}
    for name in fields_for_kind(tx.kind):
        header = FIELD_ALIASES[name][0]
        if name == "kind":
            data[header] = tx.kind.value
            continue
        value = getattr(tx, name)
        if name in DATE_FIELDS:
            value = normalise_date(value, timezone)
        elif name == "quantity":
            value = int(value or 0)
        elif name in NUMERIC_FIELDS:
            value = float(value or 0)
        elif name in BOOLEAN_FIELDS:
            value = bool(value)
        else:
            value = str(value or "").strip()
        data[header] = value
    if not data[FIELD_ALIASES["operator"][0]]:
        data[FIELD_ALIASES["operator"][0]] = SYSTEM_OPERATOR
    return data


def build_upsert_payload(tx: Transaction, action: str, timezone: str = DEFAULT_TIMEZONE) -> dict[str, Any]:
    return {
        "action": action,
        "id": tx.id.strip(),
        "type": tx.kind.value,
        "data": to_wire(tx, timezone),
    }


def build_delete_payload(record_id: str, kind: Optional[TransactionKind]) -> dict[str, Any]:
    # The macro opens the sheet named by "type" before scanning every sheet for
    # the id, so an unknown kind still has to name a real partition.
    return {
        "action": "delete",
        "id": str(record_id).strip(),
        "type": (kind or TransactionKind.INBOUND).value,
        "data": {},
    }


def build_login_payload(username: str, password: str) -> dict[str, Any]:
    return {"action": "login", "data": {"username": username, "password": password}}


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------

def parse_flag(value: object) -> bool:
    """Normalise the spreadsheet's boolean encodings to a strict ``bool``."""

    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY_STRINGS


def _clean_string(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_number(value: object) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        stringified = str(value).strip().replace(",", "").replace(" ", "")
        if not stringified:
            return 0.0
        try:
            number = float(Decimal(stringified))
        except (InvalidOperation, ValueError):
            logger.debug("Coercing non-numeric value %r to 0", value)
            return 0.0
    if number != number or number in (float("inf"), float("-inf")) or number < 0:
        return 0.0
    return number


__all__ = [
    "FIELD_ALIASES",
    "build_delete_payload",
    "build_login_payload",
    "build_upsert_payload",
    "fields_for_kind",
    "from_wire",
    "parse_flag",
    "records_from_wire",
    "resolve_field",
    "to_wire",
]
