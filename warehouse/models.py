"""Domain models used by the warehouse backend.

The classes defined here are lightweight data containers that know nothing
about persistence or transport concerns.  Field names are the canonical,
internal ones; legacy spreadsheet headers only exist inside
:mod:`warehouse.sync_adapter`.
"""
from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Literal, Optional

ActiveView = Literal["dashboard", "records", "repairs", "batch"]
StatusFilter = Literal["all", "pending_inbound", "scrapped", "repairing"]
CategoryFilter = Literal["all", "INBOUND", "USAGE", "CONSTRUCTION"]
ViewScope = Literal["monthly", "all"]
RankingMode = Literal["standard", "custom"]

ACTIVE_VIEWS: tuple[str, ...] = ("dashboard", "records", "repairs", "batch")
STATUS_FILTERS: tuple[str, ...] = ("all", "pending_inbound", "scrapped", "repairing")
CATEGORY_FILTERS: tuple[str, ...] = ("all", "INBOUND", "USAGE", "CONSTRUCTION")
VIEW_SCOPES: tuple[str, ...] = ("monthly", "all")

SYSTEM_OPERATOR = "系統"
UNNAMED_MATERIAL = "未命名"
UNCLASSIFIED_CATEGORY = "未分類"
DEFAULT_MACHINE_CATEGORY = "BA"
DEFAULT_ACCOUNT_CATEGORY = "A"
SCRAP_MARKER = "報廢"


class TransactionKind(str, enum.Enum):
    """Closed set of inventory events.

    The value is the label used by the remote spreadsheet, both as the record
    discriminator and as the name of the sheet partition holding the row.
    """

    INBOUND = "進貨"
    USAGE = "用料"
    CONSTRUCTION = "建置"
    REPAIR = "維修"

    @property
    def is_quantity_priced(self) -> bool:
        return self is not TransactionKind.REPAIR

    @classmethod
    def parse(cls, value: object) -> Optional["TransactionKind"]:
        """Resolve a kind from its label or its enum name; ``None`` if unknown."""

        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        if not text:
            return None
        for kind in cls:
            if text == kind.value or text.upper() == kind.name:
                return kind
        return None


@dataclass(slots=True)
class Transaction:
    """One inventory event.

    Only the attribute group of the record's :attr:`kind` is meaningful:
    ``is_received`` for INBOUND, ``account_category`` for the three
    quantity-priced kinds, and the repair tracking fields (``sn``,
    ``fault_reason``, ``is_scrapped`` and the date triplet) for REPAIR.
    """

    id: str = ""
    date: str = ""
    kind: TransactionKind = TransactionKind.USAGE
    material_name: str = ""
    material_number: str = ""
    machine_category: str = ""
    machine_number: str = ""
    quantity: int = 0
    unit_price: float = 0.0
    total: float = 0.0
    note: str = ""
    operator: str = ""
    account_category: str = ""
    is_received: bool = False
    sn: str = ""
    fault_reason: str = ""
    is_scrapped: bool = False
    sent_date: str = ""
    repair_date: str = ""
    install_date: str = ""

    @property
    def is_repairing(self) -> bool:
        """A repair ticket with no completion date that was not scrapped."""

        return self.kind is TransactionKind.REPAIR and not self.repair_date and not self.is_scrapped

    @property
    def is_pending_inbound(self) -> bool:
        return self.kind is TransactionKind.INBOUND and not self.is_received

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["kind"] = self.kind.name
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> "Transaction":
        """Rebuild a record from :meth:`to_dict` output (the local cache format)."""

        data = {name: payload[name] for name in cls.__dataclass_fields__ if name in payload}
        data["kind"] = TransactionKind.parse(payload.get("kind")) or TransactionKind.INBOUND
        return cls(**data)


@dataclass(frozen=True, slots=True)
class FilterState:
    """Transient, UI-scoped selection driving the record views."""

    active_view: ActiveView = "dashboard"
    status_filter: StatusFilter = "all"
    category_filter: CategoryFilter = "all"
    start_date: str = ""
    end_date: str = ""
    keyword: str = ""
    view_scope: ViewScope = "monthly"
    current_page: int = 1

    def to_dict(self) -> dict[str, object]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> "FilterState":
        """Build a state from persisted settings, ignoring unknown or invalid values."""

        defaults = cls()

        def choice(name: str, allowed: tuple[str, ...]) -> str:
            value = str(payload.get(name, getattr(defaults, name)))
            return value if value in allowed else getattr(defaults, name)

        try:
            page = max(1, int(payload.get("current_page", 1)))
        except (TypeError, ValueError):
            page = 1
        return cls(
            active_view=choice("active_view", ACTIVE_VIEWS),  # type: ignore[arg-type]
            status_filter=choice("status_filter", STATUS_FILTERS),  # type: ignore[arg-type]
            category_filter=choice("category_filter", CATEGORY_FILTERS),  # type: ignore[arg-type]
            start_date=str(payload.get("start_date") or ""),
            end_date=str(payload.get("end_date") or ""),
            keyword=str(payload.get("keyword") or ""),
            view_scope=choice("view_scope", VIEW_SCOPES),  # type: ignore[arg-type]
            current_page=page,
        )


class KindScope(str, enum.Enum):
    """Kind filter applied by the aggregation functions."""

    ALL = "ALL"
    INBOUND = "INBOUND"
    REPAIR = "REPAIR"

    def matches(self, kind: TransactionKind) -> bool:
        if self is KindScope.ALL:
            return True
        return kind.name == self.value


@dataclass(frozen=True, slots=True)
class AggregationScope:
    """Window used by the aggregation engine.

    ``year`` and ``month`` accept ``"all"``; ``month`` is zero-padded
    (``"03"``).  ``mode="custom"`` replaces the year/month window with the
    inclusive ``start_date``/``end_date`` range.  ``limit=-1`` disables
    truncation of rankings.
    """

    year: str = "all"
    month: str = "all"
    mode: RankingMode = "standard"
    start_date: str = ""
    end_date: str = ""
    limit: int = 5
    kinds: KindScope = KindScope.ALL


@dataclass(slots=True)
class MonthBucket:
    month: int
    label: str
    amount: float = 0.0


@dataclass(slots=True)
class CategoryShare:
    name: str
    value: float
    percent: float


@dataclass(slots=True)
class RepairRank:
    name: str
    count: int


@dataclass(slots=True)
class DashboardSummary:
    """Headline figures for the selected year."""

    year: str
    year_amount: float = 0.0
    year_count: int = 0
    month_amount: float = 0.0
    month_count: int = 0
    is_current_year: bool = False


@dataclass(slots=True)
class MutationOutcome:
    """Caller-visible result of a write."""

    success: bool
    action: Literal["insert", "update", "delete", "batch"]
    record_id: str = ""
    rolled_back: bool = False
    reason: Optional[str] = None


@dataclass(slots=True)
class BatchOutcome:
    success: bool
    outcomes: list[MutationOutcome] = field(default_factory=list)
    skipped: int = 0

    @property
    def saved(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)


@dataclass(slots=True)
class LoginResult:
    authorized: bool
    message: Optional[str] = None
    network_error: bool = False


__all__ = [
    "AggregationScope",
    "BatchOutcome",
    "CategoryShare",
    "DashboardSummary",
    "FilterState",
    "KindScope",
    "LoginResult",
    "MonthBucket",
    "MutationOutcome",
    "RepairRank",
    "Transaction",
    "TransactionKind",
]
