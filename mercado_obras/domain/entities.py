from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping, Tuple


QUOTATION_STATUSES = ("draft", "sent", "under_review", "answered", "closed", "cancelled")
QUOTATION_OPEN_STATUSES = frozenset({"sent", "under_review", "answered"})
PROPOSAL_STATUSES = ("pending", "accepted", "rejected", "expired")
AVAILABILITY_VALUES = ("available", "on_request", "unavailable")

UNAVAILABLE_LEAD_TIME = -1


CENT = Decimal("0.01")


def money(value: Any) -> float:
    """Rounds to cents, half up, on the decimal text of the value."""
    return float(Decimal(str(float(value or 0))).quantize(CENT, rounding=ROUND_HALF_UP))


def line_total(unit_price: Any, quantity: Any) -> float:
    return money(money(unit_price) * float(quantity or 0))


def normalize_lead_time(availability: str, lead_time_days: Any = None) -> int:
    """Lead time follows availability: available is immediate, unavailable is the -1 sentinel."""
    if availability == "available":
        return 0
    if availability == "unavailable":
        return UNAVAILABLE_LEAD_TIME
    days = int(lead_time_days or 0)
    if days <= 0:
        raise ValueError("on_request items need a positive lead time")
    return days


@dataclass(frozen=True)
class QuotationItem:
    id: int
    quotation_id: int
    name: str
    quantity: float
    unit: str = "un"
    group_name: str = ""
    line_no: int = 0
    material_id: int | None = None
    note: str | None = None
    phase_name: str | None = None
    service_name: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "QuotationItem":
        return cls(
            id=int(row["id"]),
            quotation_id=int(row["quotation_id"]),
            name=str(row["name"]),
            quantity=float(row["quantity"]),
            unit=str(row.get("unit") or "un"),
            group_name=str(row.get("group_name") or ""),
            line_no=int(row.get("line_no") or 0),
            material_id=row.get("material_id"),
            note=row.get("note"),
            phase_name=row.get("phase_name"),
            service_name=row.get("service_name"),
        )


@dataclass(frozen=True)
class Quotation:
    id: int
    client_id: int
    status: str
    items: Tuple[QuotationItem, ...] = ()
    number: int | None = None
    site_id: int | None = None
    valid_until: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status in QUOTATION_OPEN_STATUSES

    @classmethod
    def from_row(cls, row: Mapping[str, Any], items: Iterable[Mapping[str, Any]] = ()) -> "Quotation":
        return cls(
            id=int(row["id"]),
            client_id=int(row["client_id"]),
            status=str(row["status"]),
            items=tuple(QuotationItem.from_row(item) for item in items),
            number=row.get("number"),
            site_id=row.get("site_id"),
            valid_until=_as_text(row.get("valid_until")),
        )


@dataclass(frozen=True)
class ProposalItem:
    quotation_item_id: int
    unit_price: float
    quantity: float
    availability: str = "available"
    lead_time_days: int = 0
    id: int | None = None
    note: str | None = None

    @property
    def subtotal(self) -> float:
        return line_total(self.unit_price, self.quantity)

    @property
    def counts_towards_total(self) -> bool:
        return self.availability != "unavailable"

    @property
    def is_offer(self) -> bool:
        """A zero price or an unavailable item is "no offer"."""
        return self.availability != "unavailable" and self.unit_price > 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ProposalItem":
        return cls(
            id=row.get("id"),
            quotation_item_id=int(row["quotation_item_id"]),
            unit_price=float(row.get("unit_price") or 0),
            quantity=float(row.get("quantity") or 0),
            availability=str(row.get("availability") or "available"),
            lead_time_days=int(row.get("lead_time_days") or 0),
            note=row.get("note"),
        )


@dataclass(frozen=True)
class Proposal:
    id: int
    quotation_id: int
    supplier_id: int
    items: Tuple[ProposalItem, ...] = ()
    freight: float = 0.0
    status: str = "pending"
    supplier_name: str = ""
    payment_terms: str | None = None
    valid_until: str | None = None
    _items_by_quotation_item: dict = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "_items_by_quotation_item",
            {item.quotation_item_id: item for item in self.items},
        )

    def item_for(self, quotation_item_id: int) -> ProposalItem | None:
        return self._items_by_quotation_item.get(quotation_item_id)

    def offer_for(self, quotation_item_id: int) -> ProposalItem | None:
        item = self.item_for(quotation_item_id)
        if item is None or not item.is_offer:
            return None
        return item

    @property
    def total_value(self) -> float:
        return proposal_total(self.items)

    @classmethod
    def from_row(cls, row: Mapping[str, Any], items: Iterable[Mapping[str, Any]] = ()) -> "Proposal":
        return cls(
            id=int(row["id"]),
            quotation_id=int(row["quotation_id"]),
            supplier_id=int(row["supplier_id"]),
            items=tuple(ProposalItem.from_row(item) for item in items),
            freight=float(row.get("freight") or 0),
            status=str(row.get("status") or "pending"),
            supplier_name=str(row.get("supplier_name") or ""),
            payment_terms=row.get("payment_terms"),
            valid_until=_as_text(row.get("valid_until")),
        )


def proposal_total(items: Iterable[ProposalItem]) -> float:
    return money(sum(item.subtotal for item in items if item.counts_towards_total))


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
