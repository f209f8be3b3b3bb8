"""Side-by-side comparison of the proposals received for a quotation.

Two purchase strategies are contrasted for the client:

* best per item: every item goes to whoever offers the lowest positive unit
  price, possibly splitting the purchase across several suppliers;
* best single supplier: one supplier that quotes every item, chosen by
  merchandise total plus freight.

Proposals are evaluated in the order they are given. The quotation store
returns them by proposal id, so when two suppliers tie on an item the one who
submitted first wins it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from mercado_obras.domain.entities import Proposal, ProposalItem, Quotation, QuotationItem, line_total, money


OFFER_STATE_NO_OFFER = "no_offer"
OFFER_STATE_BEST = "best"
OFFER_STATE_TIED = "tied"


@dataclass(frozen=True)
class SavingsAnalysis:
    best_per_item_total: float
    best_single_supplier_id: int | None
    best_single_supplier_merchandise_total: float | None
    best_single_supplier_freight: float | None
    delta: float | None
    percent_savings: float | None
    suppliers_in_best_per_item: Tuple[int, ...] = ()
    items_without_offer: Tuple[int, ...] = ()

    @property
    def requires_split(self) -> bool:
        return len(self.suppliers_in_best_per_item) > 1

    def to_payload(self) -> dict:
        return {
            "best_per_item_total": self.best_per_item_total,
            "best_single_supplier_id": self.best_single_supplier_id,
            "best_single_supplier_merchandise_total": self.best_single_supplier_merchandise_total,
            "best_single_supplier_freight": self.best_single_supplier_freight,
            "delta": self.delta,
            "percent_savings": self.percent_savings,
            "suppliers_in_best_per_item": list(self.suppliers_in_best_per_item),
            "requires_split": self.requires_split,
            "items_without_offer": list(self.items_without_offer),
        }


class ComparisonEngine:
    def __init__(self, quotation: Quotation, proposals: Sequence[Proposal]) -> None:
        self.quotation = quotation
        self.proposals: Tuple[Proposal, ...] = tuple(
            proposal for proposal in proposals if proposal.quotation_id == quotation.id
        )
        self._items: Dict[int, QuotationItem] = {item.id: item for item in quotation.items}

    def _best_offers(self, item_id: int) -> List[Tuple[Proposal, ProposalItem]]:
        """All offers sharing the lowest positive price, in proposal order."""
        best_price: float | None = None
        best: List[Tuple[Proposal, ProposalItem]] = []
        for proposal in self.proposals:
            offer = proposal.offer_for(item_id)
            if offer is None:
                continue
            if best_price is None or offer.unit_price < best_price:
                best_price = offer.unit_price
                best = [(proposal, offer)]
            elif offer.unit_price == best_price:
                best.append((proposal, offer))
        return best

    def best_supplier_for_item(self, item_id: int) -> int | None:
        best = self._best_offers(item_id)
        if not best:
            return None
        return best[0][0].supplier_id

    def select_best_per_item(self) -> Dict[int, int]:
        selection: Dict[int, int] = {}
        for item in self.quotation.items:
            supplier_id = self.best_supplier_for_item(item.id)
            if supplier_id is not None:
                selection[item.id] = supplier_id
        return selection

    def covers_all_items(self, proposal: Proposal) -> bool:
        if not self._items:
            return False
        return all(proposal.offer_for(item_id) is not None for item_id in self._items)

    def merchandise_total(self, proposal: Proposal) -> float:
        total = 0.0
        for item in self.quotation.items:
            offer = proposal.offer_for(item.id)
            if offer is not None:
                total += line_total(offer.unit_price, item.quantity)
        return money(total)

    def _best_single_proposal(self) -> Proposal | None:
        candidates = [proposal for proposal in self.proposals if self.covers_all_items(proposal)]
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda proposal: (money(self.merchandise_total(proposal) + proposal.freight), proposal.supplier_id),
        )

    def select_best_single_supplier_with_freight(self) -> int | None:
        proposal = self._best_single_proposal()
        return proposal.supplier_id if proposal else None

    def best_per_item_total(self) -> float:
        total = 0.0
        for item in self.quotation.items:
            best = self._best_offers(item.id)
            if best:
                total += line_total(best[0][1].unit_price, item.quantity)
        return money(total)

    def items_without_offer(self) -> Tuple[int, ...]:
        return tuple(item.id for item in self.quotation.items if not self._best_offers(item.id))

    def savings_analysis(self) -> SavingsAnalysis:
        per_item = self.select_best_per_item()
        per_item_total = self.best_per_item_total()
        suppliers_involved = tuple(dict.fromkeys(per_item.values()))

        single = self._best_single_proposal()
        if single is None:
            return SavingsAnalysis(
                best_per_item_total=per_item_total,
                best_single_supplier_id=None,
                best_single_supplier_merchandise_total=None,
                best_single_supplier_freight=None,
                delta=None,
                percent_savings=None,
                suppliers_in_best_per_item=suppliers_involved,
                items_without_offer=self.items_without_offer(),
            )

        single_total = self.merchandise_total(single)
        delta = money(single_total - per_item_total)
        percent = round(delta / single_total * 100, 2) if single_total > 0 else 0.0
        return SavingsAnalysis(
            best_per_item_total=per_item_total,
            best_single_supplier_id=single.supplier_id,
            best_single_supplier_merchandise_total=single_total,
            best_single_supplier_freight=money(single.freight),
            delta=delta,
            percent_savings=percent,
            suppliers_in_best_per_item=suppliers_involved,
            items_without_offer=self.items_without_offer(),
        )

    def matrix(self) -> dict:
        """Client-facing comparison grid: one row per item, one cell per proposal."""
        rows = []
        for item in self.quotation.items:
            best = self._best_offers(item.id)
            best_proposal_ids = {proposal.id for proposal, _ in best}
            if not best:
                state = OFFER_STATE_NO_OFFER
            elif len(best) > 1:
                state = OFFER_STATE_TIED
            else:
                state = OFFER_STATE_BEST

            cells = []
            for proposal in self.proposals:
                offer = proposal.offer_for(item.id)
                if offer is None:
                    cells.append(None)
                    continue
                cells.append(
                    {
                        "supplier_id": proposal.supplier_id,
                        "proposal_id": proposal.id,
                        "unit_price": money(offer.unit_price),
                        "subtotal": money(offer.unit_price * item.quantity),
                        "availability": offer.availability,
                        "lead_time_days": offer.lead_time_days,
                        "is_best": proposal.id in best_proposal_ids,
                    }
                )

            rows.append(
                {
                    "item_id": item.id,
                    "name": item.name,
                    "quantity": item.quantity,
                    "unit": item.unit,
                    "group_name": item.group_name,
                    "offer_state": state,
                    "best_supplier_id": best[0][0].supplier_id if best else None,
                    "best_unit_price": money(best[0][1].unit_price) if best else None,
                    "offers": cells,
                }
            )

        suppliers = []
        for proposal in self.proposals:
            merchandise = self.merchandise_total(proposal)
            suppliers.append(
                {
                    "supplier_id": proposal.supplier_id,
                    "supplier_name": proposal.supplier_name,
                    "proposal_id": proposal.id,
                    "status": proposal.status,
                    "payment_terms": proposal.payment_terms,
                    "valid_until": proposal.valid_until,
                    "merchandise_total": merchandise,
                    "freight": money(proposal.freight),
                    "total_with_freight": money(merchandise + proposal.freight),
                    "covers_all_items": self.covers_all_items(proposal),
                    "items_offered": sum(1 for item_id in self._items if proposal.offer_for(item_id) is not None),
                }
            )

        return {
            "quotation_id": self.quotation.id,
            "items": rows,
            "suppliers": suppliers,
            "best_per_item": [
                {"item_id": item_id, "supplier_id": supplier_id}
                for item_id, supplier_id in self.select_best_per_item().items()
            ],
            "best_single_supplier_id": self.select_best_single_supplier_with_freight(),
            "savings": self.savings_analysis().to_payload(),
        }


def compare(quotation: Quotation, proposals: Iterable[Proposal]) -> ComparisonEngine:
    return ComparisonEngine(quotation, sorted(proposals, key=lambda proposal: proposal.id))
