from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping

from mercado_obras.core import EventBus, ProposalSubmitted, QuotationCreated, get_event_bus
from mercado_obras.domain.contracts import Actor, ProposalSubmitInput, QuotationCreateInput, ServiceOutput
from mercado_obras.domain.entities import (
    AVAILABILITY_VALUES,
    QUOTATION_OPEN_STATUSES,
    Proposal,
    ProposalItem,
    Quotation,
    money,
    normalize_lead_time,
    proposal_total,
)
from mercado_obras.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from mercado_obras.infrastructure.repositories import (
    CatalogRepository,
    ProposalRepository,
    QuotationRepository,
    SiteRepository,
    StatusEventRepository,
    SupplierRepository,
    UserRepository,
)
from mercado_obras.integrations.mailer import EmailSender
from mercado_obras.integrations.notifications import Notifier
from mercado_obras.procurement.comparison import compare
from mercado_obras.procurement.flow_policy import (
    action_allowed,
    client_status_badge,
    derive_unified_status,
    flow_meta,
)
from mercado_obras.ui_strings import role_label, status_label


logger = logging.getLogger("mercado_obras")

SUPPLIER_VISIBLE_STATUSES = ("sent", "under_review", "answered", "closed")


def supplier_link(quotation_id: int) -> str:
    return f"/dashboard/fornecedor?tab=vendas-cotacoes&cotacao={quotation_id}"


def client_link(quotation_id: int) -> str:
    return f"/dashboard/cliente?tab=cotacoes&cotacao={quotation_id}"


def supplier_covers(coverage: Mapping[str, Any], site: Mapping[str, Any] | None, items: Iterable[Mapping[str, Any]]) -> bool:
    """True when the supplier sells at least one item and serves the site's region.

    An item matches by catalog material or by material group (case-insensitive).
    A supplier without configured regions serves everywhere.
    """
    groups = coverage.get("groups") or set()
    material_ids = coverage.get("material_ids") or set()
    sells_any = False
    for item in items:
        material_id = item.get("material_id")
        if material_id is not None and int(material_id) in material_ids:
            sells_any = True
            break
        if str(item.get("group_name") or "").strip().lower() in groups:
            sells_any = True
            break
    if not sells_any:
        return False

    regions = {str(region).strip().lower() for region in coverage.get("regions") or [] if str(region).strip()}
    if not regions:
        return True
    site = site or {}
    locations = {
        str(site.get("city") or site.get("site_city") or "").strip().lower(),
        str(site.get("state") or site.get("site_state") or "").strip().lower(),
    }
    locations.discard("")
    return bool(locations & regions)


class QuotationService:
    """Quotation lifecycle and proposal collection."""

    def __init__(
        self,
        quotations: QuotationRepository | None = None,
        proposals: ProposalRepository | None = None,
        suppliers: SupplierRepository | None = None,
        sites: SiteRepository | None = None,
        catalog: CatalogRepository | None = None,
        users: UserRepository | None = None,
        status_events: StatusEventRepository | None = None,
        notifier: Notifier | None = None,
        email_sender: EmailSender | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.quotations = quotations or QuotationRepository()
        self.proposals = proposals or ProposalRepository()
        self.suppliers = suppliers or SupplierRepository()
        self.sites = sites or SiteRepository()
        self.catalog = catalog or CatalogRepository()
        self.users = users or UserRepository()
        self.status_events = status_events or StatusEventRepository()
        self.notifier = notifier or Notifier()
        self.email_sender = email_sender or EmailSender()
        self.event_bus = event_bus or get_event_bus()

    @staticmethod
    def _as_float(value) -> float | None:
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _as_int(value) -> int | None:
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            return None
        return parsed if parsed > 0 else None

    def _require_quotation(self, db, quotation_id: int) -> dict:
        quotation = self.quotations.get_by_id(db, quotation_id)
        if not quotation:
            raise NotFoundError("quotation_not_found", payload={"quotation_id": quotation_id})
        return quotation

    def _require_owner(self, db, quotation_id: int, client_id: int) -> dict:
        quotation = self._require_quotation(db, quotation_id)
        if int(quotation["client_id"]) != int(client_id):
            raise ForbiddenError(payload={"quotation_id": quotation_id})
        return quotation

    def load_entities(self, db, quotation_row: Mapping[str, Any]) -> tuple[Quotation, List[Proposal]]:
        quotation_id = int(quotation_row["id"])
        quotation = Quotation.from_row(quotation_row, self.quotations.list_items(db, quotation_id))
        proposal_rows = self.proposals.list_for_quotation(db, quotation_id)
        items_by_proposal = self.proposals.list_items(db, [row["id"] for row in proposal_rows])
        proposals = [Proposal.from_row(row, items_by_proposal.get(int(row["id"]), [])) for row in proposal_rows]
        return quotation, proposals

    # ------------------------------------------------------------------
    # client side
    # ------------------------------------------------------------------

    def _validated_items(self, db, raw_items: Any) -> List[Dict[str, Any]]:
        if not isinstance(raw_items, list) or not raw_items:
            raise ValidationError("items_required")

        groups = {name.strip().lower(): name for name in self.catalog.list_group_names(db)}
        items: List[Dict[str, Any]] = []
        for index, raw in enumerate(raw_items):
            if not isinstance(raw, dict):
                raise ValidationError("items_required", payload={"item_index": index})
            name = str(raw.get("name") or "").strip()
            if not name:
                raise ValidationError("item_name_required", payload={"item_index": index})
            quantity = self._as_float(raw.get("quantity"))
            if quantity is None or quantity <= 0:
                raise ValidationError("quantity_invalid", payload={"item_index": index})
            group_key = str(raw.get("group_name") or raw.get("group") or "").strip().lower()
            if group_key not in groups:
                raise ValidationError("group_invalid", payload={"item_index": index, "group": raw.get("group_name")})
            items.append(
                {
                    "line_no": index + 1,
                    "name": name,
                    "quantity": quantity,
                    "unit": str(raw.get("unit") or "un").strip() or "un",
                    "group_name": groups[group_key],
                    "material_id": self._as_int(raw.get("material_id")),
                    "note": (str(raw.get("note") or "").strip() or None),
                    "phase_name": (str(raw.get("phase_name") or "").strip() or None),
                    "service_name": (str(raw.get("service_name") or "").strip() or None),
                }
            )
        return items

    def create_quotation(self, db, create_input: QuotationCreateInput) -> ServiceOutput:
        site = self.sites.get_by_id(db, create_input.site_id)
        if not site:
            raise NotFoundError("site_not_found", payload={"site_id": create_input.site_id})
        if int(site["client_id"]) != int(create_input.client_id):
            raise ForbiddenError(payload={"site_id": create_input.site_id})

        items = self._validated_items(db, create_input.items)
        status = "sent" if create_input.send else "draft"

        with db.transaction():
            quotation_id = self.quotations.create(
                db,
                client_id=create_input.client_id,
                site_id=create_input.site_id,
                status=status,
                notes=create_input.notes,
                valid_until=create_input.valid_until,
            )
            for item in items:
                self.quotations.add_item(db, quotation_id=quotation_id, **item)
            self.status_events.add_event(
                db,
                entity="quotation",
                entity_id=quotation_id,
                from_status=None,
                to_status=status,
                reason="quotation_created",
                actor_id=create_input.client_id,
            )

        suppliers_notified = 0
        if status == "sent":
            suppliers_notified = self._notify_matching_suppliers(db, quotation_id, site, items)

        quotation = self.quotations.get_by_id(db, quotation_id) or {}
        self.event_bus.publish(
            QuotationCreated(
                actor_id=create_input.client_id,
                quotation_id=quotation_id,
                client_id=create_input.client_id,
                status=status,
                items_created=len(items),
                suppliers_notified=suppliers_notified,
            )
        )
        return ServiceOutput(
            payload={
                "id": quotation_id,
                "number": quotation.get("number"),
                "status": status,
                "items_created": len(items),
                "suppliers_notified": suppliers_notified,
            },
            status_code=201,
        )

    def send_quotation(self, db, *, quotation_id: int, client_id: int) -> ServiceOutput:
        quotation = self._require_owner(db, quotation_id, client_id)
        if not action_allowed("cotacao", quotation["status"], "send_quotation"):
            raise InvalidStateError(payload={"status": quotation["status"], "action": "send_quotation"})

        items = self.quotations.list_items(db, quotation_id)
        if not items:
            raise ValidationError("items_required")

        with db.transaction():
            if not self.quotations.transition(db, quotation_id, from_statuses=["draft"], to_status="sent"):
                raise ConflictError(payload={"quotation_id": quotation_id})
            self.status_events.add_event(
                db,
                entity="quotation",
                entity_id=quotation_id,
                from_status="draft",
                to_status="sent",
                reason="quotation_sent",
                actor_id=client_id,
            )

        site = self.sites.get_by_id(db, quotation["site_id"])
        suppliers_notified = self._notify_matching_suppliers(db, quotation_id, site, items)
        return ServiceOutput(
            payload={"id": quotation_id, "status": "sent", "suppliers_notified": suppliers_notified},
            status_code=200,
        )

    def update_draft_items(self, db, *, quotation_id: int, client_id: int, items: Any) -> ServiceOutput:
        """Replaces every item of a draft; sent quotations are frozen."""
        quotation = self._require_owner(db, quotation_id, client_id)
        if not action_allowed("cotacao", quotation["status"], "edit_quotation"):
            raise InvalidStateError(payload={"status": quotation["status"], "action": "edit_quotation"})

        validated = self._validated_items(db, items)
        with db.transaction():
            self.quotations.delete_items(db, quotation_id)
            for item in validated:
                self.quotations.add_item(db, quotation_id=quotation_id, **item)
        return ServiceOutput(
            payload={"id": quotation_id, "status": quotation["status"], "items_count": len(validated)},
            status_code=200,
        )

    def start_review(self, db, *, quotation_id: int, client_id: int) -> ServiceOutput:
        quotation = self._require_owner(db, quotation_id, client_id)
        current = quotation["status"]
        if current == "under_review":
            return ServiceOutput(payload={"id": quotation_id, "status": current}, status_code=200)
        if not action_allowed("cotacao", current, "start_review"):
            raise InvalidStateError(payload={"status": current, "action": "start_review"})

        if not self.quotations.transition(db, quotation_id, from_statuses=["answered"], to_status="under_review"):
            raise ConflictError(payload={"quotation_id": quotation_id})
        self.status_events.add_event(
            db,
            entity="quotation",
            entity_id=quotation_id,
            from_status=current,
            to_status="under_review",
            reason="client_started_review",
            actor_id=client_id,
        )
        return ServiceOutput(payload={"id": quotation_id, "status": "under_review"}, status_code=200)

    def cancel_quotation(self, db, *, quotation_id: int, client_id: int, reason: str | None = None) -> ServiceOutput:
        quotation = self._require_owner(db, quotation_id, client_id)
        current = quotation["status"]
        if not action_allowed("cotacao", current, "cancel_quotation"):
            raise InvalidStateError(payload={"status": current, "action": "cancel_quotation"})

        with db.transaction():
            changed = self.quotations.transition(
                db,
                quotation_id,
                from_statuses=["draft", *sorted(QUOTATION_OPEN_STATUSES)],
                to_status="cancelled",
                fields={"cancel_reason": (reason or "").strip() or None},
            )
            if not changed:
                raise ConflictError(payload={"quotation_id": quotation_id})
            self.status_events.add_event(
                db,
                entity="quotation",
                entity_id=quotation_id,
                from_status=current,
                to_status="cancelled",
                reason=(reason or "").strip() or "quotation_cancelled",
                actor_id=client_id,
            )

        for proposal in self.proposals.list_for_quotation(db, quotation_id):
            self.notifier.notify(
                db,
                recipient_id=proposal.get("supplier_user_id"),
                title="Cotacao cancelada",
                message=f"A cotacao #{quotation.get('number')} foi cancelada pelo cliente.",
                link=supplier_link(quotation_id),
            )
        return ServiceOutput(payload={"id": quotation_id, "status": "cancelled"}, status_code=200)

    def list_for_client(self, db, client_id: int) -> ServiceOutput:
        rows = self.quotations.list_for_client(db, client_id)
        for row in rows:
            row["status_label"] = client_status_badge(row.get("status"), int(row.get("proposal_count") or 0))
        return ServiceOutput(payload={"items": rows}, status_code=200)

    def list_proposals_for_client(self, db, *, quotation_id: int, requester_id: int) -> ServiceOutput:
        self._require_owner(db, quotation_id, requester_id)
        proposal_rows = self.proposals.list_for_quotation(db, quotation_id)
        items_by_proposal = self.proposals.list_items(db, [row["id"] for row in proposal_rows])
        proposals = []
        for row in proposal_rows:
            proposals.append(
                {
                    "id": row["id"],
                    "number": row.get("number"),
                    "supplier_id": row["supplier_id"],
                    "supplier_name": row.get("supplier_name"),
                    "status": row.get("status"),
                    "status_label": status_label("proposta", row.get("status")),
                    "total_value": money(row.get("total_value")),
                    "freight": money(row.get("freight")),
                    "payment_terms": row.get("payment_terms"),
                    "valid_until": row.get("valid_until"),
                    "notes": row.get("notes"),
                    "submitted_at": row.get("submitted_at"),
                    "items": items_by_proposal.get(int(row["id"]), []),
                }
            )
        return ServiceOutput(payload={"quotation_id": quotation_id, "items": proposals}, status_code=200)

    def comparison(self, db, *, quotation_id: int, requester_id: int) -> ServiceOutput:
        quotation_row = self._require_owner(db, quotation_id, requester_id)
        quotation, proposals = self.load_entities(db, quotation_row)
        matrix = compare(quotation, proposals).matrix()
        matrix["status"] = quotation.status
        matrix["number"] = quotation.number
        return ServiceOutput(payload=matrix, status_code=200)

    # ------------------------------------------------------------------
    # supplier side
    # ------------------------------------------------------------------

    def _require_supplier(self, db, supplier_id: int) -> dict:
        supplier = self.suppliers.get_by_id(db, supplier_id)
        if not supplier:
            raise NotFoundError("supplier_not_found", payload={"supplier_id": supplier_id})
        return supplier

    def submit_proposal(self, db, submit_input: ProposalSubmitInput) -> ServiceOutput:
        supplier = self._require_supplier(db, submit_input.supplier_id)
        if supplier.get("status") != "active":
            raise ForbiddenError("supplier_suspended")

        quotation = self.quotations.get_by_id(db, submit_input.quotation_id)
        if not quotation or not action_allowed("cotacao", quotation["status"], "submit_proposal"):
            raise NotFoundError("quotation_not_open", payload={"quotation_id": submit_input.quotation_id})

        quotation_items = {int(item["id"]): item for item in self.quotations.list_items(db, submit_input.quotation_id)}
        items = self._validated_proposal_items(submit_input.items, quotation_items)

        terms = submit_input.terms
        freight = self._as_float(terms.freight if terms.freight is not None else 0)
        if freight is None or freight < 0:
            raise ValidationError("price_invalid", payload={"field": "freight"})

        total_value = proposal_total(items)
        previous = self.proposals.get_for_supplier(db, submit_input.quotation_id, submit_input.supplier_id)
        quotation_status = quotation["status"]

        with db.transaction():
            proposal_id = self.proposals.upsert(
                db,
                quotation_id=submit_input.quotation_id,
                supplier_id=submit_input.supplier_id,
                total_value=total_value,
                freight=money(freight),
                payment_terms=terms.payment_terms,
                valid_until=terms.valid_until,
                notes=terms.notes,
            )
            self.proposals.replace_items(
                db,
                proposal_id,
                [
                    {
                        "quotation_item_id": item.quotation_item_id,
                        "unit_price": item.unit_price,
                        "quantity": item.quantity,
                        "subtotal": item.subtotal,
                        "availability": item.availability,
                        "lead_time_days": item.lead_time_days,
                        "note": item.note,
                    }
                    for item in items
                ],
            )
            if quotation_status == "sent":
                # A concurrent first proposal may already have moved it; both outcomes are fine.
                if self.quotations.transition(
                    db, submit_input.quotation_id, from_statuses=["sent"], to_status="answered"
                ):
                    self.status_events.add_event(
                        db,
                        entity="quotation",
                        entity_id=submit_input.quotation_id,
                        from_status="sent",
                        to_status="answered",
                        reason="first_proposal_received",
                        actor_id=supplier.get("user_id"),
                    )
            self.status_events.add_event(
                db,
                entity="proposal",
                entity_id=proposal_id,
                from_status=previous.get("status") if previous else None,
                to_status="pending",
                reason="proposal_updated" if previous else "proposal_submitted",
                actor_id=supplier.get("user_id"),
            )

        created = previous is None
        self.notifier.notify(
            db,
            recipient_id=quotation["client_id"],
            title="Nova proposta recebida" if created else "Proposta atualizada",
            message=f"A cotacao #{quotation.get('number')} recebeu uma proposta de {money(total_value):.2f}.",
            link=client_link(submit_input.quotation_id),
        )
        self.event_bus.publish(
            ProposalSubmitted(
                actor_id=supplier.get("user_id"),
                quotation_id=submit_input.quotation_id,
                proposal_id=proposal_id,
                supplier_id=submit_input.supplier_id,
                created=created,
                total_value=total_value,
            )
        )
        return ServiceOutput(
            payload={
                "id": proposal_id,
                "quotation_id": submit_input.quotation_id,
                "supplier_id": submit_input.supplier_id,
                "status": "pending",
                "total_value": total_value,
                "freight": money(freight),
                "items_count": len(items),
                "created": created,
            },
            status_code=201 if created else 200,
        )

    def _validated_proposal_items(
        self, raw_items: Any, quotation_items: Mapping[int, Mapping[str, Any]]
    ) -> List[ProposalItem]:
        if not isinstance(raw_items, list) or not raw_items:
            raise ValidationError("items_required")

        by_item: Dict[int, ProposalItem] = {}
        for index, raw in enumerate(raw_items):
            if not isinstance(raw, dict):
                raise ValidationError("items_required", payload={"item_index": index})
            quotation_item_id = self._as_int(raw.get("quotation_item_id"))
            if quotation_item_id is None or quotation_item_id not in quotation_items:
                raise ValidationError(
                    "quotation_items_not_found",
                    payload={"item_index": index, "quotation_item_id": raw.get("quotation_item_id")},
                )
            unit_price = self._as_float(raw.get("unit_price"))
            if unit_price is None or unit_price < 0:
                raise ValidationError("price_invalid", payload={"item_index": index})
            availability = str(raw.get("availability") or "available").strip().lower()
            if availability not in AVAILABILITY_VALUES:
                raise ValidationError("availability_invalid", payload={"item_index": index})
            try:
                lead_time_days = normalize_lead_time(availability, raw.get("lead_time_days"))
            except (TypeError, ValueError) as exc:
                raise ValidationError("lead_time_invalid", payload={"item_index": index}) from exc

            by_item[quotation_item_id] = ProposalItem(
                quotation_item_id=quotation_item_id,
                unit_price=money(unit_price),
                quantity=float(quotation_items[quotation_item_id]["quantity"]),
                availability=availability,
                lead_time_days=lead_time_days,
                note=(str(raw.get("note") or "").strip() or None),
            )
        return list(by_item.values())

    def _visible_to_supplier(self, coverage, quotation_row, items, proposal) -> bool:
        status = quotation_row.get("status")
        if status == "closed":
            return bool(proposal) and proposal.get("status") == "accepted"
        if status not in QUOTATION_OPEN_STATUSES:
            return False
        if proposal:
            return True
        return supplier_covers(coverage, quotation_row, items)

    def _client_label(self, db, client_id: int, unified_status: str) -> str:
        if unified_status == "won":
            client = self.users.get_by_id(db, client_id) or {}
            return str(client.get("company_name") or client.get("name") or role_label("client"))
        return role_label("client")

    def list_quotations_for_supplier(self, db, supplier_id: int) -> ServiceOutput:
        supplier = self._require_supplier(db, supplier_id)
        if supplier.get("status") != "active":
            return ServiceOutput(payload={"items": []}, status_code=200)

        coverage = self.suppliers.coverage(db, supplier_id)
        rows = self.quotations.list_by_statuses(db, SUPPLIER_VISIBLE_STATUSES)
        items_by_quotation = self.quotations.list_items_for_quotations(db, [row["id"] for row in rows])
        proposals_by_quotation = {
            int(proposal["quotation_id"]): proposal for proposal in self.proposals.list_for_supplier(db, supplier_id)
        }

        entries = []
        for row in rows:
            quotation_id = int(row["id"])
            items = items_by_quotation.get(quotation_id, [])
            proposal = proposals_by_quotation.get(quotation_id)
            if not self._visible_to_supplier(coverage, row, items, proposal):
                continue
            unified = derive_unified_status(row, proposal)
            entries.append(
                {
                    "id": quotation_id,
                    "number": row.get("number"),
                    "status": row.get("status"),
                    "unified_status": unified,
                    "unified_status_label": status_label("fornecedor", unified),
                    "client_label": self._client_label(db, int(row["client_id"]), unified),
                    "site_city": row.get("site_city"),
                    "site_state": row.get("site_state"),
                    "valid_until": row.get("valid_until"),
                    "sent_at": row.get("sent_at"),
                    "items": [
                        {
                            "id": item["id"],
                            "name": item["name"],
                            "quantity": item["quantity"],
                            "unit": item.get("unit"),
                            "group_name": item.get("group_name"),
                        }
                        for item in items
                    ],
                    "proposal": (
                        {
                            "id": proposal["id"],
                            "status": proposal.get("status"),
                            "total_value": money(proposal.get("total_value")),
                            "freight": money(proposal.get("freight")),
                        }
                        if proposal
                        else None
                    ),
                }
            )
        return ServiceOutput(payload={"items": entries}, status_code=200)

    def get_quotation(self, db, *, quotation_id: int, actor: Actor) -> ServiceOutput:
        quotation = self._require_quotation(db, quotation_id)
        items = self.quotations.list_items(db, quotation_id)

        if actor.role == "supplier":
            return self._supplier_view(db, quotation, items, actor)

        if actor.role != "admin" and int(quotation["client_id"]) != int(actor.id):
            raise ForbiddenError(payload={"quotation_id": quotation_id})

        proposal_count = self.proposals.count_for_quotation(db, quotation_id)
        return ServiceOutput(
            payload={
                "id": quotation_id,
                "number": quotation.get("number"),
                "status": quotation["status"],
                "status_label": client_status_badge(quotation["status"], proposal_count),
                "site": {
                    "id": quotation.get("site_id"),
                    "name": quotation.get("site_name"),
                    "city": quotation.get("site_city"),
                    "state": quotation.get("site_state"),
                },
                "notes": quotation.get("notes"),
                "valid_until": quotation.get("valid_until"),
                "created_at": quotation.get("created_at"),
                "sent_at": quotation.get("sent_at"),
                "closed_at": quotation.get("closed_at"),
                "cancelled_at": quotation.get("cancelled_at"),
                "proposal_count": proposal_count,
                "items": items,
                "flow": flow_meta("cotacao", quotation["status"]),
            },
            status_code=200,
        )

    def _supplier_view(self, db, quotation: dict, items: List[dict], actor: Actor) -> ServiceOutput:
        quotation_id = int(quotation["id"])
        if not actor.supplier_id:
            raise NotFoundError("quotation_not_found", payload={"quotation_id": quotation_id})
        supplier = self._require_supplier(db, actor.supplier_id)
        proposal = self.proposals.get_for_supplier(db, quotation_id, actor.supplier_id)
        coverage = self.suppliers.coverage(db, actor.supplier_id)
        if supplier.get("status") != "active" or not self._visible_to_supplier(coverage, quotation, items, proposal):
            raise NotFoundError("quotation_not_found", payload={"quotation_id": quotation_id})

        unified = derive_unified_status(quotation, proposal)
        proposal_items = []
        if proposal:
            proposal_items = self.proposals.list_items(db, [proposal["id"]]).get(int(proposal["id"]), [])
        return ServiceOutput(
            payload={
                "id": quotation_id,
                "number": quotation.get("number"),
                "status": quotation["status"],
                "unified_status": unified,
                "unified_status_label": status_label("fornecedor", unified),
                "client_label": self._client_label(db, int(quotation["client_id"]), unified),
                "site_city": quotation.get("site_city"),
                "site_state": quotation.get("site_state"),
                "valid_until": quotation.get("valid_until"),
                "items": [
                    {
                        "id": item["id"],
                        "name": item["name"],
                        "quantity": item["quantity"],
                        "unit": item.get("unit"),
                        "group_name": item.get("group_name"),
                        "note": item.get("note"),
                    }
                    for item in items
                ],
                "proposal": (
                    {
                        "id": proposal["id"],
                        "status": proposal.get("status"),
                        "total_value": money(proposal.get("total_value")),
                        "freight": money(proposal.get("freight")),
                        "payment_terms": proposal.get("payment_terms"),
                        "valid_until": proposal.get("valid_until"),
                        "items": proposal_items,
                    }
                    if proposal
                    else None
                ),
            },
            status_code=200,
        )

    # ------------------------------------------------------------------
    # fan-out
    # ------------------------------------------------------------------

    def _notify_matching_suppliers(self, db, quotation_id: int, site: Mapping[str, Any] | None, items) -> int:
        """Best-effort: a failure here never fails the quotation."""
        notified = 0
        try:
            for supplier in self.suppliers.list_active(db):
                coverage = self.suppliers.coverage(db, int(supplier["id"]))
                if not supplier_covers(coverage, site, items):
                    continue
                link = supplier_link(quotation_id)
                delivered = self.notifier.notify(
                    db,
                    recipient_id=supplier.get("user_id"),
                    title="Nova cotacao disponivel",
                    message="Um cliente da sua regiao publicou uma cotacao com materiais que voce fornece.",
                    link=link,
                )
                self.email_sender.send_email(
                    supplier.get("email"),
                    "Nova cotacao disponivel",
                    f"<p>Ha uma nova cotacao aguardando sua proposta.</p><p><a href=\"{link}\">Ver cotacao</a></p>",
                )
                if delivered:
                    notified += 1
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "supplier_fanout_failed",
                extra={"quotation_id": quotation_id, "notified": notified, "error": str(exc)},
            )
        return notified
