from __future__ import annotations

import logging
import os
from collections import OrderedDict
from typing import Dict, List, Tuple

from mercado_obras.core import EventBus, OrderStatusChanged, QuotationClosed, get_event_bus
from mercado_obras.db import INTEGRITY_ERRORS
from mercado_obras.domain.contracts import Actor, FinalizeOrderInput, OrderTransitionInput, ServiceOutput
from mercado_obras.domain.entities import (
    QUOTATION_OPEN_STATUSES,
    Proposal,
    ProposalItem,
    QuotationItem,
    line_total,
    money,
)
from mercado_obras.errors import ConflictError, ForbiddenError, IntegrationError, NotFoundError, ValidationError
from mercado_obras.infrastructure.repositories import (
    OrderRepository,
    ProposalRepository,
    QuotationRepository,
    StatusEventRepository,
    SupplierRepository,
)
from mercado_obras.integrations.mailer import EmailSender
from mercado_obras.integrations.notifications import Notifier
from mercado_obras.integrations.storage import LocalFileStorage
from mercado_obras.procurement.fulfillment import available_actions, plan_transitions, progress, validate_attachment
from mercado_obras.ui_strings import status_label


logger = logging.getLogger("mercado_obras")

DEFAULT_MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


def supplier_order_link(order_id: int) -> str:
    return f"/dashboard/fornecedor?tab=vendas-pedidos&pedido={order_id}"


def client_order_link(order_id: int) -> str:
    return f"/dashboard/cliente?tab=pedidos&pedido={order_id}"


def attachment_download_link(order_id: int, attachment_id: int) -> str:
    return f"/api/pedidos/{order_id}/anexos/{attachment_id}"


class OrderService:
    """Turns a client's item selection into orders and drives their fulfilment."""

    def __init__(
        self,
        quotations: QuotationRepository | None = None,
        proposals: ProposalRepository | None = None,
        orders: OrderRepository | None = None,
        suppliers: SupplierRepository | None = None,
        status_events: StatusEventRepository | None = None,
        storage: LocalFileStorage | None = None,
        notifier: Notifier | None = None,
        email_sender: EmailSender | None = None,
        event_bus: EventBus | None = None,
        max_attachment_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES,
    ) -> None:
        self.quotations = quotations or QuotationRepository()
        self.proposals = proposals or ProposalRepository()
        self.orders = orders or OrderRepository()
        self.suppliers = suppliers or SupplierRepository()
        self.status_events = status_events or StatusEventRepository()
        self.storage = storage
        self.notifier = notifier or Notifier()
        self.email_sender = email_sender or EmailSender()
        self.event_bus = event_bus or get_event_bus()
        self.max_attachment_bytes = int(max_attachment_bytes)

    # ------------------------------------------------------------------
    # finalization
    # ------------------------------------------------------------------

    def _load_proposals(self, db, quotation_id: int) -> Dict[int, Proposal]:
        rows = self.proposals.list_for_quotation(db, quotation_id)
        items_by_proposal = self.proposals.list_items(db, [row["id"] for row in rows])
        return {
            int(row["supplier_id"]): Proposal.from_row(row, items_by_proposal.get(int(row["id"]), []))
            for row in rows
        }

    def _group_selections(
        self,
        selections: Dict[int, int],
        items: Dict[int, QuotationItem],
        proposals: Dict[int, Proposal],
    ) -> "OrderedDict[int, Tuple[Proposal, List[Tuple[QuotationItem, ProposalItem]]]]":
        grouped: "OrderedDict[int, Tuple[Proposal, List[Tuple[QuotationItem, ProposalItem]]]]" = OrderedDict()
        for raw_item_id, raw_supplier_id in sorted(selections.items(), key=lambda pair: int(pair[0])):
            try:
                item_id = int(raw_item_id)
                supplier_id = int(raw_supplier_id)
            except (TypeError, ValueError) as exc:
                raise ValidationError("selection_invalid", payload={"item_id": raw_item_id}) from exc
            item = items.get(item_id)
            if item is None:
                raise ValidationError("selection_invalid", payload={"item_id": item_id})
            proposal = proposals.get(supplier_id)
            offer = proposal.offer_for(item_id) if proposal else None
            if offer is None:
                raise ValidationError("selection_invalid", payload={"item_id": item_id, "supplier_id": supplier_id})
            grouped.setdefault(supplier_id, (proposal, []))[1].append((item, offer))
        return OrderedDict(sorted(grouped.items()))

    def finalize_order(self, db, finalize_input: FinalizeOrderInput) -> ServiceOutput:
        if not finalize_input.selections:
            raise ValidationError("selections_required")

        quotation_id = finalize_input.quotation_id
        quotation = self.quotations.get_by_id(db, quotation_id)
        if not quotation:
            raise NotFoundError("quotation_not_found", payload={"quotation_id": quotation_id})
        if int(quotation["client_id"]) != int(finalize_input.client_id):
            raise ForbiddenError(payload={"quotation_id": quotation_id})
        if quotation["status"] not in QUOTATION_OPEN_STATUSES:
            raise ConflictError("quotation_not_finalizable", payload={"status": quotation["status"]})

        items = {int(row["id"]): QuotationItem.from_row(row) for row in self.quotations.list_items(db, quotation_id)}
        proposals = self._load_proposals(db, quotation_id)
        grouped = self._group_selections(finalize_input.selections, items, proposals)

        created: List[dict] = []
        try:
            with db.transaction():
                closed = self.quotations.transition(
                    db,
                    quotation_id,
                    from_statuses=sorted(QUOTATION_OPEN_STATUSES),
                    to_status="closed",
                )
                if not closed:
                    raise ConflictError("quotation_not_finalizable", payload={"quotation_id": quotation_id})

                for supplier_id, (proposal, lines) in grouped.items():
                    subtotal = money(sum(line_total(offer.unit_price, item.quantity) for item, offer in lines))
                    freight = money(proposal.freight)
                    order_id = self.orders.create(
                        db,
                        quotation_id=quotation_id,
                        proposal_id=proposal.id,
                        supplier_id=supplier_id,
                        client_id=finalize_input.client_id,
                        site_id=quotation.get("site_id"),
                        subtotal=subtotal,
                        freight=freight,
                        total=money(subtotal + freight),
                        payment_terms=proposal.payment_terms,
                    )
                    for item, offer in lines:
                        self.orders.add_item(
                            db,
                            order_id=order_id,
                            quotation_item_id=item.id,
                            name=item.name,
                            quantity=item.quantity,
                            unit=item.unit,
                            unit_price=money(offer.unit_price),
                            subtotal=line_total(offer.unit_price, item.quantity),
                        )
                    self.status_events.add_event(
                        db,
                        entity="order",
                        entity_id=order_id,
                        from_status=None,
                        to_status="pending",
                        reason="order_created",
                        actor_id=finalize_input.client_id,
                    )
                    created.append(
                        {
                            "id": order_id,
                            "supplier_id": supplier_id,
                            "supplier_name": proposal.supplier_name,
                            "proposal_id": proposal.id,
                            "status": "pending",
                            "subtotal": subtotal,
                            "freight": freight,
                            "total": money(subtotal + freight),
                            "items_count": len(lines),
                        }
                    )

                self.proposals.settle(db, quotation_id, [proposal.id for proposal, _ in grouped.values()])
                self.status_events.add_event(
                    db,
                    entity="quotation",
                    entity_id=quotation_id,
                    from_status=quotation["status"],
                    to_status="closed",
                    reason="orders_generated",
                    actor_id=finalize_input.client_id,
                )
        except INTEGRITY_ERRORS as exc:
            raise ConflictError("quotation_not_finalizable", payload={"quotation_id": quotation_id}) from exc

        for order in created:
            row = self.orders.get_by_id(db, order["id"]) or {}
            order["number"] = row.get("number")
            self._notify_winner(db, row)

        self.notifier.notify(
            db,
            recipient_id=finalize_input.client_id,
            title="Pedidos gerados",
            message=f"{len(created)} pedido(s) gerado(s) a partir da cotacao #{quotation.get('number')}.",
            link=client_order_link(created[0]["id"]) if created else None,
        )
        self.event_bus.publish(
            QuotationClosed(
                actor_id=finalize_input.client_id,
                quotation_id=quotation_id,
                status="closed",
                order_ids=tuple(order["id"] for order in created),
            )
        )
        return ServiceOutput(
            payload={"quotation_id": quotation_id, "status": "closed", "orders": created},
            status_code=201,
        )

    def _notify_winner(self, db, order: dict) -> None:
        if not order:
            return
        link = supplier_order_link(int(order["id"]))
        self.notifier.notify(
            db,
            recipient_id=order.get("supplier_user_id"),
            title="Voce venceu uma cotacao",
            message=f"Pedido #{order.get('number')} gerado no valor de {money(order.get('total')):.2f}.",
            link=link,
        )
        supplier = self.suppliers.get_by_id(db, int(order["supplier_id"])) or {}
        self.email_sender.send_email(
            supplier.get("email"),
            f"Novo pedido #{order.get('number')}",
            f"<p>Voce recebeu um novo pedido.</p><p><a href=\"{link}\">Ver pedido</a></p>",
        )

    # ------------------------------------------------------------------
    # fulfilment
    # ------------------------------------------------------------------

    def _require_order(self, db, order_id: int) -> dict:
        order = self.orders.get_by_id(db, order_id)
        if not order:
            raise NotFoundError("order_not_found", payload={"order_id": order_id})
        return order

    @staticmethod
    def _role_on_order(order: dict, actor: Actor) -> str:
        if actor.role == "supplier" and actor.supplier_id and int(actor.supplier_id) == int(order["supplier_id"]):
            return "supplier"
        if actor.role == "client" and int(actor.id) == int(order["client_id"]):
            return "client"
        if actor.role == "admin":
            return "admin"
        raise ForbiddenError(payload={"order_id": order.get("id")})

    def transition_order(self, db, transition_input: OrderTransitionInput, *, actor: Actor) -> ServiceOutput:
        order_id = transition_input.order_id
        order = self._require_order(db, order_id)
        role = self._role_on_order(order, actor)

        steps = plan_transitions(order["status"], transition_input.action)
        if role not in steps[0].actor_roles:
            raise ForbiddenError(payload={"order_id": order_id, "action": steps[0].action})

        attachment_url = None
        content_type = None
        kind = steps[0].attachment_kind
        if kind:
            content_type = validate_attachment(kind, transition_input.attachment, self.max_attachment_bytes)
            if self.storage is None:
                raise IntegrationError("storage_unavailable")
            attachment_url = self.storage.store(transition_input.attachment, prefix=f"pedido{order_id}_{kind}_")

        try:
            with db.transaction():
                for step in steps:
                    if not self.orders.advance_status(
                        db, order_id, from_status=step.from_status, to_status=step.to_status
                    ):
                        raise ConflictError(payload={"order_id": order_id, "action": step.action})
                    self.status_events.add_event(
                        db,
                        entity="order",
                        entity_id=order_id,
                        from_status=step.from_status,
                        to_status=step.to_status,
                        reason=step.action,
                        actor_id=transition_input.actor_id,
                    )
                if attachment_url:
                    self.orders.add_attachment(
                        db,
                        order_id=order_id,
                        kind=kind,
                        url=attachment_url,
                        filename=transition_input.attachment.filename,
                        content_type=content_type,
                        size_bytes=transition_input.attachment.size_bytes,
                        uploaded_by=transition_input.actor_id,
                    )
        except Exception:
            if attachment_url and self.storage is not None:
                self.storage.delete(attachment_url)
            raise

        for step in steps:
            self.event_bus.publish(
                OrderStatusChanged(
                    actor_id=transition_input.actor_id,
                    order_id=order_id,
                    from_status=step.from_status,
                    to_status=step.to_status,
                )
            )

        final_status = steps[-1].to_status
        label = status_label("pedido", final_status)
        if role == "supplier":
            self.notifier.notify(
                db,
                recipient_id=order["client_id"],
                title=f"Pedido #{order.get('number')} atualizado",
                message=f"Status do pedido: {label}.",
                link=client_order_link(order_id),
            )
        else:
            self.notifier.notify(
                db,
                recipient_id=order.get("supplier_user_id"),
                title=f"Pedido #{order.get('number')} atualizado",
                message=f"Status do pedido: {label}.",
                link=supplier_order_link(order_id),
            )

        logger.info(
            "order_transitioned",
            extra={"order_id": order_id, "from_status": order["status"], "to_status": final_status},
        )
        return self.get_order(db, order_id=order_id, actor=actor)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    @staticmethod
    def _summary(order: dict) -> dict:
        summary = dict(order)
        summary["status_label"] = status_label("pedido", order.get("status"))
        summary["progress"] = progress(order.get("status") or "")
        return summary

    def list_orders(self, db, *, actor: Actor) -> ServiceOutput:
        if actor.role == "supplier":
            if not actor.supplier_id:
                return ServiceOutput(payload={"items": []}, status_code=200)
            rows = self.orders.list_for_supplier(db, actor.supplier_id)
        else:
            rows = self.orders.list_for_client(db, actor.id)
        return ServiceOutput(payload={"items": [self._summary(row) for row in rows]}, status_code=200)

    def get_order(self, db, *, order_id: int, actor: Actor) -> ServiceOutput:
        order = self._require_order(db, order_id)
        role = self._role_on_order(order, actor)
        payload = self._summary(order)
        payload["items"] = self.orders.list_items(db, order_id)
        payload["attachments"] = [
            dict(row, download_url=attachment_download_link(order_id, int(row["id"])))
            for row in self.orders.list_attachments(db, order_id)
        ]
        payload["history"] = self.status_events.list_for_entity(db, entity="order", entity_id=order_id)
        payload["available_actions"] = available_actions(order["status"], role)
        return ServiceOutput(payload=payload, status_code=200)

    def get_attachment(self, db, *, order_id: int, attachment_id: int, actor: Actor) -> dict:
        """Attachment row plus its file path, readable only by the order's participants and admins."""
        order = self._require_order(db, order_id)
        self._role_on_order(order, actor)
        attachment = self.orders.get_attachment(db, order_id, attachment_id)
        if not attachment:
            raise NotFoundError("attachment_not_found", payload={"order_id": order_id, "attachment_id": attachment_id})
        path = self.storage.path_for(attachment["url"]) if self.storage is not None else None
        if not path or not os.path.isfile(path):
            logger.warning("attachment_file_missing", extra={"order_id": order_id, "attachment_id": attachment_id})
            raise NotFoundError("attachment_not_found", payload={"order_id": order_id, "attachment_id": attachment_id})
        attachment["path"] = path
        return attachment
