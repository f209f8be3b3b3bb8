from __future__ import annotations

from typing import Dict

from flask import Blueprint, request

from mercado_obras.db import get_db
from mercado_obras.domain.contracts import (
    FinalizeOrderInput,
    ProposalSubmitInput,
    ProposalTerms,
    QuotationCreateInput,
)
from mercado_obras.errors import ForbiddenError, ValidationError
from mercado_obras.policies import current_actor, require_roles
from mercado_obras.routes.common import json_payload, order_service, quotation_service, require_int, respond


quotation_bp = Blueprint("quotations", __name__)


def _parse_selections(raw) -> Dict[int, int]:
    """Accepts ``{"item_id": supplier_id}`` or ``[{"item_id": .., "supplier_id": ..}]``."""
    pairs = []
    if isinstance(raw, dict):
        pairs = list(raw.items())
    elif isinstance(raw, list):
        for entry in raw:
            if not isinstance(entry, dict):
                raise ValidationError("selection_invalid")
            pairs.append((entry.get("item_id"), entry.get("supplier_id")))
    selections: Dict[int, int] = {}
    for item_id, supplier_id in pairs:
        try:
            selections[int(item_id)] = int(supplier_id)
        except (TypeError, ValueError):
            raise ValidationError("selection_invalid", payload={"item_id": item_id}) from None
    return selections


@quotation_bp.route("/api/cotacoes", methods=["GET", "POST"])
def quotations_api():
    actor = require_roles("client")
    db = get_db()
    if request.method == "POST":
        payload = json_payload()
        send = not bool(payload.get("draft")) and payload.get("send", True) is not False
        result = quotation_service().create_quotation(
            db,
            QuotationCreateInput(
                client_id=actor.id,
                site_id=require_int(payload.get("site_id"), "site_id"),
                items=payload.get("items") if isinstance(payload.get("items"), list) else [],
                notes=(str(payload.get("notes") or "").strip() or None),
                valid_until=(str(payload.get("valid_until") or "").strip() or None),
                send=send,
            ),
        )
        db.commit()
        return respond(result, "quotation_created" if send else "quotation_draft_saved")

    return respond(quotation_service().list_for_client(db, actor.id))


@quotation_bp.route("/api/cotacoes/<int:quotation_id>", methods=["GET"])
def quotation_detail_api(quotation_id: int):
    actor = current_actor()
    return respond(quotation_service().get_quotation(get_db(), quotation_id=quotation_id, actor=actor))


@quotation_bp.route("/api/cotacoes/<int:quotation_id>/enviar", methods=["POST"])
def quotation_send_api(quotation_id: int):
    actor = require_roles("client")
    db = get_db()
    result = quotation_service().send_quotation(db, quotation_id=quotation_id, client_id=actor.id)
    db.commit()
    return respond(result, "quotation_sent")


@quotation_bp.route("/api/cotacoes/<int:quotation_id>/itens", methods=["PUT"])
def quotation_items_api(quotation_id: int):
    actor = require_roles("client")
    db = get_db()
    payload = json_payload()
    result = quotation_service().update_draft_items(
        db,
        quotation_id=quotation_id,
        client_id=actor.id,
        items=payload.get("items") if isinstance(payload.get("items"), list) else [],
    )
    db.commit()
    return respond(result, "quotation_items_updated")


@quotation_bp.route("/api/cotacoes/<int:quotation_id>/analise", methods=["POST"])
def quotation_review_api(quotation_id: int):
    actor = require_roles("client")
    db = get_db()
    result = quotation_service().start_review(db, quotation_id=quotation_id, client_id=actor.id)
    db.commit()
    return respond(result, "quotation_under_review")


@quotation_bp.route("/api/cotacoes/<int:quotation_id>/cancelar", methods=["POST"])
def quotation_cancel_api(quotation_id: int):
    actor = require_roles("client")
    db = get_db()
    payload = json_payload()
    result = quotation_service().cancel_quotation(
        db,
        quotation_id=quotation_id,
        client_id=actor.id,
        reason=payload.get("reason"),
    )
    db.commit()
    return respond(result, "quotation_cancelled")


@quotation_bp.route("/api/cotacoes/<int:quotation_id>/propostas", methods=["GET", "POST"])
def quotation_proposals_api(quotation_id: int):
    db = get_db()
    if request.method == "POST":
        actor = require_roles("supplier")
        if not actor.supplier_id:
            raise ForbiddenError("supplier_not_found")
        payload = json_payload()
        result = quotation_service().submit_proposal(
            db,
            ProposalSubmitInput(
                supplier_id=int(actor.supplier_id),
                quotation_id=quotation_id,
                items=payload.get("items") if isinstance(payload.get("items"), list) else [],
                terms=ProposalTerms(
                    freight=payload.get("freight") if payload.get("freight") is not None else 0.0,
                    payment_terms=(str(payload.get("payment_terms") or "").strip() or None),
                    valid_until=(str(payload.get("valid_until") or "").strip() or None),
                    notes=(str(payload.get("notes") or "").strip() or None),
                ),
            ),
        )
        db.commit()
        return respond(result, "proposal_saved")

    actor = require_roles("client")
    return respond(
        quotation_service().list_proposals_for_client(db, quotation_id=quotation_id, requester_id=actor.id)
    )


@quotation_bp.route("/api/cotacoes/<int:quotation_id>/comparativo", methods=["GET"])
def quotation_comparison_api(quotation_id: int):
    actor = require_roles("client")
    return respond(quotation_service().comparison(get_db(), quotation_id=quotation_id, requester_id=actor.id))


@quotation_bp.route("/api/cotacoes/<int:quotation_id>/pedidos", methods=["POST"])
def quotation_finalize_api(quotation_id: int):
    actor = require_roles("client")
    db = get_db()
    payload = json_payload()
    result = order_service().finalize_order(
        db,
        FinalizeOrderInput(
            quotation_id=quotation_id,
            client_id=actor.id,
            selections=_parse_selections(payload.get("selections")),
        ),
    )
    db.commit()
    return respond(result, "orders_created")


@quotation_bp.route("/api/fornecedor/cotacoes", methods=["GET"])
def supplier_quotations_api():
    actor = require_roles("supplier")
    if not actor.supplier_id:
        raise ForbiddenError("supplier_not_found")
    return respond(quotation_service().list_quotations_for_supplier(get_db(), int(actor.supplier_id)))
