from __future__ import annotations

from typing import Any, Dict, List

from mercado_obras.ui_strings import status_label


ACTION_LABELS: Dict[str, str] = {
    "edit_quotation": "Editar cotacao",
    "send_quotation": "Enviar aos fornecedores",
    "cancel_quotation": "Cancelar cotacao",
    "submit_proposal": "Enviar proposta",
    "view_proposals": "Ver propostas",
    "start_review": "Comparar propostas",
    "finalize_order": "Gerar pedidos",
    "view_orders": "Ver pedidos",
    "approve": "Aprovar pedido",
    "invoice": "Anexar nota fiscal",
    "ship": "Despachar",
    "deliver": "Confirmar entrega",
    "cancel": "Cancelar pedido",
    "view_history": "Ver historico",
    "chat": "Conversar",
}


FLOW_POLICY: Dict[str, Dict[str, Dict[str, object]]] = {
    "cotacao": {
        "draft": {
            "allowed_actions": ["edit_quotation", "send_quotation", "cancel_quotation"],
            "primary_action": "send_quotation",
        },
        "sent": {
            "allowed_actions": ["submit_proposal", "cancel_quotation", "view_proposals"],
            "primary_action": "view_proposals",
        },
        "answered": {
            "allowed_actions": [
                "submit_proposal",
                "cancel_quotation",
                "view_proposals",
                "start_review",
                "finalize_order",
                "chat",
            ],
            "primary_action": "start_review",
        },
        "under_review": {
            "allowed_actions": [
                "submit_proposal",
                "cancel_quotation",
                "view_proposals",
                "finalize_order",
                "chat",
            ],
            "primary_action": "finalize_order",
        },
        "closed": {
            "allowed_actions": ["view_proposals", "view_orders", "view_history", "chat"],
            "primary_action": "view_orders",
        },
        "cancelled": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
    },
    "pedido": {
        "pending": {"allowed_actions": ["approve", "cancel", "chat"], "primary_action": "approve"},
        "approved": {"allowed_actions": ["view_history", "chat"], "primary_action": "view_history"},
        "invoice_issuance": {"allowed_actions": ["invoice", "chat"], "primary_action": "invoice"},
        "picking": {"allowed_actions": ["ship", "chat"], "primary_action": "ship"},
        "shipping": {"allowed_actions": ["deliver", "chat"], "primary_action": "deliver"},
        "delivered": {"allowed_actions": ["view_history", "chat"], "primary_action": "view_history"},
        "cancelled": {"allowed_actions": ["view_history"], "primary_action": "view_history"},
    },
}


def _fallback_policy() -> Dict[str, object]:
    return {"allowed_actions": [], "primary_action": None}


def status_policy(stage: str, status: str | None) -> Dict[str, object]:
    return FLOW_POLICY.get(stage, {}).get(str(status or "").strip(), _fallback_policy())


def allowed_actions(stage: str, status: str | None) -> List[str]:
    return list(status_policy(stage, status).get("allowed_actions") or [])


def primary_action(stage: str, status: str | None) -> str | None:
    action = status_policy(stage, status).get("primary_action")
    return str(action) if action else None


def action_allowed(stage: str, status: str | None, action: str) -> bool:
    return action in allowed_actions(stage, status)


def action_label(action: str, fallback: str | None = None) -> str:
    return ACTION_LABELS.get(action, fallback or action)


def flow_meta(stage: str, status: str | None) -> Dict[str, object]:
    return {
        "stage": stage,
        "status": status,
        "allowed_actions": allowed_actions(stage, status),
        "primary_action": primary_action(stage, status),
        "action_labels": {action: action_label(action) for action in allowed_actions(stage, status)},
    }


UNIFIED_RECEIVED = "received"
UNIFIED_RESPONDED = "responded"
UNIFIED_WON = "won"
UNIFIED_LOST = "lost"


def _status_of(entity: Any) -> str | None:
    if entity is None:
        return None
    if isinstance(entity, str):
        return entity
    if isinstance(entity, dict):
        return entity.get("status")
    return getattr(entity, "status", None)


def derive_unified_status(quotation: Any, proposal: Any = None) -> str:
    """Supplier-side view of a quotation: received, responded, won or lost.

    Accepts rows, entities or bare status strings.
    """
    quotation_status = _status_of(quotation)
    proposal_status = _status_of(proposal)

    if proposal_status == "accepted":
        return UNIFIED_WON
    if quotation_status in ("closed", "cancelled") or proposal_status == "rejected":
        return UNIFIED_LOST
    if proposal_status is not None:
        return UNIFIED_RESPONDED
    return UNIFIED_RECEIVED


def client_status_badge(status: str | None, proposal_count: int = 0) -> str:
    """Label shown to the client on the quotation list."""
    if status == "sent":
        return status_label("cotacao", "answered" if proposal_count > 0 else "sent")
    return status_label("cotacao", status)
