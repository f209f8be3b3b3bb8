from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Tuple

from mercado_obras.domain.contracts import Attachment
from mercado_obras.errors import InvalidStateError, ValidationError


ORDER_FLOW: Tuple[str, ...] = ("pending", "approved", "invoice_issuance", "picking", "shipping", "delivered")
ORDER_CANCELLED = "cancelled"
ORDER_STATUSES: Tuple[str, ...] = ORDER_FLOW + (ORDER_CANCELLED,)
TERMINAL_STATUSES: FrozenSet[str] = frozenset({"delivered", ORDER_CANCELLED})

KIND_INVOICE = "invoice"
KIND_DELIVERY_PROOF = "delivery_proof"


@dataclass(frozen=True)
class Transition:
    action: str
    from_status: str
    to_status: str
    attachment_kind: str | None = None
    follow_up: str | None = None
    actor_roles: FrozenSet[str] = frozenset({"supplier"})
    system: bool = False

    @property
    def timestamp_column(self) -> str:
        return f"{self.to_status}_at"


TRANSITIONS: Dict[str, Transition] = {
    "approve": Transition("approve", "pending", "approved", follow_up="begin_invoicing"),
    "begin_invoicing": Transition("begin_invoicing", "approved", "invoice_issuance", system=True),
    "invoice": Transition("invoice", "invoice_issuance", "picking", attachment_kind=KIND_INVOICE),
    "ship": Transition("ship", "picking", "shipping"),
    "deliver": Transition("deliver", "shipping", "delivered", attachment_kind=KIND_DELIVERY_PROOF),
    "cancel": Transition("cancel", "pending", ORDER_CANCELLED, actor_roles=frozenset({"supplier", "client"})),
}

# Actions may also be addressed by their destination state.
ACTION_ALIASES: Dict[str, str] = {
    "approved": "approve",
    "picking": "invoice",
    "shipping": "ship",
    "delivered": "deliver",
    "cancelled": "cancel",
}


def resolve_transition(action: str | None) -> Transition:
    key = str(action or "").strip().lower()
    key = ACTION_ALIASES.get(key, key)
    transition = TRANSITIONS.get(key)
    if transition is None or transition.system:
        raise ValidationError("order_action_invalid", details=f"acao desconhecida: {action}")
    return transition


def plan_transitions(current_status: str, action: str | None) -> List[Transition]:
    """Steps applied for ``action``, including system follow-ups.

    Raises InvalidStateError when the order is not in the action's source state.
    """
    transition = resolve_transition(action)
    if current_status != transition.from_status:
        raise InvalidStateError(
            payload={"status": current_status, "action": transition.action},
            details=f"{transition.action} exige status {transition.from_status}, pedido em {current_status}",
        )
    steps = [transition]
    while steps[-1].follow_up:
        steps.append(TRANSITIONS[steps[-1].follow_up])
    return steps


def available_actions(status: str, role: str) -> List[str]:
    return [
        name
        for name, transition in TRANSITIONS.items()
        if not transition.system and transition.from_status == status and role in transition.actor_roles
    ]


def progress(status: str) -> dict:
    if status == ORDER_CANCELLED:
        return {"step": 0, "total": len(ORDER_FLOW), "cancelled": True}
    step = ORDER_FLOW.index(status) + 1 if status in ORDER_FLOW else 0
    return {"step": step, "total": len(ORDER_FLOW), "cancelled": False}


_PDF = "application/pdf"
_JPEG = "image/jpeg"
_PNG = "image/png"

_MAGIC_NUMBERS: Tuple[Tuple[bytes, str], ...] = (
    (b"%PDF-", _PDF),
    (b"\xff\xd8\xff", _JPEG),
    (b"\x89PNG\r\n\x1a\n", _PNG),
)

_EXTENSIONS: Dict[str, str] = {
    ".pdf": _PDF,
    ".jpg": _JPEG,
    ".jpeg": _JPEG,
    ".png": _PNG,
}

ALLOWED_CONTENT_TYPES: Dict[str, FrozenSet[str]] = {
    KIND_INVOICE: frozenset({_PDF, _JPEG, _PNG}),
    KIND_DELIVERY_PROOF: frozenset({_JPEG, _PNG}),
}


def sniff_content_type(data: bytes) -> str | None:
    for signature, content_type in _MAGIC_NUMBERS:
        if data.startswith(signature):
            return content_type
    return None


def validate_attachment(kind: str, attachment: Attachment | None, max_bytes: int) -> str:
    """Returns the verified content type or raises ValidationError."""
    if attachment is None or not attachment.data:
        raise ValidationError("attachment_required", payload={"kind": kind})
    if attachment.size_bytes > int(max_bytes):
        raise ValidationError(
            "attachment_too_large",
            payload={"kind": kind, "size_bytes": attachment.size_bytes, "max_bytes": int(max_bytes)},
        )

    allowed = ALLOWED_CONTENT_TYPES[kind]
    detected = sniff_content_type(attachment.data)
    extension = os.path.splitext(attachment.filename or "")[1].lower()
    declared = str(attachment.content_type or "").split(";")[0].strip().lower()

    if detected not in allowed or _EXTENSIONS.get(extension) != detected:
        raise ValidationError(
            "attachment_type_invalid",
            payload={"kind": kind, "allowed": sorted(allowed)},
            details=f"arquivo {attachment.filename!r} detectado como {detected}",
        )
    if declared and declared != "application/octet-stream" and declared != detected:
        raise ValidationError(
            "attachment_type_invalid",
            payload={"kind": kind, "allowed": sorted(allowed)},
            details=f"tipo declarado {declared} difere do conteudo {detected}",
        )
    return detected
