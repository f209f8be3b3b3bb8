from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class QuotationCreateInput:
    client_id: int
    site_id: int
    items: List[Dict[str, Any]]
    notes: str | None = None
    valid_until: str | None = None
    send: bool = True


@dataclass(frozen=True)
class ProposalTerms:
    freight: float = 0.0
    payment_terms: str | None = None
    valid_until: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ProposalSubmitInput:
    supplier_id: int
    quotation_id: int
    items: List[Dict[str, Any]]
    terms: ProposalTerms = field(default_factory=ProposalTerms)


@dataclass(frozen=True)
class FinalizeOrderInput:
    quotation_id: int
    client_id: int
    selections: Dict[int, int]


@dataclass(frozen=True)
class Attachment:
    """Uploaded file handed to the fulfillment workflow."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class OrderTransitionInput:
    order_id: int
    actor_id: int
    action: str
    attachment: Attachment | None = None


@dataclass(frozen=True)
class ChatMessageInput:
    sender_id: int
    content: str
    room_key: str


@dataclass(frozen=True)
class Actor:
    id: int
    role: str
    name: str = ""
    supplier_id: int | None = None
