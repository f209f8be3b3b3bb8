from mercado_obras.core.event_bus import (
    ChatMessageBlocked,
    ChatMessagePosted,
    DomainEvent,
    EventBus,
    OrderStatusChanged,
    ProposalSubmitted,
    QuotationClosed,
    QuotationCreated,
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "QuotationCreated",
    "ProposalSubmitted",
    "QuotationClosed",
    "OrderStatusChanged",
    "ChatMessagePosted",
    "ChatMessageBlocked",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
