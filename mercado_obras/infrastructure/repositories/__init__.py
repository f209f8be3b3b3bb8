from .audit_repository import AuditRepository
from .message_repository import MessageRepository
from .notification_repository import NotificationRepository
from .order_repository import OrderRepository
from .proposal_repository import ProposalRepository
from .quotation_repository import QuotationRepository
from .site_repository import CatalogRepository, SiteRepository
from .status_event_repository import StatusEventRepository
from .supplier_repository import SupplierRepository
from .user_repository import UserRepository

__all__ = [
    "AuditRepository",
    "CatalogRepository",
    "MessageRepository",
    "NotificationRepository",
    "OrderRepository",
    "ProposalRepository",
    "QuotationRepository",
    "SiteRepository",
    "StatusEventRepository",
    "SupplierRepository",
    "UserRepository",
]
