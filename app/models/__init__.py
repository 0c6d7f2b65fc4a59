from app.models.audit_log import AuditLog
from app.models.finance_application import FinanceApplication
from app.models.org import Org
from app.models.proposal import Proposal
from app.models.user import User, UserRole
from app.models.webhook_event import WebhookEvent

__all__ = [
    "AuditLog",
    "FinanceApplication",
    "Org",
    "Proposal",
    "User",
    "UserRole",
    "WebhookEvent",
]
