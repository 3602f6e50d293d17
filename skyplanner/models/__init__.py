# Sky Planner Models
from skyplanner.models.active_session import ActiveSession
from skyplanner.models.base import BaseModel
from skyplanner.models.klient import Klient
from skyplanner.models.organization import Organization
from skyplanner.models.token_blacklist import TokenBlacklist
from skyplanner.models.totp_audit_log import TotpAuditLog
from skyplanner.models.totp_pending_session import TotpPendingSession

__all__ = [
    "ActiveSession",
    "BaseModel",
    "Klient",
    "Organization",
    "TokenBlacklist",
    "TotpAuditLog",
    "TotpPendingSession",
]
