"""Two-factor audit logging.

Writes append-only rows to ``totp_audit_log`` for every 2FA lifecycle
event. Rows are never updated or deleted by this service.
"""

import logging
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from skyplanner.models import TotpAuditLog

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = {
    "password",
    "passord",
    "secret",
    "token",
    "code",
    "kode",
}


class TotpAuditAction(str, Enum):
    """Two-factor audit action types."""

    SETUP_INITIATED = "setup_initiated"
    SETUP_COMPLETED = "setup_completed"
    VERIFICATION_SUCCESS = "verification_success"
    VERIFICATION_FAILED = "verification_failed"
    BACKUP_CODE_USED = "backup_code_used"
    DISABLED = "disabled"


class TotpAuditService:
    """Records 2FA events with the actor's IP and user agent."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        user_id: int,
        action: TotpAuditAction,
        user_type: str = "klient",
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> TotpAuditLog:
        """Append an audit entry.

        Args:
            user_id: Account the event concerns
            action: The audit action type
            user_type: Account type (klient, ...)
            ip_address: Client IP of the request
            user_agent: Client user agent
            details: Extra metadata; sensitive keys are redacted

        Returns:
            The created audit log row
        """
        entry = TotpAuditLog(
            user_id=user_id,
            user_type=user_type,
            action=action.value,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:512] or None,
            details=_sanitize_details(details) if details else None,
        )
        self.db.add(entry)
        await self.db.flush()

        level = logging.WARNING if action == TotpAuditAction.VERIFICATION_FAILED else logging.INFO
        logger.log(level, f"2FA {action.value}: {user_type} {user_id} from {ip_address}")
        return entry


def _sanitize_details(details: dict[str, Any]) -> dict[str, Any]:
    """Remove codes, secrets and passwords from audit metadata."""
    sanitized: dict[str, Any] = {}
    for key, value in details.items():
        key_lower = key.lower()
        if any(s in key_lower for s in SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED - set]" if value is not None else "[REDACTED - unset]"
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_details(value)
        else:
            sanitized[key] = value
    return sanitized
