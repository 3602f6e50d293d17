"""Tests for the two-factor audit log."""

import pytest
from sqlalchemy import select

from skyplanner.models import TotpAuditLog
from skyplanner.services.audit import TotpAuditAction, TotpAuditService, _sanitize_details


class TestSanitizeDetails:
    def test_sensitive_keys_redacted(self):
        sanitized = _sanitize_details(
            {
                "code": "123456",
                "backupCode": "ABCD-EF23",
                "passord": "hemmelig",
                "secret": None,
                "context": "login",
            }
        )
        assert sanitized == {
            "code": "[REDACTED - set]",
            "backupCode": "[REDACTED - set]",
            "passord": "[REDACTED - set]",
            "secret": "[REDACTED - unset]",
            "context": "login",
        }

    def test_nested_dicts(self):
        sanitized = _sanitize_details({"request": {"token": "abc", "ip": "10.0.0.1"}})
        assert sanitized == {"request": {"token": "[REDACTED - set]", "ip": "10.0.0.1"}}


class TestTotpAuditService:
    @pytest.mark.asyncio
    async def test_log_writes_row(self, db_session, klient):
        klient_id = klient.id
        service = TotpAuditService(db_session)
        await service.log(
            klient_id,
            TotpAuditAction.DISABLED,
            ip_address="10.0.0.1",
            user_agent="x" * 1000,
            details={"method": "password", "password": "hemmelig"},
        )
        await db_session.commit()

        row = (
            await db_session.execute(select(TotpAuditLog).where(TotpAuditLog.user_id == klient_id))
        ).scalar_one()
        assert row.action == "disabled"
        assert row.user_type == "klient"
        assert row.ip_address == "10.0.0.1"
        assert len(row.user_agent) == 512
        assert row.details == {"method": "password", "password": "[REDACTED - set]"}
