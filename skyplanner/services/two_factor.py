"""Two-factor authentication lifecycle for klient accounts.

Setup provisions an encrypted secret and hashed backup codes; verification
confirms it; disable clears every TOTP column at once. Login verification
accepts either a TOTP code (with replay protection) or a backup code, which
is consumed on use.

Failed verifications commit their audit row before raising, since the
request transaction is rolled back on error.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import NoReturn

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from skyplanner.core.config import Settings
from skyplanner.core.errors import (
    ConflictError,
    InvalidCodeError,
    InvalidCredentialsError,
    NotFoundError,
    ReplayedCodeError,
    ValidationError,
)
from skyplanner.core.request_utils import RequestContext
from skyplanner.models import Klient
from skyplanner.models.base import as_utc, utcnow
from skyplanner.services.audit import TotpAuditAction, TotpAuditService
from skyplanner.services.auth import verify_password
from skyplanner.services.crypto import SecretCipher, hash_backup_code, verify_backup_code
from skyplanner.services.totp import TotpEngine, is_step_fresh, normalize_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TwoFactorStatus:
    enabled: bool
    enabled_at: datetime | None
    backup_codes_remaining: int


@dataclass(frozen=True)
class TwoFactorSetup:
    """Returned once at setup; the plaintext values are never stored."""

    secret: str
    uri: str
    backup_codes: list[str]


class TwoFactorService:
    """Setup, confirmation, disabling and login verification of TOTP."""

    def __init__(
        self,
        db: AsyncSession,
        engine: TotpEngine,
        cipher: SecretCipher,
        settings: Settings,
    ):
        self.db = db
        self.engine = engine
        self.cipher = cipher
        self.settings = settings
        self.audit = TotpAuditService(db)

    async def _load(self, user_id: int, for_update: bool = False) -> Klient:
        query = select(Klient).where(Klient.id == user_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        klient = result.scalar_one_or_none()
        if klient is None:
            raise NotFoundError("Bruker ikke funnet")
        return klient

    @property
    def _hmac_key(self) -> str:
        return self.settings.encryption_key or ""

    def _secret(self, klient: Klient) -> str:
        """Decrypt the TOTP secret, moving it to the current key if needed."""
        secret, upgraded = self.cipher.decrypt_and_upgrade(klient.totp_secret_encrypted or "")
        if upgraded is not None:
            klient.totp_secret_encrypted = upgraded
        return secret

    def _match_backup_code(self, code: str, hashes: list[str]) -> int | None:
        index = verify_backup_code(code, hashes, self._hmac_key)
        if index is None and self.settings.encryption_key_old:
            # Codes issued before a key rotation stay hashed under the previous key
            index = verify_backup_code(code, hashes, self.settings.encryption_key_old)
        return index

    async def _fail(
        self, klient: Klient, ctx: RequestContext, error: InvalidCodeError, context: str
    ) -> NoReturn:
        await self.audit.log(
            klient.id,
            TotpAuditAction.VERIFICATION_FAILED,
            ip_address=ctx.client_ip,
            user_agent=ctx.user_agent,
            details={"context": context, "reason": error.code},
        )
        await self.db.commit()
        raise error

    async def status(self, user_id: int) -> TwoFactorStatus:
        klient = await self._load(user_id)
        return TwoFactorStatus(
            enabled=klient.totp_enabled,
            enabled_at=as_utc(klient.totp_verified_at) if klient.totp_verified_at else None,
            backup_codes_remaining=len(klient.backup_codes_hash or []) if klient.totp_enabled else 0,
        )

    async def setup(self, user_id: int, ctx: RequestContext) -> TwoFactorSetup:
        """Provision a new secret and backup codes for an account without 2FA.

        Re-running setup before confirmation replaces the pending secret.
        """
        klient = await self._load(user_id, for_update=True)
        if klient.totp_enabled:
            raise ConflictError(
                "2FA er allerede aktivert. Deaktiver først for å sette opp på nytt."
            )

        secret = self.engine.generate_secret()
        backup_codes = self.engine.generate_backup_codes()

        klient.totp_secret_encrypted = self.cipher.encrypt(secret)
        klient.backup_codes_hash = [hash_backup_code(c, self._hmac_key) for c in backup_codes]
        klient.totp_recovery_codes_used = 0
        klient.totp_last_used_step = None
        klient.totp_verified_at = None
        await self.db.flush()

        await self.audit.log(
            klient.id,
            TotpAuditAction.SETUP_INITIATED,
            ip_address=ctx.client_ip,
            user_agent=ctx.user_agent,
        )
        return TwoFactorSetup(
            secret=secret,
            uri=self.engine.generate_uri(secret, klient.epost),
            backup_codes=backup_codes,
        )

    async def confirm(self, user_id: int, code: str, ctx: RequestContext) -> None:
        """Enable 2FA once the user proves their authenticator produces codes."""
        code = normalize_code(code)
        if len(code) != 6:
            raise ValidationError("Koden må være 6 siffer")

        klient = await self._load(user_id, for_update=True)
        if klient.totp_enabled:
            raise ConflictError("2FA er allerede aktivert")
        if not klient.totp_secret_encrypted:
            raise ValidationError("2FA er ikke satt opp. Start oppsett først.")

        secret = self._secret(klient)
        step = self.engine.verify_with_counter(secret, code)
        if step is None:
            await self._fail(klient, ctx, InvalidCodeError(), "setup")
        if not is_step_fresh(step, klient.totp_last_used_step):
            await self._fail(klient, ctx, ReplayedCodeError(), "setup")

        klient.totp_enabled = True
        klient.totp_verified_at = utcnow()
        klient.totp_last_used_step = step
        await self.db.flush()

        await self.audit.log(
            klient.id,
            TotpAuditAction.SETUP_COMPLETED,
            ip_address=ctx.client_ip,
            user_agent=ctx.user_agent,
        )

    async def disable(
        self,
        user_id: int,
        ctx: RequestContext,
        password: str | None = None,
        code: str | None = None,
    ) -> str:
        """Turn 2FA off after re-authentication by password or current code.

        The account row is locked for the whole check-then-clear sequence.

        Returns:
            The method used, ``password`` or ``totp``
        """
        if not password and not code:
            raise ValidationError("Passord eller kode er påkrevd")

        klient = await self._load(user_id, for_update=True)
        if not klient.totp_enabled:
            raise ValidationError("2FA er ikke aktivert")

        if password:
            method = "password"
            if not verify_password(password, klient.password_hash):
                raise InvalidCredentialsError("Feil passord")
        else:
            method = "totp"
            secret = self.cipher.decrypt(klient.totp_secret_encrypted or "")
            step = self.engine.verify_with_counter(secret, code or "")
            if step is None:
                await self._fail(klient, ctx, InvalidCodeError(), "disable")
            elif not is_step_fresh(step, klient.totp_last_used_step):
                await self._fail(klient, ctx, ReplayedCodeError(), "disable")

        klient.totp_enabled = False
        klient.totp_secret_encrypted = None
        klient.totp_verified_at = None
        klient.backup_codes_hash = None
        klient.totp_recovery_codes_used = 0
        klient.totp_last_used_step = None
        await self.db.flush()

        await self.audit.log(
            klient.id,
            TotpAuditAction.DISABLED,
            ip_address=ctx.client_ip,
            user_agent=ctx.user_agent,
            details={"method": method},
        )
        return method

    async def verify_login(self, user_id: int, code: str, ctx: RequestContext) -> bool:
        """Check the second factor of a login.

        Six-digit input is treated as a TOTP code, anything else as a backup
        code.

        Returns:
            True if a backup code was consumed
        """
        klient = await self._load(user_id, for_update=True)
        if not klient.totp_enabled or not klient.totp_secret_encrypted:
            raise ValidationError("2FA er ikke aktivert")

        code = normalize_code(code)
        if not code:
            raise ValidationError("Kode er påkrevd")

        if len(code) == 6 and code.isascii() and code.isdigit():
            secret = self._secret(klient)
            step = self.engine.verify_with_counter(secret, code)
            if step is None:
                await self._fail(klient, ctx, InvalidCodeError(), "login")
            if not is_step_fresh(step, klient.totp_last_used_step):
                await self._fail(klient, ctx, ReplayedCodeError(), "login")

            klient.totp_last_used_step = step
            await self.db.flush()
            await self.audit.log(
                klient.id,
                TotpAuditAction.VERIFICATION_SUCCESS,
                ip_address=ctx.client_ip,
                user_agent=ctx.user_agent,
            )
            return False

        hashes = list(klient.backup_codes_hash or [])
        index = self._match_backup_code(code, hashes)
        if index is None:
            await self._fail(klient, ctx, InvalidCodeError(), "login")

        # Assign a new list so the JSON column is flagged as modified
        del hashes[index]
        klient.backup_codes_hash = hashes
        klient.totp_recovery_codes_used = (klient.totp_recovery_codes_used or 0) + 1
        await self.db.flush()

        await self.audit.log(
            klient.id,
            TotpAuditAction.BACKUP_CODE_USED,
            ip_address=ctx.client_ip,
            user_agent=ctx.user_agent,
            details={"remaining": len(hashes)},
        )
        logger.info(
            f"Klient {klient.id} used a backup code, {len(hashes)} remaining",
            extra={"user_id": klient.id, "remaining": len(hashes)},
        )
        return True
