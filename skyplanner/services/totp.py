"""TOTP engine for two-factor authentication.

Codes follow RFC 6238 defaults (SHA-1, 6 digits, 30 second steps) so any
authenticator app can be provisioned from the URI. Verification reports the
matching time step so callers can refuse codes for steps already consumed.
"""

import re
import secrets
import time

import pyotp

from skyplanner.core.config import Settings

DIGITS = 6
STEP_SECONDS = 30

BACKUP_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
BACKUP_CODE_LENGTH = 8

_CODE_RE = re.compile(r"[0-9]{6}")


def normalize_code(code: str) -> str:
    return re.sub(r"\s+", "", code or "")


def is_step_fresh(step: int, last_used_step: int | None) -> bool:
    """A step may be consumed only if it is strictly after the last one used."""
    return last_used_step is None or step > last_used_step


class TotpEngine:
    """Generates secrets, URIs and backup codes, and verifies TOTP codes."""

    def __init__(
        self,
        issuer: str = "Sky Planner",
        valid_window: int = 1,
        backup_code_count: int = 10,
    ):
        self.issuer = issuer
        self.valid_window = valid_window
        self.backup_code_count = backup_code_count

    @classmethod
    def from_settings(cls, settings: Settings) -> "TotpEngine":
        return cls(
            issuer=settings.totp_issuer,
            valid_window=settings.totp_valid_window,
            backup_code_count=settings.backup_code_count,
        )

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=DIGITS, interval=STEP_SECONDS, issuer=self.issuer)

    def generate_secret(self) -> str:
        """Random 160-bit secret, base32 encoded (32 characters)."""
        return pyotp.random_base32()

    def generate_uri(self, secret: str, account_label: str) -> str:
        """otpauth:// URI for QR provisioning."""
        return self._totp(secret).provisioning_uri(name=account_label, issuer_name=self.issuer)

    def generate_backup_codes(self) -> list[str]:
        """Distinct one-time codes formatted as ``XXXX-XXXX``."""
        codes: list[str] = []
        while len(codes) < self.backup_code_count:
            raw = "".join(
                secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(BACKUP_CODE_LENGTH)
            )
            code = f"{raw[:4]}-{raw[4:]}"
            if code not in codes:
                codes.append(code)
        return codes

    @staticmethod
    def step_at(for_time: float | None = None) -> int:
        """Time-step index: floor(unix seconds / 30)."""
        now = time.time() if for_time is None else for_time
        return int(now // STEP_SECONDS)

    def code_for_step(self, secret: str, step: int) -> str:
        return self._totp(secret).generate_otp(step)

    def verify_with_counter(
        self, secret: str, code: str, for_time: float | None = None
    ) -> int | None:
        """Return the time step the code is valid for, or None.

        Steps within the skew window are checked oldest first and every
        candidate is compared, so the first chronological match wins.
        """
        code = normalize_code(code)
        if not _CODE_RE.fullmatch(code):
            return None

        current = self.step_at(for_time)
        matched: int | None = None
        for step in range(current - self.valid_window, current + self.valid_window + 1):
            expected = self.code_for_step(secret, step)
            if secrets.compare_digest(expected, code) and matched is None:
                matched = step
        return matched

    def verify(self, secret: str, code: str, for_time: float | None = None) -> bool:
        return self.verify_with_counter(secret, code, for_time) is not None
