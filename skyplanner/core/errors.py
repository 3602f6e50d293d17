"""Application error taxonomy.

Every error carries the HTTP status, a stable machine-readable code and a
user-facing message. Handlers in ``skyplanner.api.error_handling`` turn them
into the JSON envelope; the message is the only text a client ever sees.
"""

from typing import Any


class AppError(Exception):
    """Base class for errors that map onto an HTTP error envelope."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "En uventet feil oppstod"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        self.message = message or self.message
        if code:
            self.code = code
        super().__init__(self.message)

    def extra(self) -> dict[str, Any]:
        """Additional top-level envelope fields."""
        return {}

    def to_envelope(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": {"code": self.code, "message": self.message},
            **self.extra(),
        }


class ConfigError(AppError):
    """A required secret or key is missing or unusable."""

    status_code = 500
    code = "CONFIG_ERROR"
    message = "Server-konfigurasjonsfeil"


class AuthError(AppError):
    """Missing, invalid, expired or revoked credentials."""

    status_code = 401
    code = "UNAUTHORIZED"
    message = "Mangler autorisasjon"

    def extra(self) -> dict[str, Any]:
        return {"requireLogin": True}


class TokenExpiredError(AuthError):
    code = "TOKEN_EXPIRED"
    message = "Token utløpt"


class InvalidTokenError(AuthError):
    code = "INVALID_TOKEN"
    message = "Ugyldig token"


class TokenRevokedError(AuthError):
    code = "TOKEN_REVOKED"
    message = "Token er ugyldiggjort"


class MissingTenantContextError(AuthError):
    code = "MISSING_TENANT_CONTEXT"
    message = "Mangler organisasjonskontekst"


class InvalidCredentialsError(AuthError):
    code = "INVALID_CREDENTIALS"
    message = "Feil e-post eller passord"

    def extra(self) -> dict[str, Any]:
        return {}


class AccountInactiveError(AuthError):
    code = "ACCOUNT_INACTIVE"
    message = "Kontoen er deaktivert"


class InvalidCodeError(AuthError):
    """A TOTP or backup code did not verify."""

    code = "INVALID_CODE"
    message = "Ugyldig kode"

    def extra(self) -> dict[str, Any]:
        return {}


class ReplayedCodeError(InvalidCodeError):
    """A correct TOTP code for an already consumed time step."""

    code = "CODE_ALREADY_USED"
    message = "Koden er allerede brukt. Vent på neste kode."


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Ugyldig forespørsel"


class ConflictError(AppError):
    status_code = 400
    code = "CONFLICT"
    message = "Konflikt med eksisterende tilstand"


class CannotTerminateCurrentSessionError(AppError):
    status_code = 400
    code = "CANNOT_TERMINATE_CURRENT_SESSION"
    message = "Bruk logg ut for å avslutte gjeldende sesjon"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Ressursen ble ikke funnet"


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Ingen tilgang"


class CSRFValidationError(ForbiddenError):
    code = "CSRF_VALIDATION_FAILED"
    message = "Ugyldig eller manglende CSRF-token"


class InvalidOriginError(CSRFValidationError):
    """Origin or Referer names a different host than the request."""

    message = "Ugyldig opprinnelse"


class RateLimitedError(AppError):
    status_code = 429
    code = "TOO_MANY_REQUESTS"
    message = "For mange forsøk. Prøv igjen senere."


class ProxyError(AppError):
    """The backend behind the reverse proxy failed or misbehaved."""

    status_code = 502
    code = "PROXY_ERROR"
    message = "Kunne ikke koble til backend"
