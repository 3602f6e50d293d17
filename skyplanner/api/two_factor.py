"""Two-factor authentication endpoints for logged-in klient users."""

import logging

from fastapi import APIRouter, Depends

from skyplanner.api.deps import get_current_identity, get_request_context, get_two_factor_service
from skyplanner.core.errors import ForbiddenError
from skyplanner.core.request_utils import RequestContext
from skyplanner.schemas.common import Envelope, MessageData
from skyplanner.schemas.two_factor import (
    DisableTwoFactorRequest,
    TwoFactorCodeRequest,
    TwoFactorSetupData,
    TwoFactorStatusData,
)
from skyplanner.services.tokens import SessionClaims
from skyplanner.services.two_factor import TwoFactorService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dashboard/2fa", tags=["two-factor"])


async def get_klient_identity(
    identity: SessionClaims = Depends(get_current_identity),
) -> SessionClaims:
    if identity.user_type != "klient":
        raise ForbiddenError("2FA er kun tilgjengelig for klientbrukere")
    return identity


@router.get("/status", response_model=Envelope[TwoFactorStatusData])
async def two_factor_status(
    identity: SessionClaims = Depends(get_klient_identity),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> Envelope[TwoFactorStatusData]:
    status = await service.status(identity.user_id)
    return Envelope(
        data=TwoFactorStatusData(
            enabled=status.enabled,
            enabled_at=status.enabled_at,
            backup_codes_remaining=status.backup_codes_remaining,
        )
    )


@router.post("/setup", response_model=Envelope[TwoFactorSetupData])
async def two_factor_setup(
    identity: SessionClaims = Depends(get_klient_identity),
    ctx: RequestContext = Depends(get_request_context),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> Envelope[TwoFactorSetupData]:
    """Start setup: returns the secret, provisioning URI and backup codes once."""
    setup = await service.setup(identity.user_id, ctx)
    return Envelope(
        data=TwoFactorSetupData(
            secret=setup.secret,
            uri=setup.uri,
            backup_codes=setup.backup_codes,
        )
    )


@router.post("/verify", response_model=Envelope[MessageData])
async def two_factor_verify(
    body: TwoFactorCodeRequest,
    identity: SessionClaims = Depends(get_klient_identity),
    ctx: RequestContext = Depends(get_request_context),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> Envelope[MessageData]:
    """Confirm setup with the first code from the authenticator app."""
    await service.confirm(identity.user_id, body.code, ctx)
    return Envelope(data=MessageData(message="2FA er aktivert"))


@router.post("/disable", response_model=Envelope[MessageData])
async def two_factor_disable(
    body: DisableTwoFactorRequest,
    identity: SessionClaims = Depends(get_klient_identity),
    ctx: RequestContext = Depends(get_request_context),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> Envelope[MessageData]:
    await service.disable(identity.user_id, ctx, password=body.password, code=body.code)
    return Envelope(data=MessageData(message="2FA er deaktivert"))
