"""Tenant-scoped endpoints."""

from fastapi import APIRouter, Depends

from skyplanner.api.deps import get_auth_service, require_tenant
from skyplanner.core.errors import NotFoundError
from skyplanner.schemas.auth import OrganizationData
from skyplanner.schemas.common import Envelope
from skyplanner.services.auth import AuthService
from skyplanner.services.tokens import SessionClaims

router = APIRouter(prefix="/api/dashboard", tags=["organization"])


@router.get("/organization", response_model=Envelope[OrganizationData])
async def current_organization(
    identity: SessionClaims = Depends(require_tenant),
    auth: AuthService = Depends(get_auth_service),
) -> Envelope[OrganizationData]:
    """The organization the caller's session is scoped to."""
    organization = await auth.get_organization(identity.organization_id)
    if organization is None:
        raise NotFoundError("Organisasjonen ble ikke funnet")
    return Envelope(
        data=OrganizationData(id=organization.id, navn=organization.navn, slug=organization.slug)
    )
