"""Active session management for the logged-in user."""

from fastapi import APIRouter, Depends

from skyplanner.api.deps import get_current_identity, get_session_registry
from skyplanner.schemas.common import Envelope, MessageData
from skyplanner.schemas.sessions import SessionData, SessionListData, TerminateSessionRequest
from skyplanner.services.sessions import SessionRegistry
from skyplanner.services.tokens import SessionClaims

router = APIRouter(prefix="/api/dashboard/sessions", tags=["sessions"])


@router.get("/list", response_model=Envelope[SessionListData])
async def list_sessions(
    identity: SessionClaims = Depends(get_current_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> Envelope[SessionListData]:
    """Active sessions, most recent activity first, with the caller's own flagged."""
    sessions = await registry.list_sessions(identity.user_id, identity.user_type, identity.jti)
    return Envelope(
        data=SessionListData(
            sessions=[
                SessionData(
                    id=s.id,
                    device_info=s.device_info,
                    ip_address=s.ip_address,
                    created_at=s.created_at,
                    last_activity_at=s.last_activity_at,
                    expires_at=s.expires_at,
                    is_current=s.is_current,
                )
                for s in sessions
            ]
        )
    )


@router.post("/terminate", response_model=Envelope[MessageData])
async def terminate_session(
    body: TerminateSessionRequest,
    identity: SessionClaims = Depends(get_current_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> Envelope[MessageData]:
    """End another of the caller's sessions; its token stops working immediately."""
    await registry.terminate(body.session_id, identity.user_id, identity.user_type, identity.jti)
    return Envelope(data=MessageData(message="Sesjonen er avsluttet"))
