import logging

from fastapi import APIRouter, Depends

from ..config import get_config
from ..errors import ErrorKind
from ..invitations import invite_child
from ..schemas import ErrorResponse, InviteChildRequest, InviteChildResponse
from ..supabase import AuthContext, SupabaseClient, get_admin_client, get_auth_context

router = APIRouter(prefix="/api/v1", tags=["invites"])
logger = logging.getLogger(__name__)


@router.post(
    "/invite-child",
    response_model=InviteChildResponse,
    responses={
        401: {"model": ErrorResponse, "description": ErrorKind.UNAUTHENTICATED.value},
        400: {"model": ErrorResponse, "description": ErrorKind.INVALID_ARGUMENT.value},
        404: {"model": ErrorResponse, "description": ErrorKind.NOT_FOUND.value},
        500: {"model": ErrorResponse, "description": ErrorKind.UPSTREAM_ERROR.value},
    },
)
async def invite_child_endpoint(
    payload: InviteChildRequest,
    auth: AuthContext = Depends(get_auth_context),
    admin: SupabaseClient = Depends(get_admin_client),
) -> InviteChildResponse:
    """Invite a child by email (or find their existing account) and link them to the caller."""

    result = await invite_child(
        admin,
        parent_id=auth.user_id,
        email=payload.email,
        full_name=payload.full_name,
        redirect_to=get_config().invite_redirect_url,
    )
    logger.info(
        "invite-child completed",
        extra={
            "parent_id": auth.user_id,
            "child_id": result.child_id,
            "status": result.status.value,
            "relation_created": result.relation_created,
        },
    )
    return InviteChildResponse(
        status=result.status,
        child_id=result.child_id,
        message=result.message,
    )
