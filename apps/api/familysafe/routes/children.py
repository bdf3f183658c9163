import logging
from typing import List

from fastapi import APIRouter, Depends

from ..errors import ApiError, ErrorKind
from ..invitations import PROFILES_TABLE, RELATIONS_TABLE
from ..schemas import ChildSummary, Profile, RenameChildRequest, UnlinkChildResponse
from ..supabase import AuthContext, get_auth_context, parse_uuid

router = APIRouter(prefix="/api/v1", tags=["children"])
logger = logging.getLogger(__name__)


async def _require_linked_child(auth: AuthContext, child_id: str) -> str:
    child_id = parse_uuid(child_id, "child_id")
    rows = await auth.supabase.select(
        RELATIONS_TABLE,
        params={
            "select": "child_id",
            "parent_id": f"eq.{auth.user_id}",
            "child_id": f"eq.{child_id}",
            "limit": "1",
        },
    )
    if not rows:
        raise ApiError(ErrorKind.NOT_FOUND, "Child not found.")
    return child_id


@router.get("/children", response_model=List[ChildSummary])
async def list_children(auth: AuthContext = Depends(get_auth_context)) -> List[ChildSummary]:
    """Return the caller's linked children with their latest recorded location."""

    rows = await auth.supabase.rpc(
        "get_children_latest_locations",
        {"p_parent_id": auth.user_id},
    )
    children = [ChildSummary(**row) for row in rows or []]
    logger.info(
        "children query",
        extra={"parent_id": auth.user_id, "count": len(children)},
    )
    return children


@router.patch("/children/{child_id}", response_model=Profile)
async def rename_child(
    child_id: str,
    payload: RenameChildRequest,
    auth: AuthContext = Depends(get_auth_context),
) -> Profile:
    full_name = payload.full_name.strip()
    if not full_name:
        raise ApiError(ErrorKind.INVALID_ARGUMENT, "Name cannot be empty.")
    child_id = await _require_linked_child(auth, child_id)

    rows = await auth.supabase.update(
        PROFILES_TABLE,
        {"full_name": full_name},
        params={"id": f"eq.{child_id}"},
    )
    if not rows:
        raise ApiError(ErrorKind.NOT_FOUND, "Child not found.")
    logger.info("child renamed", extra={"parent_id": auth.user_id, "child_id": child_id})
    return Profile(**rows[0])


@router.delete("/children/{child_id}", response_model=UnlinkChildResponse)
async def unlink_child(
    child_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> UnlinkChildResponse:
    """Remove the caller's link to a child; the child's account and other parents are untouched."""

    child_id = parse_uuid(child_id, "child_id")
    rows = await auth.supabase.delete(
        RELATIONS_TABLE,
        params={"parent_id": f"eq.{auth.user_id}", "child_id": f"eq.{child_id}"},
    )
    if not rows:
        raise ApiError(ErrorKind.NOT_FOUND, "Child not found.")
    logger.info("child unlinked", extra={"parent_id": auth.user_id, "child_id": child_id})
    return UnlinkChildResponse(child_id=child_id)
