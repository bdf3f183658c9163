"""Invite a child by email and link the account to the calling parent.

Every call is driven to a terminal state in one pass:

    lookup -> (existing account resolved | invite -> new account | failed)
           -> relation checked -> (relation created | already present) -> done

The flow is safe to retry. An email that already has an account is never sent
to the invite endpoint again, so a retry after a failed link sends no second
invitation email, and the relation check plus the unique constraint on
``parent_child_relations`` keep exactly one link per parent/child pair.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .errors import ApiError, ErrorKind
from .schemas import InviteStatus, UserRole
from .supabase import SupabaseClient, SupabaseError, is_already_registered, is_unique_violation

logger = logging.getLogger(__name__)

RELATIONS_TABLE = "parent_child_relations"
PROFILES_TABLE = "profiles"

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

SIGN_UP_FIRST = (
    "This email is already registered but the account could not be resolved. "
    "Ask the user to sign up first, then try again."
)


@dataclass
class InviteResult:
    child_id: str
    status: InviteStatus
    relation_created: bool

    @property
    def message(self) -> str:
        if self.status == InviteStatus.CREATED:
            return "Child invited successfully."
        if self.relation_created:
            return "Existing account linked to parent."
        return "Child already linked to parent."


def _validate(email: Optional[str], full_name: Optional[str]) -> Tuple[str, str]:
    email = (email or "").strip()
    full_name = (full_name or "").strip()
    if not email or not full_name:
        raise ApiError(ErrorKind.INVALID_ARGUMENT, "Both email and fullName are required.")
    if not EMAIL_PATTERN.match(email):
        raise ApiError(ErrorKind.INVALID_ARGUMENT, "Invalid email address.")
    return email, full_name


async def _find_accounts(admin: SupabaseClient, email: str) -> List[Dict[str, Any]]:
    try:
        return await admin.find_users_by_email(email)
    except SupabaseError as exc:
        raise ApiError(
            ErrorKind.UPSTREAM_ERROR,
            f"Failed to look up existing account: {exc.message}",
        ) from exc


async def _adopt_existing_account(
    admin: SupabaseClient,
    parent_id: str,
    users: List[Dict[str, Any]],
    full_name: str,
) -> str:
    if len(users) != 1 or not users[0].get("id"):
        # Several matches or none: refuse rather than pick one.
        logger.warning(
            "existing account unresolvable",
            extra={"matches": len(users)},
        )
        raise ApiError(ErrorKind.NOT_FOUND, SIGN_UP_FIRST)
    child_id = str(users[0]["id"])
    if child_id == parent_id:
        raise ApiError(ErrorKind.INVALID_ARGUMENT, "You cannot link your own account as a child.")

    try:
        profiles = await admin.select(
            PROFILES_TABLE,
            params={"select": "id,user_role", "id": f"eq.{child_id}", "limit": "1"},
        )
    except SupabaseError as exc:
        raise ApiError(
            ErrorKind.UPSTREAM_ERROR,
            f"Failed to read child profile: {exc.message}",
        ) from exc
    if not profiles:
        logger.warning("existing account has no profile", extra={"child_id": child_id})
        raise ApiError(ErrorKind.NOT_FOUND, SIGN_UP_FIRST)
    if profiles[0].get("user_role") == UserRole.PARENT.value:
        # Roles are only changed by data repair, never by an invitation.
        logger.warning("invite targeted a parent account", extra={"child_id": child_id})
        raise ApiError(
            ErrorKind.INVALID_ARGUMENT,
            "This email belongs to a parent account and cannot be linked as a child.",
        )

    try:
        rows = await admin.update(
            PROFILES_TABLE,
            {"user_role": UserRole.CHILD.value, "full_name": full_name},
            params={"id": f"eq.{child_id}"},
        )
    except SupabaseError as exc:
        raise ApiError(
            ErrorKind.UPSTREAM_ERROR,
            f"Failed to update child profile: {exc.message}",
        ) from exc
    if not rows:
        raise ApiError(ErrorKind.NOT_FOUND, SIGN_UP_FIRST)

    logger.info("resolved existing account", extra={"child_id": child_id})
    return child_id


async def _ensure_child_account(
    admin: SupabaseClient,
    parent_id: str,
    email: str,
    full_name: str,
    *,
    redirect_to: Optional[str] = None,
) -> Tuple[str, InviteStatus]:
    # GoTrue re-sends the invitation for an unconfirmed user instead of refusing,
    # so a known email must never reach the invite endpoint.
    users = await _find_accounts(admin, email)
    if users:
        child_id = await _adopt_existing_account(admin, parent_id, users, full_name)
        return child_id, InviteStatus.LINKED

    try:
        user = await admin.invite_user_by_email(
            email,
            data={"full_name": full_name, "user_role": UserRole.CHILD.value},
            redirect_to=redirect_to,
        )
    except SupabaseError as exc:
        if not is_already_registered(exc):
            logger.warning(
                "invite failed",
                extra={"status": exc.status_code, "code": exc.code},
            )
            raise ApiError(ErrorKind.UPSTREAM_ERROR, f"Invitation failed: {exc.message}") from exc
        # Registered between our lookup and the invite.
        logger.info("email registered concurrently, resolving existing account")
        users = await _find_accounts(admin, email)
        child_id = await _adopt_existing_account(admin, parent_id, users, full_name)
        return child_id, InviteStatus.LINKED

    child_id = user.get("id")
    if not child_id:
        raise ApiError(ErrorKind.UPSTREAM_ERROR, "Invitation succeeded but returned no account id.")
    logger.info("child invited", extra={"child_id": child_id})
    return str(child_id), InviteStatus.CREATED


async def _ensure_relation(admin: SupabaseClient, parent_id: str, child_id: str) -> bool:
    """Link parent and child. Returns False when the link already existed."""
    existing = await admin.select(
        RELATIONS_TABLE,
        params={
            "select": "parent_id,child_id",
            "parent_id": f"eq.{parent_id}",
            "child_id": f"eq.{child_id}",
            "limit": "1",
        },
    )
    if existing:
        logger.info(
            "relation already present",
            extra={"parent_id": parent_id, "child_id": child_id},
        )
        return False

    try:
        await admin.insert(RELATIONS_TABLE, {"parent_id": parent_id, "child_id": child_id})
    except SupabaseError as exc:
        if is_unique_violation(exc):
            # A concurrent call linked the pair between our check and insert.
            logger.info(
                "relation created concurrently",
                extra={"parent_id": parent_id, "child_id": child_id},
            )
            return False
        raise
    logger.info("relation created", extra={"parent_id": parent_id, "child_id": child_id})
    return True


async def invite_child(
    admin: SupabaseClient,
    *,
    parent_id: str,
    email: Optional[str],
    full_name: Optional[str],
    redirect_to: Optional[str] = None,
) -> InviteResult:
    """Make sure a child account exists for ``email`` and is linked to ``parent_id``."""

    email, full_name = _validate(email, full_name)
    logger.info("inviting child", extra={"parent_id": parent_id})

    child_id, status = await _ensure_child_account(
        admin, parent_id, email, full_name, redirect_to=redirect_to
    )

    try:
        relation_created = await _ensure_relation(admin, parent_id, child_id)
    except SupabaseError as exc:
        logger.warning(
            "linking failed after account was ensured",
            extra={"parent_id": parent_id, "child_id": child_id, "status": exc.status_code},
        )
        raise ApiError(
            ErrorKind.UPSTREAM_ERROR,
            "The child account exists but linking it to you failed: "
            f"{exc.message}. Retry to link without sending another invitation.",
            extra={"childId": child_id, "accountExists": True},
        ) from exc

    return InviteResult(child_id=child_id, status=status, relation_created=relation_created)
