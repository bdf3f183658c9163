import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, Query

from ..errors import ApiError, ErrorKind
from ..invitations import RELATIONS_TABLE
from ..schemas import (
    Alert,
    AlertFeed,
    AlertType,
    QuickMessage,
    QuickMessageRequest,
    SosRequest,
)
from ..supabase import AuthContext, get_auth_context, parse_uuid

router = APIRouter(prefix="/api/v1", tags=["alerts"])
logger = logging.getLogger(__name__)

ALERTS_TABLE = "alerts"
MESSAGES_TABLE = "quick_messages"
LOCATIONS_TABLE = "location_history"


def _coordinates(latitude: Optional[float], longitude: Optional[float]) -> Optional[Tuple[float, float]]:
    if latitude is None and longitude is None:
        return None
    if latitude is None or longitude is None:
        raise ApiError(ErrorKind.INVALID_ARGUMENT, "latitude and longitude must be sent together.")
    return latitude, longitude


def _with_child_name(row: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(row)
    profile = data.pop("profiles", None) or {}
    data["child_name"] = profile.get("full_name")
    return data


@router.get("/alerts", response_model=AlertFeed)
async def list_alerts(
    limit: int = Query(10, ge=1, le=100, description="Most recent items of each kind"),
    auth: AuthContext = Depends(get_auth_context),
) -> AlertFeed:
    """Recent alerts and quick messages from every child linked to the caller."""

    relations = await auth.supabase.select(
        RELATIONS_TABLE,
        params={"select": "child_id", "parent_id": f"eq.{auth.user_id}"},
    )
    child_ids = [row["child_id"] for row in relations if row.get("child_id")]
    if not child_ids:
        return AlertFeed()

    in_filter = f"in.({','.join(child_ids)})"
    alert_rows = await auth.supabase.select(
        ALERTS_TABLE,
        params={
            "select": "*,profiles:child_id(full_name)",
            "child_id": in_filter,
            "order": "created_at.desc",
            "limit": str(limit),
        },
    )
    message_rows = await auth.supabase.select(
        MESSAGES_TABLE,
        params={
            "select": "*,profiles:child_id(full_name)",
            "child_id": in_filter,
            "order": "sent_at.desc",
            "limit": str(limit),
        },
    )
    return AlertFeed(
        alerts=[Alert(**_with_child_name(row)) for row in alert_rows],
        messages=[QuickMessage(**_with_child_name(row)) for row in message_rows],
    )


async def _mark_read(auth: AuthContext, table: str, item_id: str, label: str) -> Dict[str, Any]:
    item_id = parse_uuid(item_id, f"{label.lower()}_id")
    rows = await auth.supabase.update(table, {"is_read": True}, params={"id": f"eq.{item_id}"})
    if not rows:
        raise ApiError(ErrorKind.NOT_FOUND, f"{label} not found.")
    return rows[0]


@router.post("/alerts/{alert_id}/read", response_model=Alert)
async def mark_alert_read(alert_id: str, auth: AuthContext = Depends(get_auth_context)) -> Alert:
    return Alert(**await _mark_read(auth, ALERTS_TABLE, alert_id, "Alert"))


@router.post("/messages/{message_id}/read", response_model=QuickMessage)
async def mark_message_read(
    message_id: str, auth: AuthContext = Depends(get_auth_context)
) -> QuickMessage:
    return QuickMessage(**await _mark_read(auth, MESSAGES_TABLE, message_id, "Message"))


@router.post("/sos", response_model=Alert)
async def send_sos(payload: SosRequest, auth: AuthContext = Depends(get_auth_context)) -> Alert:
    """Raise an SOS alert for the calling child, recording their position first when known."""

    coords = _coordinates(payload.latitude, payload.longitude)
    message = "Emergency SOS alert"
    if coords:
        latitude, longitude = coords
        await auth.supabase.insert(
            LOCATIONS_TABLE,
            {
                "child_id": auth.user_id,
                "latitude": latitude,
                "longitude": longitude,
                "battery_level": payload.battery_level,
                "speed": 0,
            },
        )
        message += f" from location: {latitude:.4f}, {longitude:.4f}"

    rows = await auth.supabase.insert(
        ALERTS_TABLE,
        {"child_id": auth.user_id, "alert_type": AlertType.SOS.value, "message": message},
    )
    if not rows:
        raise ApiError(ErrorKind.UPSTREAM_ERROR, "SOS alert was not stored.")
    logger.warning("sos alert raised", extra={"child_id": auth.user_id, "has_location": bool(coords)})
    return Alert(**rows[0])


@router.post("/messages", response_model=QuickMessage)
async def send_quick_message(
    payload: QuickMessageRequest, auth: AuthContext = Depends(get_auth_context)
) -> QuickMessage:
    text = payload.message.strip()
    if not text:
        raise ApiError(ErrorKind.INVALID_ARGUMENT, "message is required.")
    coords = _coordinates(payload.latitude, payload.longitude)
    if coords:
        text += f" (at {coords[0]:.4f}, {coords[1]:.4f})"

    rows = await auth.supabase.insert(MESSAGES_TABLE, {"child_id": auth.user_id, "message": text})
    if not rows:
        raise ApiError(ErrorKind.UPSTREAM_ERROR, "Message was not stored.")
    return QuickMessage(**rows[0])
