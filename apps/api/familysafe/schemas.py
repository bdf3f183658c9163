"""Pydantic schemas shared across the API."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserRole(str, Enum):
    PARENT = "parent"
    CHILD = "child"


class InviteStatus(str, Enum):
    CREATED = "created"
    LINKED = "linked"


class AlertType(str, Enum):
    SOS = "SOS"
    GEOFENCE_ENTER = "geofence_enter"
    GEOFENCE_LEAVE = "geofence_leave"
    LOW_BATTERY = "low_battery"
    SPEEDING = "speeding"


class InviteChildRequest(BaseModel):
    # Blank values are accepted here and rejected by the flow with InvalidArgument.
    email: str = Field(default="")
    full_name: str = Field(default="", alias="fullName")

    model_config = ConfigDict(populate_by_name=True)


class InviteChildResponse(BaseModel):
    status: InviteStatus
    child_id: str = Field(..., alias="childId")
    message: str

    model_config = ConfigDict(populate_by_name=True)


class ErrorResponse(BaseModel):
    error_kind: str = Field(..., alias="errorKind")
    message: str

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Profile(BaseModel):
    id: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    user_role: UserRole
    updated_at: Optional[datetime] = None


class ChildSummary(BaseModel):
    """A linked child with their most recent known position, if any."""

    id: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    recorded_at: Optional[datetime] = None
    battery_level: Optional[int] = None


class RenameChildRequest(BaseModel):
    full_name: str = Field(default="", alias="fullName")

    model_config = ConfigDict(populate_by_name=True)


class UnlinkChildResponse(BaseModel):
    status: str = "unlinked"
    child_id: str = Field(..., alias="childId")

    model_config = ConfigDict(populate_by_name=True)


class Alert(BaseModel):
    id: str
    child_id: str
    alert_type: AlertType
    message: Optional[str] = None
    geofence_id: Optional[str] = None
    is_read: bool = False
    created_at: datetime
    child_name: Optional[str] = None


class QuickMessage(BaseModel):
    id: str
    child_id: str
    message: str
    is_read: bool = False
    sent_at: datetime
    child_name: Optional[str] = None


class AlertFeed(BaseModel):
    alerts: List[Alert] = Field(default_factory=list)
    messages: List[QuickMessage] = Field(default_factory=list)


class SosRequest(BaseModel):
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    battery_level: Optional[int] = Field(default=None, alias="batteryLevel", ge=0, le=100)

    model_config = ConfigDict(populate_by_name=True)


class QuickMessageRequest(BaseModel):
    message: str = Field(default="")
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
