from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class SyncDirection(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class CalendarInfo(BaseModel):
    id: str
    summary: Optional[str] = None
    primary: bool = False
    access_role: Optional[str] = None
    time_zone: Optional[str] = None


class CalendarList(BaseModel):
    calendars: List[CalendarInfo]


class AuthorizationUrl(BaseModel):
    authorization_url: str


class SetPrimaryCalendarRequest(BaseModel):
    calendar_id: str = Field(..., min_length=1)


class SyncFailure(BaseModel):
    direction: SyncDirection
    item_id: str
    error: str


class OutboundSyncResult(BaseModel):
    pushed: int = 0
    event_ids: List[str] = Field(default_factory=list)
    failures: List[SyncFailure] = Field(default_factory=list)


class InboundSyncResult(BaseModel):
    pulled: int = 0
    skipped: int = 0
    deactivated: int = 0
    event_ids: List[str] = Field(default_factory=list)
    failures: List[SyncFailure] = Field(default_factory=list)


class FullSyncResult(BaseModel):
    reservations_pushed: int
    events_pulled: int
    events_skipped: int
    failures: List[SyncFailure] = Field(default_factory=list)
    timestamp: datetime


class WebhookSetupRequest(BaseModel):
    callback_url: Optional[str] = None


class WebhookChannel(BaseModel):
    channel_id: str
    resource_id: str
    expires_at: datetime


class WebhookAck(BaseModel):
    success: bool = True
    business_id: Optional[int] = None
    synced: bool = False


class WebhookMaintenanceError(BaseModel):
    business_id: int
    error: str


class WebhookMaintenanceSummary(BaseModel):
    renewed: int = 0
    failed: int = 0
    cleaned: int = 0
    errors: List[WebhookMaintenanceError] = Field(default_factory=list)
