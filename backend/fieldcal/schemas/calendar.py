from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import AwareDatetime, BaseModel, Field, model_validator


class CalendarAccessRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    WORKER = "WORKER"
    READ_ONLY = "READ_ONLY"


class HoldStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CONFIRMED = "CONFIRMED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class HoldSource(str, Enum):
    MANUAL = "MANUAL"
    SMS_AGENT = "SMS_AGENT"
    GOOGLE_SYNC = "GOOGLE_SYNC"


class EventType(str, Enum):
    JOB = "JOB"
    ESTIMATE = "ESTIMATE"
    CALL = "CALL"
    BLOCK = "BLOCK"
    ADMIN = "ADMIN"
    TRAVEL = "TRAVEL"
    FOLLOW_UP = "FOLLOW_UP"
    DEMO = "DEMO"
    ONBOARDING = "ONBOARDING"
    TASK = "TASK"


class EventStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    EN_ROUTE = "EN_ROUTE"
    ON_SITE = "ON_SITE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class ConflictSource(str, Enum):
    EVENT = "EVENT"
    HOLD = "HOLD"
    BUSY_BLOCK = "BUSY_BLOCK"


class FallbackStrategy(str, Enum):
    OWNER = "OWNER"
    ROUND_ROBIN = "ROUND_ROBIN"


class StrategyUsed(str, Enum):
    PREFERRED = "PREFERRED"
    OWNER = "OWNER"
    ROUND_ROBIN = "ROUND_ROBIN"


class ConflictOut(BaseModel):
    worker_user_id: str
    source: ConflictSource
    source_id: str
    start_at: datetime
    end_at: datetime


class ErrorResponse(BaseModel):
    detail: str
    code: str
    conflicts: Optional[List[ConflictOut]] = None


class BusinessHoursDay(BaseModel):
    # 0 = Monday ... 6 = Sunday
    day_of_week: int
    is_open: bool
    open_minute: Optional[int] = None
    close_minute: Optional[int] = None


class CalendarSettingsResponse(BaseModel):
    org_id: str
    timezone: str
    default_slot_minutes: int
    quiet_hours_start_minute: int
    quiet_hours_end_minute: int
    allow_overlaps: bool
    business_hours: List[BusinessHoursDay]


class AvailabilityResponse(BaseModel):
    org_id: str
    worker_id: str
    date: str
    duration_minutes: int
    step_minutes: int
    time_zone: str
    slots: List[datetime]


class ConflictCheckRequest(BaseModel):
    org_id: Optional[str] = None
    worker_user_ids: List[str] = Field(..., min_length=1)
    start_at: AwareDatetime
    end_at: AwareDatetime
    include_events: bool = True
    exclude_event_id: Optional[str] = None
    exclude_hold_id: Optional[str] = None


class ConflictCheckResponse(BaseModel):
    has_conflicts: bool
    conflicts: List[ConflictOut]


class NextOpenRequest(BaseModel):
    # Defaults to the caller's own organization.
    org_id: Optional[str] = None
    date: str
    duration_minutes: int = 30
    lookahead_days: Optional[int] = None
    preferred_worker_id: Optional[str] = None
    fallback_strategy: FallbackStrategy = FallbackStrategy.ROUND_ROBIN
    candidate_worker_ids: List[str] = Field(default_factory=list)


class NextOpenResponse(BaseModel):
    strategy_used: StrategyUsed
    worker_id: str
    slot: datetime
    duration_minutes: int


class HoldCreateRequest(BaseModel):
    org_id: Optional[str] = None
    worker_user_id: str = Field(..., min_length=1)
    start_at: AwareDatetime
    end_at: AwareDatetime
    expires_in_minutes: Optional[int] = None
    source: HoldSource = HoldSource.MANUAL
    lead_id: Optional[str] = Field(default=None, max_length=64)
    customer_name: Optional[str] = Field(default=None, max_length=255)
    title: Optional[str] = Field(default=None, max_length=255)
    address_line: Optional[str] = Field(default=None, max_length=512)


class HoldUpdateRequest(BaseModel):
    status: Optional[HoldStatus] = None
    expires_at: Optional[AwareDatetime] = None

    @model_validator(mode="after")
    def validate_has_change(self):
        if self.status is None and self.expires_at is None:
            raise ValueError("status or expires_at is required")
        return self


class HoldConfirmRequest(BaseModel):
    # Empty means the hold's own worker.
    worker_user_ids: List[str] = Field(default_factory=list)
    end_at: Optional[AwareDatetime] = None
    type: EventType = EventType.JOB
    status: EventStatus = EventStatus.CONFIRMED
    busy: bool = True
    title: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    customer_name: Optional[str] = Field(default=None, max_length=255)
    address_line: Optional[str] = Field(default=None, max_length=512)
    lead_id: Optional[str] = Field(default=None, max_length=64)


class HoldOut(BaseModel):
    id: str
    org_id: str
    worker_user_id: str
    status: HoldStatus
    is_active: bool
    source: HoldSource
    start_at: datetime
    end_at: datetime
    expires_at: datetime
    lead_id: Optional[str] = None
    customer_name: Optional[str] = None
    title: Optional[str] = None
    address_line: Optional[str] = None
    confirmed_event_id: Optional[str] = None


class HoldListResponse(BaseModel):
    items: List[HoldOut]


class HoldDeleteResponse(BaseModel):
    id: str
    deleted: bool


class HoldExpireResponse(BaseModel):
    expired_count: int


class EventOut(BaseModel):
    id: str
    org_id: str
    type: EventType
    status: EventStatus
    busy: bool
    title: Optional[str] = None
    start_at: datetime
    end_at: Optional[datetime] = None
    worker_user_ids: List[str]


class HoldConfirmResponse(BaseModel):
    hold: HoldOut
    event: EventOut


class EventCreateRequest(BaseModel):
    org_id: Optional[str] = None
    # Empty means the caller's own calendar.
    worker_user_ids: List[str] = Field(default_factory=list)
    title: str = Field(..., min_length=1, max_length=255)
    start_at: AwareDatetime
    end_at: Optional[AwareDatetime] = None
    duration_minutes: Optional[int] = None
    type: EventType = EventType.JOB
    status: EventStatus = EventStatus.SCHEDULED
    busy: bool = True
    all_day: bool = False
    description: Optional[str] = None
    customer_name: Optional[str] = Field(default=None, max_length=255)
    address_line: Optional[str] = Field(default=None, max_length=512)
    lead_id: Optional[str] = Field(default=None, max_length=64)


class EventRescheduleRequest(BaseModel):
    start_at: Optional[AwareDatetime] = None
    end_at: Optional[AwareDatetime] = None
    duration_minutes: Optional[int] = None
    worker_user_ids: List[str] = Field(default_factory=list)
    busy: Optional[bool] = None
    type: Optional[EventType] = None
    status: Optional[EventStatus] = None
    title: Optional[str] = Field(default=None, max_length=255)


class SendWindowResponse(BaseModel):
    org_id: str
    time_zone: str
    at: datetime
    quiet_hours_start_minute: int
    quiet_hours_end_minute: int
    in_quiet_hours: bool
    next_send_at: datetime


class RoundRobinTestRequest(BaseModel):
    org_id: str = Field(..., min_length=1)
    worker_ids: List[str] = Field(default_factory=list)
    iterations: Optional[int] = None
    duration_minutes: Optional[int] = None
    lookahead_days: Optional[int] = None
    date: Optional[str] = None


class WorkerRef(BaseModel):
    id: str
    name: str
    role: CalendarAccessRole


class RoundRobinAssignment(BaseModel):
    turn: int
    worker_id: str
    worker_name: str
    slot: Optional[datetime] = None


class RoundRobinTestResponse(BaseModel):
    passed: bool
    org_id: str
    start_date: str
    iterations: int
    duration_minutes: int
    lookahead_days: int
    last_assigned_worker_id: Optional[str] = None
    eligible_workers: List[WorkerRef]
    skipped_workers: List[WorkerRef]
    assignments: List[RoundRobinAssignment]
    expected_sequence: List[str]
    actual_sequence: List[str]
    summary: str
