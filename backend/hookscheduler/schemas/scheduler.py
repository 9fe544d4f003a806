from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class Frequency(str, Enum):
    ONCE = "once"
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class AuthType(str, Enum):
    NONE = "none"
    BEARER = "bearer"
    API_KEY = "apikey"
    BASIC = "basic"


class ScheduleStatus(str, Enum):
    PENDING = "Pending"
    EXECUTED = "Executed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class ExecutionStatus(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"


class TriggerSource(str, Enum):
    SCHEDULED = "Scheduled"
    MANUAL = "Manual"


class RetryPolicy(BaseModel):
    max_retries: int = Field(0, ge=0)
    delay_seconds: float = Field(5, ge=0)


class TimingSpec(BaseModel):
    frequency: Frequency = Frequency.ONCE
    interval: int = Field(1, ge=1)
    schedule_at: datetime
    use_specific_time: bool = False
    specific_hour: Optional[int] = Field(None, ge=0, le=23)
    specific_minute: Optional[int] = Field(None, ge=0, le=59)
    days_of_week: List[int] = Field(default_factory=list)
    day_of_month: Optional[int] = Field(None, ge=1, le=31)
    timezone: str = "UTC"

    @field_validator("days_of_week")
    @classmethod
    def _validate_days_of_week(cls, value: List[int]) -> List[int]:
        for day in value:
            if day < 0 or day > 6:
                raise ValueError("days_of_week entries must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(value))

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone '{value}'") from exc
        return value

    @model_validator(mode="after")
    def _localize_anchor(self) -> "TimingSpec":
        # Naive anchor times are wall-clock times in the schedule's timezone
        anchor = self.schedule_at
        if anchor.tzinfo is None:
            anchor = anchor.replace(tzinfo=ZoneInfo(self.timezone))
        # Stored as UTC; the database column keeps wall-clock fields only
        self.schedule_at = anchor.astimezone(timezone.utc)
        return self


class ScheduleBase(TimingSpec):
    name: str = Field(..., min_length=1)
    webhook_url: str = Field(..., min_length=1)
    http_method: HttpMethod = HttpMethod.POST
    json_body: str = "{}"
    auth_type: AuthType = AuthType.NONE
    auth_token: Optional[str] = None
    auth_api_key_name: Optional[str] = None
    auth_api_key_value: Optional[str] = None
    auth_username: Optional[str] = None
    auth_password: Optional[str] = None
    custom_headers: str = "{}"
    timeout_seconds: int = Field(30, ge=1, le=600)
    is_active: bool = True

    @field_validator("http_method", mode="before")
    @classmethod
    def _upper_method(cls, value):
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("name", "webhook_url")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class ScheduleCreate(ScheduleBase):
    pass


class ScheduleUpdate(ScheduleBase):
    pass


class Schedule(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: str
    name: str
    webhook_url: str
    http_method: HttpMethod
    json_body: str
    auth_type: AuthType
    custom_headers: str
    frequency: Frequency
    interval: int
    schedule_at: datetime
    use_specific_time: bool
    specific_hour: Optional[int] = None
    specific_minute: Optional[int] = None
    days_of_week: List[int] = Field(default_factory=list)
    day_of_month: Optional[int] = None
    timezone: str
    status: ScheduleStatus
    is_active: bool
    last_executed: Optional[datetime] = None
    next_execution: Optional[datetime] = None
    execution_count: int
    timeout_seconds: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WebhookRequest(BaseModel):
    """Snapshot of everything needed to call a schedule's webhook."""

    schedule_id: int
    name: str
    webhook_url: str
    http_method: str
    json_body: Optional[str] = None
    auth_type: AuthType = AuthType.NONE
    auth_token: Optional[str] = None
    auth_api_key_name: Optional[str] = None
    auth_api_key_value: Optional[str] = None
    auth_username: Optional[str] = None
    auth_password: Optional[str] = None
    custom_headers: Optional[str] = None
    timeout_seconds: float = 30


class DispatchOutcome(BaseModel):
    success: bool
    status_code: Optional[int] = None
    body: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0
    attempts: int = 0
    skipped: bool = False


class ExecutionLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    schedule_id: int
    owner_id: str
    schedule_name: str
    webhook_url: str
    http_method: str
    status: ExecutionStatus
    response_status: Optional[int] = None
    response_data: Optional[str] = None
    error_message: Optional[str] = None
    execution_time_ms: Optional[int] = None
    triggered_by: TriggerSource
    executed_at: datetime


class ScheduleEvent(BaseModel):
    """Live notification pushed to an owner's subscribers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str
    schedule_id: str
    status: ScheduleStatus
    last_executed: Optional[datetime] = None
    execution_count: int
    next_execution: Optional[datetime] = None
    frequency: Frequency


class NextExecutionPreview(BaseModel):
    next_execution: Optional[datetime] = None


class TriggerResponse(BaseModel):
    schedule: Schedule
    outcome: DispatchOutcome


class LogCleanupResponse(BaseModel):
    deleted: int
    message: str
