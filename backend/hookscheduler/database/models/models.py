from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text

from ..connection import Base


class Schedule(Base):
    __tablename__ = "schedules"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    webhook_url = Column(String, nullable=False)
    http_method = Column(String, nullable=False, default="POST")
    json_body = Column(Text, default="{}")

    auth_type = Column(String, nullable=False, default="none")  # none, bearer, apikey, basic
    auth_token = Column(String, nullable=True)
    auth_api_key_name = Column(String, nullable=True)
    auth_api_key_value = Column(String, nullable=True)
    auth_username = Column(String, nullable=True)
    auth_password = Column(String, nullable=True)
    custom_headers = Column(Text, default="{}")

    frequency = Column(String, nullable=False, default="once")
    interval = Column(Integer, nullable=False, default=1)
    schedule_at = Column(DateTime(timezone=True), nullable=False)
    use_specific_time = Column(Boolean, default=False)
    specific_hour = Column(Integer, nullable=True)
    specific_minute = Column(Integer, nullable=True)
    days_of_week = Column(JSON, default=list)
    day_of_month = Column(Integer, nullable=True)
    timezone = Column(String, nullable=False, default="UTC")

    status = Column(String, nullable=False, default="Pending", index=True)
    is_active = Column(Boolean, default=True)
    last_executed = Column(DateTime(timezone=True), nullable=True)
    next_execution = Column(DateTime(timezone=True), nullable=True)
    execution_count = Column(Integer, nullable=False, default=0)
    # Bumped on every edit of the definition
    revision = Column(Integer, nullable=False, default=0)
    timeout_seconds = Column(Integer, nullable=False, default=30)

    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))


class ExecutionLog(Base):
    __tablename__ = "execution_logs"

    id = Column(Integer, primary_key=True, index=True)
    # Plain column: log entries outlive the schedule they were written for
    schedule_id = Column(Integer, index=True, nullable=False)
    owner_id = Column(String, index=True, nullable=False)
    schedule_name = Column(String, nullable=False)
    webhook_url = Column(String, nullable=False)
    http_method = Column(String, nullable=False)
    status = Column(String, nullable=False)  # Success, Failed
    response_status = Column(Integer, nullable=True)
    response_data = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    execution_time_ms = Column(Integer, nullable=True)
    triggered_by = Column(String, nullable=False, default="Scheduled")  # Scheduled, Manual
    executed_at = Column(DateTime(timezone=True), index=True)
