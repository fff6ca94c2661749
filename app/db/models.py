from typing import List, Optional
from datetime import datetime, date
from sqlalchemy import (
    String,
    Boolean,
    Integer,
    BigInteger,
    Text,
    ForeignKey,
    Enum,
    Index,
    UniqueConstraint,
    DateTime,
    Date,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
import enum

from app.utils.datetime_utils import naive_utc_now


class Base(DeclarativeBase):
    pass


def _enum_values(enum_cls):
    # Persist the code ("0", "1", ...) rather than the member name
    return [member.value for member in enum_cls]


# Enums
class UarProcessStatus(enum.Enum):
    PENDING = "0"
    CONSUMED = "1"


class ApprovalStatus(enum.Enum):
    PENDING = "0"
    APPROVED = "1"
    REJECTED = "2"


class CandidateStatus(enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SENT = "SENT"
    FAILED = "FAILED"


class TemplateChannel(enum.Enum):
    EMAIL = "EMAIL"
    TEAMS = "TEAMS"


class ScheduleStatus(enum.Enum):
    INACTIVE = "0"
    ACTIVE = "1"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields, stored as naive UTC"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=naive_utc_now, onupdate=naive_utc_now
    )


# Master data
class Application(Base, AuditMixin):
    __tablename__ = "uar_applications"

    application_id: Mapped[str] = mapped_column(String(20), primary_key=True)
    application_name: Mapped[str] = mapped_column(String(200), nullable=False)
    # NOREG of the System Owner who approves this application's access grants
    noreg_system_owner: Mapped[Optional[str]] = mapped_column(String(20))
    division_id: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    schedules: Mapped[List["UarSchedule"]] = relationship(
        back_populates="application", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("idx_uar_app_is_active", "is_active"),)


class UarSchedule(Base, AuditMixin):
    __tablename__ = "uar_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("uar_applications.application_id", ondelete="CASCADE"),
        nullable=False,
    )
    schedule_uar_dt: Mapped[date] = mapped_column(Date, nullable=False)
    # Only month/day are significant; the window may wrap over the new year
    schedule_sync_start_dt: Mapped[date] = mapped_column(Date, nullable=False)
    schedule_sync_end_dt: Mapped[date] = mapped_column(Date, nullable=False)
    schedule_status: Mapped[ScheduleStatus] = mapped_column(
        Enum(ScheduleStatus, values_callable=_enum_values), default=ScheduleStatus.ACTIVE, nullable=False
    )

    # Relationships
    application: Mapped["Application"] = relationship(back_populates="schedules")

    __table_args__ = (
        Index("idx_uar_sched_uar_dt", "schedule_uar_dt"),
        Index("idx_uar_sched_status", "schedule_status"),
    )


class AccessMapping(Base, AuditMixin):
    __tablename__ = "access_mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[str] = mapped_column(String(20), nullable=False)
    noreg: Mapped[Optional[str]] = mapped_column(String(20))
    username: Mapped[str] = mapped_column(String(50), nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    role_id: Mapped[str] = mapped_column(String(50), nullable=False)
    company_cd: Mapped[Optional[int]] = mapped_column(Integer)
    uar_process_status: Mapped[UarProcessStatus] = mapped_column(
        Enum(UarProcessStatus, values_callable=_enum_values), default=UarProcessStatus.PENDING, nullable=False
    )
    changed_by: Mapped[Optional[str]] = mapped_column(String(50))
    changed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_access_map_app_status", "application_id", "uar_process_status"),
        Index("idx_access_map_noreg", "noreg"),
    )


class Employee(Base, AuditMixin):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    noreg: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(200))
    position_name: Mapped[Optional[str]] = mapped_column(String(200))
    division_id: Mapped[Optional[int]] = mapped_column(Integer)
    department_id: Mapped[Optional[int]] = mapped_column(Integer)
    section_id: Mapped[Optional[int]] = mapped_column(Integer)
    mail: Mapped[Optional[str]] = mapped_column(String(320))
    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_to: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (Index("idx_employees_noreg_valid_to", "noreg", "valid_to"),)


class UarPic(Base):
    __tablename__ = "uar_pics"

    # Identity comes from the upstream sources, never generated here
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    pic_name: Mapped[str] = mapped_column(String(30), nullable=False)
    division_id: Mapped[int] = mapped_column(Integer, nullable=False)
    mail: Mapped[str] = mapped_column(String(50), nullable=False)
    created_by: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    changed_by: Mapped[Optional[str]] = mapped_column(String(50))
    changed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (Index("idx_uar_pics_division_id", "division_id"),)


# Review tasks
class UarSystemOwnerTask(Base):
    __tablename__ = "uar_system_owner_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uar_period: Mapped[str] = mapped_column(String(6), nullable=False)
    uar_id: Mapped[str] = mapped_column(String(20), nullable=False)
    username: Mapped[str] = mapped_column(String(50), nullable=False)
    noreg: Mapped[Optional[str]] = mapped_column(String(20))
    name: Mapped[Optional[str]] = mapped_column(String(200))
    position_name: Mapped[Optional[str]] = mapped_column(String(200))
    division_id: Mapped[Optional[int]] = mapped_column(Integer)
    department_id: Mapped[Optional[int]] = mapped_column(Integer)
    section_id: Mapped[Optional[int]] = mapped_column(Integer)
    company_cd: Mapped[Optional[int]] = mapped_column(Integer)
    application_id: Mapped[str] = mapped_column(String(20), nullable=False)
    role_id: Mapped[str] = mapped_column(String(50), nullable=False)
    reviewer_noreg: Mapped[Optional[str]] = mapped_column(String(20))
    reviewer_name: Mapped[Optional[str]] = mapped_column(String(200))
    review_status: Mapped[Optional[str]] = mapped_column(String(1))
    so_approval_status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus, values_callable=_enum_values), default=ApprovalStatus.PENDING, nullable=False
    )
    so_approval_by: Mapped[Optional[str]] = mapped_column(String(50))
    so_approval_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_by: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "uar_id",
            "application_id",
            "username",
            "role_id",
            name="uq_uar_so_task_key",
        ),
        Index("idx_uar_so_task_approval_created", "so_approval_status", "created_at"),
        Index("idx_uar_so_task_application_id", "application_id"),
    )


# Notification queue
class NotificationCandidate(Base, AuditMixin):
    __tablename__ = "notification_candidates"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    request_id: Mapped[str] = mapped_column(String(100), nullable=False)
    item_code: Mapped[str] = mapped_column(String(50), nullable=False)
    # NOREG of the approver, or a division id for PIC_ item codes
    approver_id: Mapped[str] = mapped_column(String(50), nullable=False)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    # Number of tasks the notification stands for, as text
    link_detail: Mapped[Optional[str]] = mapped_column(String(500))
    status: Mapped[CandidateStatus] = mapped_column(
        Enum(CandidateStatus), default=CandidateStatus.PENDING, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_error: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("idx_notif_cand_status_next", "status", "next_attempt_at"),
        Index("idx_notif_cand_request_item", "request_id", "item_code"),
    )


class NotificationHistory(Base):
    __tablename__ = "notification_history"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    candidate_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    request_id: Mapped[str] = mapped_column(String(100), nullable=False)
    item_code: Mapped[str] = mapped_column(String(50), nullable=False)
    channel: Mapped[str] = mapped_column(String(50), nullable=False)
    system: Mapped[str] = mapped_column(String(50), nullable=False)
    recipient: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_by: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )

    __table_args__ = (
        Index("idx_notif_hist_request_item", "request_id", "item_code"),
        Index("idx_notif_hist_sent_at", "sent_at"),
    )


class NotificationTemplate(Base, AuditMixin):
    __tablename__ = "notification_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_code: Mapped[str] = mapped_column(String(50), nullable=False)
    locale: Mapped[str] = mapped_column(String(10), default="en-US", nullable=False)
    channel: Mapped[TemplateChannel] = mapped_column(
        Enum(TemplateChannel), nullable=False
    )
    subject_tpl: Mapped[Optional[str]] = mapped_column(String(500))
    body_tpl: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "item_code", "locale", "channel", name="uq_notif_templ_code_locale_chan"
        ),
        Index("idx_notif_templ_is_active", "is_active"),
    )


class SystemConfig(Base, AuditMixin):
    __tablename__ = "system_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    system_type: Mapped[str] = mapped_column(String(50), nullable=False)
    system_cd: Mapped[str] = mapped_column(String(50), nullable=False)
    value_text: Mapped[Optional[str]] = mapped_column(String(1000))
    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_to: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        Index("idx_system_configs_type_cd", "system_type", "system_cd"),
    )


class BatchRunReport(Base):
    __tablename__ = "batch_run_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    run_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (Index("idx_batch_run_reports_job_run", "job_name", "run_at"),)
