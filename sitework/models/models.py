import uuid
from datetime import datetime, date, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Table,
    Integer,
    Float,
    JSON,
    UniqueConstraint,
    Text,
    Index,
    Uuid,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Association table for many-to-many User<->Role
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Uuid, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("user_id", "role_id", name="uq_user_role"),
)

# Association table for many-to-many Project<->User (site team)
project_members = Table(
    "project_members",
    Base.metadata,
    Column("project_id", Uuid, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("project_id", "user_id", name="uq_project_member"),
)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    permissions: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)

    users = relationship("User", secondary=user_roles, back_populates="roles")


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    activation_status: Mapped[str] = mapped_column(String(20), default="active")  # provisional|active|pending|inactive
    preferred_language: Mapped[str] = mapped_column(String(5), default="en")
    current_project_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="SET NULL"))
    permissions_override: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    # Soft delete
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    deleted_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    deletion_reason: Mapped[Optional[str]] = mapped_column(Text)

    roles = relationship("Role", secondary=user_roles, back_populates="users", lazy="selectin")
    current_project = relationship("Project", foreign_keys=[current_project_id])
    projects = relationship("Project", secondary=project_members, back_populates="members")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class PayRate(Base):
    """Per-user pay rate; the open rate has no effective_to."""
    __tablename__ = "pay_rates"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    day_rate: Mapped[float] = mapped_column(Float, nullable=False)
    hourly_rate: Mapped[float] = mapped_column(Float, nullable=False)
    bonus_rate: Mapped[float] = mapped_column(Float, default=0.0)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# =====================
# Projects
# =====================

class Project(Base):
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(50), unique=True, index=True)
    client_name: Mapped[Optional[str]] = mapped_column(String(255))
    address: Mapped[Optional[str]] = mapped_column(String(500))
    status: Mapped[str] = mapped_column(String(20), default="active")  # planning|active|on_hold|completed
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    deleted_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    deletion_reason: Mapped[Optional[str]] = mapped_column(Text)

    plots = relationship("Plot", back_populates="project", order_by="Plot.plot_number")
    members = relationship("User", secondary=project_members, back_populates="projects")


class Plot(Base):
    __tablename__ = "plots"

    id: Mapped[uuid.UUID] = uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    level: Mapped[Optional[str]] = mapped_column(String(50))
    plot_number: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="not_started")  # not_started|in_progress|completed
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    deleted_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    deletion_reason: Mapped[Optional[str]] = mapped_column(Text)

    project = relationship("Project", back_populates="plots")

    __table_args__ = (
        UniqueConstraint("project_id", "plot_number", name="uq_plot_project_number"),
    )

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.level:
            return f"Level {self.level} - Plot {self.plot_number}"
        return f"Plot {self.plot_number}"


class Document(Base):
    """Controlled site document; one row per version"""
    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    plot_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("plots.id", ondelete="SET NULL"))
    document_type: Mapped[str] = mapped_column(String(30), nullable=False)  # RAMS|Drawing|Task_Plan|Site_Notice|POD
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str] = mapped_column(String(20), nullable=False)
    revision: Mapped[Optional[str]] = mapped_column(String(20))
    is_current: Mapped[bool] = mapped_column(Boolean, default=True)
    superseded_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("documents.id", ondelete="SET NULL"))
    superseded_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    file_key: Mapped[Optional[str]] = mapped_column(String(500))
    content_type: Mapped[Optional[str]] = mapped_column(String(100))
    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    project = relationship("Project")
    plot = relationship("Plot")

    __table_args__ = (
        Index("idx_documents_title_current", "project_id", "title", "is_current"),
    )


# =====================
# Compliance
# =====================

class QualificationType(Base):
    __tablename__ = "qualification_types"

    id: Mapped[uuid.UUID] = uuid_pk()
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(20), default="qualification")  # qualification|training
    validity_months: Mapped[Optional[int]] = mapped_column(Integer)
    required_roles: Mapped[Optional[list]] = mapped_column(JSON, default=list)  # empty = everyone
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class UserQualification(Base):
    __tablename__ = "user_qualifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    qualification_type_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("qualification_types.id", ondelete="CASCADE"), nullable=False)
    card_number: Mapped[Optional[str]] = mapped_column(String(100))
    issued_on: Mapped[Optional[date]] = mapped_column(Date)
    expires_on: Mapped[Optional[date]] = mapped_column(Date)
    file_key: Mapped[Optional[str]] = mapped_column(String(500))
    approval_status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|approved|rejected
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user = relationship("User", foreign_keys=[user_id])
    qualification_type = relationship("QualificationType", lazy="joined")

    __table_args__ = (
        Index("idx_user_qualifications_user_type", "user_id", "qualification_type_id"),
    )


# =====================
# Timesheets & Pay
# =====================

class Timesheet(Base):
    __tablename__ = "timesheets"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    week_ending: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="draft")  # draft|submitted|approved|rejected
    notes: Mapped[Optional[str]] = mapped_column(Text)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, onupdate=utcnow)

    user = relationship("User", foreign_keys=[user_id])
    project = relationship("Project")
    entries = relationship(
        "TimesheetEntry",
        back_populates="timesheet",
        cascade="all, delete-orphan",
        order_by="TimesheetEntry.work_date",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "project_id", "week_ending", name="uq_timesheet_user_project_week"),
    )


class TimesheetEntry(Base):
    __tablename__ = "timesheet_entries"

    id: Mapped[uuid.UUID] = uuid_pk()
    timesheet_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False, index=True)
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    plot_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("plots.id", ondelete="SET NULL"))
    work_type: Mapped[Optional[str]] = mapped_column(String(100))
    is_full_day: Mapped[bool] = mapped_column(Boolean, default=True)
    hours: Mapped[Optional[float]] = mapped_column(Float)  # partial days only
    notes: Mapped[Optional[str]] = mapped_column(Text)
    rams_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    cscs_valid: Mapped[bool] = mapped_column(Boolean, default=False)

    timesheet = relationship("Timesheet", back_populates="entries")
    plot = relationship("Plot")
    piecework = relationship("PieceworkLine", back_populates="entry", cascade="all, delete-orphan")


class PieceworkLine(Base):
    __tablename__ = "piecework_lines"

    id: Mapped[uuid.UUID] = uuid_pk()
    entry_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("timesheet_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    work_item: Mapped[str] = mapped_column(String(255), nullable=False)
    units: Mapped[float] = mapped_column(Float, nullable=False)
    rate: Mapped[float] = mapped_column(Float, nullable=False)

    entry = relationship("TimesheetEntry", back_populates="piecework")

    @property
    def subtotal(self) -> float:
        return round(self.units * self.rate, 2)


class Payslip(Base):
    __tablename__ = "payslips"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    timesheet_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("timesheets.id", ondelete="CASCADE"), unique=True, nullable=False)
    project_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="SET NULL"))
    week_ending: Mapped[date] = mapped_column(Date, nullable=False)
    days_worked: Mapped[int] = mapped_column(Integer, default=0)
    day_rate: Mapped[float] = mapped_column(Float, default=0.0)
    partial_hours: Mapped[float] = mapped_column(Float, default=0.0)
    hourly_rate: Mapped[float] = mapped_column(Float, default=0.0)
    piecework_units: Mapped[float] = mapped_column(Float, default=0.0)
    piecework_total: Mapped[float] = mapped_column(Float, default=0.0)
    gross_total: Mapped[float] = mapped_column(Float, default=0.0)
    plots: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|approved|exported|paid|rejected
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    export_batch_id: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    exported_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user = relationship("User", foreign_keys=[user_id])
    project = relationship("Project")
    timesheet = relationship("Timesheet")


class PayrollExport(Base):
    __tablename__ = "payroll_exports"

    id: Mapped[uuid.UUID] = uuid_pk()
    batch_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    exported_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    record_count: Mapped[int] = mapped_column(Integer, default=0)
    gross_value: Mapped[float] = mapped_column(Float, default=0.0)
    status: Mapped[str] = mapped_column(String(20), default="completed")  # processing|completed
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# =====================
# Logistics
# =====================

class DeliveryBooking(Base):
    __tablename__ = "delivery_bookings"

    id: Mapped[uuid.UUID] = uuid_pk()
    request_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    submitted_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    supplier: Mapped[str] = mapped_column(String(255), nullable=False)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    delivery_time: Mapped[str] = mapped_column(String(10), nullable=False)  # HH:MM
    items: Mapped[list] = mapped_column(JSON, default=list)  # [{item, quantity, description}]
    delivery_method: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)
    vehicle_details: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|initiated|booked|rejected|failed
    booking_reference: Mapped[Optional[str]] = mapped_column(String(100))
    booking_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, onupdate=utcnow)

    project = relationship("Project")


class HireItem(Base):
    __tablename__ = "hire_items"

    id: Mapped[uuid.UUID] = uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    supplier: Mapped[str] = mapped_column(String(255), nullable=False)
    supplier_email: Mapped[Optional[str]] = mapped_column(String(255))
    order_ref: Mapped[Optional[str]] = mapped_column(String(100))
    on_hire_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_off_hire: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(30), default="live")  # live|off-hire-requested|off-hired
    weekly_cost: Mapped[float] = mapped_column(Float, default=0.0)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    added_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    off_hired_on: Mapped[Optional[date]] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, onupdate=utcnow)

    project = relationship("Project")
    added_by_user = relationship("User", foreign_keys=[added_by])
    requests = relationship("HireRequest", back_populates="item", order_by="HireRequest.created_at", cascade="all, delete-orphan")


class HireRequest(Base):
    __tablename__ = "hire_requests"

    id: Mapped[uuid.UUID] = uuid_pk()
    hire_item_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("hire_items.id", ondelete="CASCADE"), nullable=False, index=True)
    request_type: Mapped[str] = mapped_column(String(20), nullable=False)  # off-hire|extension|new-hire
    requested_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    details: Mapped[Optional[str]] = mapped_column(Text)
    generated: Mapped[bool] = mapped_column(Boolean, default=False)  # body drafted from a template
    new_end_date: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|confirmed|rejected
    email_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    decided_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    item = relationship("HireItem", back_populates="requests")


# =====================
# Inductions
# =====================

class Induction(Base):
    __tablename__ = "inductions"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="SET NULL"))
    supervisor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    language: Mapped[str] = mapped_column(String(5), default="en")
    status: Mapped[str] = mapped_column(String(20), default="in_progress")  # in_progress|completed
    current_step: Mapped[int] = mapped_column(Integer, default=1)
    total_steps: Mapped[int] = mapped_column(Integer, default=5)
    completion_percentage: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    steps = relationship("InductionStep", back_populates="induction", order_by="InductionStep.step_number", cascade="all, delete-orphan")


class InductionStep(Base):
    __tablename__ = "induction_steps"

    id: Mapped[uuid.UUID] = uuid_pk()
    induction_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("inductions.id", ondelete="CASCADE"), nullable=False, index=True)
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[str] = mapped_column(String(50), nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)
    completed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    induction = relationship("Induction", back_populates="steps")

    __table_args__ = (
        UniqueConstraint("induction_id", "step_number", name="uq_induction_step"),
    )


class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"

    id: Mapped[uuid.UUID] = uuid_pk()
    induction_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("inductions.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    language: Mapped[str] = mapped_column(String(5), default="en")
    answers: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)
    correct_count: Mapped[int] = mapped_column(Integer, default=0)
    total_questions: Mapped[int] = mapped_column(Integer, default=0)
    score: Mapped[int] = mapped_column(Integer, default=0)
    understanding_level: Mapped[str] = mapped_column(String(30), nullable=False)
    passed: Mapped[bool] = mapped_column(Boolean, default=False)
    feedback: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# =====================
# Evidence chain & signatures
# =====================

class Signature(Base):
    __tablename__ = "signatures"

    id: Mapped[uuid.UUID] = uuid_pk()
    operative_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    document_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("documents.id", ondelete="SET NULL"), index=True)
    signature_type: Mapped[str] = mapped_column(String(30), nullable=False)  # RAMS|Induction|Site Notice|Toolbox Talk|Onboarding
    document_title: Mapped[str] = mapped_column(String(255), nullable=False)
    document_version: Mapped[Optional[str]] = mapped_column(String(20))
    project_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="SET NULL"), index=True)
    plot_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("plots.id", ondelete="SET NULL"))
    method: Mapped[str] = mapped_column(String(30), nullable=False)  # Digital Pad|Checkbox Confirm
    signature_data: Mapped[Optional[str]] = mapped_column(Text)  # data URL for drawn signatures
    verified_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    status: Mapped[str] = mapped_column(String(20), default="Valid")  # Valid|Superseded
    signed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    operative = relationship("User", foreign_keys=[operative_id])
    verifier = relationship("User", foreign_keys=[verified_by])
    project = relationship("Project")
    plot = relationship("Plot")


class EvidenceRecord(Base):
    """Append-only, hash-chained log of document interactions (one chain per project)"""
    __tablename__ = "evidence_records"

    id: Mapped[uuid.UUID] = uuid_pk()
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    operative_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    plot_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("plots.id", ondelete="SET NULL"))
    document_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("documents.id", ondelete="SET NULL"))
    document_type: Mapped[str] = mapped_column(String(30), nullable=False)
    document_version: Mapped[Optional[str]] = mapped_column(String(20))
    document_revision: Mapped[Optional[str]] = mapped_column(String(20))
    action_type: Mapped[str] = mapped_column(String(20), nullable=False)  # view|sign|download|print|qr_scan|upload|supersede
    signature_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("signatures.id", ondelete="SET NULL"))
    poster_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("qr_posters.id", ondelete="SET NULL"))
    device_info: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)
    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    previous_hash: Mapped[Optional[str]] = mapped_column(String(64))
    evidence_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    project = relationship("Project")
    operative = relationship("User", foreign_keys=[operative_id])
    plot = relationship("Plot")

    __table_args__ = (
        UniqueConstraint("project_id", "sequence", name="uq_evidence_project_sequence"),
        Index("idx_evidence_operative_created", "operative_id", "created_at"),
    )


class QrPoster(Base):
    __tablename__ = "qr_posters"

    id: Mapped[uuid.UUID] = uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    plot_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("plots.id", ondelete="SET NULL"))
    poster_type: Mapped[str] = mapped_column(String(30), nullable=False)  # sign-in|welfare|hoarding|office|plot-specific
    location_name: Mapped[str] = mapped_column(String(255), nullable=False)
    scope_description: Mapped[Optional[str]] = mapped_column(Text)
    document_ids: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active")  # active|inactive
    scan_count: Mapped[int] = mapped_column(Integer, default=0)
    last_scanned_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    project = relationship("Project")


class EvidenceExport(Base):
    __tablename__ = "evidence_exports"

    id: Mapped[uuid.UUID] = uuid_pk()
    export_type: Mapped[str] = mapped_column(String(20), nullable=False)  # project|operative|plot|company|custom
    export_format: Mapped[str] = mapped_column(String(10), nullable=False)  # csv|json|pdf
    scope: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(20), default="processing")  # processing|completed|failed
    record_count: Mapped[int] = mapped_column(Integer, default=0)
    file_key: Mapped[Optional[str]] = mapped_column(String(500))
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


# =====================
# Retention (GDPR)
# =====================

class RetentionRule(Base):
    __tablename__ = "retention_rules"

    id: Mapped[uuid.UUID] = uuid_pk()
    data_type: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    retention_period: Mapped[int] = mapped_column(Integer, nullable=False)
    unit: Mapped[str] = mapped_column(String(10), default="years")  # months|years
    auto_archive: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_delete: Mapped[bool] = mapped_column(Boolean, default=False)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=True)
    legal_basis: Mapped[Optional[str]] = mapped_column(Text)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, onupdate=utcnow)


class RetentionRecord(Base):
    __tablename__ = "retention_records"

    id: Mapped[uuid.UUID] = uuid_pk()
    rule_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("retention_rules.id", ondelete="CASCADE"), nullable=False)
    subject_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    data_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)  # user|signature|document|timesheet|qualification
    entity_id: Mapped[Optional[str]] = mapped_column(String(64))
    description: Mapped[Optional[str]] = mapped_column(String(500))
    created_on: Mapped[date] = mapped_column(Date, nullable=False)
    archive_date: Mapped[Optional[date]] = mapped_column(Date)
    delete_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default="live")  # live|archived|pending_deletion|deleted
    review_status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|approved|overridden
    legal_hold: Mapped[bool] = mapped_column(Boolean, default=False)
    override_reason: Mapped[Optional[str]] = mapped_column(Text)
    override_requested_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    override_requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    can_request_deletion: Mapped[bool] = mapped_column(Boolean, default=True)
    data_size: Mapped[int] = mapped_column(Integer, default=0)  # bytes
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    rule = relationship("RetentionRule", lazy="joined")
    subject = relationship("User", foreign_keys=[subject_user_id])


class DeletionRequest(Base):
    __tablename__ = "deletion_requests"

    id: Mapped[uuid.UUID] = uuid_pk()
    record_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("retention_records.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|approved|rejected
    due_by: Mapped[date] = mapped_column(Date, nullable=False)
    decided_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    decision_note: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    record = relationship("RetentionRecord")


class ArchiveLogEntry(Base):
    __tablename__ = "archive_log"

    id: Mapped[uuid.UUID] = uuid_pk()
    record_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("retention_records.id", ondelete="SET NULL"))
    subject_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    data_type: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)  # archived|deleted|legal_hold|restored
    reason: Mapped[Optional[str]] = mapped_column(Text)
    approved_by: Mapped[Optional[str]] = mapped_column(String(255))  # name, or "System"
    record_count: Mapped[int] = mapped_column(Integer, default=1)
    data_size: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    subject = relationship("User", foreign_keys=[subject_user_id])


# =====================
# Audit & notifications
# =====================

class AuditLog(Base):
    """Append-only audit log for all administrative actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # user|project|plot|timesheet|...
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|UPDATE|APPROVE|REJECT|SOFT_DELETE|RESTORE
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50))
    source: Mapped[Optional[str]] = mapped_column(String(50))  # app|system|api
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_actor', 'actor_id', 'timestamp_utc'),
    )


class Notification(Base):
    """Notification records for in-app and email reminders"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)  # app|email
    template_key: Mapped[Optional[str]] = mapped_column(String(100))
    payload_json: Mapped[Optional[dict]] = mapped_column(JSON)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|sent|failed|read
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('idx_notifications_user_status', 'user_id', 'status'),
    )
