import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )


role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "permission_id",
        Integer,
        ForeignKey("permissions.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Role(TimestampMixin, Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    guard_name: Mapped[str] = mapped_column(String(50), nullable=False, default="web")

    permissions: Mapped[list["Permission"]] = relationship(
        "Permission", secondary=role_permissions, back_populates="roles", lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Role id={self.id} name={self.name}>"


class Permission(TimestampMixin, Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(150), unique=True, nullable=False)
    guard_name: Mapped[str] = mapped_column(String(50), nullable=False, default="web")

    roles: Mapped[list["Role"]] = relationship(
        "Role", secondary=role_permissions, back_populates="permissions", lazy="selectin"
    )

    @property
    def category(self) -> str:
        return self.name.split(".", 1)[0]

    def __repr__(self) -> str:
        return f"<Permission id={self.id} name={self.name}>"


class User(TimestampMixin, Base):
    __tablename__ = "users"

    __table_args__ = (
        Index("ix_users_role", "role"),
        Index("ix_users_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    email_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Name of the global Role granting this user's permissions
    role: Mapped[str] = mapped_column(String(100), nullable=False, default="employee")
    status: Mapped[str] = mapped_column(
        Enum("active", "inactive", "suspended", name="user_status"),
        nullable=False,
        default="active",
    )
    job_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    employee_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender: Mapped[str | None] = mapped_column(
        Enum("male", "female", name="user_gender"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    preferences: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    updated_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    @property
    def is_superadmin(self) -> bool:
        return self.role == "superadmin"

    @property
    def is_active(self) -> bool:
        return self.status == "active" and self.deleted_at is None

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"


class Business(TimestampMixin, Base):
    __tablename__ = "businesses"

    __table_args__ = (
        Index("ix_businesses_is_active", "is_active"),
        Index("ix_businesses_subscription_plan", "subscription_plan"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    industry: Mapped[str | None] = mapped_column(String(100), nullable=True)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    tax_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    registration_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    established_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    employee_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    subscription_plan: Mapped[str] = mapped_column(
        Enum("free", "basic", "pro", "enterprise", name="subscription_plan"),
        nullable=False,
        default="free",
    )
    settings: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    updated_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    def __repr__(self) -> str:
        return f"<Business id={self.id} slug={self.slug}>"


class BusinessUser(TimestampMixin, Base):
    __tablename__ = "business_users"

    __table_args__ = (
        UniqueConstraint("business_id", "user_id", name="uq_business_user"),
        Index("ix_business_users_role", "business_role"),
        Index("ix_business_users_status", "employment_status"),
        Index("ix_business_users_invitation_token", "invitation_token"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    business_role: Mapped[str] = mapped_column(String(50), nullable=False, default="employee")
    permissions: Mapped[list | None] = mapped_column(JSON, nullable=True)
    joined_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    left_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    employment_status: Mapped[str] = mapped_column(
        Enum("active", "inactive", "terminated", name="employment_status"),
        nullable=False,
        default="active",
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    invitation_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    invitation_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    invitation_accepted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    invited_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id], lazy="selectin")
    business: Mapped["Business"] = relationship("Business", lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<BusinessUser business_id={self.business_id} user_id={self.user_id} "
            f"role={self.business_role}>"
        )


class BusinessFeature(TimestampMixin, Base):
    __tablename__ = "business_features"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    settings: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<BusinessFeature id={self.id} slug={self.slug}>"


class BusinessFeatureAssignment(TimestampMixin, Base):
    __tablename__ = "business_feature_assignments"

    __table_args__ = (
        UniqueConstraint("business_id", "feature_id", name="uq_business_feature"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False
    )
    feature_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("business_features.id", ondelete="CASCADE"), nullable=False
    )
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    settings: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    enabled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    enabled_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    feature: Mapped["BusinessFeature"] = relationship("BusinessFeature", lazy="selectin")
    business: Mapped["Business"] = relationship("Business", lazy="selectin")


class SalaryType(TimestampMixin, Base):
    __tablename__ = "salary_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    allows_overtime: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<SalaryType id={self.id} code={self.code}>"


class SalaryRate(TimestampMixin, Base):
    __tablename__ = "salary_rates"

    __table_args__ = (
        Index("ix_salary_rates_business_user", "business_id", "user_id"),
        Index("ix_salary_rates_effective", "effective_from", "effective_until"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False
    )
    salary_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("salary_types.id", ondelete="CASCADE"), nullable=False
    )
    base_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    user: Mapped["User"] = relationship("User", lazy="selectin")
    salary_type: Mapped["SalaryType"] = relationship("SalaryType", lazy="selectin")


class OvertimeRate(TimestampMixin, Base):
    __tablename__ = "overtime_rates"

    __table_args__ = (
        UniqueConstraint("business_id", "code", name="uq_overtime_rate_code"),
        Index("ix_overtime_rates_business_type", "business_id", "salary_type_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False
    )
    salary_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("salary_types.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    rate_type: Mapped[str] = mapped_column(
        Enum("multiplier", "fixed", name="overtime_rate_type"),
        nullable=False,
        default="multiplier",
    )
    multiplier: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    fixed_rate: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    conditions: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    salary_type: Mapped["SalaryType"] = relationship("SalaryType", lazy="selectin")


class Attendance(TimestampMixin, Base):
    __tablename__ = "attendances"

    __table_args__ = (
        Index("ix_attendances_business_date", "business_id", "work_date"),
        Index("ix_attendances_user_date", "user_id", "work_date"),
        Index("ix_attendances_status", "status"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False
    )
    salary_rate_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("salary_rates.id", ondelete="SET NULL"), nullable=True
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Local wall-clock times in settings.APP_TIMEZONE
    start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    regular_units: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=0)
    overtime_units: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        Enum("pending", "approved", "rejected", name="attendance_status"),
        nullable=False,
        default="pending",
    )

    user: Mapped["User"] = relationship("User", lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<Attendance id={self.id} user_id={self.user_id} "
            f"work_date={self.work_date} status={self.status}>"
        )


class Advance(TimestampMixin, Base):
    __tablename__ = "advances"

    __table_args__ = (
        Index("ix_advances_business_status", "business_id", "status"),
        Index("ix_advances_user_status", "user_id", "status"),
        Index("ix_advances_due_date", "due_date"),
        Index("ix_advances_advance_date", "advance_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    requested_by: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    approved_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    type: Mapped[str] = mapped_column(
        Enum("cash", "bank_transfer", "check", "other", name="advance_type"),
        nullable=False,
        default="cash",
    )
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        Enum("pending", "approved", "rejected", "paid", name="advance_status"),
        nullable=False,
        default="pending",
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    advance_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    repaid_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    remaining_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    is_fully_repaid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id], lazy="selectin")
    requester: Mapped["User"] = relationship("User", foreign_keys=[requested_by], lazy="selectin")
    approver: Mapped["User | None"] = relationship(
        "User", foreign_keys=[approved_by], lazy="selectin"
    )

    def is_overdue(self, today: date) -> bool:
        return self.due_date is not None and self.due_date < today and not self.is_fully_repaid

    def __repr__(self) -> str:
        return f"<Advance id={self.id} amount={self.amount} status={self.status}>"


class Claim(TimestampMixin, Base):
    __tablename__ = "claims"

    __table_args__ = (
        Index("ix_claims_business_status", "business_id", "status"),
        Index("ix_claims_user_status", "user_id", "status"),
        Index("ix_claims_expense_date", "expense_date"),
        Index("ix_claims_category", "category"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    submitted_by: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    approved_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    expense_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="reimbursement"
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    vendor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        Enum("pending", "approved", "rejected", "paid", name="claim_status"),
        nullable=False,
        default="pending",
    )
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    reimbursed_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=0
    )
    remaining_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_fully_reimbursed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id], lazy="selectin")
    submitter: Mapped["User"] = relationship("User", foreign_keys=[submitted_by], lazy="selectin")
    approver: Mapped["User | None"] = relationship(
        "User", foreign_keys=[approved_by], lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Claim id={self.id} amount={self.amount} status={self.status}>"
