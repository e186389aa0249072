"""
Module: split_kernel.models.billing
Responsibility: ORM persistence for billing cycles, metered usage records and
    the charges a cycle close (or any other caller) materializes.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain enums only.

Invariants enforced:
    - One cycle per (scope_key, billing_month): ``uq_billing_cycle_scope_month``.
    - Cycles are mutated only while OPEN (enforced by BillingCycleService;
      close takes a row lock).
    - Charges: once ``gateway_payment_id`` is set the financial fields are
      frozen and the row cannot be deleted (db/immutability.py).
    - Charge tokens are unique.

Failure modes:
    - IntegrityError on a duplicate (scope_key, billing_month) insert; the
      service resolves the race by re-reading inside a SAVEPOINT.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from split_kernel.db.base import Base, UUIDString, enum_column
from split_kernel.domain.dtos import BillingCycleStatus, ChargeStatus, ChargeType


class BillingCycle(Base):
    """
    Monthly usage accounting period for one agency or independent owner.

    Contract:
        Created lazily on first access for a scope+month.  Closing is a
        one-way transition that snapshots usage and records charge ids.

    Guarantees:
        - Exactly one of agency_id / owner_id is set (scope_key encodes it).
        - row_version guards against lost updates.
    """

    __tablename__ = "billing_cycles"

    __table_args__ = (
        UniqueConstraint("scope_key", "billing_month", name="uq_billing_cycle_scope_month"),
        Index("idx_billing_cycle_status", "status"),
        Index("idx_billing_cycle_month", "billing_month"),
    )

    scope_key: Mapped[str] = mapped_column(String(80), nullable=False)
    agency_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    owner_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # YYYY-MM
    billing_month: Mapped[str] = mapped_column(String(7), nullable=False)

    status: Mapped[BillingCycleStatus] = mapped_column(
        enum_column(BillingCycleStatus),
        default=BillingCycleStatus.OPEN,
        nullable=False,
    )
    plan_name: Mapped[str] = mapped_column(String(30), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="BRL", nullable=False)

    # JSON {feature: {used, free, charged}}; written on close
    usage_snapshot: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_overage: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    total_operational_fee: Mapped[Decimal] = mapped_column(
        default=Decimal("0"),
        nullable=False,
    )
    # JSON list of generated charge ids; written on close
    charge_ids: Mapped[str | None] = mapped_column(Text, nullable=True)

    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    row_version: Mapped[int] = mapped_column(Integer, nullable=False)

    usage_records: Mapped[list["UsageRecord"]] = relationship(
        back_populates="cycle",
        cascade="all, delete-orphan",
        order_by="UsageRecord.recorded_at",
    )

    __mapper_args__ = {"version_id_col": row_version}

    def __repr__(self) -> str:
        return f"<BillingCycle {self.scope_key} {self.billing_month}: {self.status.value}>"

    @property
    def is_open(self) -> bool:
        return self.status == BillingCycleStatus.OPEN


class UsageRecord(Base):
    """One metered usage event (inspection, settlement, boleto, ...)."""

    __tablename__ = "usage_records"

    __table_args__ = (
        Index("idx_usage_cycle_feature", "cycle_id", "feature"),
    )

    cycle_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("billing_cycles.id", ondelete="CASCADE"),
        nullable=False,
    )
    feature: Mapped[str] = mapped_column(String(40), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    # Plan price at the time of use, informational
    unit_price: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(60), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    recorded_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    cycle: Mapped[BillingCycle] = relationship(back_populates="usage_records")


class BillingCharge(Base):
    """
    A charge produced through the split calculator.

    Contract:
        ``split_breakdown`` is the calculator result, stored verbatim as
        canonical JSON.  ``platform_fee`` is the PLATFORM share of it and
        ``net_value = gross_value - platform_fee``.

    Guarantees:
        - After ``gateway_payment_id`` is attached, only status and payment
          fields may change.
    """

    __tablename__ = "billing_charges"

    __table_args__ = (
        UniqueConstraint("token", name="uq_billing_charge_token"),
        Index("idx_billing_charge_cycle", "cycle_id"),
        Index("idx_billing_charge_status", "status"),
        Index("idx_billing_charge_month", "billing_month"),
    )

    token: Mapped[str] = mapped_column(String(8), nullable=False)

    agency_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    owner_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    contract_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    property_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    cycle_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("billing_cycles.id"),
        nullable=True,
    )
    configuration_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    configuration_version: Mapped[int | None] = mapped_column(Integer, nullable=True)

    charge_type: Mapped[ChargeType] = mapped_column(enum_column(ChargeType), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    billing_month: Mapped[str] = mapped_column(String(7), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), default="BRL", nullable=False)
    gross_value: Mapped[Decimal] = mapped_column(nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(nullable=False)
    net_value: Mapped[Decimal] = mapped_column(nullable=False)
    split_breakdown: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[ChargeStatus] = mapped_column(
        enum_column(ChargeStatus),
        default=ChargeStatus.PENDING,
        nullable=False,
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    gateway_payment_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    gateway_customer_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    paid_value: Mapped[Decimal | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<BillingCharge {self.token} {self.charge_type.value}: {self.status.value}>"
