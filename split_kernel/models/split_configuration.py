"""
Module: split_kernel.models.split_configuration
Responsibility: ORM persistence for split configurations and the receivers
    and rules they own.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain enums only.

Invariants enforced:
    - At most one ACTIVE configuration per (scope, scope_key): partial unique
      index ``uq_split_config_one_active``.
    - Version numbers are unique within a lineage (scope, scope_key, name).
    - A configuration owns its receivers and each receiver owns its rules;
      both are removed with their parent (cascade delete-orphan).
    - ``row_version`` is a mapper version counter; a stale UPDATE raises
      StaleDataError, surfaced by the services as ConcurrentModificationError.

Failure modes:
    - IntegrityError on a second ACTIVE row for the same scope.
    - IntegrityError on a duplicate lineage version.

Audit relevance:
    Every change to these rows goes through SplitConfigurationService, which
    writes one SplitAuditLog per mutation in the same transaction.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from split_kernel.db.base import TrackedBase, UUIDString, enum_column
from split_kernel.domain.dtos import (
    ChargeType,
    ConfigurationStatus,
    ReceiverType,
    RuleType,
    SplitScope,
)


class SplitConfiguration(TrackedBase):
    """
    Named, versioned, scoped collection of receivers and rules.

    Contract:
        Status transitions are owned by SplitConfigurationService; this model
        only stores state.  ``scope_key`` is the canonical string of the
        normalized ScopeKey and never NULL.

    Guarantees:
        - Only one row per (scope, scope_key) may hold status ``active``.
        - (scope, scope_key, name, version) is unique.
    """

    __tablename__ = "split_configurations"

    __table_args__ = (
        UniqueConstraint(
            "scope", "scope_key", "name", "version",
            name="uq_split_config_lineage_version",
        ),
        Index(
            "uq_split_config_one_active",
            "scope",
            "scope_key",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index("idx_split_config_status", "status"),
        Index("idx_split_config_agency", "agency_id"),
        Index("idx_split_config_owner", "owner_id"),
    )

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    scope: Mapped[SplitScope] = mapped_column(
        enum_column(SplitScope),
        default=SplitScope.GLOBAL,
        nullable=False,
    )
    scope_key: Mapped[str] = mapped_column(String(200), nullable=False)

    agency_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    owner_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    contract_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    property_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    # Plain id, not a FK: deleting an old version must not touch its successors
    previous_version_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    status: Mapped[ConfigurationStatus] = mapped_column(
        enum_column(ConfigurationStatus),
        default=ConfigurationStatus.DRAFT,
        nullable=False,
    )
    is_validated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), default="BRL", nullable=False)
    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    validated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    activated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deactivated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    row_version: Mapped[int] = mapped_column(Integer, nullable=False)

    receivers: Mapped[list["SplitReceiver"]] = relationship(
        back_populates="configuration",
        cascade="all, delete-orphan",
        order_by="SplitReceiver.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": row_version}

    def __repr__(self) -> str:
        return f"<SplitConfiguration {self.name} v{self.version}: {self.status.value}>"

    @property
    def is_active(self) -> bool:
        return self.status == ConfigurationStatus.ACTIVE


class SplitReceiver(TrackedBase):
    """
    A party entitled to a share of a charge.

    Contract:
        ``is_locked`` receivers reject update and delete in every state.
        ``wallet_id`` is the payout wallet reference; required for every
        non-PLATFORM receiver at validation time.
    """

    __tablename__ = "split_receivers"

    __table_args__ = (
        Index("idx_split_receiver_config", "configuration_id"),
    )

    configuration_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("split_configurations.id", ondelete="CASCADE"),
        nullable=False,
    )

    receiver_type: Mapped[ReceiverType] = mapped_column(
        enum_column(ReceiverType),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # CPF / CNPJ
    document: Mapped[str | None] = mapped_column(String(32), nullable=True)
    user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    agency_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    wallet_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Stable input order; tie-breaker for equal rule priorities
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    configuration: Mapped[SplitConfiguration] = relationship(back_populates="receivers")

    rules: Mapped[list["SplitRule"]] = relationship(
        back_populates="receiver",
        cascade="all, delete-orphan",
        order_by="SplitRule.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<SplitReceiver {self.receiver_type.value}:{self.name}>"


class SplitRule(TrackedBase):
    """
    One distribution instruction belonging to a receiver.

    Contract:
        ``configuration_id`` must equal the receiver's configuration id
        (checked by the service before insert).  ``charge_type`` NULL means
        the rule applies to every charge type.
    """

    __tablename__ = "split_rules"

    __table_args__ = (
        Index("idx_split_rule_config", "configuration_id"),
        Index("idx_split_rule_receiver", "receiver_id"),
    )

    configuration_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("split_configurations.id", ondelete="CASCADE"),
        nullable=False,
    )
    receiver_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("split_receivers.id", ondelete="CASCADE"),
        nullable=False,
    )

    rule_type: Mapped[RuleType] = mapped_column(enum_column(RuleType), nullable=False)
    value: Mapped[Decimal] = mapped_column(nullable=False)
    minimum_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    maximum_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    charge_type: Mapped[ChargeType | None] = mapped_column(
        enum_column(ChargeType),
        nullable=True,
    )
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    receiver: Mapped[SplitReceiver] = relationship(back_populates="rules")

    def __repr__(self) -> str:
        return f"<SplitRule {self.rule_type.value} {self.value} p{self.priority}>"
