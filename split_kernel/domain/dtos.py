"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the enums, scope values and immutable data structures that flow
    between the split services, selectors and callers: scope keys, input
    drafts for receivers/rules/charges, and frozen ``*Info`` snapshots of
    persisted configurations, audit entries, billing cycles and charges.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers.

Invariants enforced:
    - Services and selectors return DTOs, never ORM entities.
    - ScopeKey.for_kind() normalizes the scope ids so two keys that denote
      the same scope always share one canonical string.
    - BillingScope carries exactly one of agency_id / owner_id.

Failure modes:
    - InvalidScopeError when scope ids do not fit the scope kind.
    - ValueError on malformed billing months or negative rule values.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar
from uuid import UUID

from split_kernel.domain.values import Money
from split_kernel.exceptions import InvalidScopeError

if TYPE_CHECKING:
    from split_kernel.models.audit_log import SplitAuditLog as SplitAuditLogModel
    from split_kernel.models.billing import (
        BillingCharge as BillingChargeModel,
        BillingCycle as BillingCycleModel,
    )
    from split_kernel.models.split_configuration import (
        SplitConfiguration as SplitConfigurationModel,
        SplitReceiver as SplitReceiverModel,
        SplitRule as SplitRuleModel,
    )

T = TypeVar("T")

_BILLING_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SplitScope(str, Enum):
    """What a configuration applies to."""

    GLOBAL = "global"
    PER_CONTRACT = "per_contract"
    PER_PROPERTY = "per_property"


class ConfigurationStatus(str, Enum):
    """
    Lifecycle status of a split configuration.

    Contract:
        DRAFT -> VALIDATED -> ACTIVE -> INACTIVE -> (ACTIVE | ARCHIVED).
        ARCHIVED is terminal.
    """

    DRAFT = "draft"
    VALIDATED = "validated"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class ReceiverType(str, Enum):
    PLATFORM = "platform"
    AGENCY = "agency"
    OWNER = "owner"


class RuleType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class ChargeType(str, Enum):
    RENT = "rent"
    OVERUSE = "overuse"
    OPERATIONAL_FEE = "operational_fee"
    DEPOSIT = "deposit"
    PENALTY = "penalty"


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    VALIDATE = "validate"
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    CREATE_VERSION = "create_version"
    ARCHIVE = "archive"
    CLOSE = "close"


class AuditEntityType(str, Enum):
    CONFIGURATION = "configuration"
    RECEIVER = "receiver"
    RULE = "rule"
    BILLING_CYCLE = "billing_cycle"
    CHARGE = "charge"
    USAGE_RECORD = "usage_record"


class BillingCycleStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ChargeStatus(str, Enum):
    """
    Payment status of a billing charge.

    Contract:
        PENDING -> PROCESSING -> (PAID | OVERDUE); OVERDUE -> PAID;
        PAID -> REFUNDED.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    OVERDUE = "overdue"
    REFUNDED = "refunded"


def validate_billing_month(billing_month: str) -> str:
    """Return ``billing_month`` if it is ``YYYY-MM``; raise ValueError otherwise."""
    if not isinstance(billing_month, str) or not _BILLING_MONTH_RE.match(billing_month):
        raise ValueError(f"billing_month must be YYYY-MM, got {billing_month!r}")
    return billing_month


# ---------------------------------------------------------------------------
# Scopes
# ---------------------------------------------------------------------------


def _id_part(value: UUID | None) -> str:
    return str(value) if value is not None else "-"


@dataclass(frozen=True)
class ScopeKey:
    """
    Identifiers a split configuration is scoped to.

    Contract:
        The canonical string is the persisted uniqueness key for the
        "one ACTIVE configuration per scope" index.  It never contains NULL,
        so an absent id still participates in the comparison.

    Guarantees:
        - for_kind() keeps only the ids that matter for the scope kind:
          GLOBAL keeps agency/owner, PER_CONTRACT adds contract,
          PER_PROPERTY adds property.
    """

    agency_id: UUID | None = None
    owner_id: UUID | None = None
    contract_id: UUID | None = None
    property_id: UUID | None = None

    def for_kind(self, scope: SplitScope) -> ScopeKey:
        """
        Normalize the key for a scope kind.

        Raises:
            InvalidScopeError: PER_CONTRACT without contract_id or
                PER_PROPERTY without property_id.
        """
        if scope == SplitScope.PER_CONTRACT:
            if self.contract_id is None:
                raise InvalidScopeError(scope.value, "contract_id is required")
            return ScopeKey(self.agency_id, self.owner_id, self.contract_id, None)
        if scope == SplitScope.PER_PROPERTY:
            if self.property_id is None:
                raise InvalidScopeError(scope.value, "property_id is required")
            return ScopeKey(self.agency_id, self.owner_id, None, self.property_id)
        return ScopeKey(self.agency_id, self.owner_id, None, None)

    def canonical(self) -> str:
        return (
            f"agency={_id_part(self.agency_id)};owner={_id_part(self.owner_id)};"
            f"contract={_id_part(self.contract_id)};property={_id_part(self.property_id)}"
        )

    def resolution_order(self) -> list[tuple[SplitScope, ScopeKey]]:
        """
        Candidate (scope, key) pairs for active-configuration lookup.

        PER_CONTRACT, then PER_PROPERTY, then GLOBAL for the same
        agency/owner, then the platform-wide GLOBAL default.
        """
        candidates: list[tuple[SplitScope, ScopeKey]] = []
        if self.contract_id is not None:
            candidates.append((SplitScope.PER_CONTRACT, self.for_kind(SplitScope.PER_CONTRACT)))
        if self.property_id is not None:
            candidates.append((SplitScope.PER_PROPERTY, self.for_kind(SplitScope.PER_PROPERTY)))
        candidates.append((SplitScope.GLOBAL, self.for_kind(SplitScope.GLOBAL)))
        if self.agency_id is not None or self.owner_id is not None:
            candidates.append((SplitScope.GLOBAL, ScopeKey()))
        return candidates


@dataclass(frozen=True)
class BillingScope:
    """
    Tenant a billing cycle belongs to: an agency or an independent owner.

    Raises:
        InvalidScopeError: unless exactly one of agency_id / owner_id is set.
    """

    agency_id: UUID | None = None
    owner_id: UUID | None = None

    def __post_init__(self) -> None:
        if (self.agency_id is None) == (self.owner_id is None):
            raise InvalidScopeError(
                "billing", "exactly one of agency_id or owner_id must be set"
            )

    @property
    def key(self) -> str:
        if self.agency_id is not None:
            return f"agency:{self.agency_id}"
        return f"owner:{self.owner_id}"

    def to_scope_key(self) -> ScopeKey:
        return ScopeKey(agency_id=self.agency_id, owner_id=self.owner_id)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleInput:
    """A rule to create, either nested under a receiver or standalone."""

    rule_type: RuleType
    value: Decimal
    minimum_amount: Decimal | None = None
    maximum_amount: Decimal | None = None
    charge_type: ChargeType | None = None
    priority: int = 0
    is_active: bool = True

    def __post_init__(self) -> None:
        for name in ("value", "minimum_amount", "maximum_amount"):
            raw = getattr(self, name)
            if raw is None:
                continue
            if isinstance(raw, float):
                raise ValueError(f"{name} must not be float: {raw!r}")
            amount = raw if isinstance(raw, Decimal) else Decimal(str(raw))
            if amount < 0:
                raise ValueError(f"{name} must be >= 0, got {amount}")
            object.__setattr__(self, name, amount)


@dataclass(frozen=True)
class ReceiverInput:
    """A receiver to create, with its initial rules."""

    receiver_type: ReceiverType
    name: str
    document: str | None = None
    user_id: UUID | None = None
    agency_id: UUID | None = None
    wallet_id: UUID | None = None
    is_locked: bool = False
    rules: tuple[RuleInput, ...] = ()


@dataclass(frozen=True)
class ChargeRequest:
    """
    Request to materialize one charge through the split calculator.

    ``scope_key`` selects the active configuration; ``billing_scope``
    (agency or owner) is the debtor recorded on the charge.
    """

    billing_scope: BillingScope
    charge_type: ChargeType
    gross_amount: Money
    description: str
    billing_month: str
    contract_id: UUID | None = None
    property_id: UUID | None = None
    cycle_id: UUID | None = None

    def __post_init__(self) -> None:
        validate_billing_month(self.billing_month)
        if self.gross_amount.is_negative:
            raise ValueError(f"gross_amount must be >= 0, got {self.gross_amount}")

    @property
    def scope_key(self) -> ScopeKey:
        return ScopeKey(
            agency_id=self.billing_scope.agency_id,
            owner_id=self.billing_scope.owner_id,
            contract_id=self.contract_id,
            property_id=self.property_id,
        )


# ---------------------------------------------------------------------------
# Configuration snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SplitRuleInfo:
    id: UUID
    configuration_id: UUID
    receiver_id: UUID
    rule_type: RuleType
    value: Decimal
    minimum_amount: Decimal | None
    maximum_amount: Decimal | None
    charge_type: ChargeType | None
    priority: int
    is_active: bool
    position: int

    @classmethod
    def from_model(cls, model: SplitRuleModel) -> SplitRuleInfo:
        return cls(
            id=model.id,
            configuration_id=model.configuration_id,
            receiver_id=model.receiver_id,
            rule_type=RuleType(model.rule_type),
            value=model.value,
            minimum_amount=model.minimum_amount,
            maximum_amount=model.maximum_amount,
            charge_type=ChargeType(model.charge_type) if model.charge_type else None,
            priority=model.priority,
            is_active=model.is_active,
            position=model.position,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "receiver_id": self.receiver_id,
            "rule_type": self.rule_type,
            "value": self.value,
            "minimum_amount": self.minimum_amount,
            "maximum_amount": self.maximum_amount,
            "charge_type": self.charge_type,
            "priority": self.priority,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class SplitReceiverInfo:
    id: UUID
    configuration_id: UUID
    receiver_type: ReceiverType
    name: str
    document: str | None
    user_id: UUID | None
    agency_id: UUID | None
    wallet_id: UUID | None
    is_locked: bool
    position: int
    rules: tuple[SplitRuleInfo, ...] = ()

    @classmethod
    def from_model(cls, model: SplitReceiverModel) -> SplitReceiverInfo:
        rules = sorted(model.rules, key=lambda r: r.position)
        return cls(
            id=model.id,
            configuration_id=model.configuration_id,
            receiver_type=ReceiverType(model.receiver_type),
            name=model.name,
            document=model.document,
            user_id=model.user_id,
            agency_id=model.agency_id,
            wallet_id=model.wallet_id,
            is_locked=model.is_locked,
            position=model.position,
            rules=tuple(SplitRuleInfo.from_model(r) for r in rules),
        )

    def to_dict(self, include_rules: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "receiver_type": self.receiver_type,
            "name": self.name,
            "document": self.document,
            "user_id": self.user_id,
            "agency_id": self.agency_id,
            "wallet_id": self.wallet_id,
            "is_locked": self.is_locked,
        }
        if include_rules:
            data["rules"] = [r.to_dict() for r in self.rules]
        return data


@dataclass(frozen=True)
class SplitConfigurationInfo:
    """
    Immutable snapshot of a split configuration and its receiver/rule tree.

    Receivers own their rules; back-references are plain ids.
    """

    id: UUID
    name: str
    description: str | None
    scope: SplitScope
    scope_key: ScopeKey
    version: int
    previous_version_id: UUID | None
    status: ConfigurationStatus
    is_validated: bool
    currency: str
    effective_date: date | None
    notes: str | None
    change_reason: str | None
    created_by_id: UUID
    validated_at: datetime | None = None
    validated_by_id: UUID | None = None
    activated_at: datetime | None = None
    activated_by_id: UUID | None = None
    deactivated_at: datetime | None = None
    deactivated_by_id: UUID | None = None
    archived_at: datetime | None = None
    archived_by_id: UUID | None = None
    receivers: tuple[SplitReceiverInfo, ...] = ()

    @property
    def is_active(self) -> bool:
        return self.status == ConfigurationStatus.ACTIVE

    @property
    def rules(self) -> tuple[SplitRuleInfo, ...]:
        return tuple(rule for receiver in self.receivers for rule in receiver.rules)

    @classmethod
    def from_model(cls, model: SplitConfigurationModel) -> SplitConfigurationInfo:
        receivers = sorted(model.receivers, key=lambda r: r.position)
        return cls(
            id=model.id,
            name=model.name,
            description=model.description,
            scope=SplitScope(model.scope),
            scope_key=ScopeKey(
                agency_id=model.agency_id,
                owner_id=model.owner_id,
                contract_id=model.contract_id,
                property_id=model.property_id,
            ),
            version=model.version,
            previous_version_id=model.previous_version_id,
            status=ConfigurationStatus(model.status),
            is_validated=model.is_validated,
            currency=model.currency,
            effective_date=model.effective_date,
            notes=model.notes,
            change_reason=model.change_reason,
            created_by_id=model.created_by_id,
            validated_at=model.validated_at,
            validated_by_id=model.validated_by_id,
            activated_at=model.activated_at,
            activated_by_id=model.activated_by_id,
            deactivated_at=model.deactivated_at,
            deactivated_by_id=model.deactivated_by_id,
            archived_at=model.archived_at,
            archived_by_id=model.archived_by_id,
            receivers=tuple(SplitReceiverInfo.from_model(r) for r in receivers),
        )

    def to_dict(self, include_receivers: bool = True) -> dict[str, Any]:
        """Serializable state used for audit before/after snapshots."""
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "scope": self.scope,
            "scope_key": self.scope_key.canonical(),
            "version": self.version,
            "previous_version_id": self.previous_version_id,
            "status": self.status,
            "is_validated": self.is_validated,
            "currency": self.currency,
            "effective_date": self.effective_date,
            "notes": self.notes,
            "change_reason": self.change_reason,
        }
        if include_receivers:
            data["receivers"] = [r.to_dict() for r in self.receivers]
        return data


@dataclass(frozen=True)
class ValidationReport:
    """Outcome of the configuration validation checks; reasons list every failure."""

    configuration_id: UUID
    reasons: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.reasons


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLogInfo:
    id: UUID
    configuration_id: UUID | None
    action: AuditAction
    entity_type: AuditEntityType
    entity_id: UUID | None
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    performed_by: UUID
    timestamp: datetime
    integrity_hash: str

    @classmethod
    def from_model(cls, model: SplitAuditLogModel) -> AuditLogInfo:
        return cls(
            id=model.id,
            configuration_id=model.configuration_id,
            action=AuditAction(model.action),
            entity_type=AuditEntityType(model.entity_type),
            entity_id=model.entity_id,
            before=json.loads(model.before) if model.before else None,
            after=json.loads(model.after) if model.after else None,
            performed_by=model.performed_by,
            timestamp=model.timestamp,
            integrity_hash=model.integrity_hash,
        )


@dataclass(frozen=True)
class AuditVerification:
    """Result of recomputing integrity hashes over a set of audit entries."""

    configuration_id: UUID | None
    entries_checked: int
    tampered_entry_ids: tuple[UUID, ...] = ()

    @property
    def is_intact(self) -> bool:
        return not self.tampered_entry_ids


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BillingCycleInfo:
    id: UUID
    scope: BillingScope
    billing_month: str
    status: BillingCycleStatus
    plan_name: str
    currency: str
    usage_snapshot: dict[str, dict[str, Any]] | None
    total_overage: Decimal
    total_operational_fee: Decimal
    charge_ids: tuple[UUID, ...]
    closed_at: datetime | None
    closed_by_id: UUID | None

    @property
    def is_open(self) -> bool:
        return self.status == BillingCycleStatus.OPEN

    @classmethod
    def from_model(cls, model: BillingCycleModel) -> BillingCycleInfo:
        return cls(
            id=model.id,
            scope=BillingScope(agency_id=model.agency_id, owner_id=model.owner_id),
            billing_month=model.billing_month,
            status=BillingCycleStatus(model.status),
            plan_name=model.plan_name,
            currency=model.currency,
            usage_snapshot=json.loads(model.usage_snapshot) if model.usage_snapshot else None,
            total_overage=model.total_overage,
            total_operational_fee=model.total_operational_fee,
            charge_ids=tuple(UUID(c) for c in json.loads(model.charge_ids or "[]")),
            closed_at=model.closed_at,
            closed_by_id=model.closed_by_id,
        )


@dataclass(frozen=True)
class ChargeInfo:
    id: UUID
    token: str
    agency_id: UUID | None
    owner_id: UUID | None
    contract_id: UUID | None
    property_id: UUID | None
    cycle_id: UUID | None
    configuration_id: UUID | None
    charge_type: ChargeType
    description: str
    billing_month: str
    gross_value: Money
    platform_fee: Money
    net_value: Money
    split_breakdown: dict[str, Any]
    status: ChargeStatus
    due_date: date
    gateway_payment_id: str | None = None
    gateway_customer_id: str | None = None
    paid_value: Money | None = None
    paid_at: datetime | None = None
    refunded_at: datetime | None = None
    refund_reason: str | None = None

    @classmethod
    def from_model(cls, model: BillingChargeModel) -> ChargeInfo:
        return cls(
            id=model.id,
            token=model.token,
            agency_id=model.agency_id,
            owner_id=model.owner_id,
            contract_id=model.contract_id,
            property_id=model.property_id,
            cycle_id=model.cycle_id,
            configuration_id=model.configuration_id,
            charge_type=ChargeType(model.charge_type),
            description=model.description,
            billing_month=model.billing_month,
            gross_value=Money.of(model.gross_value, model.currency).round(),
            platform_fee=Money.of(model.platform_fee, model.currency).round(),
            net_value=Money.of(model.net_value, model.currency).round(),
            split_breakdown=json.loads(model.split_breakdown),
            status=ChargeStatus(model.status),
            due_date=model.due_date,
            gateway_payment_id=model.gateway_payment_id,
            gateway_customer_id=model.gateway_customer_id,
            paid_value=(
                Money.of(model.paid_value, model.currency).round()
                if model.paid_value is not None
                else None
            ),
            paid_at=model.paid_at,
            refunded_at=model.refunded_at,
            refund_reason=model.refund_reason,
        )


@dataclass(frozen=True)
class ClosedCycle:
    """Outcome of a billing cycle close: the closed cycle, its charges, warnings."""

    cycle: BillingCycleInfo
    charges: tuple[ChargeInfo, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class Page(Generic[T]):
    items: tuple[T, ...]
    total: int
    skip: int
    take: int

    @property
    def has_more(self) -> bool:
        return self.skip + len(self.items) < self.total
