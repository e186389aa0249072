"""
BillingCycleService -- monthly usage accounting and charge materialization.

Responsibility:
    Creates billing cycles lazily, records metered usage, turns usage into
    OVERUSE and OPERATIONAL_FEE charges at close, creates any other charge
    through the split calculator, and moves charges through their payment
    lifecycle.

Architecture position:
    Kernel > Services -- imperative shell.  Uses the pure usage-overage and
    split engines, SplitConfigurationSelector for active-configuration
    resolution, SplitAuditService for the audit trail and the
    collaborator ports in services/collaborators.py.

Invariants enforced:
    - One cycle per (scope, billing_month); a lazy-creation race is resolved
      inside a SAVEPOINT and the loser re-reads the winner's row.
    - Usage is recorded only while the cycle is OPEN.
    - close_cycle takes a row lock and rejects a non-OPEN cycle, so a cycle
      is closed (and charged) exactly once.
    - A charge is never created from an inconsistent split:
      CalculationInconsistencyError propagates and the close is aborted.
    - platform_fee = sum of PLATFORM lines; net_value = gross - platform_fee.
    - Charge status moves only along PENDING -> PROCESSING -> {PAID,
      OVERDUE}, OVERDUE -> PAID, PAID -> REFUNDED.
    - One audit entry per mutating call; charges created by a close are
      listed in the single CLOSE entry.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - BillingCycleNotFoundError / ChargeNotFoundError.
    - CycleAlreadyClosedError on usage for, or a second close of, a closed
      cycle.
    - CalculationInconsistencyError when the active configuration does not
      distribute a charge.
    - ChargeStatusTransitionError on a disallowed payment transition.

Audit relevance:
    Charges carry the calculator output verbatim (``split_breakdown``) so
    every platform fee can be traced to the configuration version that
    produced it.  Notification failures are the only errors logged and
    swallowed.
"""

import json
import secrets
from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from split_config.schema import BillingSettings
from split_engines.split_calculator import (
    SplitConfigurationSnapshot,
    SplitResult,
    calculate_split,
)
from split_engines.usage_overage import (
    OverageReport,
    compute_operational_fee,
    compute_overages,
)
from split_kernel.domain.clock import Clock
from split_kernel.domain.dtos import (
    AuditAction,
    AuditEntityType,
    BillingCycleInfo,
    BillingCycleStatus,
    BillingScope,
    ChargeInfo,
    ChargeRequest,
    ChargeStatus,
    ChargeType,
    ClosedCycle,
    ReceiverType,
    validate_billing_month,
)
from split_kernel.domain.values import Money
from split_kernel.exceptions import (
    BillingCycleNotFoundError,
    ChargeNotFoundError,
    ChargeStatusTransitionError,
    CycleAlreadyClosedError,
)
from split_kernel.logging_config import LogContext, get_logger
from split_kernel.models.billing import BillingCharge, BillingCycle, UsageRecord
from split_kernel.selectors.billing_selector import BillingSelector
from split_kernel.selectors.configuration_selector import SplitConfigurationSelector
from split_kernel.services.audit_trail import SplitAuditService
from split_kernel.services.base import BaseService
from split_kernel.services.collaborators import (
    GatewayChargeRequest,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    PlanResolver,
    StaticPlanResolver,
)
from split_kernel.utils.hashing import canonicalize_json

logger = get_logger("services.billing")

# Actor recorded for scheduler-driven changes with no human actor
SYSTEM_ACTOR_ID = UUID(int=0)

CHARGE_TRANSITIONS: dict[ChargeStatus, frozenset[ChargeStatus]] = {
    ChargeStatus.PENDING: frozenset({ChargeStatus.PROCESSING}),
    ChargeStatus.PROCESSING: frozenset({ChargeStatus.PAID, ChargeStatus.OVERDUE}),
    ChargeStatus.OVERDUE: frozenset({ChargeStatus.PAID}),
    ChargeStatus.PAID: frozenset({ChargeStatus.REFUNDED}),
    ChargeStatus.REFUNDED: frozenset(),
}

_TOKEN_ATTEMPTS = 5


def due_date_for(billing_month: str, due_day: int) -> date:
    """``due_day`` of the month after ``billing_month``."""
    year, month = (int(part) for part in validate_billing_month(billing_month).split("-"))
    if month == 12:
        return date(year + 1, 1, due_day)
    return date(year, month + 1, due_day)


def _charge_snapshot(charge: ChargeInfo) -> dict[str, Any]:
    return {
        "id": charge.id,
        "token": charge.token,
        "charge_type": charge.charge_type,
        "billing_month": charge.billing_month,
        "gross_value": charge.gross_value.amount,
        "platform_fee": charge.platform_fee.amount,
        "net_value": charge.net_value.amount,
        "currency": charge.gross_value.currency.code,
        "status": charge.status,
        "configuration_id": charge.configuration_id,
        "gateway_payment_id": charge.gateway_payment_id,
    }


class BillingCycleService(BaseService):
    """
    Billing cycle aggregator.

    Contract:
        Built with the plan catalog (``BillingSettings``) and optional
        collaborators.  Works inside the caller's transaction.

    Guarantees:
        - close_cycle is not re-runnable: the second call raises
          CycleAlreadyClosedError and creates nothing.
        - Charges without an active configuration are still recorded with
          ``platform_fee = 0`` and surface a warning.

    Non-goals:
        - Does NOT talk to the payment gateway; build_gateway_request()
          returns the payload for the caller's gateway client.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        settings: BillingSettings,
        clock: Clock | None = None,
        plan_resolver: PlanResolver | None = None,
        notifier: NotificationDispatcher | None = None,
    ):
        super().__init__(session, clock)
        self.settings = settings
        self._plans = plan_resolver or StaticPlanResolver(default=settings.default_plan)
        self._notifier = notifier or LoggingNotificationDispatcher()
        self._audit = SplitAuditService(session, self.clock)
        self._configurations = SplitConfigurationSelector(session)
        self._billing = BillingSelector(session)

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def _find_cycle(self, scope: BillingScope, billing_month: str) -> BillingCycle | None:
        return self.session.execute(
            select(BillingCycle).where(
                BillingCycle.scope_key == scope.key,
                BillingCycle.billing_month == billing_month,
            )
        ).scalar_one_or_none()

    def _get_or_create_cycle(
        self,
        scope: BillingScope,
        billing_month: str,
        actor_id: UUID,
    ) -> BillingCycle:
        cycle = self._find_cycle(scope, billing_month)
        if cycle is not None:
            return cycle

        plan = self.settings.plan(self._plans.plan_for(scope))
        cycle = BillingCycle(
            id=uuid4(),
            scope_key=scope.key,
            agency_id=scope.agency_id,
            owner_id=scope.owner_id,
            billing_month=billing_month,
            status=BillingCycleStatus.OPEN,
            plan_name=plan.name,
            currency=self.settings.currency,
        )
        try:
            with self.session.begin_nested():
                self.session.add(cycle)
                self.session.flush()
        except IntegrityError:
            # Another transaction created the same cycle first
            logger.info("billing_cycle_create_race", extra={
                "scope_key": scope.key,
                "billing_month": billing_month,
            })
            existing = self._find_cycle(scope, billing_month)
            if existing is None:
                raise
            return existing

        self._audit.record(
            action=AuditAction.CREATE,
            entity_type=AuditEntityType.BILLING_CYCLE,
            entity_id=cycle.id,
            performed_by=actor_id,
            after={
                "scope": scope.key,
                "billing_month": billing_month,
                "plan_name": plan.name,
                "currency": cycle.currency,
                "status": BillingCycleStatus.OPEN,
            },
        )
        logger.info("billing_cycle_created", extra={
            "cycle_id": str(cycle.id),
            "scope_key": scope.key,
            "billing_month": billing_month,
            "plan": plan.name,
        })
        return cycle

    def get_or_create_current_cycle(
        self,
        scope: BillingScope,
        actor_id: UUID | None = None,
    ) -> BillingCycleInfo:
        """
        The cycle of the current month for ``scope``, created if missing.

        Idempotent: repeated calls in the same month return the same cycle.
        """
        month = self.clock.current_billing_month()
        cycle = self._get_or_create_cycle(scope, month, actor_id or SYSTEM_ACTOR_ID)
        return BillingCycleInfo.from_model(cycle)

    def _get_cycle_for_update(self, cycle_id: UUID) -> BillingCycle:
        cycle = self.session.execute(
            select(BillingCycle)
            .where(BillingCycle.id == cycle_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if cycle is None:
            raise BillingCycleNotFoundError(str(cycle_id))
        return cycle

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def track_usage(
        self,
        scope: BillingScope,
        feature: str,
        actor_id: UUID | None = None,
        quantity: int = 1,
        reference_id: str | None = None,
        reference_type: str | None = None,
    ) -> BillingCycleInfo:
        """
        Record ``quantity`` units of ``feature`` on the current cycle.

        The unit price stored on the record is the plan's overage price at
        the time of use (informational; overage is priced at close).

        Raises:
            CycleAlreadyClosedError: the current month's cycle is closed.
            ValueError: quantity < 1 or empty feature.
        """
        if quantity < 1:
            raise ValueError(f"quantity must be >= 1, got {quantity}")
        if not feature:
            raise ValueError("feature is required")
        actor = actor_id or SYSTEM_ACTOR_ID

        cycle = self._get_or_create_cycle(scope, self.clock.current_billing_month(), actor)
        if cycle.status != BillingCycleStatus.OPEN:
            raise CycleAlreadyClosedError(str(cycle.id), cycle.billing_month)

        metered = self.settings.plan(cycle.plan_name).feature(feature)
        record = UsageRecord(
            id=uuid4(),
            cycle_id=cycle.id,
            feature=feature,
            quantity=quantity,
            unit_price=metered.unit_price if metered else 0,
            reference_id=reference_id,
            reference_type=reference_type,
            recorded_at=self.clock.now_utc(),
            recorded_by_id=actor,
        )
        cycle.usage_records.append(record)
        self.session.flush()

        self._audit.record(
            action=AuditAction.CREATE,
            entity_type=AuditEntityType.USAGE_RECORD,
            entity_id=record.id,
            performed_by=actor,
            after={
                "cycle_id": cycle.id,
                "feature": feature,
                "quantity": quantity,
                "unit_price": record.unit_price,
                "reference_id": reference_id,
                "reference_type": reference_type,
            },
        )
        logger.info("usage_tracked", extra={
            "cycle_id": str(cycle.id),
            "feature": feature,
            "quantity": quantity,
        })
        return BillingCycleInfo.from_model(cycle)

    def get_overages(
        self,
        scope: BillingScope,
        billing_month: str | None = None,
    ) -> OverageReport:
        """Usage and overage so far for a month (default: current).  Read only."""
        month = validate_billing_month(billing_month or self.clock.current_billing_month())
        cycle = self._find_cycle(scope, month)
        if cycle is None:
            plan = self.settings.plan(self._plans.plan_for(scope))
            usage: dict[str, int] = {}
            currency = self.settings.currency
        else:
            plan = self.settings.plan(cycle.plan_name)
            usage = self._billing.usage_totals(cycle.id)
            currency = cycle.currency
        return compute_overages(usage, plan.allowances(), currency)

    # ------------------------------------------------------------------
    # Charges
    # ------------------------------------------------------------------

    def _new_token(self) -> str:
        for _ in range(_TOKEN_ATTEMPTS):
            token = secrets.token_hex(4).upper()
            taken = self.session.execute(
                select(BillingCharge.id).where(BillingCharge.token == token)
            ).first()
            if taken is None:
                return token
        raise RuntimeError("Could not allocate a unique charge token")

    def _split_for(self, request: ChargeRequest) -> tuple[SplitResult, list[str]]:
        configuration = self._configurations.find_active_for_scope(request.scope_key)
        if configuration is None:
            warning = (
                f"No active split configuration for {request.billing_scope.key}; "
                f"{request.charge_type.value} charge recorded with platform fee 0"
            )
            logger.warning("charge_without_configuration", extra={
                "scope_key": request.scope_key.canonical(),
                "charge_type": request.charge_type.value,
            })
            result = SplitResult.unresolved(
                request.gross_amount, request.charge_type, warning
            )
            return result, [warning]

        result = calculate_split(
            SplitConfigurationSnapshot.from_info(configuration),
            request.gross_amount,
            request.charge_type,
        )
        if not result.is_valid:
            logger.error("split_calculation_inconsistent", extra={
                "configuration_id": str(configuration.id),
                "gross_amount": str(result.gross_amount.amount),
                "total_distributed": str(result.total_distributed.amount),
                "errors": list(result.errors),
            })
        result.require_consistent()
        return result, []

    def _create_charge(
        self,
        request: ChargeRequest,
        actor_id: UUID,
    ) -> tuple[BillingCharge, list[str]]:
        result, warnings = self._split_for(request)
        gross = request.gross_amount.round()
        platform_fee = result.amount_for(ReceiverType.PLATFORM)

        charge = BillingCharge(
            id=uuid4(),
            token=self._new_token(),
            agency_id=request.billing_scope.agency_id,
            owner_id=request.billing_scope.owner_id,
            contract_id=request.contract_id,
            property_id=request.property_id,
            cycle_id=request.cycle_id,
            configuration_id=result.configuration_id,
            configuration_version=result.configuration_version,
            charge_type=request.charge_type,
            description=request.description,
            billing_month=request.billing_month,
            currency=gross.currency.code,
            gross_value=gross.amount,
            platform_fee=platform_fee.amount,
            net_value=(gross - platform_fee).amount,
            split_breakdown=canonicalize_json(result.to_dict()),
            status=ChargeStatus.PENDING,
            due_date=due_date_for(request.billing_month, self.settings.due_day),
            created_at=self.clock.now_utc(),
            created_by_id=actor_id,
        )
        self.session.add(charge)
        self.session.flush()

        logger.info("charge_created", extra={
            "charge_id": str(charge.id),
            "token": charge.token,
            "charge_type": request.charge_type.value,
            "gross_value": str(gross.amount),
            "platform_fee": str(platform_fee.amount),
            "configuration_id": (
                str(result.configuration_id) if result.configuration_id else None
            ),
        })
        return charge, warnings

    def create_charge(self, request: ChargeRequest, actor_id: UUID) -> ChargeInfo:
        """
        Split and persist one charge.

        Raises:
            CalculationInconsistencyError: the active configuration does not
                distribute the gross amount.
        """
        charge, _ = self._create_charge(request, actor_id)
        info = ChargeInfo.from_model(charge)
        self._audit.record(
            action=AuditAction.CREATE,
            entity_type=AuditEntityType.CHARGE,
            entity_id=charge.id,
            performed_by=actor_id,
            configuration_id=charge.configuration_id,
            after=_charge_snapshot(info),
        )
        try:
            self._notifier.charge_created(info)
        except Exception:
            logger.exception("billing_notification_failed", extra={
                "charge_id": str(charge.id),
            })
        return info

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    def close_cycle(self, cycle_id: UUID, actor_id: UUID) -> ClosedCycle:
        """
        Close an OPEN cycle and materialize its charges.

        Postconditions:
            - One OVERUSE charge if any feature went over its free limit.
            - One OPERATIONAL_FEE charge if any boletos were issued.
            - The cycle is CLOSED with its usage snapshot, totals and
              charge ids.

        Raises:
            CycleAlreadyClosedError: the cycle is not OPEN.
            CalculationInconsistencyError: a charge's split is inconsistent;
                nothing is closed.
        """
        with LogContext.bind(cycle_id=str(cycle_id), actor_id=str(actor_id)):
            cycle = self._get_cycle_for_update(cycle_id)
            if cycle.status != BillingCycleStatus.OPEN:
                logger.warning("billing_cycle_double_close_rejected", extra={
                    "cycle_id": str(cycle_id),
                    "billing_month": cycle.billing_month,
                })
                raise CycleAlreadyClosedError(str(cycle_id), cycle.billing_month)

            scope = BillingScope(agency_id=cycle.agency_id, owner_id=cycle.owner_id)
            usage = self._billing.usage_totals(cycle.id)
            plan = self.settings.plan(cycle.plan_name)
            report = compute_overages(usage, plan.allowances(), cycle.currency)

            fee_feature = self.settings.operational_fee_feature
            fee_count = usage.get(fee_feature, 0)
            operational_fee = compute_operational_fee(
                fee_count, self.settings.boleto_markup, cycle.currency
            )

            charges: list[BillingCharge] = []
            warnings: list[str] = []
            if report.total.is_positive:
                charge, charge_warnings = self._create_charge(
                    ChargeRequest(
                        billing_scope=scope,
                        charge_type=ChargeType.OVERUSE,
                        gross_amount=report.total,
                        description=(
                            f"Usage overage {cycle.billing_month}: {report.describe()}"
                        ),
                        billing_month=cycle.billing_month,
                        cycle_id=cycle.id,
                    ),
                    actor_id,
                )
                charges.append(charge)
                warnings.extend(charge_warnings)

            if operational_fee.is_positive:
                charge, charge_warnings = self._create_charge(
                    ChargeRequest(
                        billing_scope=scope,
                        charge_type=ChargeType.OPERATIONAL_FEE,
                        gross_amount=operational_fee,
                        description=(
                            f"Operational fee {cycle.billing_month}: {fee_count} "
                            f"{fee_feature} x {self.settings.boleto_markup}"
                        ),
                        billing_month=cycle.billing_month,
                        cycle_id=cycle.id,
                    ),
                    actor_id,
                )
                charges.append(charge)
                warnings.extend(charge_warnings)

            snapshot = {line.feature: line.to_snapshot() for line in report.lines}
            snapshot[fee_feature] = {
                "used": fee_count,
                "free": 0,
                "charged": str(operational_fee.amount),
            }
            cycle.status = BillingCycleStatus.CLOSED
            cycle.usage_snapshot = canonicalize_json(snapshot)
            cycle.total_overage = report.total.amount
            cycle.total_operational_fee = operational_fee.amount
            cycle.charge_ids = json.dumps([str(charge.id) for charge in charges])
            cycle.closed_at = self.clock.now_utc()
            cycle.closed_by_id = actor_id
            try:
                self.session.flush()
            except StaleDataError as e:
                raise CycleAlreadyClosedError(str(cycle_id), cycle.billing_month) from e

            closed = ClosedCycle(
                cycle=BillingCycleInfo.from_model(cycle),
                charges=tuple(ChargeInfo.from_model(charge) for charge in charges),
                warnings=tuple(warnings),
            )
            self._audit.record(
                action=AuditAction.CLOSE,
                entity_type=AuditEntityType.BILLING_CYCLE,
                entity_id=cycle.id,
                performed_by=actor_id,
                before={"status": BillingCycleStatus.OPEN},
                after={
                    "status": BillingCycleStatus.CLOSED,
                    "billing_month": cycle.billing_month,
                    "usage_snapshot": snapshot,
                    "total_overage": cycle.total_overage,
                    "total_operational_fee": cycle.total_operational_fee,
                    "charges": [_charge_snapshot(charge) for charge in closed.charges],
                    "warnings": list(warnings),
                },
            )
            logger.info("billing_cycle_closed", extra={
                "cycle_id": str(cycle.id),
                "billing_month": cycle.billing_month,
                "charge_count": len(charges),
                "total_overage": str(report.total.amount),
                "total_operational_fee": str(operational_fee.amount),
                "warning_count": len(warnings),
            })

            try:
                self._notifier.cycle_closed(closed)
            except Exception:
                logger.exception("billing_notification_failed", extra={
                    "cycle_id": str(cycle.id),
                })
            return closed

    # ------------------------------------------------------------------
    # Payment lifecycle
    # ------------------------------------------------------------------

    def _get_charge_for_update(self, charge_id: UUID) -> BillingCharge:
        charge = self.session.execute(
            select(BillingCharge)
            .where(BillingCharge.id == charge_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if charge is None:
            raise ChargeNotFoundError(str(charge_id))
        return charge

    def _transition(self, charge: BillingCharge, target: ChargeStatus) -> ChargeStatus:
        current = ChargeStatus(charge.status)
        if target not in CHARGE_TRANSITIONS[current]:
            raise ChargeStatusTransitionError(str(charge.id), current.value, target.value)
        charge.status = target
        return current

    def _record_charge_update(
        self,
        charge: BillingCharge,
        before: dict[str, Any],
        actor_id: UUID,
    ) -> ChargeInfo:
        self.session.flush()
        info = ChargeInfo.from_model(charge)
        self._audit.record(
            action=AuditAction.UPDATE,
            entity_type=AuditEntityType.CHARGE,
            entity_id=charge.id,
            performed_by=actor_id,
            configuration_id=charge.configuration_id,
            before=before,
            after=_charge_snapshot(info),
        )
        return info

    def build_gateway_request(self, charge_id: UUID, customer_id: str) -> GatewayChargeRequest:
        """Payload for the payment gateway client.  No state change."""
        charge = self.session.get(BillingCharge, charge_id)
        if charge is None:
            raise ChargeNotFoundError(str(charge_id))
        return GatewayChargeRequest(
            customer_id=customer_id,
            amount=charge.gross_value,
            currency=charge.currency,
            due_date=charge.due_date,
            description=charge.description,
            external_reference=charge.token,
            split_breakdown=json.loads(charge.split_breakdown),
        )

    def attach_gateway_payment(
        self,
        charge_id: UUID,
        payment_id: str,
        customer_id: str | None,
        actor_id: UUID,
    ) -> ChargeInfo:
        """
        Record the gateway's payment id; the charge moves to PROCESSING.

        From here on gross_value, split_breakdown and the other financial
        fields are frozen by the ORM immutability listeners.
        """
        charge = self._get_charge_for_update(charge_id)
        if charge.gateway_payment_id is not None:
            raise ChargeStatusTransitionError(
                str(charge_id),
                ChargeStatus(charge.status).value,
                ChargeStatus.PROCESSING.value,
            )
        before = _charge_snapshot(ChargeInfo.from_model(charge))
        self._transition(charge, ChargeStatus.PROCESSING)
        charge.gateway_payment_id = payment_id
        charge.gateway_customer_id = customer_id
        info = self._record_charge_update(charge, before, actor_id)
        logger.info("charge_sent_to_gateway", extra={
            "charge_id": str(charge_id),
            "gateway_payment_id": payment_id,
        })
        return info

    def record_payment_status(
        self,
        charge_id: UUID,
        status: ChargeStatus,
        actor_id: UUID,
        paid_value: Money | None = None,
        paid_at: datetime | None = None,
    ) -> ChargeInfo:
        """
        Apply a payment status reported by the gateway.

        PAID stores ``paid_value`` (default: the gross value) and
        ``paid_at`` (default: now).
        """
        charge = self._get_charge_for_update(charge_id)
        before = _charge_snapshot(ChargeInfo.from_model(charge))
        previous = self._transition(charge, ChargeStatus(status))
        if status == ChargeStatus.PAID:
            charge.paid_value = (
                paid_value.amount if paid_value is not None else charge.gross_value
            )
            charge.paid_at = paid_at or self.clock.now_utc()
        elif status == ChargeStatus.REFUNDED:
            charge.refunded_at = self.clock.now_utc()
        info = self._record_charge_update(charge, before, actor_id)
        logger.info("charge_status_changed", extra={
            "charge_id": str(charge_id),
            "from_status": previous.value,
            "to_status": ChargeStatus(status).value,
        })
        return info

    def refund_charge(self, charge_id: UUID, reason: str, actor_id: UUID) -> ChargeInfo:
        """PAID -> REFUNDED with a reason."""
        charge = self._get_charge_for_update(charge_id)
        before = _charge_snapshot(ChargeInfo.from_model(charge))
        self._transition(charge, ChargeStatus.REFUNDED)
        charge.refunded_at = self.clock.now_utc()
        charge.refund_reason = reason
        info = self._record_charge_update(charge, before, actor_id)
        logger.info("charge_refunded", extra={
            "charge_id": str(charge_id),
            "reason": reason,
        })
        return info
