"""
Collaborator ports for the billing cycle aggregator.

Contract:
    ``PlanResolver`` maps a billing scope to its plan name.
    ``NotificationDispatcher`` is told about closed cycles and new charges.
    ``GatewayChargeRequest`` is the payload a payment-gateway client needs
    to create the real charge; the kernel never calls the gateway itself.

Architecture:
    Kernel > Services.  Implementations live outside the kernel; the
    defaults here are the ones the scheduler script and the tests use.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from split_kernel.domain.dtos import BillingScope, ChargeInfo, ClosedCycle
from split_kernel.logging_config import get_logger

logger = get_logger("services.collaborators")


@dataclass(frozen=True)
class GatewayChargeRequest:
    """Everything a payment gateway needs to create one charge."""

    customer_id: str
    amount: Decimal
    currency: str
    due_date: date
    description: str
    external_reference: str
    split_breakdown: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class PlanResolver(Protocol):
    """Resolve the subscription plan a billing scope is on."""

    def plan_for(self, scope: BillingScope) -> str | None: ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    """
    Deliver charge-related alerts.

    Non-goals:
        - Failures must not block billing; the caller logs and continues.
    """

    def cycle_closed(self, closed: ClosedCycle) -> None: ...

    def charge_created(self, charge: ChargeInfo) -> None: ...


class StaticPlanResolver:
    """Plan names from a fixed mapping keyed by ``BillingScope.key``."""

    def __init__(self, plans: Mapping[str, str] | None = None, default: str | None = None):
        self._plans = dict(plans or {})
        self._default = default

    def plan_for(self, scope: BillingScope) -> str | None:
        return self._plans.get(scope.key, self._default)


class LoggingNotificationDispatcher:
    """Records notifications in the structured log only."""

    def cycle_closed(self, closed: ClosedCycle) -> None:
        logger.info("notification_cycle_closed", extra={
            "cycle_id": str(closed.cycle.id),
            "billing_month": closed.cycle.billing_month,
            "charge_count": len(closed.charges),
        })

    def charge_created(self, charge: ChargeInfo) -> None:
        logger.info("notification_charge_created", extra={
            "charge_id": str(charge.id),
            "token": charge.token,
        })

