"""
Module: split_kernel.selectors.billing_selector
Responsibility: Read-only queries over billing cycles, usage and charges.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/dtos and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - Read-only; returns BillingCycleInfo / ChargeInfo DTOs.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select

from split_kernel.domain.dtos import (
    BillingCycleInfo,
    BillingCycleStatus,
    BillingScope,
    ChargeInfo,
    ChargeStatus,
    ChargeType,
    Page,
    validate_billing_month,
)
from split_kernel.models.billing import BillingCharge, BillingCycle, UsageRecord
from split_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ChargeFilter:
    """Optional filters for list_charges; None means "any"."""

    cycle_id: UUID | None = None
    agency_id: UUID | None = None
    owner_id: UUID | None = None
    contract_id: UUID | None = None
    status: ChargeStatus | None = None
    charge_type: ChargeType | None = None
    billing_month: str | None = None


class BillingSelector(BaseSelector):
    """Selector for billing cycles and charges."""

    def get_cycle(self, cycle_id: UUID) -> BillingCycleInfo | None:
        cycle = self.session.get(BillingCycle, cycle_id)
        return BillingCycleInfo.from_model(cycle) if cycle is not None else None

    def find_cycle(self, scope: BillingScope, billing_month: str) -> BillingCycleInfo | None:
        cycle = self.session.execute(
            select(BillingCycle).where(
                BillingCycle.scope_key == scope.key,
                BillingCycle.billing_month == validate_billing_month(billing_month),
            )
        ).scalar_one_or_none()
        return BillingCycleInfo.from_model(cycle) if cycle is not None else None

    def list_cycles(
        self,
        scope: BillingScope | None = None,
        status: BillingCycleStatus | None = None,
        billing_month: str | None = None,
        skip: int = 0,
        take: int = 20,
    ) -> Page[BillingCycleInfo]:
        skip, take = self._clamp_paging(skip, take)
        conditions = []
        if scope is not None:
            conditions.append(BillingCycle.scope_key == scope.key)
        if status is not None:
            conditions.append(BillingCycle.status == status)
        if billing_month is not None:
            conditions.append(
                BillingCycle.billing_month == validate_billing_month(billing_month)
            )

        total = self.session.execute(
            select(func.count()).select_from(BillingCycle).where(*conditions)
        ).scalar_one()
        rows = self.session.execute(
            select(BillingCycle)
            .where(*conditions)
            .order_by(
                BillingCycle.billing_month.desc(),
                BillingCycle.scope_key,
                BillingCycle.id,
            )
            .offset(skip)
            .limit(take)
        ).scalars().all()
        return Page(
            items=tuple(BillingCycleInfo.from_model(row) for row in rows),
            total=total,
            skip=skip,
            take=take,
        )

    def list_open_cycles(self, billing_month: str) -> list[BillingCycleInfo]:
        """Every OPEN cycle of a month, unpaged; used by the close scheduler."""
        rows = self.session.execute(
            select(BillingCycle)
            .where(
                BillingCycle.billing_month == validate_billing_month(billing_month),
                BillingCycle.status == BillingCycleStatus.OPEN,
            )
            .order_by(BillingCycle.scope_key)
        ).scalars().all()
        return [BillingCycleInfo.from_model(row) for row in rows]

    def usage_totals(self, cycle_id: UUID) -> dict[str, int]:
        rows = self.session.execute(
            select(UsageRecord.feature, func.sum(UsageRecord.quantity))
            .where(UsageRecord.cycle_id == cycle_id)
            .group_by(UsageRecord.feature)
            .order_by(UsageRecord.feature)
        ).all()
        return {feature: int(total or 0) for feature, total in rows}

    def get_charge(self, charge_id: UUID) -> ChargeInfo | None:
        charge = self.session.get(BillingCharge, charge_id)
        return ChargeInfo.from_model(charge) if charge is not None else None

    def get_charge_by_token(self, token: str) -> ChargeInfo | None:
        charge = self.session.execute(
            select(BillingCharge).where(BillingCharge.token == token.upper())
        ).scalar_one_or_none()
        return ChargeInfo.from_model(charge) if charge is not None else None

    def list_charges(
        self,
        filters: ChargeFilter | None = None,
        skip: int = 0,
        take: int = 20,
    ) -> Page[ChargeInfo]:
        skip, take = self._clamp_paging(skip, take)
        filters = filters or ChargeFilter()

        conditions = []
        for column, value in (
            (BillingCharge.cycle_id, filters.cycle_id),
            (BillingCharge.agency_id, filters.agency_id),
            (BillingCharge.owner_id, filters.owner_id),
            (BillingCharge.contract_id, filters.contract_id),
            (BillingCharge.status, filters.status),
            (BillingCharge.charge_type, filters.charge_type),
            (BillingCharge.billing_month, filters.billing_month),
        ):
            if value is not None:
                conditions.append(column == value)

        total = self.session.execute(
            select(func.count()).select_from(BillingCharge).where(*conditions)
        ).scalar_one()
        rows = self.session.execute(
            select(BillingCharge)
            .where(*conditions)
            .order_by(BillingCharge.created_at.desc(), BillingCharge.token)
            .offset(skip)
            .limit(take)
        ).scalars().all()
        return Page(
            items=tuple(ChargeInfo.from_model(row) for row in rows),
            total=total,
            skip=skip,
            take=take,
        )
