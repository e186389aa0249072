"""
Module: split_kernel.selectors.configuration_selector
Responsibility: Read-only query access to split configurations and their
    audit history.  Converts ORM rows to frozen DTOs.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/dtos and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: no mutations on any queried data.
    - DTO convention: returns SplitConfigurationInfo / AuditLogInfo, never
      ORM rows.
    - Active-configuration lookup follows PER_CONTRACT > PER_PROPERTY >
      GLOBAL (agency/owner) > GLOBAL (platform default).

Failure modes:
    - Returns None or an empty page when nothing matches.
    - ValueError on negative skip or take < 1.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select

from split_kernel.domain.dtos import (
    AuditLogInfo,
    ConfigurationStatus,
    Page,
    ScopeKey,
    SplitConfigurationInfo,
    SplitScope,
)
from split_kernel.models.audit_log import SplitAuditLog
from split_kernel.models.split_configuration import SplitConfiguration
from split_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ConfigurationFilter:
    """Optional filters for list_configurations; None means "any"."""

    status: ConfigurationStatus | None = None
    scope: SplitScope | None = None
    agency_id: UUID | None = None
    owner_id: UUID | None = None
    contract_id: UUID | None = None
    property_id: UUID | None = None
    name: str | None = None


class SplitConfigurationSelector(BaseSelector):
    """
    Selector for configuration and audit-log queries.

    Guarantees:
        - Lists are ordered newest first by created_at, then name and
          version, so paging is stable.
        - Audit logs are ordered by seq.
    """

    def get_configuration(self, configuration_id: UUID) -> SplitConfigurationInfo | None:
        configuration = self.session.get(SplitConfiguration, configuration_id)
        if configuration is None:
            return None
        return SplitConfigurationInfo.from_model(configuration)

    def list_configurations(
        self,
        filters: ConfigurationFilter | None = None,
        skip: int = 0,
        take: int = 20,
    ) -> Page[SplitConfigurationInfo]:
        skip, take = self._clamp_paging(skip, take)
        filters = filters or ConfigurationFilter()

        conditions = []
        for column, value in (
            (SplitConfiguration.status, filters.status),
            (SplitConfiguration.scope, filters.scope),
            (SplitConfiguration.agency_id, filters.agency_id),
            (SplitConfiguration.owner_id, filters.owner_id),
            (SplitConfiguration.contract_id, filters.contract_id),
            (SplitConfiguration.property_id, filters.property_id),
            (SplitConfiguration.name, filters.name),
        ):
            if value is not None:
                conditions.append(column == value)

        total = self.session.execute(
            select(func.count()).select_from(SplitConfiguration).where(*conditions)
        ).scalar_one()
        rows = self.session.execute(
            select(SplitConfiguration)
            .where(*conditions)
            .order_by(
                SplitConfiguration.created_at.desc(),
                SplitConfiguration.name,
                SplitConfiguration.version.desc(),
                SplitConfiguration.id,
            )
            .offset(skip)
            .limit(take)
        ).scalars().all()

        return Page(
            items=tuple(SplitConfigurationInfo.from_model(row) for row in rows),
            total=total,
            skip=skip,
            take=take,
        )

    def find_active_for_scope(self, scope_key: ScopeKey) -> SplitConfigurationInfo | None:
        """
        The ACTIVE configuration that governs ``scope_key``.

        The first candidate of ``ScopeKey.resolution_order()`` with an
        ACTIVE configuration wins.
        """
        for scope, candidate in scope_key.resolution_order():
            configuration = self.session.execute(
                select(SplitConfiguration).where(
                    SplitConfiguration.scope == scope,
                    SplitConfiguration.scope_key == candidate.canonical(),
                    SplitConfiguration.status == ConfigurationStatus.ACTIVE,
                )
            ).scalar_one_or_none()
            if configuration is not None:
                return SplitConfigurationInfo.from_model(configuration)
        return None

    def list_audit_logs(
        self,
        configuration_id: UUID,
        skip: int = 0,
        take: int = 50,
    ) -> Page[AuditLogInfo]:
        skip, take = self._clamp_paging(skip, take)
        condition = SplitAuditLog.configuration_id == configuration_id

        total = self.session.execute(
            select(func.count()).select_from(SplitAuditLog).where(condition)
        ).scalar_one()
        rows = self.session.execute(
            select(SplitAuditLog)
            .where(condition)
            .order_by(SplitAuditLog.seq)
            .offset(skip)
            .limit(take)
        ).scalars().all()

        return Page(
            items=tuple(AuditLogInfo.from_model(row) for row in rows),
            total=total,
            skip=skip,
            take=take,
        )
