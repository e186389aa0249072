"""
SplitConfigurationService -- lifecycle manager for split configurations.

Responsibility:
    Owns every mutation of configurations, receivers and rules: creation,
    edits, validation, activation, deactivation, archiving, deletion and
    new versions.  Also runs the split calculator against a stored or
    scope-resolved configuration.

Architecture position:
    Kernel > Services -- imperative shell around the pure split calculator.
    Reads go through SplitConfigurationSelector; audit entries go through
    SplitAuditService.

Invariants enforced:
    - State machine:
          DRAFT --validate--> VALIDATED --activate--> ACTIVE
          ACTIVE --deactivate--> INACTIVE --activate--> ACTIVE
          non-ACTIVE --archive--> ARCHIVED (terminal)
          any --create_new_version--> new DRAFT (version + 1)
    - Receivers and rules of an ACTIVE or ARCHIVED configuration cannot be
      created, updated or deleted.  Locked receivers reject update and
      delete in every state.
    - Mutating a VALIDATED configuration returns it to DRAFT; mutating an
      INACTIVE one clears ``is_validated`` so it must be validated again
      before it can be re-activated.
    - At most one ACTIVE configuration per (scope, scope_key): siblings are
      locked and demoted in the same flush sequence as the activation, and
      the partial unique index rejects a concurrent winner.
    - Exactly one audit entry per successful mutation, in the same
      transaction.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - ConfigurationNotFoundError / ReceiverNotFoundError / RuleNotFoundError.
    - ActiveConfigurationMutationError, ArchivedConfigurationError,
      LockedReceiverError, InvalidStatusTransitionError,
      ConfigurationNotValidatedError.
    - ConfigurationValidationError with every failed check.
    - ConcurrentActivationError when another transaction activated a
      sibling first; ConcurrentModificationError on a stale row_version.

Audit relevance:
    before/after snapshots are the DTO ``to_dict()`` forms; the ACTIVATE
    entry lists the ids of the configurations it demoted.
"""

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from split_engines.split_calculator import (
    SplitConfigurationSnapshot,
    SplitResult,
    calculate_split,
)
from split_kernel.domain.clock import Clock
from split_kernel.domain.currency import CurrencyRegistry
from split_kernel.domain.dtos import (
    AuditAction,
    AuditEntityType,
    ChargeType,
    ConfigurationStatus,
    ReceiverInput,
    ReceiverType,
    RuleInput,
    RuleType,
    ScopeKey,
    SplitConfigurationInfo,
    SplitReceiverInfo,
    SplitRuleInfo,
    SplitScope,
    ValidationReport,
)
from split_kernel.domain.values import Money
from split_kernel.exceptions import (
    ActiveConfigurationMutationError,
    ArchivedConfigurationError,
    ConcurrentActivationError,
    ConcurrentModificationError,
    ConfigurationNotFoundError,
    ConfigurationNotValidatedError,
    ConfigurationValidationError,
    InvalidStatusTransitionError,
    LockedReceiverError,
    ReceiverNotFoundError,
    RuleNotFoundError,
    RuleReceiverMismatchError,
)
from split_kernel.logging_config import LogContext, get_logger
from split_kernel.models.split_configuration import (
    SplitConfiguration,
    SplitReceiver,
    SplitRule,
)
from split_kernel.selectors.configuration_selector import SplitConfigurationSelector
from split_kernel.services.audit_trail import SplitAuditService
from split_kernel.services.base import BaseService

logger = get_logger("services.configuration")

_CONFIGURATION_FIELDS = frozenset({
    "name", "description", "notes", "effective_date", "change_reason",
})
_RECEIVER_FIELDS = frozenset({
    "receiver_type", "name", "document", "user_id", "agency_id", "wallet_id", "is_locked",
})
_HUNDRED = Decimal("100")


def _reject_unknown(changes: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise TypeError(f"Unsupported fields: {', '.join(unknown)}")


class SplitConfigurationService(BaseService):
    """
    Lifecycle manager for split configurations, receivers and rules.

    Contract:
        Every public method takes the acting user's id, works inside the
        caller's transaction and returns frozen DTOs.

    Guarantees:
        - No partial effect on rejection: guards run before any attribute
          is changed.
        - One audit entry per successful mutation.

    Non-goals:
        - Does NOT check permissions; callers authorize ``actor_id``.
        - Does NOT call ``session.commit()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._audit = SplitAuditService(session, self.clock)
        self._selector = SplitConfigurationSelector(session)

    # ------------------------------------------------------------------
    # Loading and guards
    # ------------------------------------------------------------------

    def _get_for_update(self, configuration_id: UUID) -> SplitConfiguration:
        configuration = self.session.execute(
            select(SplitConfiguration)
            .where(SplitConfiguration.id == configuration_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if configuration is None:
            raise ConfigurationNotFoundError(str(configuration_id))
        return configuration

    def _get_receiver(self, receiver_id: UUID) -> SplitReceiver:
        receiver = self.session.get(SplitReceiver, receiver_id)
        if receiver is None:
            raise ReceiverNotFoundError(str(receiver_id))
        return receiver

    def _get_rule(self, rule_id: UUID) -> SplitRule:
        rule = self.session.get(SplitRule, rule_id)
        if rule is None:
            raise RuleNotFoundError(str(rule_id))
        return rule

    @staticmethod
    def _ensure_mutable(configuration: SplitConfiguration, operation: str) -> None:
        if configuration.status == ConfigurationStatus.ARCHIVED:
            raise ArchivedConfigurationError(str(configuration.id), operation)
        if configuration.status == ConfigurationStatus.ACTIVE:
            raise ActiveConfigurationMutationError(str(configuration.id), operation)

    @staticmethod
    def _ensure_unlocked(receiver: SplitReceiver, operation: str) -> None:
        if receiver.is_locked:
            raise LockedReceiverError(str(receiver.id), operation)

    def _mark_mutated(self, configuration: SplitConfiguration, actor_id: UUID) -> None:
        if configuration.status == ConfigurationStatus.VALIDATED:
            configuration.status = ConfigurationStatus.DRAFT
        configuration.is_validated = False
        configuration.updated_by_id = actor_id
        # Bumps row_version even when nothing else on the row changed
        flag_modified(configuration, "updated_by_id")

    def _flush(self, entity_type: str, entity_id: UUID) -> None:
        try:
            self.session.flush()
        except StaleDataError as e:
            logger.warning(
                "concurrent_modification_detected",
                extra={"entity_type": entity_type, "entity_id": str(entity_id)},
            )
            raise ConcurrentModificationError(entity_type, str(entity_id)) from e

    def _next_version(self, scope: SplitScope, scope_key: str, name: str) -> int:
        current = self.session.execute(
            select(func.max(SplitConfiguration.version)).where(
                SplitConfiguration.scope == scope,
                SplitConfiguration.scope_key == scope_key,
                SplitConfiguration.name == name,
            )
        ).scalar_one_or_none()
        return (current or 0) + 1

    # ------------------------------------------------------------------
    # Row builders
    # ------------------------------------------------------------------

    @staticmethod
    def _build_rule(
        configuration_id: UUID,
        rule: RuleInput,
        position: int,
        actor_id: UUID,
    ) -> SplitRule:
        return SplitRule(
            id=uuid4(),
            configuration_id=configuration_id,
            rule_type=rule.rule_type,
            value=rule.value,
            minimum_amount=rule.minimum_amount,
            maximum_amount=rule.maximum_amount,
            charge_type=rule.charge_type,
            priority=rule.priority,
            is_active=rule.is_active,
            position=position,
            created_by_id=actor_id,
        )

    def _build_receiver(
        self,
        configuration_id: UUID,
        receiver: ReceiverInput,
        position: int,
        actor_id: UUID,
    ) -> SplitReceiver:
        row = SplitReceiver(
            id=uuid4(),
            configuration_id=configuration_id,
            receiver_type=receiver.receiver_type,
            name=receiver.name,
            document=receiver.document,
            user_id=receiver.user_id,
            agency_id=receiver.agency_id,
            wallet_id=receiver.wallet_id,
            is_locked=receiver.is_locked,
            position=position,
            created_by_id=actor_id,
        )
        for index, rule in enumerate(receiver.rules):
            rule_row = self._build_rule(configuration_id, rule, index, actor_id)
            rule_row.receiver_id = row.id
            row.rules.append(rule_row)
        return row

    # ------------------------------------------------------------------
    # Configuration CRUD
    # ------------------------------------------------------------------

    def create_configuration(
        self,
        name: str,
        actor_id: UUID,
        scope: SplitScope = SplitScope.GLOBAL,
        scope_key: ScopeKey | None = None,
        description: str | None = None,
        currency: str = "BRL",
        effective_date: date | None = None,
        notes: str | None = None,
        change_reason: str | None = None,
        receivers: tuple[ReceiverInput, ...] | list[ReceiverInput] = (),
    ) -> SplitConfigurationInfo:
        """
        Create a DRAFT configuration with its receivers and their rules.

        The version is one past the highest version of the lineage
        (scope, scope_key, name), so re-creating a name starts a new version.

        Raises:
            InvalidScopeError: scope ids do not fit the scope kind.
            ValueError: empty name or unsupported currency.
        """
        if not name or not name.strip():
            raise ValueError("Configuration name is required")
        key = (scope_key or ScopeKey()).for_kind(scope)
        canonical = key.canonical()

        configuration = SplitConfiguration(
            id=uuid4(),
            name=name.strip(),
            description=description,
            scope=scope,
            scope_key=canonical,
            agency_id=key.agency_id,
            owner_id=key.owner_id,
            contract_id=key.contract_id,
            property_id=key.property_id,
            version=self._next_version(scope, canonical, name.strip()),
            status=ConfigurationStatus.DRAFT,
            is_validated=False,
            currency=CurrencyRegistry.validate(currency),
            effective_date=effective_date,
            notes=notes,
            change_reason=change_reason,
            created_by_id=actor_id,
        )
        for position, receiver in enumerate(receivers):
            configuration.receivers.append(
                self._build_receiver(configuration.id, receiver, position, actor_id)
            )
        self.session.add(configuration)
        self._flush_new_configuration(configuration)

        info = SplitConfigurationInfo.from_model(configuration)
        self._audit.record(
            action=AuditAction.CREATE,
            entity_type=AuditEntityType.CONFIGURATION,
            entity_id=configuration.id,
            performed_by=actor_id,
            configuration_id=configuration.id,
            after=info.to_dict(),
        )
        logger.info("configuration_created", extra={
            "configuration_id": str(configuration.id),
            "configuration_name": configuration.name,
            "scope": scope.value,
            "version": configuration.version,
            "receiver_count": len(configuration.receivers),
        })
        return info

    def _flush_new_configuration(self, configuration: SplitConfiguration) -> None:
        try:
            with self.session.begin_nested():
                self.session.flush()
        except IntegrityError as e:
            # Another transaction took the same lineage version
            logger.warning("configuration_version_conflict", extra={
                "configuration_name": configuration.name,
                "version": configuration.version,
            })
            raise ConcurrentModificationError(
                "SplitConfiguration", str(configuration.id)
            ) from e

    def update_configuration(
        self,
        configuration_id: UUID,
        actor_id: UUID,
        **changes: Any,
    ) -> SplitConfigurationInfo:
        """
        Edit descriptive fields: name, description, notes, effective_date,
        change_reason.

        Raises:
            ActiveConfigurationMutationError / ArchivedConfigurationError.
            ConfigurationValidationError: the new name already has this
                version in the same scope.
            TypeError: unsupported field.
        """
        _reject_unknown(changes, _CONFIGURATION_FIELDS)
        configuration = self._get_for_update(configuration_id)
        self._ensure_mutable(configuration, "update")

        if "name" in changes:
            new_name = (changes["name"] or "").strip()
            if not new_name:
                raise ConfigurationValidationError(
                    str(configuration_id), ["Configuration name is required"]
                )
            if new_name != configuration.name and self._lineage_has_version(
                configuration, new_name
            ):
                raise ConfigurationValidationError(
                    str(configuration_id),
                    [f"Version {configuration.version} of '{new_name}' already exists "
                     f"in this scope"],
                )
            changes["name"] = new_name

        before = SplitConfigurationInfo.from_model(configuration).to_dict(include_receivers=False)
        for field_name, value in changes.items():
            setattr(configuration, field_name, value)
        self._mark_mutated(configuration, actor_id)
        self._flush("SplitConfiguration", configuration.id)

        info = SplitConfigurationInfo.from_model(configuration)
        self._audit.record(
            action=AuditAction.UPDATE,
            entity_type=AuditEntityType.CONFIGURATION,
            entity_id=configuration.id,
            performed_by=actor_id,
            configuration_id=configuration.id,
            before=before,
            after=info.to_dict(include_receivers=False),
        )
        logger.info("configuration_updated", extra={
            "configuration_id": str(configuration.id),
            "fields": sorted(changes),
        })
        return info

    def _lineage_has_version(self, configuration: SplitConfiguration, name: str) -> bool:
        existing = self.session.execute(
            select(SplitConfiguration.id).where(
                SplitConfiguration.scope == configuration.scope,
                SplitConfiguration.scope_key == configuration.scope_key,
                SplitConfiguration.name == name,
                SplitConfiguration.version == configuration.version,
            )
        ).first()
        return existing is not None

    def delete_configuration(
        self,
        configuration_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> None:
        """
        Remove a non-ACTIVE configuration with its receivers and rules.

        Its audit entries remain; the DELETE entry holds the full tree.
        """
        configuration = self._get_for_update(configuration_id)
        if configuration.status == ConfigurationStatus.ACTIVE:
            raise ActiveConfigurationMutationError(str(configuration_id), "delete")

        before = SplitConfigurationInfo.from_model(configuration).to_dict()
        self.session.delete(configuration)
        self._flush("SplitConfiguration", configuration_id)

        self._audit.record(
            action=AuditAction.DELETE,
            entity_type=AuditEntityType.CONFIGURATION,
            entity_id=configuration_id,
            performed_by=actor_id,
            configuration_id=configuration_id,
            before=before,
            after={"reason": reason} if reason else None,
        )
        logger.info("configuration_deleted", extra={
            "configuration_id": str(configuration_id),
        })

    def archive_configuration(
        self,
        configuration_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> SplitConfigurationInfo:
        """Move a non-ACTIVE configuration to the terminal ARCHIVED state."""
        configuration = self._get_for_update(configuration_id)
        if configuration.status == ConfigurationStatus.ARCHIVED:
            raise ArchivedConfigurationError(str(configuration_id), "archive")
        if configuration.status == ConfigurationStatus.ACTIVE:
            raise InvalidStatusTransitionError(
                str(configuration_id),
                ConfigurationStatus.ACTIVE.value,
                ConfigurationStatus.ARCHIVED.value,
            )

        before = SplitConfigurationInfo.from_model(configuration).to_dict(include_receivers=False)
        configuration.status = ConfigurationStatus.ARCHIVED
        configuration.archived_at = self.clock.now_utc()
        configuration.archived_by_id = actor_id
        configuration.updated_by_id = actor_id
        if reason:
            configuration.change_reason = reason
        self._flush("SplitConfiguration", configuration_id)

        info = SplitConfigurationInfo.from_model(configuration)
        self._audit.record(
            action=AuditAction.ARCHIVE,
            entity_type=AuditEntityType.CONFIGURATION,
            entity_id=configuration_id,
            performed_by=actor_id,
            configuration_id=configuration_id,
            before=before,
            after=info.to_dict(include_receivers=False),
        )
        logger.info("configuration_archived", extra={
            "configuration_id": str(configuration_id),
        })
        return info

    # ------------------------------------------------------------------
    # Receivers
    # ------------------------------------------------------------------

    def add_receiver(
        self,
        configuration_id: UUID,
        receiver: ReceiverInput,
        actor_id: UUID,
    ) -> SplitReceiverInfo:
        configuration = self._get_for_update(configuration_id)
        self._ensure_mutable(configuration, "add receiver to")

        position = max((r.position for r in configuration.receivers), default=-1) + 1
        row = self._build_receiver(configuration.id, receiver, position, actor_id)
        configuration.receivers.append(row)
        self._mark_mutated(configuration, actor_id)
        self._flush("SplitConfiguration", configuration.id)

        info = SplitReceiverInfo.from_model(row)
        self._audit.record(
            action=AuditAction.CREATE,
            entity_type=AuditEntityType.RECEIVER,
            entity_id=row.id,
            performed_by=actor_id,
            configuration_id=configuration.id,
            after=info.to_dict(),
        )
        logger.info("receiver_added", extra={
            "configuration_id": str(configuration.id),
            "receiver_id": str(row.id),
            "receiver_type": receiver.receiver_type.value,
        })
        return info

    def update_receiver(
        self,
        receiver_id: UUID,
        actor_id: UUID,
        **changes: Any,
    ) -> SplitReceiverInfo:
        """
        Edit a receiver's fields.

        Raises:
            LockedReceiverError: the receiver is locked, whatever the
                configuration status.
        """
        _reject_unknown(changes, _RECEIVER_FIELDS)
        receiver = self._get_receiver(receiver_id)
        self._ensure_unlocked(receiver, "update")
        configuration = self._get_for_update(receiver.configuration_id)
        self._ensure_mutable(configuration, "update receiver of")

        if "receiver_type" in changes:
            changes["receiver_type"] = ReceiverType(changes["receiver_type"])

        before = SplitReceiverInfo.from_model(receiver).to_dict(include_rules=False)
        for field_name, value in changes.items():
            setattr(receiver, field_name, value)
        receiver.updated_by_id = actor_id
        self._mark_mutated(configuration, actor_id)
        self._flush("SplitConfiguration", configuration.id)

        info = SplitReceiverInfo.from_model(receiver)
        self._audit.record(
            action=AuditAction.UPDATE,
            entity_type=AuditEntityType.RECEIVER,
            entity_id=receiver.id,
            performed_by=actor_id,
            configuration_id=configuration.id,
            before=before,
            after=info.to_dict(include_rules=False),
        )
        logger.info("receiver_updated", extra={
            "receiver_id": str(receiver.id),
            "fields": sorted(changes),
        })
        return info

    def delete_receiver(self, receiver_id: UUID, actor_id: UUID) -> None:
        """Remove a receiver and its rules."""
        receiver = self._get_receiver(receiver_id)
        self._ensure_unlocked(receiver, "delete")
        configuration = self._get_for_update(receiver.configuration_id)
        self._ensure_mutable(configuration, "delete receiver of")

        before = SplitReceiverInfo.from_model(receiver).to_dict()
        configuration.receivers.remove(receiver)
        self._mark_mutated(configuration, actor_id)
        self._flush("SplitConfiguration", configuration.id)

        self._audit.record(
            action=AuditAction.DELETE,
            entity_type=AuditEntityType.RECEIVER,
            entity_id=receiver_id,
            performed_by=actor_id,
            configuration_id=configuration.id,
            before=before,
        )
        logger.info("receiver_deleted", extra={
            "configuration_id": str(configuration.id),
            "receiver_id": str(receiver_id),
        })

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def add_rule(
        self,
        configuration_id: UUID,
        receiver_id: UUID,
        rule: RuleInput,
        actor_id: UUID,
    ) -> SplitRuleInfo:
        """
        Attach a rule to a receiver of the same configuration.

        Raises:
            RuleReceiverMismatchError: the receiver belongs to another
                configuration.
        """
        configuration = self._get_for_update(configuration_id)
        receiver = self._get_receiver(receiver_id)
        if receiver.configuration_id != configuration.id:
            raise RuleReceiverMismatchError(str(configuration_id), str(receiver_id))
        self._ensure_mutable(configuration, "add rule to")

        position = max((r.position for r in receiver.rules), default=-1) + 1
        row = self._build_rule(configuration.id, rule, position, actor_id)
        row.receiver_id = receiver.id
        receiver.rules.append(row)
        self._mark_mutated(configuration, actor_id)
        self._flush("SplitConfiguration", configuration.id)

        info = SplitRuleInfo.from_model(row)
        self._audit.record(
            action=AuditAction.CREATE,
            entity_type=AuditEntityType.RULE,
            entity_id=row.id,
            performed_by=actor_id,
            configuration_id=configuration.id,
            after=info.to_dict(),
        )
        logger.info("rule_added", extra={
            "configuration_id": str(configuration.id),
            "receiver_id": str(receiver.id),
            "rule_id": str(row.id),
            "rule_type": rule.rule_type.value,
        })
        return info

    def update_rule(
        self,
        rule_id: UUID,
        rule: RuleInput,
        actor_id: UUID,
    ) -> SplitRuleInfo:
        """Replace every field of a rule with ``rule``."""
        row = self._get_rule(rule_id)
        configuration = self._get_for_update(row.configuration_id)
        self._ensure_mutable(configuration, "update rule of")

        before = SplitRuleInfo.from_model(row).to_dict()
        row.rule_type = rule.rule_type
        row.value = rule.value
        row.minimum_amount = rule.minimum_amount
        row.maximum_amount = rule.maximum_amount
        row.charge_type = rule.charge_type
        row.priority = rule.priority
        row.is_active = rule.is_active
        row.updated_by_id = actor_id
        self._mark_mutated(configuration, actor_id)
        self._flush("SplitConfiguration", configuration.id)

        info = SplitRuleInfo.from_model(row)
        self._audit.record(
            action=AuditAction.UPDATE,
            entity_type=AuditEntityType.RULE,
            entity_id=row.id,
            performed_by=actor_id,
            configuration_id=configuration.id,
            before=before,
            after=info.to_dict(),
        )
        logger.info("rule_updated", extra={"rule_id": str(row.id)})
        return info

    def delete_rule(self, rule_id: UUID, actor_id: UUID) -> None:
        row = self._get_rule(rule_id)
        configuration = self._get_for_update(row.configuration_id)
        self._ensure_mutable(configuration, "delete rule of")

        before = SplitRuleInfo.from_model(row).to_dict()
        row.receiver.rules.remove(row)
        self._mark_mutated(configuration, actor_id)
        self._flush("SplitConfiguration", configuration.id)

        self._audit.record(
            action=AuditAction.DELETE,
            entity_type=AuditEntityType.RULE,
            entity_id=rule_id,
            performed_by=actor_id,
            configuration_id=configuration.id,
            before=before,
        )
        logger.info("rule_deleted", extra={"rule_id": str(rule_id)})

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validation_reasons(configuration: SplitConfiguration) -> list[str]:
        reasons: list[str] = []
        receivers = list(configuration.receivers)
        if not receivers:
            reasons.append("Configuration has no receivers")

        active_rules = [
            rule for receiver in receivers for rule in receiver.rules if rule.is_active
        ]
        if not active_rules:
            reasons.append("Configuration has no active rules")

        percentage_total = sum(
            (rule.value for rule in active_rules if rule.rule_type == RuleType.PERCENTAGE),
            Decimal("0"),
        )
        if percentage_total > _HUNDRED:
            reasons.append(
                f"Active percentage rules sum to {percentage_total}%, which exceeds 100%"
            )

        for receiver in receivers:
            if receiver.receiver_type != ReceiverType.PLATFORM and receiver.wallet_id is None:
                reasons.append(
                    f"Receiver '{receiver.name}' ({receiver.receiver_type.value}) "
                    f"has no payout wallet"
                )
        return reasons

    def check(self, configuration_id: UUID) -> ValidationReport:
        """Run the validation checks without changing any state."""
        configuration = self.session.get(SplitConfiguration, configuration_id)
        if configuration is None:
            raise ConfigurationNotFoundError(str(configuration_id))
        return ValidationReport(
            configuration_id=configuration_id,
            reasons=tuple(self._validation_reasons(configuration)),
        )

    def validate(
        self,
        configuration_id: UUID,
        actor_id: UUID,
        notes: str | None = None,
    ) -> SplitConfigurationInfo:
        """
        Move a DRAFT (or a mutated INACTIVE) configuration to VALIDATED.

        Raises:
            ConfigurationValidationError: with every failed check at once.
            InvalidStatusTransitionError: the configuration is ACTIVE.
            ArchivedConfigurationError: the configuration is ARCHIVED.
        """
        configuration = self._get_for_update(configuration_id)
        if configuration.status == ConfigurationStatus.ARCHIVED:
            raise ArchivedConfigurationError(str(configuration_id), "validate")
        if configuration.status == ConfigurationStatus.ACTIVE:
            raise InvalidStatusTransitionError(
                str(configuration_id),
                ConfigurationStatus.ACTIVE.value,
                ConfigurationStatus.VALIDATED.value,
            )

        reasons = self._validation_reasons(configuration)
        if reasons:
            logger.warning("configuration_validation_failed", extra={
                "configuration_id": str(configuration_id),
                "reasons": reasons,
            })
            raise ConfigurationValidationError(str(configuration_id), reasons)

        before = SplitConfigurationInfo.from_model(configuration).to_dict(include_receivers=False)
        configuration.status = ConfigurationStatus.VALIDATED
        configuration.is_validated = True
        configuration.validated_at = self.clock.now_utc()
        configuration.validated_by_id = actor_id
        configuration.updated_by_id = actor_id
        if notes:
            configuration.notes = notes
        self._flush("SplitConfiguration", configuration_id)

        info = SplitConfigurationInfo.from_model(configuration)
        self._audit.record(
            action=AuditAction.VALIDATE,
            entity_type=AuditEntityType.CONFIGURATION,
            entity_id=configuration_id,
            performed_by=actor_id,
            configuration_id=configuration_id,
            before=before,
            after=info.to_dict(include_receivers=False),
        )
        logger.info("configuration_validated", extra={
            "configuration_id": str(configuration_id),
        })
        return info

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def activate(
        self,
        configuration_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> SplitConfigurationInfo:
        """
        Make a configuration the ACTIVE one of its scope.

        Every other ACTIVE configuration with the same (scope, scope_key)
        is locked and demoted to INACTIVE first, in the same transaction.

        Raises:
            ConfigurationNotValidatedError: DRAFT, or INACTIVE mutated
                since its last validation.
            InvalidStatusTransitionError: already ACTIVE.
            ArchivedConfigurationError: ARCHIVED.
            ConcurrentActivationError: another transaction activated a
                sibling between our lock and our write.
        """
        with LogContext.bind(configuration_id=str(configuration_id)):
            configuration = self._get_for_update(configuration_id)
            status = configuration.status
            if status == ConfigurationStatus.ARCHIVED:
                raise ArchivedConfigurationError(str(configuration_id), "activate")
            if status == ConfigurationStatus.ACTIVE:
                raise InvalidStatusTransitionError(
                    str(configuration_id), status.value, ConfigurationStatus.ACTIVE.value
                )
            if status == ConfigurationStatus.DRAFT or not configuration.is_validated:
                raise ConfigurationNotValidatedError(str(configuration_id))

            before = SplitConfigurationInfo.from_model(configuration).to_dict(
                include_receivers=False
            )
            scope = SplitScope(configuration.scope)
            scope_key = configuration.scope_key
            now = self.clock.now_utc()

            siblings = self.session.execute(
                select(SplitConfiguration)
                .where(
                    SplitConfiguration.scope == scope,
                    SplitConfiguration.scope_key == scope_key,
                    SplitConfiguration.status == ConfigurationStatus.ACTIVE,
                    SplitConfiguration.id != configuration.id,
                )
                .order_by(SplitConfiguration.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars().all()

            # Demotions must reach the database before the new ACTIVE row,
            # or the partial unique index sees two ACTIVE rows
            for sibling in siblings:
                sibling.status = ConfigurationStatus.INACTIVE
                sibling.deactivated_at = now
                sibling.deactivated_by_id = actor_id
                sibling.updated_by_id = actor_id
            if siblings:
                self._flush("SplitConfiguration", configuration_id)

            configuration.status = ConfigurationStatus.ACTIVE
            configuration.activated_at = now
            configuration.activated_by_id = actor_id
            configuration.updated_by_id = actor_id
            if reason:
                configuration.change_reason = reason
            try:
                with self.session.begin_nested():
                    self.session.flush()
            except IntegrityError as e:
                logger.warning("concurrent_activation_rejected", extra={
                    "configuration_id": str(configuration_id),
                    "scope": scope.value,
                    "scope_key": scope_key,
                })
                raise ConcurrentActivationError(
                    str(configuration_id), scope.value, scope_key
                ) from e
            except StaleDataError as e:
                raise ConcurrentModificationError(
                    "SplitConfiguration", str(configuration_id)
                ) from e

            demoted = [sibling.id for sibling in siblings]
            info = SplitConfigurationInfo.from_model(configuration)
            after = info.to_dict(include_receivers=False)
            after["demoted_configuration_ids"] = demoted
            self._audit.record(
                action=AuditAction.ACTIVATE,
                entity_type=AuditEntityType.CONFIGURATION,
                entity_id=configuration_id,
                performed_by=actor_id,
                configuration_id=configuration_id,
                before=before,
                after=after,
            )
            logger.info("configuration_activated", extra={
                "configuration_id": str(configuration_id),
                "scope": scope.value,
                "scope_key": scope_key,
                "demoted_count": len(demoted),
            })
            return info

    def deactivate(
        self,
        configuration_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> SplitConfigurationInfo:
        """ACTIVE -> INACTIVE.  The validation flag is kept."""
        configuration = self._get_for_update(configuration_id)
        if configuration.status != ConfigurationStatus.ACTIVE:
            raise InvalidStatusTransitionError(
                str(configuration_id),
                ConfigurationStatus(configuration.status).value,
                ConfigurationStatus.INACTIVE.value,
            )

        before = SplitConfigurationInfo.from_model(configuration).to_dict(include_receivers=False)
        configuration.status = ConfigurationStatus.INACTIVE
        configuration.deactivated_at = self.clock.now_utc()
        configuration.deactivated_by_id = actor_id
        configuration.updated_by_id = actor_id
        if reason:
            configuration.change_reason = reason
        self._flush("SplitConfiguration", configuration_id)

        info = SplitConfigurationInfo.from_model(configuration)
        self._audit.record(
            action=AuditAction.DEACTIVATE,
            entity_type=AuditEntityType.CONFIGURATION,
            entity_id=configuration_id,
            performed_by=actor_id,
            configuration_id=configuration_id,
            before=before,
            after=info.to_dict(include_receivers=False),
        )
        logger.info("configuration_deactivated", extra={
            "configuration_id": str(configuration_id),
        })
        return info

    def create_new_version(
        self,
        configuration_id: UUID,
        actor_id: UUID,
        change_reason: str | None = None,
    ) -> SplitConfigurationInfo:
        """
        Copy a configuration into a new DRAFT of the next lineage version.

        Receivers and rules are deep-copied with fresh ids.  The source
        configuration is not modified and keeps its status.
        """
        source = self.session.get(SplitConfiguration, configuration_id)
        if source is None:
            raise ConfigurationNotFoundError(str(configuration_id))

        copy = SplitConfiguration(
            id=uuid4(),
            name=source.name,
            description=source.description,
            scope=source.scope,
            scope_key=source.scope_key,
            agency_id=source.agency_id,
            owner_id=source.owner_id,
            contract_id=source.contract_id,
            property_id=source.property_id,
            version=self._next_version(source.scope, source.scope_key, source.name),
            previous_version_id=source.id,
            status=ConfigurationStatus.DRAFT,
            is_validated=False,
            currency=source.currency,
            effective_date=source.effective_date,
            notes=source.notes,
            change_reason=change_reason,
            created_by_id=actor_id,
        )
        for receiver in source.receivers:
            receiver_copy = SplitReceiver(
                id=uuid4(),
                configuration_id=copy.id,
                receiver_type=receiver.receiver_type,
                name=receiver.name,
                document=receiver.document,
                user_id=receiver.user_id,
                agency_id=receiver.agency_id,
                wallet_id=receiver.wallet_id,
                is_locked=receiver.is_locked,
                position=receiver.position,
                created_by_id=actor_id,
            )
            for rule in receiver.rules:
                receiver_copy.rules.append(SplitRule(
                    id=uuid4(),
                    configuration_id=copy.id,
                    receiver_id=receiver_copy.id,
                    rule_type=rule.rule_type,
                    value=rule.value,
                    minimum_amount=rule.minimum_amount,
                    maximum_amount=rule.maximum_amount,
                    charge_type=rule.charge_type,
                    priority=rule.priority,
                    is_active=rule.is_active,
                    position=rule.position,
                    created_by_id=actor_id,
                ))
            copy.receivers.append(receiver_copy)
        self.session.add(copy)
        self._flush_new_configuration(copy)

        info = SplitConfigurationInfo.from_model(copy)
        after = info.to_dict()
        after["source_configuration_id"] = source.id
        self._audit.record(
            action=AuditAction.CREATE_VERSION,
            entity_type=AuditEntityType.CONFIGURATION,
            entity_id=copy.id,
            performed_by=actor_id,
            configuration_id=copy.id,
            after=after,
        )
        logger.info("configuration_version_created", extra={
            "configuration_id": str(copy.id),
            "source_configuration_id": str(source.id),
            "version": copy.version,
        })
        return info

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    def find_active_for_scope(self, scope_key: ScopeKey) -> SplitConfigurationInfo | None:
        """First ACTIVE configuration in PER_CONTRACT > PER_PROPERTY > GLOBAL order."""
        return self._selector.find_active_for_scope(scope_key)

    def calculate(
        self,
        configuration_id: UUID,
        amount: Money,
        charge_type: ChargeType | None = None,
    ) -> SplitResult:
        """Split ``amount`` with a stored configuration, whatever its status."""
        info = self._selector.get_configuration(configuration_id)
        if info is None:
            raise ConfigurationNotFoundError(str(configuration_id))
        return calculate_split(SplitConfigurationSnapshot.from_info(info), amount, charge_type)

    def preview(
        self,
        scope_key: ScopeKey,
        amount: Money,
        charge_type: ChargeType | None = None,
    ) -> SplitResult:
        """
        Split ``amount`` with the scope's active configuration.

        With no active configuration the result is invalid and explains
        why; no exception is raised.
        """
        info = self.find_active_for_scope(scope_key)
        if info is None:
            logger.info("preview_without_active_configuration", extra={
                "scope_key": scope_key.canonical(),
            })
            return SplitResult.unresolved(
                amount,
                charge_type,
                f"No active split configuration for scope {scope_key.canonical()}",
            )
        return calculate_split(SplitConfigurationSnapshot.from_info(info), amount, charge_type)
