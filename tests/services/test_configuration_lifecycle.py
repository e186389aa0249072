"""
Configuration lifecycle: create, validate, activate, deactivate, archive,
delete and versioning, plus active-configuration resolution.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from split_kernel.domain.dtos import (
    AuditAction,
    ChargeType,
    ConfigurationStatus,
    ReceiverInput,
    ReceiverType,
    RuleInput,
    RuleType,
    ScopeKey,
    SplitScope,
)
from split_kernel.domain.values import Money
from split_kernel.exceptions import (
    ActiveConfigurationMutationError,
    ArchivedConfigurationError,
    ConfigurationNotFoundError,
    ConfigurationNotValidatedError,
    ConfigurationValidationError,
    InvalidStatusTransitionError,
)
from split_kernel.selectors.configuration_selector import (
    ConfigurationFilter,
    SplitConfigurationSelector,
)
from tests.builders import percentage_receiver, platform_agency_receivers


@pytest.fixture
def selector(session):
    return SplitConfigurationSelector(session)


class TestCreate:
    def test_new_configuration_is_draft_version_one(self, make_configuration, test_actor_id):
        info = make_configuration()

        assert info.status == ConfigurationStatus.DRAFT
        assert info.version == 1
        assert not info.is_validated
        assert info.created_by_id == test_actor_id
        assert [r.receiver_type for r in info.receivers] == [
            ReceiverType.PLATFORM,
            ReceiverType.AGENCY,
        ]
        assert len(info.rules) == 2

    def test_same_name_in_same_scope_gets_next_version(self, make_configuration):
        first = make_configuration(name="Rent split")
        second = make_configuration(name="Rent split")
        assert (first.version, second.version) == (1, 2)

    def test_scope_ids_normalized_for_kind(self, make_configuration):
        agency, contract = uuid4(), uuid4()
        info = make_configuration(
            scope=SplitScope.GLOBAL,
            scope_key=ScopeKey(agency_id=agency, contract_id=contract),
        )
        assert info.scope_key == ScopeKey(agency_id=agency)

    def test_blank_name_rejected(self, config_service, test_actor_id):
        with pytest.raises(ValueError, match="name is required"):
            config_service.create_configuration(name="  ", actor_id=test_actor_id)

    def test_create_is_audited(self, make_configuration, selector):
        info = make_configuration()

        logs = selector.list_audit_logs(info.id)

        assert [entry.action for entry in logs.items] == [AuditAction.CREATE]
        assert logs.items[0].after["name"] == "Standard split"
        assert len(logs.items[0].after["receivers"]) == 2


class TestValidate:
    def test_valid_configuration_becomes_validated(
        self, make_configuration, config_service, test_actor_id, deterministic_clock
    ):
        info = make_configuration()

        validated = config_service.validate(info.id, test_actor_id, notes="reviewed")

        assert validated.status == ConfigurationStatus.VALIDATED
        assert validated.is_validated
        assert validated.validated_by_id == test_actor_id
        assert validated.validated_at == deterministic_clock.now_utc()
        assert validated.notes == "reviewed"

    def test_every_failed_check_reported_together(
        self, make_configuration, config_service, test_actor_id
    ):
        info = make_configuration(receivers=(
            ReceiverInput(
                receiver_type=ReceiverType.AGENCY,
                name="Agency",
                rules=(RuleInput(rule_type=RuleType.PERCENTAGE, value=Decimal("60")),),
            ),
            ReceiverInput(
                receiver_type=ReceiverType.OWNER,
                name="Owner",
                rules=(RuleInput(rule_type=RuleType.PERCENTAGE, value=Decimal("50")),),
            ),
        ))

        with pytest.raises(ConfigurationValidationError) as exc_info:
            config_service.validate(info.id, test_actor_id)

        reasons = exc_info.value.reasons
        assert len(reasons) == 3
        assert any("exceeds 100%" in r for r in reasons)
        assert sum("no payout wallet" in r for r in reasons) == 2

    def test_empty_configuration_fails_check_without_state_change(
        self, make_configuration, config_service, selector
    ):
        info = make_configuration(receivers=())

        report = config_service.check(info.id)

        assert not report.is_valid
        assert "Configuration has no receivers" in report.reasons
        assert "Configuration has no active rules" in report.reasons
        assert selector.get_configuration(info.id).status == ConfigurationStatus.DRAFT

    def test_active_configuration_cannot_be_revalidated(
        self, make_active_configuration, config_service, test_actor_id
    ):
        info = make_active_configuration()
        with pytest.raises(InvalidStatusTransitionError):
            config_service.validate(info.id, test_actor_id)

    def test_unknown_configuration(self, config_service, test_actor_id):
        with pytest.raises(ConfigurationNotFoundError):
            config_service.validate(uuid4(), test_actor_id)


class TestActivate:
    def test_draft_cannot_be_activated(self, make_configuration, config_service, test_actor_id):
        info = make_configuration()
        with pytest.raises(ConfigurationNotValidatedError):
            config_service.activate(info.id, test_actor_id)

    def test_activation_records_actor_and_time(
        self, make_active_configuration, test_actor_id, deterministic_clock
    ):
        info = make_active_configuration()

        assert info.status == ConfigurationStatus.ACTIVE
        assert info.activated_by_id == test_actor_id
        assert info.activated_at == deterministic_clock.now_utc()

    def test_activating_again_is_rejected(
        self, make_active_configuration, config_service, test_actor_id
    ):
        info = make_active_configuration()
        with pytest.raises(InvalidStatusTransitionError):
            config_service.activate(info.id, test_actor_id)

    def test_previous_active_in_scope_is_demoted(
        self, make_active_configuration, make_configuration, config_service,
        test_actor_id, selector,
    ):
        old = make_active_configuration(name="Old")
        new = make_configuration(name="New")
        config_service.validate(new.id, test_actor_id)

        activated = config_service.activate(new.id, test_actor_id, reason="new rates")

        demoted = selector.get_configuration(old.id)
        assert activated.status == ConfigurationStatus.ACTIVE
        assert demoted.status == ConfigurationStatus.INACTIVE
        assert demoted.deactivated_by_id == test_actor_id

        activate_entry = selector.list_audit_logs(new.id).items[-1]
        assert activate_entry.action == AuditAction.ACTIVATE
        assert activate_entry.after["demoted_configuration_ids"] == [str(old.id)]

        active = selector.list_configurations(
            ConfigurationFilter(status=ConfigurationStatus.ACTIVE)
        )
        assert [c.id for c in active.items] == [new.id]

    def test_different_scopes_stay_active_together(self, make_active_configuration):
        first = make_active_configuration(scope_key=ScopeKey(agency_id=uuid4()))
        second = make_active_configuration(scope_key=ScopeKey(agency_id=uuid4()))
        assert first.is_active and second.is_active

    def test_activation_logs_carry_configuration_context(
        self, make_configuration, config_service, test_actor_id, captured_logs
    ):
        info = make_configuration()
        config_service.validate(info.id, test_actor_id)

        config_service.activate(info.id, test_actor_id)

        record = next(r for r in captured_logs() if r["message"] == "configuration_activated")
        assert record["configuration_id"] == str(info.id)
        assert record["demoted_count"] == 0


class TestDeactivateAndReactivate:
    def test_deactivated_configuration_can_be_reactivated(
        self, make_active_configuration, config_service, test_actor_id
    ):
        info = make_active_configuration()

        inactive = config_service.deactivate(info.id, test_actor_id, reason="pause")
        assert inactive.status == ConfigurationStatus.INACTIVE
        assert inactive.is_validated

        assert config_service.activate(info.id, test_actor_id).is_active

    def test_mutated_inactive_configuration_needs_validation(
        self, make_active_configuration, config_service, test_actor_id
    ):
        info = make_active_configuration()
        config_service.deactivate(info.id, test_actor_id)
        config_service.update_configuration(info.id, test_actor_id, notes="edited")

        with pytest.raises(ConfigurationNotValidatedError):
            config_service.activate(info.id, test_actor_id)

        config_service.validate(info.id, test_actor_id)
        assert config_service.activate(info.id, test_actor_id).is_active

    def test_only_active_can_be_deactivated(
        self, make_configuration, config_service, test_actor_id
    ):
        info = make_configuration()
        with pytest.raises(InvalidStatusTransitionError):
            config_service.deactivate(info.id, test_actor_id)


class TestUpdate:
    def test_descriptive_fields_updated(self, make_configuration, config_service, test_actor_id):
        info = make_configuration()

        updated = config_service.update_configuration(
            info.id, test_actor_id, description="Default rent split", notes="v1"
        )

        assert updated.description == "Default rent split"
        assert updated.notes == "v1"

    def test_update_sends_validated_back_to_draft(
        self, make_configuration, config_service, test_actor_id
    ):
        info = make_configuration()
        config_service.validate(info.id, test_actor_id)

        updated = config_service.update_configuration(info.id, test_actor_id, notes="x")

        assert updated.status == ConfigurationStatus.DRAFT
        assert not updated.is_validated

    def test_active_configuration_is_frozen(
        self, make_active_configuration, config_service, test_actor_id
    ):
        info = make_active_configuration()
        with pytest.raises(ActiveConfigurationMutationError):
            config_service.update_configuration(info.id, test_actor_id, notes="x")

    def test_rename_onto_existing_version_rejected(
        self, make_configuration, config_service, test_actor_id
    ):
        make_configuration(name="A")
        other = make_configuration(name="B")

        with pytest.raises(ConfigurationValidationError):
            config_service.update_configuration(other.id, test_actor_id, name="A")

    def test_unknown_field_rejected(self, make_configuration, config_service, test_actor_id):
        info = make_configuration()
        with pytest.raises(TypeError, match="status"):
            config_service.update_configuration(info.id, test_actor_id, status="active")


class TestArchiveAndDelete:
    def test_active_configuration_cannot_be_archived(
        self, make_active_configuration, config_service, test_actor_id
    ):
        info = make_active_configuration()
        with pytest.raises(InvalidStatusTransitionError):
            config_service.archive_configuration(info.id, test_actor_id)

    def test_archived_is_terminal(
        self, make_active_configuration, config_service, test_actor_id
    ):
        info = make_active_configuration()
        config_service.deactivate(info.id, test_actor_id)

        archived = config_service.archive_configuration(info.id, test_actor_id, reason="old")

        assert archived.status == ConfigurationStatus.ARCHIVED
        with pytest.raises(ArchivedConfigurationError):
            config_service.activate(info.id, test_actor_id)
        with pytest.raises(ArchivedConfigurationError):
            config_service.validate(info.id, test_actor_id)
        with pytest.raises(ArchivedConfigurationError):
            config_service.update_configuration(info.id, test_actor_id, notes="x")

    def test_active_configuration_cannot_be_deleted(
        self, make_active_configuration, config_service, test_actor_id
    ):
        info = make_active_configuration()
        with pytest.raises(ActiveConfigurationMutationError):
            config_service.delete_configuration(info.id, test_actor_id)

    def test_delete_removes_tree_and_keeps_audit(
        self, make_configuration, config_service, test_actor_id, selector
    ):
        info = make_configuration()

        config_service.delete_configuration(info.id, test_actor_id, reason="typo")

        assert selector.get_configuration(info.id) is None
        actions = [entry.action for entry in selector.list_audit_logs(info.id).items]
        assert actions == [AuditAction.CREATE, AuditAction.DELETE]


class TestVersioning:
    def test_new_version_is_a_deep_copy(
        self, make_active_configuration, config_service, test_actor_id, selector
    ):
        source = make_active_configuration()

        copy = config_service.create_new_version(source.id, test_actor_id, "raise fee")

        assert copy.version == 2
        assert copy.previous_version_id == source.id
        assert copy.status == ConfigurationStatus.DRAFT
        assert copy.change_reason == "raise fee"
        assert [r.name for r in copy.receivers] == [r.name for r in source.receivers]
        assert {r.id for r in copy.receivers}.isdisjoint({r.id for r in source.receivers})
        assert [rule.value for rule in copy.rules] == [rule.value for rule in source.rules]
        assert selector.get_configuration(source.id).status == ConfigurationStatus.ACTIVE

        entry = selector.list_audit_logs(copy.id).items[0]
        assert entry.action == AuditAction.CREATE_VERSION
        assert entry.after["source_configuration_id"] == str(source.id)

    def test_new_version_replaces_active_on_activation(
        self, make_active_configuration, config_service, test_actor_id, selector
    ):
        source = make_active_configuration()
        copy = config_service.create_new_version(source.id, test_actor_id)
        config_service.validate(copy.id, test_actor_id)

        config_service.activate(copy.id, test_actor_id)

        assert selector.get_configuration(source.id).status == ConfigurationStatus.INACTIVE
        assert config_service.find_active_for_scope(ScopeKey()).id == copy.id


class TestResolutionAndCalculation:
    def test_most_specific_active_configuration_wins(self, make_active_configuration,
                                                     config_service):
        agency, contract = uuid4(), uuid4()
        platform_default = make_active_configuration(name="Platform default")
        agency_global = make_active_configuration(
            name="Agency", scope_key=ScopeKey(agency_id=agency)
        )
        per_contract = make_active_configuration(
            name="Contract",
            scope=SplitScope.PER_CONTRACT,
            scope_key=ScopeKey(agency_id=agency, contract_id=contract),
        )

        def resolve(key):
            return config_service.find_active_for_scope(key).id

        assert resolve(ScopeKey(agency_id=agency, contract_id=contract)) == per_contract.id
        assert resolve(ScopeKey(agency_id=agency, contract_id=uuid4())) == agency_global.id
        assert resolve(ScopeKey(agency_id=uuid4())) == platform_default.id

    def test_nothing_active_resolves_to_none(self, make_configuration, config_service):
        make_configuration()
        assert config_service.find_active_for_scope(ScopeKey(agency_id=uuid4())) is None

    def test_preview_uses_active_configuration(self, make_active_configuration, config_service):
        make_active_configuration(receivers=platform_agency_receivers("15"))

        result = config_service.preview(
            ScopeKey(agency_id=uuid4()), Money.of("200.00", "BRL"), ChargeType.RENT
        )

        assert result.is_valid
        assert result.amount_for(ReceiverType.PLATFORM) == Money.of("30.00", "BRL")

    def test_preview_without_active_configuration_explains(self, config_service):
        result = config_service.preview(ScopeKey(agency_id=uuid4()), Money.of("10", "BRL"))

        assert not result.is_valid
        assert "No active split configuration" in result.errors[0]

    def test_calculate_works_on_drafts(self, make_configuration, config_service):
        info = make_configuration(receivers=(
            percentage_receiver(ReceiverType.PLATFORM, "Platform", "20"),
            percentage_receiver(ReceiverType.OWNER, "Owner", "80"),
        ))

        result = config_service.calculate(info.id, Money.of("50.00", "BRL"))

        assert result.configuration_id == info.id
        assert result.amount_for(ReceiverType.OWNER) == Money.of("40.00", "BRL")
