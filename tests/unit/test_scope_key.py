"""ScopeKey normalization and active-configuration resolution order."""

from uuid import uuid4

import pytest

from split_kernel.domain.dtos import BillingScope, ScopeKey, SplitScope, validate_billing_month
from split_kernel.exceptions import InvalidScopeError


class TestScopeKey:
    def test_global_drops_contract_and_property(self):
        agency = uuid4()
        key = ScopeKey(agency_id=agency, contract_id=uuid4(), property_id=uuid4())
        assert key.for_kind(SplitScope.GLOBAL) == ScopeKey(agency_id=agency)

    def test_per_contract_requires_contract(self):
        with pytest.raises(InvalidScopeError):
            ScopeKey(agency_id=uuid4()).for_kind(SplitScope.PER_CONTRACT)

    def test_per_property_requires_property(self):
        with pytest.raises(InvalidScopeError):
            ScopeKey(agency_id=uuid4()).for_kind(SplitScope.PER_PROPERTY)

    def test_canonical_never_contains_none(self):
        canonical = ScopeKey().canonical()
        assert "None" not in canonical
        assert canonical == "agency=-;owner=-;contract=-;property=-"

    def test_resolution_order_most_specific_first(self):
        agency, contract, prop = uuid4(), uuid4(), uuid4()
        key = ScopeKey(agency_id=agency, contract_id=contract, property_id=prop)

        order = key.resolution_order()

        assert [scope for scope, _ in order] == [
            SplitScope.PER_CONTRACT,
            SplitScope.PER_PROPERTY,
            SplitScope.GLOBAL,
            SplitScope.GLOBAL,
        ]
        assert order[0][1].contract_id == contract
        assert order[1][1].property_id == prop
        assert order[2][1] == ScopeKey(agency_id=agency)
        assert order[3][1] == ScopeKey()

    def test_platform_default_is_only_candidate_for_empty_key(self):
        assert ScopeKey().resolution_order() == [(SplitScope.GLOBAL, ScopeKey())]


class TestBillingScope:
    def test_exactly_one_tenant_required(self):
        with pytest.raises(InvalidScopeError):
            BillingScope()
        with pytest.raises(InvalidScopeError):
            BillingScope(agency_id=uuid4(), owner_id=uuid4())

    def test_key_names_the_tenant(self):
        owner = uuid4()
        assert BillingScope(owner_id=owner).key == f"owner:{owner}"


class TestBillingMonth:
    @pytest.mark.parametrize("month", ["2024-1", "24-01", "2024-13", "", "2024/01"])
    def test_malformed_months_rejected(self, month):
        with pytest.raises(ValueError):
            validate_billing_month(month)

    def test_valid_month_returned(self):
        assert validate_billing_month("2024-12") == "2024-12"
