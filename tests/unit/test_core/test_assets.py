"""
Unit tests for AssetService.
"""

import pytest
from datetime import date
from decimal import Decimal

from conftest import ORG_ID, OTHER_ORG_ID, USER_ID
from fintrack.core.assets import normalize_currency
from fintrack.core.audit import AuditLogger
from fintrack.core.exceptions import AssetNotFoundError, ForbiddenError, UserContextError, ValidationError
from fintrack.core.models import AssetType


class TestNormalizeCurrency:

    def test_upper_cases(self):
        assert normalize_currency(" usd ") == "USD"

    @pytest.mark.parametrize("value", ["", None, "US", "USDT", "U5D"])
    def test_rejects_invalid(self, value):
        with pytest.raises(ValidationError):
            normalize_currency(value)


class TestCreate:
    """Tests for asset creation."""

    def test_create_sets_opening_balance(self, asset_service, sample_asset):
        assert sample_asset.amount == Decimal("1000.00")
        assert sample_asset.initial_amount == Decimal("1000.00")
        assert sample_asset.user_id == USER_ID
        assert sample_asset.family_id is None
        assert sample_asset.asset_type == AssetType.CASH

    def test_family_owned_asset_has_no_user_owner(self, asset_service):
        asset = asset_service.create(
            user_id=USER_ID,
            organization_id=ORG_ID,
            name="Family Home",
            currency="mnt",
            amount=Decimal("350000000"),
            asset_type="property",
            family_id="family-1",
        )
        assert asset.user_id is None
        assert asset.family_id == "family-1"
        assert asset.currency == "MNT"
        assert asset.asset_type == AssetType.PROPERTY

    def test_blank_name_rejected(self, asset_service):
        with pytest.raises(ValidationError):
            asset_service.create(user_id=USER_ID, organization_id=ORG_ID, name="  ", currency="AUD")

    def test_missing_organization_rejected(self, asset_service):
        with pytest.raises(UserContextError):
            asset_service.create(user_id=USER_ID, organization_id=None, name="Wallet", currency="AUD")

    def test_creation_is_audited(self, db_connection, sample_asset):
        history = AuditLogger(db_connection).get_history("assets", sample_asset.id)
        assert [e.action for e in history] == ["INSERT"]
        assert history[0].new_values["amount"] == "1000.00"

    def test_to_dict(self, sample_asset):
        data = sample_asset.to_dict()
        assert data["amount"] == "1000.00"
        assert data["initialAmount"] == "1000.00"
        assert data["organizationId"] == ORG_ID


class TestLookup:
    """Tests for organization-scoped lookups."""

    def test_get_missing(self, asset_service):
        with pytest.raises(AssetNotFoundError) as exc_info:
            asset_service.get(404, ORG_ID)
        assert exc_info.value.asset_id == 404

    def test_get_other_organization(self, asset_service, sample_asset):
        with pytest.raises(ForbiddenError):
            asset_service.get(sample_asset.id, OTHER_ORG_ID)

    def test_list_scoped_to_organization(self, asset_service, sample_asset):
        asset_service.create(user_id="user-2", organization_id=ORG_ID, name="Brokerage", currency="USD")
        asset_service.create(user_id="user-3", organization_id=OTHER_ORG_ID, name="Elsewhere", currency="USD")

        names = [a.name for a in asset_service.list(ORG_ID)]
        assert names == ["Brokerage", "Everyday Account"]
        assert [a.name for a in asset_service.list(ORG_ID, user_id=USER_ID)] == ["Everyday Account"]


class TestValuations:
    """Tests for explicit valuations."""

    def test_add_valuation_sets_amount(self, asset_service, sample_asset):
        valuation = asset_service.add_valuation(
            sample_asset.id, Decimal("1234.567"), USER_ID, ORG_ID, valuation_date=date(2025, 3, 31)
        )

        assert valuation.value == Decimal("1234.57")
        assert valuation.currency == "AUD"
        assert valuation.date == date(2025, 3, 31)
        assert asset_service.get(sample_asset.id, ORG_ID).amount == Decimal("1234.57")

    def test_valuation_other_organization_forbidden(self, asset_service, sample_asset):
        with pytest.raises(ForbiddenError):
            asset_service.add_valuation(sample_asset.id, Decimal("1"), USER_ID, OTHER_ORG_ID)
        assert asset_service.list_valuations(sample_asset.id, ORG_ID) == []

    def test_list_valuations_newest_first(self, asset_service, sample_asset):
        asset_service.add_valuation(sample_asset.id, Decimal("1100"), USER_ID, ORG_ID, date(2025, 1, 31))
        asset_service.add_valuation(sample_asset.id, Decimal("1200"), USER_ID, ORG_ID, date(2025, 2, 28))

        values = [v.value for v in asset_service.list_valuations(sample_asset.id, ORG_ID)]
        assert values == [Decimal("1200.00"), Decimal("1100.00")]

    def test_valuation_is_audited_as_valuation(self, db_connection, asset_service, sample_asset):
        asset_service.add_valuation(sample_asset.id, Decimal("900"), USER_ID, ORG_ID, date(2025, 1, 31))
        history = AuditLogger(db_connection).get_history("assets", sample_asset.id)
        assert history[-1].action == "UPDATE"
        assert history[-1].source == "valuation"
