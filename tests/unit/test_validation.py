"""Unit tests for policy and snapshot validation."""

import pytest

from ledgerrun.portfolio.validation import (
    is_finite_number,
    validate_policy,
    validate_snapshot,
)
from ledgerrun.utils.exceptions import ValidationError


@pytest.fixture
def policy():
    """Create a valid policy document."""
    return {
        "version": 1,
        "name": "Core",
        "targets": [
            {"symbol": "VTI", "targetWeight": 0.7},
            {"symbol": "VXUS", "targetWeight": 0.3},
        ],
        "cashBufferPct": 0.0,
        "minInvestAmountUsd": 10,
        "maxInvestAmountUsd": 5000,
        "minOrderUsd": 5,
        "maxOrders": 2,
        "drift": {"kind": "band", "maxAbsPct": 0.03},
        "allowMissingPrices": False,
    }


@pytest.fixture
def snapshot():
    """Create a valid snapshot document."""
    return {
        "asOfIso": "2026-01-10T15:00:00Z",
        "cashUsd": 100.0,
        "positions": [{"symbol": "VTI", "quantity": 2, "marketValueUsd": 500.0}],
        "pricesUsd": {"VTI": 250.0},
    }


def assert_invalid(doc, field, validator=validate_policy):
    with pytest.raises(ValidationError) as exc_info:
        validator(doc)
    assert exc_info.value.field == field
    return exc_info.value


class TestIsFiniteNumber:
    """Tests for the numeric helper."""

    def test_numbers(self):
        """Test ints and floats are accepted."""
        assert is_finite_number(0)
        assert is_finite_number(1.5)

    def test_rejects_non_finite_and_bool(self):
        """Test NaN, inf, bools and strings are rejected."""
        assert not is_finite_number(float("nan"))
        assert not is_finite_number(float("inf"))
        assert not is_finite_number(True)
        assert not is_finite_number("1")
        assert not is_finite_number(None)


class TestValidatePolicy:
    """Tests for validate_policy."""

    def test_valid_policy(self, policy):
        """Test a complete policy passes."""
        assert validate_policy(policy) is None

    def test_minimal_policy(self):
        """Test optional fields may be omitted."""
        validate_policy(
            {
                "version": 1,
                "targets": [{"symbol": "VTI", "targetWeight": 1.0}],
                "drift": {"kind": "none"},
            }
        )

    def test_not_an_object(self):
        """Test non-mapping documents are rejected."""
        assert_invalid([], "policy")

    def test_wrong_version(self, policy):
        """Test only version 1 is accepted."""
        policy["version"] = 2
        assert_invalid(policy, "version")

    def test_name_must_be_string(self, policy):
        """Test a non-string name is rejected."""
        policy["name"] = 42
        assert_invalid(policy, "name")

    def test_empty_targets(self, policy):
        """Test targets must be non-empty."""
        policy["targets"] = []
        assert_invalid(policy, "targets")

    def test_duplicate_symbol(self, policy):
        """Test duplicate symbols are rejected with the symbol named."""
        policy["targets"] = [
            {"symbol": "VTI", "targetWeight": 0.5},
            {"symbol": "VTI", "targetWeight": 0.5},
        ]
        error = assert_invalid(policy, "targets[1].symbol")
        assert "duplicate target symbol: VTI" in str(error)

    def test_duplicate_checked_before_weights(self, policy):
        """Test duplicates are reported even when weights are also invalid."""
        policy["targets"] = [
            {"symbol": "VTI", "targetWeight": 5},
            {"symbol": "VTI", "targetWeight": 5},
        ]
        assert_invalid(policy, "targets[1].symbol")

    def test_empty_symbol(self, policy):
        """Test symbols must be non-empty strings."""
        policy["targets"][0]["symbol"] = ""
        assert_invalid(policy, "targets[0].symbol")

    def test_non_string_symbol(self, policy):
        """Test unhashable symbols are reported, not crashed on."""
        policy["targets"][0]["symbol"] = ["VTI"]
        assert_invalid(policy, "targets[0].symbol")

    @pytest.mark.parametrize("weight", [0, -0.1, 1.5, float("nan"), "0.7", None])
    def test_invalid_weight(self, policy, weight):
        """Test weights must be finite and in (0, 1]."""
        policy["targets"][0]["targetWeight"] = weight
        assert_invalid(policy, "targets[0].targetWeight")

    def test_weights_must_sum_to_one(self, policy):
        """Test weight sum outside tolerance is rejected."""
        policy["targets"][1]["targetWeight"] = 0.2
        error = assert_invalid(policy, "targets")
        assert "sum to 1" in str(error)

    def test_weight_sum_tolerance(self, policy):
        """Test small rounding in weights is accepted."""
        policy["targets"] = [
            {"symbol": "A", "targetWeight": 0.3333},
            {"symbol": "B", "targetWeight": 0.3333},
            {"symbol": "C", "targetWeight": 0.3333},
        ]
        validate_policy(policy)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("cashBufferPct", 1.5),
            ("cashBufferPct", -0.1),
            ("minInvestAmountUsd", -1),
            ("maxInvestAmountUsd", float("inf")),
            ("minOrderUsd", "5"),
        ],
    )
    def test_invalid_numeric_fields(self, policy, field, value):
        """Test capital control fields are range checked."""
        policy[field] = value
        assert_invalid(policy, field)

    @pytest.mark.parametrize("value", [0, -1, 1.5, True])
    def test_invalid_max_orders(self, policy, value):
        """Test maxOrders must be a positive integer."""
        policy["maxOrders"] = value
        assert_invalid(policy, "maxOrders")

    def test_drift_required(self, policy):
        """Test drift must be present."""
        del policy["drift"]
        assert_invalid(policy, "drift")

    def test_unknown_drift_kind(self, policy):
        """Test drift kind must be none or band."""
        policy["drift"] = {"kind": "threshold"}
        assert_invalid(policy, "drift.kind")

    def test_band_requires_max_abs_pct(self, policy):
        """Test band drift needs maxAbsPct in [0, 1]."""
        policy["drift"] = {"kind": "band"}
        assert_invalid(policy, "drift.maxAbsPct")

        policy["drift"] = {"kind": "band", "maxAbsPct": 2}
        assert_invalid(policy, "drift.maxAbsPct")

    def test_allow_missing_prices_must_be_bool(self, policy):
        """Test allowMissingPrices must be a boolean."""
        policy["allowMissingPrices"] = "yes"
        assert_invalid(policy, "allowMissingPrices")


class TestValidateSnapshot:
    """Tests for validate_snapshot."""

    def test_valid_snapshot(self, snapshot):
        """Test a well-formed snapshot passes."""
        assert validate_snapshot(snapshot) is None

    def test_prices_not_checked(self, snapshot):
        """Test invalid prices are left to the allocation engine."""
        snapshot["pricesUsd"] = {"VTI": -1}
        validate_snapshot(snapshot)

    def test_not_an_object(self):
        """Test non-mapping documents are rejected."""
        assert_invalid(None, "snapshot", validate_snapshot)

    def test_as_of_iso_required(self, snapshot):
        """Test asOfIso must be a string."""
        del snapshot["asOfIso"]
        assert_invalid(snapshot, "asOfIso", validate_snapshot)

    @pytest.mark.parametrize("cash", [-0.01, float("nan"), None, "100"])
    def test_invalid_cash(self, snapshot, cash):
        """Test cash must be a finite non-negative number."""
        snapshot["cashUsd"] = cash
        assert_invalid(snapshot, "cashUsd", validate_snapshot)

    def test_positions_must_be_list(self, snapshot):
        """Test positions must be a list."""
        snapshot["positions"] = {}
        assert_invalid(snapshot, "positions", validate_snapshot)

    def test_prices_must_be_mapping(self, snapshot):
        """Test pricesUsd must be an object."""
        snapshot["pricesUsd"] = [250.0]
        assert_invalid(snapshot, "pricesUsd", validate_snapshot)

    def test_invalid_position_quantity(self, snapshot):
        """Test negative quantities are rejected."""
        snapshot["positions"][0]["quantity"] = -1
        assert_invalid(snapshot, "positions[0].quantity", validate_snapshot)

    def test_invalid_position_market_value(self, snapshot):
        """Test market value must be a finite non-negative number."""
        snapshot["positions"][0]["marketValueUsd"] = float("inf")
        assert_invalid(snapshot, "positions[0].marketValueUsd", validate_snapshot)

    def test_invalid_position_symbol(self, snapshot):
        """Test position symbols must be non-empty."""
        snapshot["positions"][0]["symbol"] = ""
        assert_invalid(snapshot, "positions[0].symbol", validate_snapshot)
