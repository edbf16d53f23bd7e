"""Unit tests for portfolio domain types."""

import json
import math

import pytest

from ledgerrun.portfolio.base import (
    AllocationMode,
    DriftKind,
    Leg,
    Plan,
    PlanStatus,
    Policy,
    Position,
    ReasonCode,
    Snapshot,
    aggregate_positions,
)
from ledgerrun.portfolio.policy_loader import load_policy
from ledgerrun.utils.exceptions import ConfigurationError, ValidationError


class TestAggregatePositions:
    """Tests for aggregate_positions."""

    def test_sums_repeated_symbols(self):
        """Test repeated entries are summed, not overwritten."""
        result = aggregate_positions(
            [Position("VTI", 1, 250.0), Position("VXUS", 1, 60.0), Position("VTI", 2, 500.0)]
        )

        assert result == {"VTI": 750.0, "VXUS": 60.0}

    def test_empty(self):
        """Test no positions gives an empty map."""
        assert aggregate_positions([]) == {}


class TestPolicy:
    """Tests for Policy."""

    def test_from_dict_defaults(self):
        """Test optional fields take their defaults."""
        policy = Policy.from_dict(
            {
                "version": 1,
                "targets": [{"symbol": "VTI", "targetWeight": 1.0}],
                "drift": {"kind": "none"},
            }
        )

        assert policy.name == "Unnamed"
        assert policy.cash_buffer_pct == 0.0
        assert policy.min_invest_amount_usd == 1.0
        assert math.isinf(policy.max_invest_amount_usd)
        assert policy.min_order_usd == 1.0
        assert policy.max_orders is None
        assert policy.effective_max_orders == 1
        assert policy.drift.kind == DriftKind.NONE
        assert policy.allow_missing_prices is False

    def test_from_dict_band(self):
        """Test band drift keeps its width."""
        policy = Policy.from_dict(
            {
                "version": 1,
                "name": "Core",
                "targets": [
                    {"symbol": "VTI", "targetWeight": 0.7},
                    {"symbol": "VXUS", "targetWeight": 0.3},
                ],
                "maxOrders": 1,
                "drift": {"kind": "band", "maxAbsPct": 0.03},
            }
        )

        assert policy.symbols == ["VTI", "VXUS"]
        assert policy.drift.max_abs_pct == 0.03
        assert policy.effective_max_orders == 1

    def test_to_dict_omits_unbounded_fields(self):
        """Test an infinite cap and unset maxOrders are left out."""
        data = Policy.from_dict(
            {
                "version": 1,
                "targets": [{"symbol": "VTI", "targetWeight": 1.0}],
                "drift": {"kind": "none"},
            }
        ).to_dict()

        assert "maxInvestAmountUsd" not in data
        assert "maxOrders" not in data
        assert data["drift"] == {"kind": "none"}
        json.dumps(data)


class TestSnapshot:
    """Tests for Snapshot."""

    def test_totals(self):
        """Test equity and total value."""
        snapshot = Snapshot(
            as_of_iso="2026-01-10T15:00:00Z",
            cash_usd=100.0,
            positions=(Position("VTI", 1, 250.0), Position("VTI", 1, 250.0)),
        )

        assert snapshot.equity_usd == 500.0
        assert snapshot.total_value_usd == 600.0
        assert snapshot.value_by_symbol == {"VTI": 500.0}

    def test_dict_round_trip(self):
        """Test camelCase documents convert both ways."""
        doc = {
            "asOfIso": "2026-01-10T15:00:00Z",
            "cashUsd": 100.0,
            "positions": [{"symbol": "VTI", "quantity": 2.0, "marketValueUsd": 500.0}],
            "pricesUsd": {"VTI": 250.0},
        }

        assert Snapshot.from_dict(doc).to_dict() == doc


class TestPlan:
    """Tests for Plan."""

    def test_to_dict(self):
        """Test plan documents use camelCase and enum values."""
        leg = Leg(
            symbol="VTI",
            notional_usd=70.0,
            target_weight=0.7,
            current_weight=0.0,
            post_buy_estimated_weight=0.7,
            reason_codes=(ReasonCode.UNDERWEIGHT, ReasonCode.DCA),
        )
        plan = Plan(
            status=PlanStatus.PLANNED,
            policy_name="Core",
            as_of_iso="2026-01-10T15:00:00Z",
            total_equity_usd=0.0,
            total_value_usd=100.0,
            cash_usd=100.0,
            investable_cash_usd=100.0,
            planned_spend_usd=70.0,
            legs=(leg,),
            mode=AllocationMode.PRO_RATA,
        )

        data = plan.to_dict()

        assert data["status"] == "PLANNED"
        assert data["mode"] == "pro_rata"
        assert data["legs"][0]["reasonCodes"] == ["UNDERWEIGHT", "DCA"]
        assert data["legs"][0]["postBuyEstimatedWeight"] == 0.7
        assert plan.is_actionable

    def test_noop_not_actionable(self):
        """Test NOOP plans are never actionable."""
        plan = Plan(
            status=PlanStatus.NOOP,
            policy_name="Core",
            as_of_iso="2026-01-10T15:00:00Z",
            total_equity_usd=0.0,
            total_value_usd=0.0,
            cash_usd=0.0,
            investable_cash_usd=0.0,
            planned_spend_usd=0.0,
        )

        assert not plan.is_actionable
        assert plan.to_dict()["mode"] is None


class TestLoadPolicy:
    """Tests for load_policy."""

    def test_load_valid(self, tmp_path):
        """Test a valid policy file is loaded."""
        path = tmp_path / "policy.json"
        path.write_text(
            json.dumps(
                {
                    "version": 1,
                    "name": "Solo",
                    "targets": [{"symbol": "VTI", "targetWeight": 1.0}],
                    "drift": {"kind": "none"},
                }
            )
        )

        assert load_policy(path)["name"] == "Solo"

    def test_missing_file(self, tmp_path):
        """Test a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Policy file not found"):
            load_policy(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        """Test malformed JSON raises ConfigurationError."""
        path = tmp_path / "policy.json"
        path.write_text("{")

        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            load_policy(path)

    def test_invalid_policy(self, tmp_path):
        """Test a well-formed but invalid policy is rejected."""
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"version": 1, "targets": []}))

        with pytest.raises(ValidationError, match="targets"):
            load_policy(path)
