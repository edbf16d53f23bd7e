"""Unit tests for AlpacaBroker and the Alpaca snapshot mapper.

Tests the broker adapter with mocked Alpaca clients.
"""

from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from alpaca.trading.enums import OrderSide, TimeInForce

from ledgerrun.execution.alpaca_broker import AlpacaBroker, map_alpaca_to_snapshot
from ledgerrun.portfolio.base import Leg
from ledgerrun.utils.exceptions import (
    BrokerConnectionError,
    OrderExecutionError,
    PaperTradingRequiredError,
)


@pytest.fixture
def mock_alpaca_client():
    """Create a mock AlpacaClient that runs calls directly."""
    client = Mock()
    client.paper = True
    client.with_retry = Mock(side_effect=lambda func, *args, **kwargs: func(*args, **kwargs))
    client.submit_once = Mock(side_effect=lambda func, *args, **kwargs: func(*args, **kwargs))
    return client


@pytest.fixture
def mock_trading_client():
    """Create a mock TradingClient with one account and one position."""
    trading = Mock()
    trading.get_account.return_value = SimpleNamespace(cash="1000.456")
    trading.get_all_positions.return_value = [
        SimpleNamespace(symbol="VTI", qty="2", market_value="500.00"),
    ]
    return trading


@pytest.fixture
def mock_data_client():
    """Create a mock StockHistoricalDataClient."""
    data = Mock()
    data.get_stock_latest_trade.return_value = {
        "VTI": SimpleNamespace(price=250.0),
        "VXUS": SimpleNamespace(price=60.0),
    }
    return data


@pytest.fixture
def broker(mock_alpaca_client, mock_trading_client, mock_data_client):
    """Create AlpacaBroker with mocked clients."""
    mock_alpaca_client.get_trading_client.return_value = mock_trading_client
    mock_alpaca_client.get_data_client.return_value = mock_data_client
    return AlpacaBroker(mock_alpaca_client)


def make_leg(symbol, notional):
    return Leg(
        symbol=symbol,
        notional_usd=notional,
        target_weight=0.5,
        current_weight=0.0,
        post_buy_estimated_weight=0.1,
    )


class TestMapAlpacaToSnapshot:
    """Tests for map_alpaca_to_snapshot."""

    def test_raw_json_documents(self):
        """Test mapping from raw Alpaca JSON."""
        snapshot = map_alpaca_to_snapshot(
            {"cash": "100.129"},
            [{"symbol": "VTI", "qty": "1.5", "market_value": "375.0"}],
            {"VTI": {"p": 250.0}, "VXUS": {"ap": 60.5}},
            as_of_iso="2026-01-10T15:00:00Z",
        )

        assert snapshot.as_of_iso == "2026-01-10T15:00:00Z"
        assert snapshot.cash_usd == 100.13
        assert snapshot.positions[0].symbol == "VTI"
        assert snapshot.positions[0].quantity == 1.5
        assert snapshot.positions[0].market_value_usd == 375.0
        assert snapshot.prices_usd == {"VTI": 250.0, "VXUS": 60.5}

    def test_sdk_models(self):
        """Test mapping from attribute-style models."""
        snapshot = map_alpaca_to_snapshot(
            SimpleNamespace(cash="50"),
            [SimpleNamespace(symbol="BND", qty="3", market_value="225")],
            {"BND": SimpleNamespace(ask_price=75.0)},
        )

        assert snapshot.cash_usd == 50.0
        assert snapshot.positions[0].market_value_usd == 225.0
        assert snapshot.prices_usd == {"BND": 75.0}
        assert snapshot.as_of_iso

    def test_plain_number_prices(self):
        """Test numeric prices are taken as-is."""
        snapshot = map_alpaca_to_snapshot({"cash": 10}, [], {"VTI": 250, "VXUS": "60"})

        assert snapshot.prices_usd == {"VTI": 250.0, "VXUS": 60.0}

    def test_unparseable_values_become_zero(self):
        """Test bad numbers map to 0 instead of failing."""
        snapshot = map_alpaca_to_snapshot(
            {"cash": "n/a"},
            [{"symbol": "VTI", "qty": None, "market_value": "bad"}],
            {"VTI": {}},
        )

        assert snapshot.cash_usd == 0.0
        assert snapshot.positions[0].quantity == 0.0
        assert snapshot.positions[0].market_value_usd == 0.0
        assert snapshot.prices_usd == {"VTI": 0.0}

    def test_missing_account(self):
        """Test account is required."""
        with pytest.raises(ValueError, match="Account is required"):
            map_alpaca_to_snapshot(None, [], {})

    def test_positions_must_be_array(self):
        """Test positions must be a list."""
        with pytest.raises(ValueError, match="Positions must be an array"):
            map_alpaca_to_snapshot({"cash": 1}, {"VTI": 1}, {})

    def test_prices_must_be_object(self):
        """Test prices must be a mapping."""
        with pytest.raises(ValueError, match="Prices must be an object"):
            map_alpaca_to_snapshot({"cash": 1}, [], [])


class TestAlpacaBrokerInit:
    """Test AlpacaBroker initialization."""

    def test_init(self, broker, mock_alpaca_client):
        """Test broker initialization in paper mode."""
        assert broker.is_paper() is True
        mock_alpaca_client.get_trading_client.assert_called_once()
        mock_alpaca_client.get_data_client.assert_called_once()

    def test_live_client_refused(self, mock_alpaca_client):
        """Test a live client is refused."""
        mock_alpaca_client.paper = False

        with pytest.raises(PaperTradingRequiredError, match="ALPACA_PAPER=true"):
            AlpacaBroker(mock_alpaca_client)


class TestAlpacaBrokerSnapshot:
    """Test get_snapshot."""

    def test_get_snapshot(self, broker, mock_data_client):
        """Test snapshot combines account, positions and trades."""
        snapshot = broker.get_snapshot(["VTI", "VXUS"])

        assert snapshot.cash_usd == 1000.46
        assert snapshot.value_by_symbol == {"VTI": 500.0}
        assert snapshot.prices_usd == {"VTI": 250.0, "VXUS": 60.0}

        request = mock_data_client.get_stock_latest_trade.call_args.args[0]
        assert request.symbol_or_symbols == ["VTI", "VXUS"]

    def test_held_symbols_priced(self, broker, mock_trading_client, mock_data_client):
        """Test held symbols outside the targets are priced too."""
        mock_trading_client.get_all_positions.return_value = [
            SimpleNamespace(symbol="BND", qty="1", market_value="75"),
        ]

        broker.get_snapshot(["VTI"])

        request = mock_data_client.get_stock_latest_trade.call_args.args[0]
        assert request.symbol_or_symbols == ["VTI", "BND"]

    def test_falls_back_to_quotes(self, broker, mock_alpaca_client, mock_data_client):
        """Test quotes are used when trades cannot be fetched."""
        mock_data_client.get_stock_latest_quote.return_value = {
            "VTI": SimpleNamespace(ask_price=251.0),
        }

        def with_retry(func, *args, **kwargs):
            if func is mock_data_client.get_stock_latest_trade:
                raise BrokerConnectionError("trades unavailable")
            return func(*args, **kwargs)

        mock_alpaca_client.with_retry.side_effect = with_retry

        snapshot = broker.get_snapshot(["VTI"])

        assert snapshot.prices_usd == {"VTI": 251.0}

    def test_no_prices_available(self, broker, mock_alpaca_client, mock_data_client):
        """Test the snapshot has no prices when market data fails."""

        def with_retry(func, *args, **kwargs):
            if func in (
                mock_data_client.get_stock_latest_trade,
                mock_data_client.get_stock_latest_quote,
            ):
                raise BrokerConnectionError("market data unavailable")
            return func(*args, **kwargs)

        mock_alpaca_client.with_retry.side_effect = with_retry

        snapshot = broker.get_snapshot(["VTI"])

        assert snapshot.prices_usd == {}

    def test_account_failure_propagates(self, broker, mock_alpaca_client):
        """Test account errors are not swallowed."""
        mock_alpaca_client.with_retry.side_effect = BrokerConnectionError("down")

        with pytest.raises(BrokerConnectionError):
            broker.get_snapshot(["VTI"])


class TestAlpacaBrokerExecuteOrders:
    """Test execute_orders."""

    def test_submit_orders(self, broker, mock_trading_client):
        """Test one notional DAY market buy per leg."""
        mock_trading_client.submit_order.side_effect = [
            SimpleNamespace(id="order-1"),
            SimpleNamespace(id="order-2"),
        ]

        result = broker.execute_orders([make_leg("VTI", 70.0), make_leg("VXUS", 30.0)])

        assert result.orders_placed == 2
        assert result.order_ids == ["order-1", "order-2"]

        request = mock_trading_client.submit_order.call_args_list[0].args[0]
        assert request.symbol == "VTI"
        assert request.notional == 70.0
        assert request.side == OrderSide.BUY
        assert request.time_in_force == TimeInForce.DAY

    def test_no_legs(self, broker, mock_trading_client):
        """Test an empty leg list places nothing."""
        result = broker.execute_orders([])

        assert result.orders_placed == 0
        mock_trading_client.submit_order.assert_not_called()

    def test_failure_reports_placed_orders(self, broker, mock_trading_client, mock_alpaca_client):
        """Test a failed submission raises with the ids already placed."""
        calls = []

        def submit_once(func, *args, **kwargs):
            calls.append(func)
            if len(calls) > 1:
                raise BrokerConnectionError("rejected")
            return SimpleNamespace(id="order-1")

        mock_alpaca_client.submit_once.side_effect = submit_once

        with pytest.raises(OrderExecutionError, match=r"VXUS.*order-1"):
            broker.execute_orders([make_leg("VTI", 70.0), make_leg("VXUS", 30.0)])

    def test_orders_submitted_once(self, broker, mock_trading_client, mock_alpaca_client):
        """Test orders go through submit_once, never the retry path."""
        mock_trading_client.submit_order.return_value = SimpleNamespace(id="order-1")

        broker.execute_orders([make_leg("VTI", 70.0)])

        mock_alpaca_client.submit_once.assert_called_once()
        retried = [c.args[0] for c in mock_alpaca_client.with_retry.call_args_list]
        assert mock_trading_client.submit_order not in retried
