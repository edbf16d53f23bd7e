"""Alpaca paper-trading broker.

Builds Snapshots from the Alpaca account, positions and latest market data,
and places notional market buy orders. Live accounts are refused.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from alpaca.data.requests import StockLatestQuoteRequest, StockLatestTradeRequest
from alpaca.trading.enums import OrderSide, TimeInForce
from alpaca.trading.requests import MarketOrderRequest

from ledgerrun.execution.base import Broker, ExecutionResult
from ledgerrun.portfolio.base import Leg, Position, Snapshot
from ledgerrun.utils.alpaca_client import AlpacaClient
from ledgerrun.utils.exceptions import (
    BrokerConnectionError,
    OrderExecutionError,
    PaperTradingRequiredError,
)
from ledgerrun.utils.logging import get_logger

logger = get_logger(__name__)


def _field(obj: Any, *names: str) -> Any:
    """First non-empty attribute or key among ``names``."""
    for name in names:
        if isinstance(obj, Mapping):
            value = obj.get(name)
        else:
            value = getattr(obj, name, None)
        if value not in (None, "", 0):
            return value
    return None


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def map_alpaca_to_snapshot(
    account: Any,
    positions: Sequence[Any],
    prices: Mapping[str, Any],
    as_of_iso: Optional[str] = None,
) -> Snapshot:
    """Convert Alpaca account, positions and prices into a Snapshot.

    Accepts alpaca-py models or their raw JSON dicts. Quantities and market
    values that do not parse become 0. A price entry may be a number, a
    trade (``price`` / ``p``) or a quote (``ask_price`` / ``ap``).

    Args:
        account: Alpaca account (needs ``cash``)
        positions: Alpaca positions (``symbol``, ``qty``, ``market_value``)
        prices: Symbol -> latest trade, quote or number
        as_of_iso: Snapshot time (default: now, UTC)

    Returns:
        Snapshot with cash rounded to cents

    Raises:
        ValueError: If the inputs have the wrong shape
    """
    if account is None:
        raise ValueError("Account is required")
    if not isinstance(positions, (list, tuple)):
        raise ValueError("Positions must be an array")
    if not isinstance(prices, Mapping):
        raise ValueError("Prices must be an object")

    cash_usd = round(_to_float(_field(account, "cash")), 2)

    snapshot_positions = tuple(
        Position(
            symbol=str(_field(pos, "symbol")),
            quantity=_to_float(_field(pos, "qty")),
            market_value_usd=_to_float(_field(pos, "market_value")),
        )
        for pos in positions
    )

    prices_usd: Dict[str, float] = {}
    for symbol, price_data in prices.items():
        if isinstance(price_data, (int, float, str)) or price_data is None:
            prices_usd[symbol] = _to_float(price_data)
        else:
            prices_usd[symbol] = _to_float(
                _field(price_data, "p", "price", "ap", "ask_price")
            )

    return Snapshot(
        as_of_iso=as_of_iso or datetime.now(timezone.utc).isoformat(),
        cash_usd=cash_usd,
        positions=snapshot_positions,
        prices_usd=prices_usd,
    )


class AlpacaBroker(Broker):
    """Alpaca Paper Trading broker.

    Example:
        >>> client = AlpacaClient.from_env()
        >>> broker = AlpacaBroker(client)
        >>> snapshot = broker.get_snapshot(["VTI", "VXUS"])
        >>> result = broker.execute_orders(plan.legs)
    """

    def __init__(self, alpaca_client: AlpacaClient):
        """Initialize Alpaca broker.

        Args:
            alpaca_client: AlpacaClient instance for API access

        Raises:
            PaperTradingRequiredError: If the client is not in paper mode
        """
        if not alpaca_client.paper:
            raise PaperTradingRequiredError(
                "SAFETY: Only paper trading is supported. Set ALPACA_PAPER=true"
            )

        self.client = alpaca_client
        self.trading_client = alpaca_client.get_trading_client()
        self.data_client = alpaca_client.get_data_client()
        logger.info("AlpacaBroker initialized")

    def is_paper(self) -> bool:
        return bool(self.client.paper)

    def get_snapshot(self, symbols: Iterable[str] = ()) -> Snapshot:
        """Fetch account, positions and latest prices.

        Prices are requested for the given symbols plus every held symbol,
        from latest trades first and latest quotes second. If both fail the
        snapshot has no prices and the allocation engine decides.

        Raises:
            BrokerConnectionError: If account or positions cannot be fetched
        """
        account = self.client.with_retry(self.trading_client.get_account)
        positions = self.client.with_retry(self.trading_client.get_all_positions)

        all_symbols: List[str] = list(dict.fromkeys(symbols))
        for pos in positions:
            if pos.symbol not in all_symbols:
                all_symbols.append(pos.symbol)

        prices = self._fetch_prices(all_symbols) if all_symbols else {}

        snapshot = map_alpaca_to_snapshot(account, list(positions), prices)
        logger.info(
            "Fetched snapshot: cash $%.2f, %d position(s), %d price(s)",
            snapshot.cash_usd,
            len(snapshot.positions),
            len(snapshot.prices_usd),
        )
        return snapshot

    def _fetch_prices(self, symbols: List[str]) -> Mapping[str, Any]:
        try:
            request = StockLatestTradeRequest(symbol_or_symbols=symbols)
            return self.client.with_retry(self.data_client.get_stock_latest_trade, request)
        except BrokerConnectionError as e:
            logger.warning("Failed to fetch latest trades, trying quotes: %s", e)

        try:
            request = StockLatestQuoteRequest(symbol_or_symbols=symbols)
            return self.client.with_retry(self.data_client.get_stock_latest_quote, request)
        except BrokerConnectionError as e:
            logger.warning("Failed to fetch quotes: %s", e)

        return {}

    def execute_orders(self, legs: Sequence[Leg]) -> ExecutionResult:
        """Submit one notional market BUY (DAY) per leg.

        Raises:
            OrderExecutionError: If an order fails; ids of orders already
                placed are included in the message
        """
        if not legs:
            logger.info("No orders to submit")
            return ExecutionResult(orders_placed=0)

        logger.info("Submitting %d orders to Alpaca", len(legs))
        order_ids: List[str] = []

        for leg in legs:
            request = MarketOrderRequest(
                symbol=leg.symbol,
                notional=leg.notional_usd,
                side=OrderSide.BUY,
                time_in_force=TimeInForce.DAY,
            )
            try:
                submitted = self.client.submit_once(self.trading_client.submit_order, request)
            except BrokerConnectionError as e:
                error_msg = (
                    f"Failed to submit order for {leg.symbol}: {e} "
                    f"(already placed: {order_ids})"
                )
                logger.error(error_msg)
                raise OrderExecutionError(error_msg) from e

            order_id = str(submitted.id)
            order_ids.append(order_id)
            logger.info(
                "Order submitted: BUY $%.2f of %s (order_id: %s)",
                leg.notional_usd,
                leg.symbol,
                order_id,
            )

        return ExecutionResult(orders_placed=len(order_ids), order_ids=order_ids)
