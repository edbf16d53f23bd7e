"""Alpaca paper trading session.

Owns credentials, the lazily created alpaca-py clients, a sliding-window
request limiter and the retry policy used by the broker.

Reads (account, positions, prices) are retried on transient failures.
Order submission is not retried: a timeout after Alpaca accepted an order
would otherwise place it twice.
"""

import os
import time
from collections import deque
from typing import Any, Callable, Deque, Optional

from alpaca.common.exceptions import APIError
from alpaca.data.historical import StockHistoricalDataClient
from alpaca.trading.client import TradingClient
from dotenv import load_dotenv

from ledgerrun.utils.config import Config
from ledgerrun.utils.exceptions import (
    BrokerConnectionError,
    ConfigurationError,
    PaperTradingRequiredError,
)
from ledgerrun.utils.logging import get_logger

logger = get_logger(__name__)

RATE_WINDOW_SECONDS = 60.0


def is_retryable(error: Exception) -> bool:
    """Transport errors, 429 and 5xx are worth retrying. Other API errors are not."""
    if isinstance(error, APIError):
        status = error.status_code
        return status is None or status == 429 or status >= 500
    return True


class RequestLimiter:
    """Allow at most ``max_requests`` calls per rolling minute."""

    def __init__(self, max_requests: int = 200):
        if max_requests <= 0:
            raise ConfigurationError(
                f"rate_limit_per_minute must be > 0, got {max_requests}"
            )
        self.max_requests = max_requests
        self._sent: Deque[float] = deque()

    def _expire(self, now: float) -> None:
        while self._sent and self._sent[0] <= now - RATE_WINDOW_SECONDS:
            self._sent.popleft()

    def acquire(self) -> None:
        now = time.monotonic()
        self._expire(now)

        if len(self._sent) >= self.max_requests:
            wait = self._sent[0] + RATE_WINDOW_SECONDS - now
            logger.warning(
                "Alpaca request budget used (%d/min), waiting %.2fs",
                self.max_requests,
                wait,
            )
            time.sleep(max(wait, 0.0))
            now = time.monotonic()
            self._expire(now)

        self._sent.append(now)

    def __len__(self) -> int:
        return len(self._sent)


class AlpacaClient:
    """Paper-only Alpaca session.

    Example:
        >>> client = AlpacaClient.from_env(load_config())
        >>> account = client.with_retry(client.get_trading_client().get_account)
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        paper: bool = True,
        rate_limit_per_minute: int = 200,
        retry_attempts: int = 3,
        retry_delay: float = 2.0,
    ):
        """Create a session.

        Args:
            api_key: Alpaca API key
            secret_key: Alpaca secret key
            paper: Must be True
            rate_limit_per_minute: Request budget per rolling minute
            retry_attempts: Attempts for retried reads (>= 1)
            retry_delay: Base backoff in seconds, multiplied by the attempt number

        Raises:
            ConfigurationError: If credentials or retry settings are invalid
            PaperTradingRequiredError: If paper is False
        """
        if not api_key or not secret_key:
            raise ConfigurationError("Alpaca API key and secret key are required")
        if not paper:
            raise PaperTradingRequiredError(
                "SAFETY: Only paper trading is supported. Set ALPACA_PAPER=true"
            )
        if retry_attempts < 1:
            raise ConfigurationError(f"retry_attempts must be >= 1, got {retry_attempts}")

        self.api_key = api_key
        self.secret_key = secret_key
        self.paper = paper
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.limiter = RequestLimiter(rate_limit_per_minute)

        self._trading_client: Optional[TradingClient] = None
        self._data_client: Optional[StockHistoricalDataClient] = None

        logger.info(
            "Alpaca paper session ready (%d requests/min, %d attempts)",
            rate_limit_per_minute,
            retry_attempts,
        )

    @classmethod
    def from_env(cls, config: Optional[Config] = None, env_file: str = ".env") -> "AlpacaClient":
        """Create a session from ALPACA_* variables and the ``alpaca`` config section.

        Environment variables:
            - ALPACA_API_KEY
            - ALPACA_SECRET_KEY
            - ALPACA_PAPER (optional, default "true")

        Raises:
            ConfigurationError: If a credential is missing
            PaperTradingRequiredError: If ALPACA_PAPER is not "true"
        """
        load_dotenv(env_file)

        api_key = os.getenv("ALPACA_API_KEY")
        secret_key = os.getenv("ALPACA_SECRET_KEY")
        if not api_key:
            raise ConfigurationError(
                "ALPACA_API_KEY not found in environment variables. "
                "Please set it in your .env file."
            )
        if not secret_key:
            raise ConfigurationError(
                "ALPACA_SECRET_KEY not found in environment variables. "
                "Please set it in your .env file."
            )

        settings = config.section("alpaca") if config is not None else {}
        return cls(
            api_key=api_key,
            secret_key=secret_key,
            paper=os.getenv("ALPACA_PAPER", "true").strip().lower() == "true",
            rate_limit_per_minute=int(settings.get("rate_limit_per_minute", 200)),
            retry_attempts=int(settings.get("retry_attempts", 3)),
            retry_delay=float(settings.get("retry_delay", 2.0)),
        )

    def get_trading_client(self) -> TradingClient:
        """Raises BrokerConnectionError if the client cannot be created."""
        if self._trading_client is None:
            try:
                self._trading_client = TradingClient(
                    api_key=self.api_key,
                    secret_key=self.secret_key,
                    paper=True,
                )
            except Exception as e:
                raise BrokerConnectionError(f"Failed to initialize TradingClient: {e}") from e
        return self._trading_client

    def get_data_client(self) -> StockHistoricalDataClient:
        """Raises BrokerConnectionError if the client cannot be created."""
        if self._data_client is None:
            try:
                self._data_client = StockHistoricalDataClient(
                    api_key=self.api_key,
                    secret_key=self.secret_key,
                )
            except Exception as e:
                raise BrokerConnectionError(
                    f"Failed to initialize StockHistoricalDataClient: {e}"
                ) from e
        return self._data_client

    def with_retry(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Call a read-only API function with rate limiting and bounded retries.

        Non-retryable API errors (4xx other than 429) fail on the first attempt.

        Raises:
            BrokerConnectionError: When the call fails for good
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.retry_attempts + 1):
            self.limiter.acquire()
            try:
                return func(*args, **kwargs)
            except Exception as e:
                last_error = e
                if not is_retryable(e):
                    break
                logger.warning(
                    "Alpaca request failed (attempt %d/%d): %s",
                    attempt,
                    self.retry_attempts,
                    e,
                )
                if attempt < self.retry_attempts:
                    time.sleep(self.retry_delay * attempt)

        raise BrokerConnectionError(f"Alpaca request failed: {last_error}") from last_error

    def submit_once(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Call a state-changing API function exactly once.

        Raises:
            BrokerConnectionError: If the call fails
        """
        self.limiter.acquire()
        try:
            return func(*args, **kwargs)
        except Exception as e:
            raise BrokerConnectionError(f"Alpaca request failed: {e}") from e
