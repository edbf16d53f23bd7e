"""Shared utilities: configuration, logging, exceptions and the Alpaca client."""
