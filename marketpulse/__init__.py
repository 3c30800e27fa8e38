"""MarketPulse: marketplace sales analytics API."""

__version__ = "0.1.0"
