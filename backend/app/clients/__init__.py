"""Market-data provider clients."""

from app.clients.alpha_vantage import (
    AlphaVantageClient,
    IndicatorResponse,
    InvalidResponseError,
    ProviderError,
    RateLimiter,
    RateLimitError,
    parse_indicator_response,
)

__all__ = [
    "AlphaVantageClient",
    "IndicatorResponse",
    "InvalidResponseError",
    "ProviderError",
    "RateLimiter",
    "RateLimitError",
    "parse_indicator_response",
]
