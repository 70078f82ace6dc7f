"""Quote providers."""

from quoteflow.core.data.providers.base import CHART_RANGES, QuoteProvider, resolve_chart_range
from quoteflow.core.data.providers.yfinance import YFinanceQuoteFetcher

__all__ = ["CHART_RANGES", "QuoteProvider", "YFinanceQuoteFetcher", "resolve_chart_range"]
