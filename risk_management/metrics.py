"""
Risk Management - Portfolio Metrics.

============================================================
PURPOSE
============================================================
Pluggable correlation and volatility metrics computed from
historical prices in the market-data cache.

- PearsonCorrelationMetric: value-weighted average pairwise
  Pearson correlation of simple returns
- CovarianceVolatilityMetric: portfolio standard deviation
  sqrt(w' * Cov * w) of per-period simple returns

Assets with fewer than min_data_points prices contribute
nothing (stablecoins, fresh listings). With no usable data
both metrics report 0.

============================================================
"""

import logging
import math
import statistics
from decimal import Decimal
from typing import Dict, List, Protocol


logger = logging.getLogger(__name__)


class PriceHistorySource(Protocol):
    async def get_price_history(self, symbol: str, limit: int = 100) -> List[Decimal]: ...


class PortfolioMetric(Protocol):
    """A portfolio statistic over asset weights."""

    async def compute(self, weights: Dict[str, Decimal]) -> Decimal: ...


def simple_returns(prices: List[Decimal]) -> List[float]:
    """Per-period simple returns; zero prices are skipped."""
    values = [float(p) for p in prices if p > 0]
    return [values[i] / values[i - 1] - 1.0 for i in range(1, len(values))]


def _to_decimal(value: float) -> Decimal:
    return Decimal(str(round(value, 8)))


class _HistoryMetric:
    def __init__(self, source: PriceHistorySource, history_length: int = 100, min_data_points: int = 10):
        self._source = source
        self._history_length = history_length
        self._min_data_points = max(min_data_points, 3)

    async def _returns(self, weights: Dict[str, Decimal]) -> Dict[str, List[float]]:
        """Aligned return series for every asset with enough history."""
        series: Dict[str, List[float]] = {}
        for symbol, weight in weights.items():
            if weight <= 0:
                continue
            prices = await self._source.get_price_history(symbol, self._history_length)
            if len(prices) < self._min_data_points:
                continue
            series[symbol] = simple_returns(prices)

        if not series:
            return {}

        length = min(len(r) for r in series.values())
        if length < 2:
            return {}
        return {symbol: returns[-length:] for symbol, returns in series.items()}


class PearsonCorrelationMetric(_HistoryMetric):
    """Value-weighted average pairwise correlation, in [-1, 1]."""

    async def compute(self, weights: Dict[str, Decimal]) -> Decimal:
        series = await self._returns(weights)
        symbols = sorted(series)
        if len(symbols) < 2:
            return Decimal("0")

        weighted_sum = 0.0
        weight_total = 0.0
        for i, a in enumerate(symbols):
            for b in symbols[i + 1:]:
                try:
                    corr = statistics.correlation(series[a], series[b])
                except statistics.StatisticsError:
                    # Constant series
                    continue
                pair_weight = float(weights[a]) * float(weights[b])
                weighted_sum += pair_weight * corr
                weight_total += pair_weight

        if weight_total == 0:
            return Decimal("0")
        return _to_decimal(weighted_sum / weight_total)


class CovarianceVolatilityMetric(_HistoryMetric):
    """Portfolio standard deviation of per-period returns."""

    async def compute(self, weights: Dict[str, Decimal]) -> Decimal:
        series = await self._returns(weights)
        if not series:
            return Decimal("0")

        symbols = sorted(series)
        variance = 0.0
        for a in symbols:
            for b in symbols:
                if a == b:
                    cov = statistics.variance(series[a])
                else:
                    cov = statistics.covariance(series[a], series[b])
                variance += float(weights[a]) * float(weights[b]) * cov

        return _to_decimal(math.sqrt(max(variance, 0.0)))
