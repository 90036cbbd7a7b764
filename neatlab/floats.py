"""Descriptive statistics over sequences of floating point values."""

from __future__ import annotations

import math


class Floats(list):
    """A list of floats that can describe itself statistically.

    Every statistic except ``sum`` is NaN for an empty list.
    """

    def min(self) -> float:
        """Return the smallest value."""
        if not self:
            return math.nan
        return float(min(self))

    def max(self) -> float:
        """Return the greatest value."""
        if not self:
            return math.nan
        return float(max(self))

    def sum(self) -> float:
        """Return the total of the values; zero for an empty list."""
        return float(sum(self, 0.0))

    def mean(self) -> float:
        """Return the arithmetic mean."""
        if not self:
            return math.nan
        return sum(self, 0.0) / len(self)

    def mean_variance(self) -> list[float]:
        """Return ``[mean, unbiased variance]``."""
        if not self:
            return [math.nan, math.nan]
        return list(self._mean_and_variance())

    def median(self) -> float:
        """Return the 50% empirical quantile."""
        return self._quantile(0.5)

    def q25(self) -> float:
        """Return the 25% empirical quantile."""
        return self._quantile(0.25)

    def q75(self) -> float:
        """Return the 75% empirical quantile."""
        return self._quantile(0.75)

    def variance(self) -> float:
        """Return the unbiased sample variance."""
        if not self:
            return math.nan
        return self._mean_and_variance()[1]

    def std_dev(self) -> float:
        """Return the sample standard deviation."""
        return math.sqrt(self.variance())

    def _mean_and_variance(self) -> tuple[float, float]:
        count = len(self)
        mean = sum(self, 0.0) / count
        if count < 2:
            return mean, math.nan
        squares = sum(((x - mean) ** 2 for x in self), 0.0)
        compensation = sum((x - mean for x in self), 0.0)
        variance = (squares - compensation * compensation / count) / (count - 1)
        return mean, variance

    def _quantile(self, p: float) -> float:
        if not self:
            return math.nan
        ordered = sorted(self)
        threshold = p * len(ordered)
        for cumulative, value in enumerate(ordered, start=1):
            if cumulative >= threshold:
                return float(value)
        return float(ordered[-1])