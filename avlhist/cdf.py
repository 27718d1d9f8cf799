"""Sampled cumulative distributions turned into histograms."""

from __future__ import annotations

import math
from dataclasses import dataclass

from .histogram import Histogram, calc_percentile_of_product

_TRACKED_PERCENTILE = 0.99
_SUB_HISTOGRAM_SIZE = 0.1
_ACCURACY = 1


def _round_half_away(value: float) -> float:
    """Round to the nearest integer, halves away from zero."""
    return math.copysign(math.floor(abs(value) + 0.5), value)


@dataclass
class CDFPoint:
    """One sampled point of a distribution: a percentile and its value."""

    percentile: float
    value: float


class CDF:
    """A distribution given by ``amount`` sorted points above ``start_point``.

    ``start_point`` is the share of the distribution that sits at zero; the
    histogram built from it holds that many zero samples in proportion to
    the points.
    """

    def __init__(self, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"amount of points must not be negative, got {amount}")
        self.points: list[CDFPoint | None] = [None] * amount
        self.start_point = 0.0
        self.increment = 0.0
        self.amount = amount
        self._histogram: Histogram | None = None

    def __repr__(self) -> str:
        return (
            f"CDF(amount={self.amount}, start_point={self.start_point!r}, "
            f"increment={self.increment!r})"
        )

    def histogram(self) -> Histogram:
        """Return a histogram holding this distribution, building it once.

        The points are expected to be sorted by value.
        """
        if self._histogram is not None:
            return self._histogram
        if self.start_point >= 1:
            raise ValueError(
                f"start point must be below 1, got {self.start_point!r}"
            )
        missing = [i for i, point in enumerate(self.points) if point is None]
        if missing:
            raise ValueError(f"points not set at positions {missing}")

        zero_share = int(_round_half_away(1 / (1 - self.start_point) - 1))
        zero_count = zero_share * (self.amount - 1)
        total = zero_count + self.amount

        hist = Histogram(total, _SUB_HISTOGRAM_SIZE, _ACCURACY)
        hist.add_percentile_point(_TRACKED_PERCENTILE)
        if zero_count > 0:
            hist.enqueue(0, zero_count)
        for point in self.points:
            hist.enqueue(point.value, 1)

        self._histogram = hist
        return hist


def search_cdf_product(cdfs: list[CDF | None], percentile: float) -> float:
    """Return the value at which the product of the CDFs reaches ``percentile``."""
    if not cdfs:
        return 0.0
    histograms = [cdf.histogram() if cdf is not None else None for cdf in cdfs]
    return calc_percentile_of_product(percentile, histograms, False)