"""Two-level bucket index over histogram tree nodes."""

from __future__ import annotations

import logging
import math

from .item import HistogramItem

logger = logging.getLogger(__name__)


def _round_half_away(value: float) -> float:
    """Round to the nearest integer, halves away from zero."""
    return math.copysign(math.floor(abs(value) + 0.5), value)


def _position(offset: float, size: float) -> int:
    position = offset / size
    if abs(size) < 1:
        position = _round_half_away(position)
    return int(position)


class SubBucketHistogram:
    """Fixed-width buckets covering ``[lower_boundary, upper_boundary)``.

    Each bucket holds at most one tree node, the one whose value falls in it.
    """

    def __init__(self, bucket_size: float, lower: float, upper: float) -> None:
        self.bucket_size = bucket_size
        self.lower_boundary = lower
        self.upper_boundary = upper
        self.buckets: list[HistogramItem | None] = []

    def __repr__(self) -> str:
        return (
            f"SubBucketHistogram(bucket_size={self.bucket_size!r}, "
            f"lower={self.lower_boundary!r}, upper={self.upper_boundary!r}, "
            f"buckets={len(self.buckets)})"
        )

    def calc_position(self, value: float) -> int:
        """Return the bucket index of ``value``, or -1 for a zero bucket size."""
        if self.bucket_size == 0:
            return -1
        return _position(value - self.lower_boundary, self.bucket_size)

    def insert(self, item: HistogramItem | None) -> None:
        """Place ``item`` in its bucket, growing the bucket list as needed."""
        if item is None:
            return
        index = self.calc_position(item.value)
        if index < 0:
            raise ValueError(f"value {item.value!r} has no bucket (index {index})")
        if index >= len(self.buckets):
            self.buckets.extend([None] * (index + 1 - len(self.buckets)))
        existing = self.buckets[index]
        if existing is not None:
            logger.warning(
                "bucket is not empty for %s, there exists %s", item.value, existing.value
            )
            logger.warning(
                "    bucket list length: %s, index: %s", len(self.buckets), index
            )
        self.buckets[index] = item

    def delete(self, item: HistogramItem | None) -> None:
        """Empty the bucket that ``item``'s value falls in."""
        if item is None:
            return
        index = self.calc_position(item.value)
        if index < 0:
            raise ValueError(f"value {item.value!r} has no bucket (index {index})")
        if index < len(self.buckets):
            self.buckets[index] = None


class BucketHistogram:
    """Top-level index splitting the value range into sub-histograms."""

    def __init__(self, sub_histogram_size: float, bucket_size: float) -> None:
        self.sub_histogram_size = sub_histogram_size
        self.bucket_size = bucket_size
        self.sub_histograms: list[SubBucketHistogram | None] = []

    def __repr__(self) -> str:
        return (
            f"BucketHistogram(sub_histogram_size={self.sub_histogram_size!r}, "
            f"bucket_size={self.bucket_size!r}, "
            f"sub_histograms={len(self.sub_histograms)})"
        )

    def calc_position(self, value: float) -> tuple[int, float, float]:
        """Return the sub-histogram index of ``value`` and its boundaries."""
        if self.sub_histogram_size == 0:
            return -1, -1.0, -1.0
        index = _position(value, self.sub_histogram_size)
        lower, upper = self.boundaries(index)
        return index, lower, upper

    def boundaries(self, index: int) -> tuple[float, float]:
        """Return the lower and upper boundary of sub-histogram ``index``."""
        lower = float(index) * self.sub_histogram_size
        upper = float(index + 1) * self.sub_histogram_size
        return lower, upper

    def insert(self, item: HistogramItem | None) -> None:
        """Place ``item`` in its sub-histogram, creating it when missing."""
        if item is None:
            return
        index, lower, upper = self.calc_position(item.value)
        if index < 0:
            raise ValueError(
                f"value {item.value!r} has no sub-histogram (index {index})"
            )
        if index >= len(self.sub_histograms):
            self.sub_histograms.extend(
                [None] * (index + 1 - len(self.sub_histograms))
            )
        sub = self.sub_histograms[index]
        if sub is None:
            sub = SubBucketHistogram(self.bucket_size, lower, upper)
            self.sub_histograms[index] = sub
        sub.insert(item)

    def delete(self, item: HistogramItem | None) -> None:
        """Remove ``item`` from the bucket its value falls in, if present."""
        if item is None:
            return
        index, _, _ = self.calc_position(item.value)
        if index < 0:
            raise ValueError(
                f"value {item.value!r} has no sub-histogram (index {index})"
            )
        if index < len(self.sub_histograms):
            sub = self.sub_histograms[index]
            if sub is not None:
                sub.delete(item)