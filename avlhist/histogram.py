"""Sliding-window histogram with tracked percentiles and product search."""

from __future__ import annotations

import logging
import math
import threading
from collections import deque
from decimal import Decimal

from .buckets import BucketHistogram
from .item import HistogramItem

logger = logging.getLogger(__name__)

_MAX_ITERATIONS = 30


def _round_half_away(value: float) -> float:
    """Round to the nearest integer, halves away from zero."""
    return math.copysign(math.floor(abs(value) + 0.5), value)


def _half(total: int) -> int:
    """Halve an integer, truncating toward zero."""
    return total // 2 if total >= 0 else -((-total) // 2)


def percentile_key(p: float) -> str:
    """Return the canonical text key of a percentile, e.g. ``9.9E-01``."""
    p = float(p)
    if math.isnan(p):
        return "NaN"
    if math.isinf(p):
        return "+Inf" if p > 0 else "-Inf"
    sign, digits, exponent = Decimal(repr(p)).as_tuple()
    digits = list(digits)
    while len(digits) > 1 and digits[-1] == 0:
        digits.pop()
        exponent += 1
    if all(d == 0 for d in digits):
        digits = [0]
        sci_exponent = 0
    else:
        while len(digits) > 1 and digits[0] == 0:
            digits.pop(0)
        sci_exponent = exponent + len(digits) - 1
    mantissa = str(digits[0])
    if len(digits) > 1:
        mantissa += "." + "".join(str(d) for d in digits[1:])
    exp_sign = "+" if sci_exponent >= 0 else "-"
    return f"{'-' if sign else ''}{mantissa}E{exp_sign}{abs(sci_exponent):02d}"


class PercentileItem:
    """A percentile tracked incrementally by a histogram.

    ``item`` is the node currently standing at the percentile and ``count``
    the number of samples at or below that node.
    """

    __slots__ = ("percentile", "item", "key", "count", "real_percentage")

    def __init__(self, percentile: float) -> None:
        self.percentile = percentile
        self.item: HistogramItem | None = None
        self.key = percentile_key(percentile)
        self.count = 0
        self.real_percentage = 0.0

    def __repr__(self) -> str:
        value = self.item.value if self.item is not None else None
        return (
            f"PercentileItem(percentile={self.percentile!r}, value={value!r}, "
            f"count={self.count}, real_percentage={self.real_percentage!r})"
        )


class Histogram:
    """A bounded queue of samples kept in an AVL tree with bucket indexes.

    ``size`` bounds the window: once more samples are held, the oldest ones
    are evicted. A size of zero or less keeps every sample.
    """

    def __init__(
        self, size: int, sub_histogram_size: float = 0.0, accuracy: int = 0
    ) -> None:
        accuracy_factor = math.pow(10, accuracy)
        bucket_size = 1.0 / accuracy_factor if accuracy != 0 else 1.0
        sub_size = sub_histogram_size if sub_histogram_size != 0 else 10.0

        self.queue: deque[HistogramItem] = deque()
        self.root_item: HistogramItem | None = None
        self.queue_size = size
        self.count = 0
        self.bucket_histogram = BucketHistogram(sub_size, bucket_size)
        self.accuracy = accuracy_factor
        self.min_item: HistogramItem | None = None
        self.max_item: HistogramItem | None = None
        self.percentiles: dict[str, PercentileItem] = {}
        self.mean = 0.0
        self.variance = 0.0
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return (
            f"Histogram(size={self.queue_size}, count={self.count}, "
            f"mean={self.mean!r}, variance={self.variance!r})"
        )

    def water_mark(self) -> float:
        """Return how full the window is, as a fraction of its size."""
        if self.queue_size <= 0:
            return 0.0
        return self.count / self.queue_size

    def index_of_sub_histogram(self, value: float) -> int:
        """Return the index of the sub-histogram ``value`` falls in."""
        index, _, _ = self.bucket_histogram.calc_position(value)
        return index

    def sub_histogram_count(self) -> int:
        """Return how many sub-histogram slots exist."""
        return len(self.bucket_histogram.sub_histograms)

    def max_sub_histogram_size(self) -> int:
        """Return the number of buckets a full sub-histogram can hold."""
        return int(
            _round_half_away(self.bucket_histogram.sub_histogram_size * self.accuracy)
        )

    def value_of_bucket(self, sub_histogram_index: int, bucket_index: int) -> float:
        """Return the search value for a bucket of a sub-histogram."""
        lower, _ = self.bucket_histogram.boundaries(sub_histogram_index)
        return lower + float(bucket_index) * self.accuracy

    def unified_value(self, value: float) -> float:
        """Round ``value`` to the histogram's accuracy."""
        return _round_half_away(value * self.accuracy) / self.accuracy

    def add_percentile_point(self, p: float) -> None:
        """Start tracking percentile ``p``."""
        item = PercentileItem(p)
        self.percentiles[item.key] = item

    def percentile_item(self, p: float) -> PercentileItem | None:
        """Return the tracker of percentile ``p``, if it is tracked."""
        return self.percentiles.get(percentile_key(p))

    def value_at_percentile(self, p: float) -> float:
        """Return the value at percentile ``p``, searching if it is untracked."""
        tracked = self.percentile_item(p)
        if tracked is not None and tracked.item is not None:
            return tracked.item.value
        return calc_percentile_of_product(p, [self], False)

    def percentile_for_value(self, value: float) -> float:
        """Return the fraction of samples at or below ``value``."""
        root = self.root_item
        item = root.find_no_larger_than(value) if root is not None else None
        if item is None:
            raise LookupError(f"no sample at or below {value!r}")
        if item.count == 0:
            return 0.0
        return item.cumulative_count() / root.count

    def _walk_up(self, tracker: PercentileItem, total: float) -> None:
        percent = tracker.count / total
        tracker.real_percentage = percent
        node = tracker.item.larger
        while node is not None and percent < tracker.percentile:
            percent = (tracker.count + node.duplications) / total
            if percent <= tracker.percentile:
                tracker.item = node
                tracker.count += node.duplications
                tracker.real_percentage = tracker.count / total
            node = node.larger

    def _attach(self, tracker: PercentileItem, total: float) -> None:
        tracker.item = self.min_item
        tracker.count = self.min_item.duplications
        self._walk_up(tracker, total)

    def enqueue(self, value: float, count: int = 1) -> HistogramItem | None:
        """Add ``count`` samples of ``value``; return the last evicted node."""
        with self._lock:
            v = self.unified_value(value)
            evicted: HistogramItem | None = None

            if self.root_item is not None:
                item, new_root = self.root_item.insert(v, count)
                if new_root is not None:
                    self.root_item = new_root
                if self.min_item.smaller is not None:
                    self.min_item = self.min_item.smaller
                if self.max_item.larger is not None:
                    self.max_item = self.max_item.larger

                total = float(self.root_item.count)
                for tracker in self.percentiles.values():
                    if tracker.item is None:
                        self._attach(tracker, total)
                        continue
                    if v <= tracker.item.value:
                        tracker.count += 1
                        percent = tracker.count / total
                        tracker.real_percentage = percent
                        node = tracker.item.smaller
                        while node is not None and percent > tracker.percentile:
                            tracker.item = node
                            tracker.count -= node.larger.duplications
                            tracker.real_percentage = tracker.count / total
                            percent = (tracker.count - node.duplications) / total
                            node = node.smaller
                    else:
                        self._walk_up(tracker, total)
            else:
                item = HistogramItem(v)
                item.duplications = count
                item.count = count
                self.root_item = item
                self.min_item = item
                self.max_item = item
                for tracker in self.percentiles.values():
                    tracker.item = item
                    tracker.count = count
                    tracker.real_percentage = 1.0

            if item.duplications == count:
                self.bucket_histogram.insert(item)
            self.queue.extend([item] * count)

            count_before = self.count
            self.count += count
            mean_before = self.mean
            self.mean = (self.mean * count_before + v * count) / self.count
            a = count_before / self.count * self.variance
            b = count_before / self.count * (self.mean - mean_before) ** 2
            c = count / self.count * (v - self.mean) ** 2
            self.variance = a + b + c

            while self.queue_size > 0 and self.count > self.queue_size:
                evicted = self.dequeue()
            return evicted

    def dequeue(self) -> HistogramItem | None:
        """Remove the oldest sample and return its node, or None when empty."""
        with self._lock:
            item: HistogramItem | None = None
            if self.queue:
                item = self.queue.popleft()
                self.count -= 1
                smaller = item.smaller
                larger = item.larger
                replaced, new_root = item.delete()
                node_removed = False
                if new_root is not None or replaced is None:
                    node_removed = True
                    self.root_item = new_root
                    if item is self.max_item:
                        self.max_item = smaller
                    if item is self.min_item:
                        self.min_item = larger
                    self.bucket_histogram.delete(item)

                total = (
                    float(self.root_item.count) if self.root_item is not None else 0.0
                )
                if total > 0:
                    self._follow_removal(item, smaller, larger, node_removed, total)

            if item is not None and self.count > 0:
                mean_before = self.mean
                self.mean = (self.mean * (self.count + 1) - item.value) / self.count
                a = (self.count + 1) / self.count * self.variance
                b = (mean_before - self.mean) ** 2
                c = 1.0 / self.count * (item.value - mean_before) ** 2
                self.variance = a - b - c
            elif item is not None:
                self.mean = 0.0
                self.variance = 0.0
            return item

    def _follow_removal(
        self,
        item: HistogramItem,
        smaller: HistogramItem | None,
        larger: HistogramItem | None,
        node_removed: bool,
        total: float,
    ) -> None:
        deleted = item.value
        for tracker in self.percentiles.values():
            if tracker.item is None:
                self._attach(tracker, total)
                continue
            if item is tracker.item or deleted <= tracker.item.value:
                tracker.count -= 1
                if (item is tracker.item or deleted == tracker.item.value) and node_removed:
                    if larger is not None:
                        tracker.item = larger
                        tracker.count += larger.duplications
                    elif smaller is not None:
                        tracker.item = smaller
                    else:
                        tracker.item = None
                if tracker.item is not None:
                    self._walk_up(tracker, total)
                else:
                    tracker.real_percentage = tracker.count / total
            elif deleted > tracker.item.value:
                percent = tracker.count / total
                tracker.real_percentage = percent
                node = tracker.item.smaller
                while node is not None and percent > tracker.percentile:
                    tracker.item = node
                    tracker.count -= node.larger.duplications
                    tracker.real_percentage = percent
                    percent = (tracker.count - node.duplications) / total
                    node = node.smaller


def _multiply(
    histograms: list[Histogram], opt_out_mask: list[bool], criteria: float
) -> tuple[float, list[int]]:
    burnt_out: list[int] = []
    product = 1.0
    for i, hist in enumerate(histograms):
        if i < len(opt_out_mask) and opt_out_mask[i]:
            continue
        root = hist.root_item
        node = root.find_no_larger_than(criteria) if root is not None else None
        if node is hist.max_item:
            burnt_out.append(i)
        else:
            cumulative = node.cumulative_count() if node is not None else 0
            product *= cumulative / hist.count
    return product, burnt_out


def search_percentile_by_multiply(
    p: float,
    start_value: float,
    histograms: list[Histogram],
    opt_out_mask: list[bool],
    lower_index: int,
    upper_index: int,
    going_up: bool,
    sub_histogram_index: int,
    last_product: float,
    last_criteria: float,
    iteration: int,
    verbose: bool,
) -> float:
    """Binary-search the value at which the product of CDFs reaches ``p``.

    Searches sub-histograms first (``sub_histogram_index`` < 0), then the
    buckets inside the chosen sub-histogram.
    """
    if lower_index > upper_index or iteration > _MAX_ITERATIONS:
        return last_criteria

    mid = _half(lower_index + upper_index)
    lower_boundary = upper_boundary = 0.0
    criteria = start_value
    if start_value < 0:
        if sub_histogram_index < 0:
            lower_boundary, upper_boundary = histograms[0].bucket_histogram.boundaries(mid)
            criteria = upper_boundary if going_up else lower_boundary
        else:
            criteria = histograms[0].value_of_bucket(sub_histogram_index, mid)

    product, burnt_out = _multiply(histograms, opt_out_mask, criteria)

    lower, upper = lower_index, upper_index
    go_up = True
    found = False

    if product == p:
        found = True
    else:
        attempts = ("first time", "retry") if sub_histogram_index < 0 else ("first time",)
        sub_size = histograms[0].max_sub_histogram_size()
        need_retry = False
        searching_top = sub_histogram_index < 0 and start_value < 0
        for attempt in attempts:
            if attempt == "retry" and not need_retry:
                break
            if product < p:
                for i in burnt_out:
                    if i < len(opt_out_mask):
                        opt_out_mask[i] = True
                if searching_top:
                    if attempt == "first time":
                        if not going_up:
                            product, burnt_out = _multiply(
                                histograms, opt_out_mask, upper_boundary
                            )
                            need_retry = True
                            continue
                    elif going_up:
                        return search_percentile_by_multiply(
                            p, -1, histograms, opt_out_mask,
                            0, sub_size - 1, True,
                            mid, product, criteria,
                            1, verbose,
                        )
                lower = mid + 1
            elif product > p:
                burnt_out = []
                if searching_top:
                    if attempt == "first time":
                        if going_up:
                            product, burnt_out = _multiply(
                                histograms, opt_out_mask, lower_boundary
                            )
                            need_retry = True
                            continue
                    elif not going_up:
                        return search_percentile_by_multiply(
                            p, -1, histograms, opt_out_mask,
                            0, sub_size - 1, True,
                            mid, product, criteria,
                            1, verbose,
                        )
                upper = mid - 1
                go_up = False

    if verbose:
        if sub_histogram_index < 0 and iteration == 1:
            logger.info("iterations to search %s percentile:", p * 100)
        if sub_histogram_index < 0:
            prefix = " "
        else:
            prefix = f"   in [{sub_histogram_index}] subhistogram, "
        if found or lower > upper:
            direction = ", stop"
        elif go_up:
            direction = ", next go up"
        else:
            direction = ", next go down"
        logger.info(
            "%s%s iteration: %s, burn out %s histograms, idx: %s, lower: %s, "
            "upper: %s, criteria: %s%s",
            prefix, iteration, product, len(burnt_out), mid,
            lower_index, upper_index,
            _round_half_away(criteria * 10) / 10, direction,
        )

    if found:
        return criteria
    if lower >= upper:
        if last_criteria >= 0 and last_product >= 0:
            if abs(p - last_product) < abs(p - product):
                if verbose:
                    logger.info("   due to larger distance, the last iteration is discarded")
                return last_criteria
        return criteria
    return search_percentile_by_multiply(
        p, -1, histograms, opt_out_mask,
        lower, upper, go_up,
        sub_histogram_index,
        product, criteria,
        iteration + 1,
        verbose,
    )


def calc_percentile_of_product(
    percentile: float, histograms: list[Histogram | None], verbose: bool = False
) -> float:
    """Return the value at which the product of the histograms' CDFs hits ``percentile``."""
    if not histograms:
        return 0.0

    key = percentile_key(percentile)

    if len(histograms) == 1:
        only = histograms[0]
        if only is None:
            return 0.0
        tracked = only.percentile_item(percentile)
        if tracked is not None and tracked.item is not None:
            return tracked.item.value

    good = [h for h in histograms if h is not None]
    all_tracked = all(key in h.percentiles for h in good)
    max_length = max((h.sub_histogram_count() for h in good), default=0)

    opt_out_mask = [False] * len(good)
    start_point = -1.0
    start_index = 0
    if all_tracked:
        for hist in good:
            tracked = hist.percentile_item(percentile)
            value = start_point
            if tracked is not None and tracked.item is not None:
                value = tracked.item.value
            if value > start_point:
                start_point = value
                start_index = hist.index_of_sub_histogram(value)

    criteria = search_percentile_by_multiply(
        percentile, start_point, good, opt_out_mask,
        start_index, max_length - 1,
        True, -1,
        0.0, 0.0,
        1, verbose,
    )

    if verbose:
        logger.info("   the point for %s percentile is %s", percentile * 100, criteria)
    return criteria