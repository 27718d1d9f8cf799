# avlhist

A sliding-window histogram that keeps its samples in a balanced (AVL) tree.
Each tree node carries subtree counts. This keeps a value's rank, the values
at chosen percentiles, the running mean and the running variance up to date
as samples enter and leave the window.

## Installation

```
pip install avlhist
```

The package has no runtime dependencies. To run the tests, install the
`test` extra (`pip install "avlhist[test]"`) and run `pytest`.

## Sliding-window histogram

```python
from avlhist.histogram import Histogram

# A window of 1000 samples, sub-histograms 10 units wide, values rounded to 0.1.
hist = Histogram(1000, 10.0, 1)
hist.add_percentile_point(0.99)

for value in samples:
    hist.enqueue(value, 1)   # evicts the oldest samples once the window is full

hist.value_at_percentile(0.99)    # value at the tracked 99th percentile
hist.percentile_for_value(250.0)  # share of samples no larger than 250.0
hist.mean, hist.variance
hist.water_mark()                 # count / window size, 0.0 for an unbounded window
```

- `Histogram(size, sub_histogram_size=0.0, accuracy=0)`: a `size` of zero or
  less keeps every sample. A `sub_histogram_size` of 0 means 10.0. Values are
  rounded to `10 ** -accuracy`, halves away from zero (see `unified_value`).
- `enqueue(value, count=1)` adds `count` samples of the rounded value and
  returns the last node evicted from the window, or `None` if none was.
- `dequeue()` removes the oldest sample and returns its node, or `None` when
  the histogram is empty.
- `add_percentile_point(p)` starts tracking percentile `p`. Trackers are kept
  in `percentiles` under `percentile_key(p)` (for example `"9.9E-01"`), and
  `percentile_item(p)` returns one. Each tracker moves along with every
  `enqueue` and `dequeue`.
- `value_at_percentile(p)` returns the tracked value when `p` is tracked and
  searches for it otherwise.
- `percentile_for_value(value)` raises `LookupError` when no sample is at or
  below `value`.
- `enqueue` and `dequeue` hold a lock, so one histogram can be fed from
  several threads.

## Percentile of a product of histograms

`calc_percentile_of_product(percentile, histograms, verbose=False)` looks for
the value `v` at which the product of the histograms' cumulative shares,
`P1(X <= v) * P2(X <= v) * ...`, comes closest to `percentile`. It runs a
binary search, first over sub-histograms and then over the buckets inside
the chosen one. `None` entries in the list are skipped. A single histogram
that tracks the percentile returns its tracked value directly. If every
histogram tracks the percentile, the search starts from the largest tracked
value.

```python
from avlhist.histogram import calc_percentile_of_product

tail = calc_percentile_of_product(0.99, [hist_a, hist_b, hist_c])
```

With `verbose=True` each search step is logged at INFO level on the
`avlhist.histogram` logger. `search_percentile_by_multiply` is the search
step itself.

## CDFs

```python
from avlhist.cdf import CDF, CDFPoint, search_cdf_product

cdf = CDF(3)
cdf.start_point = 0.5
cdf.points = [CDFPoint(0.6, 1.0), CDFPoint(0.8, 2.0), CDFPoint(1.0, 4.0)]
hist = cdf.histogram()
search_cdf_product([cdf, other_cdf], 0.99)
```

A `CDF` holds `amount` points, which are expected to be sorted by value, and
a `start_point`, the share of the distribution that sits at zero.
`CDF.histogram()` builds a `Histogram` once and caches it. The histogram has
sub-histograms 0.1 wide, accuracy 1 and a tracked 0.99 percentile. It holds
`round(1 / (1 - start_point) - 1) * (amount - 1)` zero samples and one sample
per point. `histogram()` raises `ValueError` when `start_point` is 1 or more
or when a point is unset. `search_cdf_product(cdfs, percentile)` runs
`calc_percentile_of_product` over the CDFs' histograms and returns 0.0 for an
empty list.

## Lower-level pieces

- `avlhist.item.HistogramItem`: a node of the AVL tree. Its `count` is the
  number of samples in its subtree and its `duplications` the number of
  samples equal to its `value`. Nodes are threaded in value order through
  `smaller` and `larger`. It offers `insert`, `delete`, `find`,
  `find_no_larger_than`, `cumulative_count`, `root`, the rotations and
  `describe`. `insert` and `delete` return the affected node together with
  the new root, or `None` when the root cannot have changed.
- `avlhist.buckets.BucketHistogram` and `SubBucketHistogram`: a two-level
  index of fixed-width buckets, with at most one tree node per bucket.

## What it does not do

This is a library only. It has no command-line tool, and it does not save
histograms to disk or load them back.