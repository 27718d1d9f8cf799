import random

import pytest

from avlhist.histogram import (
    Histogram,
    PercentileItem,
    calc_percentile_of_product,
    percentile_key,
    search_percentile_by_multiply,
)


def _random_floats(rng, size, mean, fraction):
    return [round(rng.expovariate(1.0) * mean * fraction) / fraction for _ in range(size)]


def _filled(values, size=0, sub_size=10.0, accuracy=0):
    hist = Histogram(size, sub_size, accuracy)
    for v in values:
        hist.enqueue(v)
    return hist


@pytest.mark.parametrize(
    "p, key",
    [
        (0.99, "9.9E-01"),
        (0.9995, "9.995E-01"),
        (1.0, "1E+00"),
        (0.0, "0E+00"),
        (12345.0, "1.2345E+04"),
        (1e-300, "1E-300"),
    ],
)
def test_percentile_key(p, key):
    assert percentile_key(p) == key


def test_percentile_item_defaults():
    item = PercentileItem(0.99)
    assert item.key == "9.9E-01"
    assert item.item is None
    assert item.count == 0


def test_constructor_sizes():
    hist = Histogram(100, 0, 1)
    assert hist.bucket_histogram.sub_histogram_size == 10.0
    assert hist.bucket_histogram.bucket_size == pytest.approx(0.1)
    assert hist.accuracy == 10.0
    assert hist.max_sub_histogram_size() == 100

    plain = Histogram(100, 5.0, 0)
    assert plain.bucket_histogram.bucket_size == 1.0
    assert plain.accuracy == 1.0


def test_unified_value_rounds_half_away():
    hist = Histogram(10, 10.0, 1)
    assert hist.unified_value(1.25) == pytest.approx(1.3)
    assert hist.unified_value(1.24) == pytest.approx(1.2)


def test_value_of_bucket_and_index():
    hist = Histogram(10, 10.0, 1)
    assert hist.value_of_bucket(2, 3) == 50.0
    assert hist.index_of_sub_histogram(25.0) == 2


def test_water_mark():
    hist = _filled([1, 2, 3, 4, 5], size=10)
    assert hist.water_mark() == 0.5
    assert Histogram(0, 10.0, 0).water_mark() == 0.0


def test_mean_and_variance():
    hist = _filled([1, 2, 3, 4])
    assert hist.mean == pytest.approx(2.5)
    assert hist.variance == pytest.approx(1.25)


def test_enqueue_with_count():
    hist = Histogram(0, 10.0, 0)
    hist.enqueue(5.0, 3)
    assert hist.count == 3
    assert len(hist.queue) == 3
    assert hist.root_item.duplications == 3
    assert hist.mean == pytest.approx(5.0)


def test_sliding_window_evicts_oldest():
    hist = Histogram(3, 10.0, 0)
    returned = [hist.enqueue(v) for v in (1, 2, 3, 4, 5)]
    assert returned[:3] == [None, None, None]
    assert returned[3].value == 1
    assert returned[4].value == 2
    assert hist.count == 3
    assert [n.value for n in hist.queue] == [3, 4, 5]
    assert hist.min_item.value == 3
    assert hist.max_item.value == 5
    assert hist.mean == pytest.approx(4.0)
    assert hist.variance == pytest.approx(2 / 3)


def test_dequeue_empty_and_to_empty():
    hist = Histogram(0, 10.0, 0)
    assert hist.dequeue() is None
    hist.enqueue(7)
    hist.enqueue(9)
    assert hist.dequeue().value == 7
    assert hist.dequeue().value == 9
    assert hist.root_item is None
    assert hist.count == 0
    assert hist.mean == 0.0
    assert hist.variance == 0.0


def test_tracked_percentile_exact():
    hist = Histogram(0, 10.0, 0)
    hist.add_percentile_point(0.9)
    for v in range(1, 101):
        hist.enqueue(v)
    tracked = hist.percentile_item(0.9)
    assert tracked.item.value == 90
    assert tracked.count == 90
    assert hist.value_at_percentile(0.9) == 90
    assert calc_percentile_of_product(0.9, [hist]) == 90


def test_percentile_for_value():
    hist = _filled(range(1, 11))
    assert hist.percentile_for_value(5) == pytest.approx(0.5)
    assert hist.percentile_for_value(5.5) == pytest.approx(0.5)
    assert hist.percentile_for_value(10) == pytest.approx(1.0)
    with pytest.raises(LookupError):
        hist.percentile_for_value(0)
    with pytest.raises(LookupError):
        Histogram(0, 10.0, 0).percentile_for_value(1)


def test_calc_percentile_of_product_trivial():
    assert calc_percentile_of_product(0.5, []) == 0.0
    assert calc_percentile_of_product(0.5, [None]) == 0.0


def test_untracked_single_search():
    hist = _filled(range(100))
    assert hist.value_at_percentile(0.5) == 48.0


def test_untracked_product_search():
    first = _filled(range(100))
    second = _filled(range(100))
    assert calc_percentile_of_product(0.25, [first, second]) == 48.0


def test_search_empty_range_returns_last_criteria():
    hist = _filled(range(10))
    result = search_percentile_by_multiply(
        0.5, -1, [hist], [False], 3, 2, True, -1, 0.0, 7.0, 1, False
    )
    assert result == 7.0


@pytest.mark.parametrize("scale", [1, 2])
def test_create_histogram(scale):
    rng = random.Random(1000 + scale)
    window = 1000 * scale
    samples = window * 5
    sub_size = 10
    accuracy = 1
    percentiles = [0.99, 0.995, 0.999, 0.9995, 0.9999]

    values = _random_floats(rng, samples, 100, 1000.0)
    assert len(values) == samples

    hist = Histogram(window, float(sub_size), accuracy)
    for p in percentiles:
        hist.add_percentile_point(p)
    for v in values:
        hist.enqueue(v)

    assert hist.count == window
    assert hist.root_item.count == window
    assert len(hist.queue) == window

    bucket_sum = 0
    for i, sub in enumerate(hist.bucket_histogram.sub_histograms):
        if sub is None:
            continue
        for j, node in enumerate(sub.buckets):
            if node is None:
                continue
            bucket_sum += node.duplications
            assert sub.calc_position(node.value) == j
            assert hist.bucket_histogram.calc_position(node.value)[0] == i
    assert bucket_sum == window

    min_node = hist.root_item
    while min_node.left is not None:
        min_node = min_node.left
    max_node = hist.root_item
    while max_node.right is not None:
        max_node = max_node.right
    assert hist.min_item is min_node
    assert hist.max_item is max_node

    live = [n.value for n in hist.queue]
    expected_mean = sum(live) / len(live)
    expected_variance = sum((x - expected_mean) ** 2 for x in live) / len(live)
    assert hist.mean == pytest.approx(expected_mean, rel=1e-6)
    assert hist.variance == pytest.approx(expected_variance, rel=1e-6)

    for p in percentiles:
        tracked = hist.percentile_item(p)
        cumulative = tracked.item.cumulative_count()
        assert tracked.count == cumulative
        assert abs(p - cumulative / hist.root_item.count) <= 0.01

    for p in percentiles:
        assert 0.0 <= hist.percentile_for_value(hist.max_item.value) <= 1.0
    assert hist.percentile_for_value(hist.max_item.value) == pytest.approx(1.0)