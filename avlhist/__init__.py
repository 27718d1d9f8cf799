"""Sliding-window AVL-tree histograms with percentile tracking and CDF products."""

__version__ = "0.1.0"

__all__ = ["buckets", "cdf", "histogram", "item"]