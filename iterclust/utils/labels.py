"""Ordering helpers for cluster labels."""

from __future__ import annotations

from typing import Any, Iterable, List

import numpy as np


def _label_sort_key(label: Any):
    if isinstance(label, (int, np.integer, float, np.floating)) and not isinstance(label, bool):
        return (0, float(label), "")
    return (1, 0.0, str(label))


def sorted_labels(labels: Iterable[Any]) -> List[Any]:
    """Sort unique cluster labels, numbers numerically before strings lexically."""
    return sorted(set(labels), key=_label_sort_key)
