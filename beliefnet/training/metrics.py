"""Classification metrics for fine-tuning and evaluation."""

from __future__ import annotations

from typing import Dict, Iterable, Mapping

import numpy as np

from ..core.types import Array


def compute_metric(
    name: str,
    predicted: Array,
    targets: Array,
    *,
    num_classes: int | None = None,
) -> float:
    """Return metric ``name`` for predicted and true integer labels."""

    key = name.lower()
    pred_idx = np.asarray(predicted).reshape(-1).astype(int)
    targ_idx = np.asarray(targets).reshape(-1).astype(int)
    if pred_idx.size == 0:
        return 0.0
    if key == "accuracy":
        return float(np.mean(pred_idx == targ_idx))
    if key == "error_rate":
        return float(np.mean(pred_idx != targ_idx))
    if key == "macro_f1":
        if num_classes is None:
            raise ValueError("macro_f1 requires num_classes")
        f1_scores = []
        for cls in range(num_classes):
            tp = np.sum((pred_idx == cls) & (targ_idx == cls))
            fp = np.sum((pred_idx == cls) & (targ_idx != cls))
            fn = np.sum((pred_idx != cls) & (targ_idx == cls))
            precision = tp / (tp + fp + 1e-9)
            recall = tp / (tp + fn + 1e-9)
            f1_scores.append(2 * precision * recall / (precision + recall + 1e-9))
        return float(np.mean(f1_scores))
    raise KeyError(f"Unknown metric: {name}")


def compute_metrics(
    names: Iterable[str],
    predicted: Array,
    targets: Array,
    *,
    num_classes: int | None = None,
) -> Mapping[str, float]:
    results: Dict[str, float] = {}
    for name in names:
        results[name.lower()] = compute_metric(
            name, predicted, targets, num_classes=num_classes
        )
    return results


__all__ = ["compute_metric", "compute_metrics"]
