"""scikit-learn's bundled 8x8 handwritten digits."""

from __future__ import annotations

import numpy as np
from sklearn.datasets import load_digits

from .registry import DataSpec, DatasetSpec, register_dataset
from .utils import deterministic_split, split_arrays, standardize


def _factory(
    seed: int = 0,
    *,
    max_items: int | None = None,
    standardized: bool = False,
    val_split: float = 0.1,
    test_split: float = 0.2,
    **_: object,
) -> DatasetSpec:
    bunch = load_digits()
    x = np.asarray(bunch.data, dtype=np.float64)
    y = np.asarray(bunch.target, dtype=np.int64)
    if max_items is not None:
        x, y = x[: int(max_items)], y[: int(max_items)]

    if standardized:
        x, mean, std = standardize(x)
        normalization = {"type": "standard", "mean": float(mean.mean()), "std": float(std.mean())}
        value_range = "real"
    else:
        # Pixel intensities are 0..16
        x = x / 16.0
        normalization = {"type": "scale", "factor": 1.0 / 16.0}
        value_range = "unit"

    splits = deterministic_split(x.shape[0], val_split=val_split, test_split=test_split, seed=seed)
    inputs, labels = split_arrays(x, y, splits)

    provenance = {
        "type": "sklearn",
        "loader": "sklearn.datasets.load_digits",
        "items": int(x.shape[0]),
        "seed": seed,
        "standardized": standardized,
    }
    return DatasetSpec(
        name="digits",
        data_spec=DataSpec(
            d_in=int(x.shape[1]),
            num_classes=10,
            value_range=value_range,
            normalization=normalization,
        ),
        provenance=provenance,
        inputs=inputs,
        labels=labels,
    )


register_dataset("digits", _factory)
