"""Synthetic bars-and-stripes images.

Each sample is a ``size x size`` binary image with exactly one row (horizontal
bar) or one column (vertical bar) switched on, optionally corrupted by
flipping pixels.  The label is the bar's position: ``0..size-1`` for rows and
``size..2*size-1`` for columns.
"""

from __future__ import annotations

import numpy as np

from .registry import DataSpec, DatasetSpec, register_dataset
from .utils import deterministic_split, split_arrays


def make_bars(size: int, n_samples: int, noise: float, seed: int) -> tuple[np.ndarray, np.ndarray]:
    rng = np.random.default_rng(seed)
    labels = rng.integers(0, 2 * size, size=n_samples)
    images = np.zeros((n_samples, size, size), dtype=np.float64)
    for idx, label in enumerate(labels):
        if label < size:
            images[idx, label, :] = 1.0
        else:
            images[idx, :, label - size] = 1.0
    flat = images.reshape(n_samples, size * size)
    if noise > 0:
        flips = rng.random(flat.shape) < noise
        flat = np.where(flips, 1.0 - flat, flat)
    return flat, labels.astype(np.int64)


def _factory(
    size: int = 4,
    n_samples: int = 400,
    noise: float = 0.02,
    seed: int = 0,
    *,
    val_split: float = 0.1,
    test_split: float = 0.2,
    **_: object,
) -> DatasetSpec:
    if size < 2:
        raise ValueError("bars images need size >= 2")
    x, y = make_bars(size=size, n_samples=n_samples, noise=noise, seed=seed)
    splits = deterministic_split(x.shape[0], val_split=val_split, test_split=test_split, seed=seed)
    inputs, labels = split_arrays(x, y, splits)

    provenance = {
        "type": "synthetic",
        "size": size,
        "n_samples": n_samples,
        "noise": noise,
        "seed": seed,
        "val_split": val_split,
        "test_split": test_split,
    }
    return DatasetSpec(
        name="bars",
        data_spec=DataSpec(d_in=size * size, num_classes=2 * size, value_range="binary"),
        provenance=provenance,
        inputs=inputs,
        labels=labels,
    )


register_dataset("bars", _factory)
