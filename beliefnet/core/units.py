"""Elementwise activation and sampling transforms for stochastic units.

Every function works on a single vector or on a batch with one sample per
row; reductions (``softmax``, ``one_if_max``) always run along the last axis.
"""

from __future__ import annotations

import numpy as np

from .types import Array


class NumericalInstabilityError(FloatingPointError):
    """Raised when an activation vector contains NaN or infinite values."""


def sigmoid(x: Array) -> Array:
    """Return the logistic sigmoid of ``x`` without overflow warnings."""

    return 0.5 * (1.0 + np.tanh(0.5 * x))


def relu(x: Array) -> Array:
    """Return the ReLU activation."""

    return np.maximum(x, 0.0)


def clipped_relu(x: Array, cap: float) -> Array:
    """ReLU clamped to ``[0, cap]``."""

    return np.minimum(np.maximum(x, 0.0), cap)


def softmax(x: Array) -> Array:
    shifted = x - np.max(x, axis=-1, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=-1, keepdims=True)


def bernoulli(p: Array, rng: np.random.Generator) -> Array:
    """Draw 0/1 states with success probability ``p``."""

    return (rng.random(np.shape(p)) < p).astype(np.asarray(p).dtype)


def normal_noise(x: Array, rng: np.random.Generator) -> Array:
    """Add unit-variance Gaussian noise to ``x``."""

    return x + rng.standard_normal(np.shape(x))


def logistic_noise(x: Array, rng: np.random.Generator) -> Array:
    """Noisy rectified sample: ``max(0, x + sigmoid(x) * N(0, 1))``."""

    noise = rng.standard_normal(np.shape(x)) * sigmoid(x)
    return np.maximum(x + noise, 0.0)


def ranged_noise(x: Array, cap: float, rng: np.random.Generator) -> Array:
    """Add unit Gaussian noise and clamp to ``[0, cap]``.

    Units already saturated at ``0`` or ``cap`` keep their value.
    """

    noisy = np.clip(x + rng.standard_normal(np.shape(x)), 0.0, cap)
    saturated = (x == 0.0) | (x == cap)
    return np.where(saturated, x, noisy)


def one_if_max(x: Array) -> Array:
    """One-hot encoding of the first maximum along the last axis."""

    out = np.zeros_like(x)
    idx = np.argmax(x, axis=-1)
    np.put_along_axis(out, np.expand_dims(idx, -1), 1.0, axis=-1)
    return out


def nan_check(x: Array, what: str = "activation") -> Array:
    """Raise :class:`NumericalInstabilityError` unless ``x`` is finite."""

    if not np.all(np.isfinite(x)):
        bad = int(np.size(x) - np.count_nonzero(np.isfinite(x)))
        raise NumericalInstabilityError(
            f"{what} contains {bad} non-finite value(s); weights have likely diverged"
        )
    return x


__all__ = [
    "NumericalInstabilityError",
    "bernoulli",
    "clipped_relu",
    "logistic_noise",
    "nan_check",
    "normal_noise",
    "one_if_max",
    "ranged_noise",
    "relu",
    "sigmoid",
    "softmax",
]
