"""Loss registry used by supervised fine-tuning."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable

import numpy as np

from ..core.types import Array
from ..core.units import softmax

LossFn = Callable[[Array, Array], tuple[float, Array]]


@dataclass(frozen=True)
class Loss:
    """Loss wrapper returning both the scalar loss and dL/dy.

    ``on_logits`` losses consume the top layer pre-activation; the others
    consume the top layer activation.
    """

    name: str
    fn: LossFn
    on_logits: bool = False

    def __call__(self, predictions: Array, targets: Array) -> tuple[float, Array]:
        return self.fn(predictions, targets)


class LossRegistry:
    """Central registry for loss functions."""

    def __init__(self) -> None:
        self._registry: Dict[str, Loss] = {}

    def register(self, name: str, fn: LossFn, *, on_logits: bool = False) -> None:
        self._registry[name] = Loss(name, fn, on_logits)

    def names(self) -> Iterable[str]:
        return sorted(self._registry)

    def resolve(self, name: str) -> Loss:
        if name == "auto":
            name = "ce"
        if name not in self._registry:
            available = ", ".join(sorted(self._registry))
            raise KeyError(f"Unknown loss {name!r}. Available losses: {available}")
        return self._registry[name]


REGISTRY = LossRegistry()


def one_hot(labels: Array, num_classes: int) -> Array:
    indices = np.asarray(labels).reshape(-1).astype(int)
    return np.eye(num_classes, dtype=np.float64)[indices]


def _mse(pred: Array, target: Array) -> tuple[float, Array]:
    diff = pred - target
    loss = float(np.mean(np.sum(np.square(diff), axis=1)))
    return loss, diff


def _cross_entropy(logits: Array, target: Array) -> tuple[float, Array]:
    probs = softmax(logits)
    eps = 1e-9
    loss = float(-np.mean(np.sum(target * np.log(probs + eps), axis=1)))
    grad = probs - target
    return loss, grad


REGISTRY.register("ce", _cross_entropy, on_logits=True)
REGISTRY.register("mse", _mse)

__all__ = ["Loss", "LossRegistry", "REGISTRY", "one_hot"]
