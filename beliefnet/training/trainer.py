"""Supervised fine-tuning of a pretrained layer stack."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Mapping, MutableMapping, Sequence

import numpy as np

from ..core.types import Array, UnitType
from ..core.units import clipped_relu, nan_check, relu, sigmoid, softmax
from .losses import REGISTRY as LOSS_REGISTRY
from .losses import one_hot
from .metrics import compute_metrics

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..core.dbn import DBN

Gradients = Dict[str, Array]


def _activate(unit: UnitType, z: Array) -> Array:
    if unit is UnitType.BINARY:
        return sigmoid(z)
    if unit is UnitType.RELU:
        return relu(z)
    if unit is UnitType.RELU1:
        return clipped_relu(z, 1.0)
    if unit is UnitType.RELU6:
        return clipped_relu(z, 6.0)
    if unit is UnitType.SOFTMAX:
        return softmax(z)
    raise ValueError(f"Invalid hidden unit type: {unit}")  # pragma: no cover - guardrail


def _unit_backward(unit: UnitType, z: Array, a: Array, grad: Array) -> Array:
    """Map dL/da to dL/dz for one layer of hidden units."""

    if unit is UnitType.BINARY:
        return grad * a * (1.0 - a)
    if unit is UnitType.RELU:
        return grad * (z > 0)
    if unit is UnitType.RELU1:
        return grad * ((z > 0) & (z < 1.0))
    if unit is UnitType.RELU6:
        return grad * ((z > 0) & (z < 6.0))
    if unit is UnitType.SOFTMAX:
        return a * (grad - np.sum(grad * a, axis=-1, keepdims=True))
    raise ValueError(f"Invalid hidden unit type: {unit}")  # pragma: no cover - guardrail


@dataclass
class ForwardState:
    """Intermediate values captured during the deterministic forward pass."""

    layer_inputs: List[Array]
    pre_activations: List[Array]
    activations: List[Array]


@dataclass
class SGDOptimizer:
    """Mini-batch SGD with a two-stage momentum schedule and L2 weight cost."""

    lr: float
    initial_momentum: float = 0.5
    final_momentum: float = 0.9
    final_momentum_epoch: int = 6
    weight_cost: float = 0.0
    _velocity: Dict[str, Array] = field(default_factory=dict, init=False, repr=False)

    def momentum(self, epoch: int) -> float:
        if epoch > self.final_momentum_epoch:
            return self.final_momentum
        return self.initial_momentum

    def step(self, params: MutableMapping[str, Array], grads: Gradients, epoch: int) -> None:
        momentum = self.momentum(epoch)
        for name, grad in grads.items():
            param = params[name]
            if name.endswith(".w") and self.weight_cost:
                grad = grad + self.weight_cost * param
            velocity = self._velocity.get(name)
            if velocity is None:
                velocity = np.zeros_like(param)
            velocity = momentum * velocity - self.lr * grad
            self._velocity[name] = velocity
            param += velocity.astype(param.dtype, copy=False)


class DBNTrainer:
    """Back-propagate a classification loss through every layer of a DBN.

    The stack is unrolled into a deterministic feed-forward network that uses
    activation probabilities (no sampling).  The top layer's hidden units are
    the class outputs.  Only weights and hidden biases change; visible biases
    are left untouched.
    """

    def __init__(
        self,
        dbn: "DBN",
        optimizer: SGDOptimizer,
        *,
        loss: str = "ce",
        callbacks: Sequence[object] | None = None,
        metric_names: Sequence[str] = ("accuracy",),
    ) -> None:
        layers = dbn.layers
        for lower, upper in zip(layers[:-1], layers[1:]):
            if lower.num_hidden != upper.num_visible:
                raise ValueError(
                    "Fine-tuning requires chained layer sizes, got "
                    f"{lower.num_hidden} hidden units feeding {upper.num_visible} visible units"
                )
        self.dbn = dbn
        self.optimizer = optimizer
        self.loss_fn = LOSS_REGISTRY.resolve(loss)
        self.callbacks = list(callbacks or [])
        self.metric_names = list(metric_names)

    def parameters(self) -> MutableMapping[str, Array]:
        params: Dict[str, Array] = {}
        for idx, rbm in enumerate(self.dbn.layers):
            params[f"layer{idx}.w"] = rbm.w
            params[f"layer{idx}.b"] = rbm.b
        return params

    def forward(self, inputs: Array) -> tuple[Array, ForwardState]:
        layer_inputs: list[Array] = []
        pre_activations: list[Array] = []
        activations: list[Array] = []
        x = inputs
        with np.errstate(over="ignore", invalid="ignore"):
            for rbm in self.dbn.layers:
                layer_inputs.append(x)
                z = x @ rbm.w + rbm.b
                x = _activate(rbm.hidden_unit, z)
                pre_activations.append(z)
                activations.append(x)
        nan_check(x, "fine-tuning output")
        state = ForwardState(layer_inputs, pre_activations, activations)
        return x, state

    def backward(self, state: ForwardState, delta: Array) -> Gradients:
        """Return gradients for ``delta = dL/dz`` at the top layer."""

        layers = self.dbn.layers
        batch = delta.shape[0]
        grads: Gradients = {}
        last_idx = len(layers) - 1
        for idx in range(last_idx, -1, -1):
            grads[f"layer{idx}.w"] = state.layer_inputs[idx].T @ delta / batch
            grads[f"layer{idx}.b"] = np.mean(delta, axis=0)
            if idx == 0:
                break
            upstream = delta @ layers[idx].w.T
            delta = _unit_backward(
                layers[idx - 1].hidden_unit,
                state.pre_activations[idx - 1],
                state.activations[idx - 1],
                upstream,
            )
        return grads

    def train(
        self,
        inputs: Array,
        labels: Array,
        max_epochs: int,
        batch_size: int,
    ) -> float:
        """Run ``max_epochs`` epochs of mini-batch training and return the last loss."""

        num_classes = self.dbn.output_size()
        labels = np.asarray(labels).reshape(-1).astype(int)
        if inputs.shape[0] != labels.shape[0]:
            raise ValueError("There must be the same number of values than labels")
        if inputs.shape[0] == 0:
            raise ValueError("Cannot fine-tune on an empty dataset")
        if labels.min() < 0 or labels.max() >= num_classes:
            raise ValueError(
                f"Labels must lie in [0, {num_classes}) to match the {num_classes} output units"
            )
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        targets = one_hot(labels, num_classes)
        params = self.parameters()
        last_unit = self.dbn.layer(-1).hidden_unit
        loss_value = 0.0
        for epoch in range(1, int(max_epochs) + 1):
            losses: list[float] = []
            for start in range(0, inputs.shape[0], batch_size):
                x = inputs[start : start + batch_size]
                y = targets[start : start + batch_size]
                output, state = self.forward(x)
                if self.loss_fn.on_logits:
                    batch_loss, delta = self.loss_fn(state.pre_activations[-1], y)
                else:
                    batch_loss, grad = self.loss_fn(output, y)
                    delta = _unit_backward(last_unit, state.pre_activations[-1], output, grad)
                losses.append(batch_loss)
                grads = self.backward(state, delta)
                self.optimizer.step(params, grads, epoch)
            loss_value = float(np.mean(losses))
            metrics = {"loss": loss_value}
            metrics.update(self.evaluate(inputs, labels))
            self._emit_epoch(epoch, metrics)
        return loss_value

    def evaluate(self, inputs: Array, labels: Array) -> Mapping[str, float]:
        output, _ = self.forward(inputs)
        predicted = np.argmax(output, axis=1)
        return compute_metrics(
            self.metric_names, predicted, labels, num_classes=self.dbn.output_size()
        )

    def _emit_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        for callback in self.callbacks:
            if hasattr(callback, "on_epoch"):
                callback.on_epoch(epoch, metrics)  # type: ignore[attr-defined]
            elif callable(callback):
                callback(epoch, metrics)


__all__ = ["DBNTrainer", "ForwardState", "SGDOptimizer"]
