"""Restricted Boltzmann Machine layer with configurable stochastic units."""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

import numpy as np

from .types import HIDDEN_UNITS, VISIBLE_UNITS, Array, LayerSpec, UnitType
from .units import (
    bernoulli,
    clipped_relu,
    logistic_noise,
    nan_check,
    normal_noise,
    one_if_max,
    ranged_noise,
    relu,
    sigmoid,
    softmax,
)


def sample_buffer(
    samples: Iterable[Array] | Array, width: int, dtype: np.dtype | type = np.float64
) -> Array:
    """Materialise ``samples`` into a fresh 2-D array with ``width`` columns."""

    if isinstance(samples, np.ndarray):
        array = np.array(samples, dtype=dtype, ndmin=2)
    else:
        rows = [np.asarray(sample, dtype=dtype).reshape(-1) for sample in samples]
        if not rows:
            return np.zeros((0, width), dtype=dtype)
        array = np.vstack(rows)
    if array.ndim != 2 or array.shape[1] != width:
        raise ValueError(f"Expected samples of size {width}, got shape {array.shape}")
    return array


class RBM:
    """Restricted Boltzmann Machine following Hinton's practical guide.

    The layer owns its weight matrix ``w`` (visible x hidden), the hidden
    biases ``b`` and the visible biases ``c``.  Both activation directions
    return an ``(activation, sample)`` pair and accept either one sample or a
    batch with one sample per row.

    Single-sample activations reuse scratch buffers owned by the instance, so
    one layer must not be driven from several threads at the same time.
    """

    def __init__(
        self,
        num_visible: int,
        num_hidden: int,
        *,
        visible_unit: UnitType | str = UnitType.BINARY,
        hidden_unit: UnitType | str = UnitType.BINARY,
        dtype: np.dtype | type = np.float64,
        seed: int | None = None,
        learning_rate: float | None = None,
        initial_momentum: float = 0.5,
        final_momentum: float = 0.9,
        final_momentum_epoch: int = 6,
        weight_cost: float = 0.0002,
        batch_size: int = 25,
        cd_steps: int = 1,
    ) -> None:
        if int(num_visible) <= 0 or int(num_hidden) <= 0:
            raise ValueError(
                f"RBM dimensions must be positive, got {num_visible}->{num_hidden}"
            )
        visible_unit = UnitType.parse(visible_unit)
        hidden_unit = UnitType.parse(hidden_unit)
        if visible_unit not in VISIBLE_UNITS:
            raise ValueError(f"{visible_unit.value!r} units cannot be used as visible units")
        if hidden_unit not in HIDDEN_UNITS:
            raise ValueError(f"{hidden_unit.value!r} units cannot be used as hidden units")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if cd_steps <= 0:
            raise ValueError("cd_steps must be positive")

        self._num_visible = int(num_visible)
        self._num_hidden = int(num_hidden)
        self._visible_unit = visible_unit
        self._hidden_unit = hidden_unit
        self.dtype = np.dtype(dtype)

        if learning_rate is None:
            # Gaussian visibles default to a smaller step.
            learning_rate = 1e-3 if visible_unit is UnitType.GAUSSIAN else 1e-1
        self.learning_rate = float(learning_rate)
        self.initial_momentum = float(initial_momentum)
        self.final_momentum = float(final_momentum)
        self.final_momentum_epoch = int(final_momentum_epoch)
        self.weight_cost = float(weight_cost)
        self.batch_size = int(batch_size)
        self.cd_steps = int(cd_steps)

        self.reset(seed)

    @classmethod
    def from_spec(cls, spec: LayerSpec, **kwargs) -> "RBM":
        return cls(
            spec.visible,
            spec.hidden,
            visible_unit=spec.visible_unit,
            hidden_unit=spec.hidden_unit,
            **kwargs,
        )

    def reset(self, seed: int | None) -> None:
        """Draw fresh weights from N(0, 1) * 0.1 and clear biases and momentum."""

        rng = np.random.default_rng(seed)
        V, H = self._num_visible, self._num_hidden
        self.w = (rng.standard_normal((V, H)) * 0.1).astype(self.dtype)
        self.b = np.zeros(H, dtype=self.dtype)
        self.c = np.zeros(V, dtype=self.dtype)
        self._rng = np.random.default_rng(None if seed is None else seed + 1)

        self._w_inc = np.zeros_like(self.w)
        self._b_inc = np.zeros_like(self.b)
        self._c_inc = np.zeros_like(self.c)

        self._hidden_scratch = np.empty(H, dtype=self.dtype)
        self._visible_scratch = np.empty(V, dtype=self.dtype)

    # ------------------------------------------------------------------
    # Introspection

    @property
    def num_visible(self) -> int:
        return self._num_visible

    @property
    def num_hidden(self) -> int:
        return self._num_hidden

    @property
    def visible_unit(self) -> UnitType:
        return self._visible_unit

    @property
    def hidden_unit(self) -> UnitType:
        return self._hidden_unit

    def input_size(self) -> int:
        return self._num_visible

    def output_size(self) -> int:
        return self._num_hidden

    def parameter_count(self) -> int:
        return self._num_visible * self._num_hidden

    def describe(self) -> LayerSpec:
        return LayerSpec(
            visible=self._num_visible,
            hidden=self._num_hidden,
            visible_unit=self._visible_unit,
            hidden_unit=self._hidden_unit,
        )

    def display(self) -> None:
        print(f"RBM: {self._num_visible} -> {self._num_hidden}")

    def __repr__(self) -> str:
        return (
            f"RBM({self._num_visible}->{self._num_hidden}, "
            f"visible={self._visible_unit.value}, hidden={self._hidden_unit.value})"
        )

    def __copy__(self):
        raise TypeError("RBM instances own their weight buffers and cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("RBM instances own their weight buffers and cannot be copied")

    # ------------------------------------------------------------------
    # Activation

    def activate_hidden(self, v_a: Array, v_s: Array | None = None) -> tuple[Array, Array]:
        """Return hidden activation probabilities and a stochastic sample.

        The pre-activation is ``b + v_a . W``; ``v_s`` is accepted for
        symmetry with :meth:`activate_visible` but does not enter the result.
        """

        with np.errstate(over="ignore", invalid="ignore"):
            pre = self._hidden_input(v_a)
            unit = self._hidden_unit
            if unit is UnitType.BINARY:
                h_a = sigmoid(pre)
                h_s = bernoulli(h_a, self._rng)
            elif unit is UnitType.RELU:
                h_a = relu(pre)
                h_s = logistic_noise(h_a, self._rng)
            elif unit is UnitType.RELU6:
                h_a = clipped_relu(pre, 6.0)
                h_s = ranged_noise(h_a, 6.0, self._rng)
            elif unit is UnitType.RELU1:
                h_a = clipped_relu(pre, 1.0)
                h_s = ranged_noise(h_a, 1.0, self._rng)
            elif unit is UnitType.SOFTMAX:
                h_a = softmax(pre)
                h_s = one_if_max(h_a)
            else:  # pragma: no cover - guardrail
                raise ValueError(f"Invalid hidden unit type: {unit}")

        nan_check(h_a, "hidden activation")
        nan_check(h_s, "hidden sample")
        return h_a, h_s

    def activate_visible(self, h_a: Array, h_s: Array) -> tuple[Array, Array]:
        """Return visible activations and a sample, driven by the hidden sample ``h_s``."""

        with np.errstate(over="ignore", invalid="ignore"):
            pre = self._visible_input(h_s)
            unit = self._visible_unit
            if unit is UnitType.BINARY:
                v_a = sigmoid(pre)
                v_s = bernoulli(v_a, self._rng)
            elif unit is UnitType.GAUSSIAN:
                v_a = np.array(pre, copy=True)
                v_s = normal_noise(v_a, self._rng)
            elif unit is UnitType.RELU:
                v_a = relu(pre)
                v_s = logistic_noise(v_a, self._rng)
            else:  # pragma: no cover - guardrail
                raise ValueError(f"Invalid visible unit type: {unit}")

        nan_check(v_a, "visible activation")
        nan_check(v_s, "visible sample")
        return v_a, v_s

    def _hidden_input(self, v: Array) -> Array:
        v = np.asarray(v, dtype=self.dtype)
        if v.shape[-1] != self._num_visible:
            raise ValueError(
                f"Expected {self._num_visible} visible values, got {v.shape[-1]}"
            )
        if v.ndim == 1:
            np.matmul(v, self.w, out=self._hidden_scratch)
            self._hidden_scratch += self.b
            return self._hidden_scratch
        return v @ self.w + self.b

    def _visible_input(self, h: Array) -> Array:
        h = np.asarray(h, dtype=self.dtype)
        if h.shape[-1] != self._num_hidden:
            raise ValueError(f"Expected {self._num_hidden} hidden values, got {h.shape[-1]}")
        if h.ndim == 1:
            np.matmul(self.w, h, out=self._visible_scratch)
            self._visible_scratch += self.c
            return self._visible_scratch
        return h @ self.w.T + self.c

    # ------------------------------------------------------------------
    # Contrastive Divergence

    def train(
        self,
        data: Iterable[Array] | Array,
        max_epochs: int,
        callbacks: Sequence[object] = (),
    ) -> float:
        """Train with CD-k over mini-batches and return the last reconstruction error."""

        data = self._as_batch(data)
        if data.shape[0] == 0:
            raise ValueError("Cannot train an RBM on an empty dataset")

        error = 0.0
        for epoch in range(1, int(max_epochs) + 1):
            if epoch > self.final_momentum_epoch:
                momentum = self.final_momentum
            else:
                momentum = self.initial_momentum
            errors: list[float] = []
            activity: list[float] = []
            for start in range(0, data.shape[0], self.batch_size):
                batch = data[start : start + self.batch_size]
                batch_error, batch_activity = self._cd_step(batch, momentum)
                errors.append(batch_error)
                activity.append(batch_activity)
            error = float(np.mean(errors))
            metrics = {
                "recon_error": error,
                "sparsity": float(np.mean(activity)),
                "momentum": momentum,
            }
            for callback in callbacks:
                if hasattr(callback, "on_epoch"):
                    callback.on_epoch(epoch, metrics)  # type: ignore[attr-defined]
                elif callable(callback):
                    callback(epoch, metrics)
        return error

    def _cd_step(self, v1: Array, momentum: float) -> tuple[float, float]:
        n = v1.shape[0]
        h1_a, h1_s = self.activate_hidden(v1, v1)

        h_a, h_s = h1_a, h1_s
        for _ in range(self.cd_steps):
            v2_a, v2_s = self.activate_visible(h_a, h_s)
            h_a, h_s = self.activate_hidden(v2_a, v2_s)

        w_grad = (v1.T @ h1_a - v2_a.T @ h_a) / n
        w_grad -= self.weight_cost * self.w
        b_grad = np.mean(h1_a - h_a, axis=0)
        c_grad = np.mean(v1 - v2_a, axis=0)

        self._w_inc = momentum * self._w_inc + self.learning_rate * w_grad
        self._b_inc = momentum * self._b_inc + self.learning_rate * b_grad
        self._c_inc = momentum * self._c_inc + self.learning_rate * c_grad

        self.w += self._w_inc.astype(self.dtype, copy=False)
        self.b += self._b_inc.astype(self.dtype, copy=False)
        self.c += self._c_inc.astype(self.dtype, copy=False)

        nan_check(self.w, "weights")
        return float(np.mean((v1 - v2_a) ** 2)), float(np.mean(h1_a))

    def reconstruction_error(self, data: Iterable[Array] | Array) -> float:
        """Mean squared error of one deterministic up-down pass."""

        data = self._as_batch(data)
        h_a, _ = self.activate_hidden(data, data)
        v_a, _ = self.activate_visible(h_a, h_a)
        return float(np.mean((data - v_a) ** 2))

    def free_energy(self, v: Array) -> Array:
        """Free energy of visible configurations (binary hidden units only)."""

        if self._hidden_unit is not UnitType.BINARY:
            raise ValueError("free_energy is only defined for binary hidden units")
        v = np.asarray(v, dtype=self.dtype)
        hidden_term = np.sum(np.logaddexp(0.0, v @ self.w + self.b), axis=-1)
        if self._visible_unit is UnitType.GAUSSIAN:
            visible_term = 0.5 * np.sum((v - self.c) ** 2, axis=-1)
            return visible_term - hidden_term
        return -(v @ self.c) - hidden_term

    def _as_batch(self, data: Iterable[Array] | Array) -> Array:
        return sample_buffer(data, self._num_visible, self.dtype)

    # ------------------------------------------------------------------
    # Persistence

    def state_dict(self) -> Mapping[str, Array]:
        return {"w": self.w.copy(), "b": self.b.copy(), "c": self.c.copy()}

    def load_state_dict(self, state: Mapping[str, Array]) -> None:
        for key, current in (("w", self.w), ("b", self.b), ("c", self.c)):
            if key not in state:
                raise KeyError(f"Missing parameter {key} in state dict")
            value = np.asarray(state[key])
            if value.shape != current.shape:
                raise ValueError(
                    f"Parameter {key} has shape {value.shape}, expected {current.shape}"
                )
        self.w = np.array(state["w"], dtype=self.dtype)
        self.b = np.array(state["b"], dtype=self.dtype)
        self.c = np.array(state["c"], dtype=self.dtype)
        self._w_inc = np.zeros_like(self.w)
        self._b_inc = np.zeros_like(self.b)
        self._c_inc = np.zeros_like(self.c)


__all__ = ["RBM", "sample_buffer"]
