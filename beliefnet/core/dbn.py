"""Deep Belief Network: an ordered stack of RBM layers."""

from __future__ import annotations

from pathlib import Path
from typing import IO, Iterable, Mapping, Sequence

import numpy as np

from ..training.trainer import DBNTrainer, SGDOptimizer
from ..training.watchers import ConsoleWatcher, PretrainWatcher
from .rbm import RBM, sample_buffer
from .types import Array, LayerSpec, ModelDescription, UnitType

#: Value fed to every label unit at prediction time, when the label is unknown.
LABEL_PLACEHOLDER = 0.1


def predict_label(values: Array) -> int:
    """Index of the largest value, scanning with a strict ``>`` from a maximum of 0.

    Ties resolve to the lowest index and a vector without any positive entry
    yields label 0.
    """

    values = np.asarray(values).reshape(-1)
    label = 0
    best = 0.0
    for idx, value in enumerate(values):
        if value > best:
            best = float(value)
            label = idx
    return label


def append_label_units(activations: Array, labels: Array, label_count: int) -> Array:
    """Extend each row of ``activations`` with a one-hot block for its label."""

    block = np.zeros((activations.shape[0], label_count), dtype=activations.dtype)
    block[np.arange(activations.shape[0]), np.asarray(labels, dtype=int)] = 1.0
    return np.hstack([activations, block])


class _LayerTag:
    """Forward layer epoch metrics to callbacks with the layer index attached."""

    def __init__(self, index: int, targets: Sequence[object]) -> None:
        self.index = index
        self.targets = list(targets)

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        tagged = dict(metrics)
        tagged["layer"] = self.index
        for target in self.targets:
            if hasattr(target, "on_epoch"):
                target.on_epoch(epoch, tagged)  # type: ignore[attr-defined]
            elif callable(target):
                target(epoch, tagged)


class DBN:
    """Deep Belief Network trained greedily, one RBM at a time.

    The network exclusively owns its layers: the sequence is fixed at
    construction and neither the network nor its layers can be copied.
    Network-level hyperparameters drive supervised fine-tuning; each RBM keeps
    its own Contrastive Divergence settings.
    """

    def __init__(
        self,
        layers: Sequence[RBM],
        *,
        learning_rate: float = 0.77,
        initial_momentum: float = 0.5,
        final_momentum: float = 0.9,
        final_momentum_epoch: int = 6,
        weight_cost: float = 0.0002,
    ) -> None:
        layers = tuple(layers)
        if not layers:
            raise ValueError("A DBN needs at least one layer")
        for layer in layers:
            if not isinstance(layer, RBM):
                raise TypeError(f"DBN layers must be RBM instances, got {type(layer).__name__}")
        if len({id(layer) for layer in layers}) != len(layers):
            raise ValueError("The same RBM instance cannot occupy two DBN slots")

        self._layers = layers
        self.learning_rate = float(learning_rate)
        self.initial_momentum = float(initial_momentum)
        self.final_momentum = float(final_momentum)
        self.final_momentum_epoch = int(final_momentum_epoch)
        self.weight_cost = float(weight_cost)
        self.svm_model = None

    @classmethod
    def from_layer_specs(
        cls,
        specs: Iterable[LayerSpec | Mapping[str, object]],
        *,
        seed: int | None = None,
        dtype: np.dtype | type = np.float64,
        rbm_options: Mapping[str, object] | None = None,
        **hyperparameters,
    ) -> "DBN":
        """Build a network from layer specs; ``rbm_options`` go to every RBM."""

        options = dict(rbm_options or {})
        layers = []
        for idx, spec in enumerate(specs):
            if not isinstance(spec, LayerSpec):
                spec = LayerSpec.from_config(dict(spec))
            layer_seed = None if seed is None else seed + 1000 * idx
            layers.append(RBM.from_spec(spec, seed=layer_seed, dtype=dtype, **options))
        return cls(layers, **hyperparameters)

    def __copy__(self):
        raise TypeError("DBN instances own their layers and cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("DBN instances own their layers and cannot be copied")

    # ------------------------------------------------------------------
    # Layer access and sizing

    @property
    def layers(self) -> tuple[RBM, ...]:
        return self._layers

    @property
    def layer_count(self) -> int:
        return len(self._layers)

    def __len__(self) -> int:
        return len(self._layers)

    @property
    def dtype(self) -> np.dtype:
        return self._layers[0].dtype

    def layer(self, index: int) -> RBM:
        return self._layers[index]

    def num_visible(self, index: int) -> int:
        return self._layers[index].num_visible

    def num_hidden(self, index: int) -> int:
        return self._layers[index].num_hidden

    def input_size(self) -> int:
        return self._layers[0].input_size()

    def output_size(self) -> int:
        return self._layers[-1].output_size()

    def full_output_size(self) -> int:
        return sum(layer.output_size() for layer in self._layers)

    def parameter_count(self) -> int:
        return sum(layer.parameter_count() for layer in self._layers)

    def describe(self) -> ModelDescription:
        return ModelDescription(layers=[layer.describe() for layer in self._layers])

    def display(self) -> int:
        print(f"DBN with {len(self._layers)} layers")
        parameters = 0
        for layer in self._layers:
            count = layer.parameter_count()
            parameters += count
            print(f"\tRBM: {layer.num_visible}->{layer.num_hidden} : {count} parameters")
        print(f"Total parameters: {parameters}")
        return parameters

    # ------------------------------------------------------------------
    # Pretraining

    def _check_chain(self, upto: int) -> None:
        for index in range(upto):
            lower, upper = self._layers[index], self._layers[index + 1]
            if lower.num_hidden != upper.num_visible:
                raise ValueError(
                    f"Layer {index} has {lower.num_hidden} hidden units but layer {index + 1} "
                    f"expects {upper.num_visible} visible units"
                )

    def pretrain(
        self,
        samples: Iterable[Array] | Array,
        max_epochs: int,
        *,
        watcher: PretrainWatcher | None = None,
        callbacks: Sequence[object] = (),
    ) -> None:
        """Greedy layer-wise unsupervised training of every non-softmax layer."""

        self._check_chain(len(self._layers) - 1)
        data = sample_buffer(samples, self.input_size(), self.dtype)
        watcher = watcher if watcher is not None else ConsoleWatcher()
        watcher.pretraining_begin(self)

        inputs = data
        last = len(self._layers) - 1
        for index, rbm in enumerate(self._layers):
            # Softmax layers hold labels and are not trained without them.
            if rbm.hidden_unit is not UnitType.SOFTMAX:
                watcher.pretrain_layer(self, index, inputs.shape[0])
                rbm.train(inputs, max_epochs, callbacks=[_LayerTag(index, [watcher, *callbacks])])
            if index < last:
                inputs, _ = rbm.activate_hidden(inputs, inputs)

        watcher.pretraining_end(self)

    # ------------------------------------------------------------------
    # Label-augmented training and prediction

    def _check_label_room(self, label_count: int) -> None:
        if len(self._layers) < 2:
            raise ValueError("Label units require at least two layers")
        if label_count <= 0:
            raise ValueError("label_count must be positive")
        expected = self.num_hidden(-2) + label_count
        if self.num_visible(-1) != expected:
            raise ValueError(
                "There is no room for the labels units: the top layer has "
                f"{self.num_visible(-1)} visible units, expected {self.num_hidden(-2)} + "
                f"{label_count} = {expected}"
            )

    def train_with_labels(
        self,
        samples: Iterable[Array] | Array,
        labels: Iterable[int] | Array,
        label_count: int,
        max_epochs: int,
        *,
        watcher: PretrainWatcher | None = None,
        callbacks: Sequence[object] = (),
    ) -> None:
        """Train every layer, appending one-hot labels to the input of the top layer."""

        self._check_label_room(label_count)
        self._check_chain(len(self._layers) - 2)
        data = sample_buffer(samples, self.input_size(), self.dtype)
        targets = _label_array(labels)
        if data.shape[0] != targets.shape[0]:
            raise ValueError("There must be the same number of values than labels")
        if targets.size and (targets.min() < 0 or targets.max() >= label_count):
            raise ValueError(f"Labels must lie in [0, {label_count})")

        watcher = watcher if watcher is not None else ConsoleWatcher()
        watcher.pretraining_begin(self)

        inputs = data
        last = len(self._layers) - 1
        for index, rbm in enumerate(self._layers):
            watcher.pretrain_layer(self, index, inputs.shape[0])
            rbm.train(inputs, max_epochs, callbacks=[_LayerTag(index, [watcher, *callbacks])])
            if index < last:
                inputs, _ = rbm.activate_hidden(inputs, inputs)
                if index + 1 == last:
                    inputs = append_label_units(inputs, targets, label_count)

        watcher.pretraining_end(self)

    def predict_labels(self, sample: Array, label_count: int) -> int:
        """Predict the label of one sample by reconstructing the label units."""

        self._check_label_room(label_count)
        inputs = np.asarray(sample, dtype=self.dtype)
        if inputs.ndim != 1:
            raise ValueError("predict_labels expects a single sample")

        for rbm in self._layers[:-1]:
            inputs, _ = rbm.activate_hidden(inputs, inputs)
        placeholder = np.full(label_count, LABEL_PLACEHOLDER, dtype=self.dtype)
        inputs = np.concatenate([inputs, placeholder])

        top = self._layers[-1]
        h_a, h_s = top.activate_hidden(inputs, inputs)
        output_a, _ = top.activate_visible(h_a, h_s)
        return predict_label(output_a[-label_count:])

    # ------------------------------------------------------------------
    # Inference

    def activation_probabilities(self, sample: Array) -> Array:
        """Hidden activation of the top layer for one sample or a batch."""

        inputs = np.asarray(sample, dtype=self.dtype)
        for rbm in self._layers:
            inputs, _ = rbm.activate_hidden(inputs, inputs)
        return inputs

    def full_activation_probabilities(self, sample: Array) -> Array:
        """Concatenated hidden activations of every layer, bottom first."""

        inputs = np.asarray(sample, dtype=self.dtype)
        outputs = []
        for rbm in self._layers:
            inputs, _ = rbm.activate_hidden(inputs, inputs)
            outputs.append(inputs)
        return np.concatenate(outputs, axis=-1)

    predict_label = staticmethod(predict_label)

    def predict(self, sample: Array) -> int:
        return predict_label(self.activation_probabilities(sample))

    # ------------------------------------------------------------------
    # Fine-tuning

    def fine_tune(
        self,
        samples: Iterable[Array] | Array,
        labels: Iterable[int] | Array,
        max_epochs: int,
        batch_size: int,
        *,
        loss: str = "ce",
        callbacks: Sequence[object] = (),
    ) -> float:
        """Supervised refinement of the whole stack; returns the final training loss.

        ``loss`` names an entry of the loss registry: ``"ce"`` treats the top
        pre-activation as logits, ``"mse"`` compares the top activation with
        one-hot targets.
        """

        data = sample_buffer(samples, self.input_size(), self.dtype)
        targets = _label_array(labels)
        if data.shape[0] != targets.shape[0]:
            raise ValueError("There must be the same number of values than labels")
        optimizer = SGDOptimizer(
            lr=self.learning_rate,
            initial_momentum=self.initial_momentum,
            final_momentum=self.final_momentum,
            final_momentum_epoch=self.final_momentum_epoch,
            weight_cost=self.weight_cost,
        )
        trainer = DBNTrainer(self, optimizer, loss=loss, callbacks=callbacks)
        return trainer.train(data, targets, max_epochs, batch_size)

    # ------------------------------------------------------------------
    # Auxiliary classifier

    def svm_train(self, samples, labels, parameters=None, *, concatenate: bool = False) -> bool:
        from ..classifiers import svm_train

        return svm_train(self, samples, labels, parameters, concatenate=concatenate)

    def svm_grid_search(
        self, samples, labels, n_fold: int = 5, grid=None, *, concatenate: bool = False
    ) -> bool:
        from ..classifiers import svm_grid_search

        return svm_grid_search(self, samples, labels, n_fold, grid, concatenate=concatenate)

    def svm_predict(self, sample: Array) -> int:
        from ..classifiers import svm_predict

        return svm_predict(self, sample)

    # ------------------------------------------------------------------
    # Persistence

    def state_dict(self) -> Mapping[str, Array]:
        state: dict[str, Array] = {}
        for idx, layer in enumerate(self._layers):
            for name, value in layer.state_dict().items():
                state[f"layer{idx}.{name}"] = value
        return state

    def load_state_dict(self, state: Mapping[str, Array]) -> None:
        per_layer = []
        for idx in range(len(self._layers)):
            layer_state = {}
            for name in ("w", "b", "c"):
                key = f"layer{idx}.{name}"
                if key not in state:
                    raise KeyError(f"Missing parameter {key} in state dict")
                expected = getattr(self._layers[idx], name).shape
                if np.shape(state[key]) != expected:
                    raise ValueError(
                        f"Parameter {key} has shape {np.shape(state[key])}, expected {expected}"
                    )
                layer_state[name] = state[key]
            per_layer.append(layer_state)
        for layer, layer_state in zip(self._layers, per_layer):
            layer.load_state_dict(layer_state)

    def store(self, target: str | Path | IO[bytes]) -> None:
        """Write every layer's weights and biases, in layer order."""

        state = self.state_dict()
        if isinstance(target, (str, Path)):
            path = Path(target)
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("wb") as handle:
                np.savez_compressed(handle, **state)
        else:
            np.savez_compressed(target, **state)

    def load(self, source: str | Path | IO[bytes]) -> None:
        with np.load(source) as archive:
            state = {name: archive[name] for name in archive.files}
        self.load_state_dict(state)


def _label_array(labels: Iterable[int] | Array) -> Array:
    if isinstance(labels, np.ndarray):
        return labels.reshape(-1).astype(np.int64)
    return np.asarray(list(labels), dtype=np.int64).reshape(-1)


__all__ = ["DBN", "LABEL_PLACEHOLDER", "append_label_units", "predict_label"]
