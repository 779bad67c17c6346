"""Dataset registry and metadata contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, MutableMapping

from ..core.types import Array


@dataclass(frozen=True)
class DataSpec:
    """Structural information about a dataset.

    Attributes
    ----------
    d_in:
        Flattened dimensionality of one sample, i.e. the number of visible
        units of the first layer.
    num_classes:
        Number of discrete labels.
    value_range:
        ``"binary"`` for 0/1 data, ``"unit"`` for values in ``[0, 1]`` and
        ``"real"`` for standardised data; tells which visible units fit.
    normalization:
        Metadata describing normalization that has been applied to the
        inputs.  The registry does not interpret these values.
    """

    d_in: int
    num_classes: int
    value_range: str = "unit"
    normalization: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DatasetSpec:
    """In-memory dataset with deterministic train/val/test splits."""

    name: str
    data_spec: DataSpec
    provenance: Dict[str, Any]
    inputs: Dict[str, Array]
    labels: Dict[str, Array]

    @property
    def splits(self) -> Dict[str, int]:
        return {split: int(values.shape[0]) for split, values in self.inputs.items()}

    def split(self, name: str) -> tuple[Array, Array]:
        """Return ``(inputs, labels)`` for split ``name``."""

        if name not in self.inputs:
            raise ValueError(f"Unsupported split: {name}")
        return self.inputs[name], self.labels[name]


DatasetFactory = Callable[..., DatasetSpec]


_REGISTRY: MutableMapping[str, DatasetFactory] = {}


def register_dataset(
    name: str | None = None,
    factory: DatasetFactory | None = None,
) -> Callable[[DatasetFactory], DatasetFactory] | DatasetFactory:
    """Register a dataset factory.

    ``register_dataset`` can be used both as a decorator::

        @register_dataset("digits")
        def make_digits(**kwargs):
            ...

    or directly::

        register_dataset("digits", make_digits)
    """

    def _decorator(func: DatasetFactory) -> DatasetFactory:
        _REGISTRY[str(name or func.__name__)] = func
        return func

    if factory is not None:
        return _decorator(factory)
    if name is None:
        raise TypeError("register_dataset requires a name when used without a decorator")
    return _decorator


def get_dataset(dataset: str, /, **options: Any) -> DatasetSpec:
    """Build the :class:`DatasetSpec` registered as ``dataset``."""

    if dataset not in _REGISTRY:
        available = ", ".join(sorted(_REGISTRY))
        raise KeyError(f"Unknown dataset {dataset!r}. Available datasets: {available}")

    spec = _REGISTRY[dataset](**options)
    _validate_spec(spec)
    return spec


def available_datasets() -> Iterable[str]:
    """Return the sorted list of available dataset identifiers."""

    return sorted(_REGISTRY)


def _validate_spec(spec: DatasetSpec) -> None:
    if spec.data_spec.value_range not in {"binary", "unit", "real"}:
        raise ValueError(f"Invalid value range: {spec.data_spec.value_range}")
    if spec.data_spec.num_classes <= 0:
        raise ValueError("Datasets must define at least one class")
    for split, values in spec.inputs.items():
        labels = spec.labels.get(split)
        if labels is None or labels.shape[0] != values.shape[0]:
            raise ValueError(f"Split {split!r} has mismatched inputs and labels")
        if values.ndim != 2 or values.shape[1] != spec.data_spec.d_in:
            raise ValueError(f"Split {split!r} does not have {spec.data_spec.d_in} features")
        if labels.size and (labels.min() < 0 or labels.max() >= spec.data_spec.num_classes):
            raise ValueError(f"Split {split!r} has labels outside [0, num_classes)")


__all__ = [
    "DataSpec",
    "DatasetSpec",
    "available_datasets",
    "get_dataset",
    "register_dataset",
]
