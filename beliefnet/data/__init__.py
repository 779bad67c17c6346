"""Dataset registry and loader helpers."""

# Ensure built-in datasets register themselves when the package is imported.
from . import bars as _bars  # noqa: F401
from . import digits as _digits  # noqa: F401
from .registry import (
    DatasetSpec,
    DataSpec,
    available_datasets,
    get_dataset,
    register_dataset,
)

__all__ = [
    "DataSpec",
    "DatasetSpec",
    "available_datasets",
    "get_dataset",
    "register_dataset",
]
