"""beliefnet public API."""

from .core import types  # noqa: F401
from .core.dbn import DBN, LABEL_PLACEHOLDER, predict_label
from .core.rbm import RBM
from .core.types import LayerSpec, UnitType
from .core.units import NumericalInstabilityError
from .training.pipelines import load_preset, presets, run_pipeline
from .training.trainer import DBNTrainer, SGDOptimizer
from .training.watchers import ConsoleWatcher, SilentWatcher

__all__ = [
    "DBN",
    "RBM",
    "LABEL_PLACEHOLDER",
    "LayerSpec",
    "UnitType",
    "NumericalInstabilityError",
    "DBNTrainer",
    "SGDOptimizer",
    "ConsoleWatcher",
    "SilentWatcher",
    "predict_label",
    "types",
    "load_preset",
    "presets",
    "run_pipeline",
]
