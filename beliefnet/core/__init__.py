"""Core numerical building blocks for beliefnet."""

from . import rbm, types, units
from .dbn import DBN, LABEL_PLACEHOLDER
from .rbm import RBM
from .types import LayerSpec, UnitType
from .units import NumericalInstabilityError

__all__ = [
    "DBN",
    "LABEL_PLACEHOLDER",
    "LayerSpec",
    "NumericalInstabilityError",
    "RBM",
    "UnitType",
    "rbm",
    "types",
    "units",
]
