"""Core typing contracts for beliefnet."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

import numpy as np

Array = np.ndarray


class UnitType(str, Enum):
    """Stochastic activation family of one side of an RBM."""

    BINARY = "binary"
    GAUSSIAN = "gaussian"
    RELU = "relu"
    RELU1 = "relu1"
    RELU6 = "relu6"
    SOFTMAX = "softmax"

    @classmethod
    def parse(cls, value: "UnitType | str") -> "UnitType":
        if isinstance(value, UnitType):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as exc:
            available = ", ".join(unit.value for unit in cls)
            raise ValueError(f"Unknown unit type {value!r}. Available units: {available}") from exc


VISIBLE_UNITS = frozenset({UnitType.BINARY, UnitType.GAUSSIAN, UnitType.RELU})
HIDDEN_UNITS = frozenset(
    {UnitType.BINARY, UnitType.RELU, UnitType.RELU1, UnitType.RELU6, UnitType.SOFTMAX}
)


@dataclass(frozen=True)
class LayerSpec:
    """Shape and unit configuration of a single RBM layer."""

    visible: int
    hidden: int
    visible_unit: UnitType = UnitType.BINARY
    hidden_unit: UnitType = UnitType.BINARY

    @classmethod
    def from_config(cls, config: Dict[str, object]) -> "LayerSpec":
        return cls(
            visible=int(config["visible"]),
            hidden=int(config["hidden"]),
            visible_unit=UnitType.parse(config.get("visible_unit", "binary")),
            hidden_unit=UnitType.parse(config.get("hidden_unit", "binary")),
        )


@dataclass(frozen=True)
class RunResult:
    """Summary returned by :func:`beliefnet.training.pipelines.run_pipeline`."""

    epochs: int
    accuracy: float
    metrics_path: str
    manifest_path: str
    summary_path: str = ""
    checkpoint_path: str = ""


@dataclass(frozen=True)
class ModelDescription:
    """Description of a layer stack, used in manifests and summaries."""

    layers: List[LayerSpec]

    @property
    def parameter_count(self) -> int:
        return int(sum(spec.visible * spec.hidden for spec in self.layers))

    def to_dict(self) -> Dict[str, object]:
        return {
            "layers": [
                {
                    "visible": spec.visible,
                    "hidden": spec.hidden,
                    "visible_unit": spec.visible_unit.value,
                    "hidden_unit": spec.hidden_unit.value,
                }
                for spec in self.layers
            ],
            "parameters": self.parameter_count,
        }


@dataclass
class EpochHistory:
    """Per-epoch metrics captured by a callback."""

    records: List[Dict[str, float]] = field(default_factory=list)

    def on_epoch(self, epoch: int, metrics: Dict[str, float]) -> None:
        payload = {k: float(v) for k, v in metrics.items()}
        payload["epoch"] = float(epoch)
        self.records.append(payload)

    @property
    def last(self) -> Dict[str, float]:
        return self.records[-1] if self.records else {}
