"""Progress observers for greedy layer-wise pretraining."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Mapping, Protocol

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..core.dbn import DBN


class PretrainWatcher(Protocol):
    """Protocol implemented by pretraining observers.

    Watchers only read the network; they have no effect on training.
    """

    def pretraining_begin(self, dbn: "DBN") -> None:
        """Called once before the first layer is visited."""

    def pretrain_layer(self, dbn: "DBN", index: int, input_size: int) -> None:
        """Called before layer ``index`` trains on ``input_size`` samples."""

    def pretraining_end(self, dbn: "DBN") -> None:
        """Called once after the last layer has been visited."""


class SilentWatcher:
    """Watcher that ignores every event."""

    def pretraining_begin(self, dbn: "DBN") -> None:
        pass

    def pretrain_layer(self, dbn: "DBN", index: int, input_size: int) -> None:
        pass

    def pretraining_end(self, dbn: "DBN") -> None:
        pass


class ConsoleWatcher:
    """Print pretraining progress and per-epoch layer metrics to stdout."""

    def __init__(self, *, verbose_epochs: bool = True) -> None:
        self.verbose_epochs = verbose_epochs
        self._started = 0.0
        self._layer = -1

    def pretraining_begin(self, dbn: "DBN") -> None:
        print("DBN: Pretraining")
        dbn.display()
        self._started = time.perf_counter()

    def pretrain_layer(self, dbn: "DBN", index: int, input_size: int) -> None:
        layer = dbn.layer(index)
        self._layer = index
        print(
            f"DBN: Train layer {index} ({layer.num_visible}->{layer.num_hidden}) "
            f"with {input_size} entries"
        )

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        if not self.verbose_epochs:
            return
        error = float(metrics.get("recon_error", 0.0))
        sparsity = float(metrics.get("sparsity", 0.0))
        print(f"  layer {self._layer} epoch {epoch}: error={error:.5f} sparsity={sparsity:.5f}")

    def pretraining_end(self, dbn: "DBN") -> None:
        elapsed = time.perf_counter() - self._started
        print(f"DBN: Pretraining finished after {elapsed:.3f} seconds")


__all__ = ["ConsoleWatcher", "PretrainWatcher", "SilentWatcher"]
