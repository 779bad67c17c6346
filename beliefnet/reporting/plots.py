"""Headless-safe plotting adapters."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Mapping, Tuple


class PlotAdapter:
    """Collect per-layer reconstruction errors and optionally plot them.

    Epoch records carrying a ``layer`` key feed one curve per layer; records
    without one (fine-tuning) feed a separate loss curve.
    """

    def __init__(self, run_dir: str | Path, enable_plots: bool = False):
        self.enable_plots = enable_plots
        self.run_dir = Path(run_dir)
        self._layers: Dict[int, List[Tuple[int, float]]] = {}
        self._loss: List[Tuple[int, float]] = []
        if self.enable_plots:
            self.run_dir.mkdir(parents=True, exist_ok=True)

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        if not self.enable_plots:
            return
        if "layer" in metrics:
            error = float(metrics.get("recon_error", 0.0))
            self._layers.setdefault(int(metrics["layer"]), []).append((epoch, error))
        elif "loss" in metrics:
            self._loss.append((epoch, float(metrics["loss"])))

    def close(self) -> List[Path]:
        """Write the collected figures and return their paths."""

        if not self.enable_plots or not (self._layers or self._loss):
            return []
        import matplotlib

        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # imported lazily for headless safety

        written: List[Path] = []
        if self._layers:
            fig, ax = plt.subplots()
            for index in sorted(self._layers):
                epochs, errors = zip(*self._layers[index])
                ax.plot(epochs, errors, label=f"layer {index}")
            ax.set_xlabel("Epoch")
            ax.set_ylabel("Reconstruction error")
            ax.set_title("Pretraining")
            ax.legend()
            path = self.run_dir / "reconstruction.png"
            fig.savefig(path)
            plt.close(fig)
            written.append(path)
        if self._loss:
            epochs, losses = zip(*self._loss)
            fig, ax = plt.subplots()
            ax.plot(epochs, losses)
            ax.set_xlabel("Epoch")
            ax.set_ylabel("Loss")
            ax.set_title("Fine-tuning")
            path = self.run_dir / "fine_tune_loss.png"
            fig.savefig(path)
            plt.close(fig)
            written.append(path)
        return written

    __call__ = on_epoch
