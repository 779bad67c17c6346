"""Metrics sinks for pretraining and fine-tuning runs.

Both sinks follow the callback interface accepted by ``RBM.train``,
``DBN.pretrain`` and ``DBNTrainer``: ``on_epoch(epoch, metrics)``.  Every
record carries the training phase; pretraining records also carry the index of
the layer they belong to.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Mapping

from ._git import git_sha


def _numeric(metrics: Mapping[str, object]) -> dict:
    row: dict = {}
    for key, value in metrics.items():
        if key == "layer":
            row[key] = int(value)  # type: ignore[arg-type]
        elif isinstance(value, (int, float)):
            row[key] = float(value)
    return row


class JsonlSink:
    """Append-only JSONL writer for metrics."""

    def __init__(
        self,
        path: str | Path,
        *,
        phase: str = "pretrain",
        seed: int | None = None,
        sha: str | None = None,
        truncate: bool = True,
    ) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if truncate:
            self.path.write_text("")
        self.phase = phase
        self.seed = seed
        self.sha = sha or git_sha()

    def with_phase(self, phase: str) -> "JsonlSink":
        """Return a sink appending to the same file under another phase tag."""

        return JsonlSink(self.path, phase=phase, seed=self.seed, sha=self.sha, truncate=False)

    def _write(self, epoch: int, metrics: Mapping[str, object]) -> None:
        record = {
            "epoch": int(epoch),
            "phase": self.phase,
            "seed": self.seed,
            "sha": self.sha,
        }
        record.update(_numeric(metrics))
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record) + "\n")

    def on_epoch(self, epoch: int, metrics: Mapping[str, object]) -> None:
        self._write(epoch, metrics)

    __call__ = on_epoch


class CsvSink:
    """Write metrics to CSV, one file per phase so the schema stays stable."""

    def __init__(self, path: str | Path, *, phase: str = "pretrain") -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.phase = phase

    def _write(self, epoch: int, metrics: Mapping[str, object]) -> None:
        row = {"epoch": int(epoch), "phase": self.phase}
        row.update(_numeric(metrics))
        with self.path.open("a", encoding="utf-8", newline="") as handle:
            fieldnames = sorted(row.keys())
            writer = csv.DictWriter(handle, fieldnames=fieldnames)
            if handle.tell() == 0:
                writer.writeheader()
            writer.writerow(row)

    def on_epoch(self, epoch: int, metrics: Mapping[str, object]) -> None:
        self._write(epoch, metrics)

    __call__ = on_epoch


__all__ = ["CsvSink", "JsonlSink"]
