"""Deterministic run summarisation helpers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Mapping, Sequence

import numpy as np

_SKIPPED = {"epoch", "layer", "seed"}


def _area(y: np.ndarray, x: np.ndarray) -> float:
    trapezoid = getattr(np, "trapezoid", None)
    if callable(trapezoid):
        return float(trapezoid(y, x))
    return float(np.trapz(y, x))


def compute_auc(points: Sequence[float]) -> float:
    """Return the area-under-curve of ``points`` along an implicit epoch axis."""

    if not points:
        return 0.0
    y = np.asarray(points, dtype=np.float64)
    x = np.arange(len(points), dtype=np.float64)
    return _area(y, x)


def _group_key(record: Mapping[str, object]) -> str:
    phase = str(record.get("phase", "train"))
    if "layer" in record:
        return f"{phase}/layer{int(record['layer'])}"  # type: ignore[arg-type]
    return phase


def _extract_numeric(
    records: Iterable[Mapping[str, object]]
) -> Mapping[str, Mapping[str, list[float]]]:
    groups: dict[str, dict[str, list[float]]] = {}
    for record in records:
        metrics = groups.setdefault(_group_key(record), {})
        for key, value in record.items():
            if key in _SKIPPED or isinstance(value, bool):
                continue
            if isinstance(value, (int, float)):
                metrics.setdefault(key, []).append(float(value))
    return groups


def _summarise(values: list[float], tail: int) -> Mapping[str, float]:
    arr = np.asarray(values, dtype=np.float64)
    tail_window = min(tail, arr.size)
    tail_arr = arr[-tail_window:] if tail_window else arr[:0]
    return {
        "min": float(np.min(arr)),
        "max": float(np.max(arr)),
        "mean": float(np.mean(arr)),
        "last": float(arr[-1]),
        "tail_auc": compute_auc(tail_arr.tolist()) if tail_window else 0.0,
    }


def _build_summary(records: list[Mapping[str, object]], tail: int) -> Mapping[str, object]:
    groups = _extract_numeric(records)
    summary_groups: dict[str, Mapping[str, Mapping[str, float]]] = {}
    for group, metrics in groups.items():
        summary_groups[group] = {
            name: _summarise(values, tail) for name, values in metrics.items() if values
        }
    return {
        "version": 1,
        "records": len(records),
        "tail": tail,
        "groups": summary_groups,
    }


def write_summary(
    metrics_jsonl: str | Path, out_summary_json: str | Path, *, tail: int = 32
) -> str:
    """Write a deterministic summary for ``metrics_jsonl``.

    Records are grouped by phase, and pretraining records additionally by
    layer, so that ``pretrain/layer0`` and ``fine_tune`` are summarised apart.
    """

    metrics_path = Path(metrics_jsonl)
    out_path = Path(out_summary_json)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    records: list[Mapping[str, object]] = []
    if metrics_path.exists():
        for line in metrics_path.read_text().splitlines():
            line = line.strip()
            if not line:
                continue
            records.append(json.loads(line))

    summary = _build_summary(records, tail)
    out_path.write_text(json.dumps(summary, sort_keys=True, indent=2))
    return str(out_path)


__all__ = ["compute_auc", "write_summary"]
