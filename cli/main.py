"""Command line entry point for beliefnet runs."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Iterable

from beliefnet.data import available_datasets
from beliefnet.training import pipelines
from beliefnet.training.losses import REGISTRY as LOSS_REGISTRY


def _format_result(result) -> str:
    payload = {
        "epochs": result.epochs,
        "accuracy": result.accuracy,
        "metrics": result.metrics_path,
        "manifest": result.manifest_path,
    }
    if getattr(result, "summary_path", ""):
        payload["summary"] = result.summary_path
    if getattr(result, "checkpoint_path", ""):
        payload["checkpoint"] = result.checkpoint_path
    return json.dumps(payload, sort_keys=True)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    preset_names = sorted(pipelines.presets().keys())
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--preset",
        choices=preset_names,
        default="bars-dbn",
        help="Preset configuration to execute",
    )
    parser.add_argument("--config", type=Path, help="Optional JSON/YAML config override")
    parser.add_argument("--enable-plots", action="store_true", help="Write reconstruction plots")
    parser.add_argument(
        "--dataset",
        choices=list(available_datasets()),
        help="Override the dataset used by the run",
    )
    parser.add_argument(
        "--classifier",
        choices=list(pipelines.CLASSIFIERS),
        help="Override how the trained network classifies",
    )
    parser.add_argument(
        "--loss",
        choices=["auto", *LOSS_REGISTRY.names()],
        help="Fine-tuning loss used by the dbn classifier",
    )
    parser.add_argument("--seed", type=int, help="Seed used for weight initialisation")
    parser.add_argument(
        "--pretrain-epochs", type=int, help="Override the number of pretraining epochs"
    )
    parser.add_argument(
        "--quiet", action="store_true", help="Do not print per-epoch pretraining metrics"
    )
    parser.add_argument(
        "--list-presets", action="store_true", help="List available presets and exit"
    )
    parser.add_argument(
        "--dump-config", type=Path, help="Dump the resolved config to a JSON file"
    )
    return parser.parse_args(argv)


def _load_override(path: Path) -> dict:
    text = path.read_text()
    if path.suffix in {".yml", ".yaml"}:
        import yaml

        return yaml.safe_load(text)
    return json.loads(text)


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)

    if args.list_presets:
        for name in sorted(pipelines.presets().keys()):
            print(name)
        raise SystemExit(0)

    config = json.loads(json.dumps(pipelines.load_preset(args.preset)))

    if args.config:
        override = _load_override(args.config)
        if {"data", "model", "train"} <= set(override.keys()):
            config = json.loads(json.dumps(override))
        else:
            config = _merge(config, override)

    train_cfg = config.setdefault("train", {})
    if args.enable_plots:
        train_cfg["enable_plots"] = True
    if args.dataset:
        config["data"] = {"name": args.dataset, "options": {}}
    if args.classifier:
        train_cfg["classifier"] = args.classifier
    if args.loss:
        train_cfg["loss"] = args.loss
    if args.seed is not None:
        train_cfg["seed"] = int(args.seed)
    if args.pretrain_epochs is not None:
        train_cfg["pretrain_epochs"] = int(args.pretrain_epochs)
    if args.quiet:
        train_cfg["verbose"] = False

    if args.dump_config:
        args.dump_config.parent.mkdir(parents=True, exist_ok=True)
        args.dump_config.write_text(json.dumps(config, indent=2))

    result = pipelines.run_pipeline(config)
    print(_format_result(result))


if __name__ == "__main__":
    main()
