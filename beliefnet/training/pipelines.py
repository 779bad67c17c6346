"""Pipeline assembly: dataset, layer stack, training schedule and reporting."""

from __future__ import annotations

import json
import time
import warnings
from copy import deepcopy
from pathlib import Path
from typing import Dict, List, Mapping, Sequence

import numpy as np

from ..core.dbn import DBN
from ..core.types import Array, RunResult, UnitType
from ..data import DatasetSpec, get_dataset
from ..reporting.artifacts import write_manifest
from ..reporting.metrics import CsvSink, JsonlSink
from ..reporting.plots import PlotAdapter
from ..reporting.summary import write_summary
from .losses import REGISTRY as LOSS_REGISTRY
from .metrics import compute_metrics
from .watchers import ConsoleWatcher

CLASSIFIERS = ("dbn", "labels", "svm")

_DBN_HYPERPARAMETERS = (
    "learning_rate",
    "initial_momentum",
    "final_momentum",
    "final_momentum_epoch",
    "weight_cost",
)

_PRESETS: Dict[str, Mapping[str, object]] = {
    "bars-dbn": {
        "data": {
            "name": "bars",
            "options": {"size": 4, "n_samples": 400, "noise": 0.02, "seed": 0},
        },
        "model": {
            "layers": [
                {"visible": 16, "hidden": 12},
                {"visible": 12, "hidden": 8, "hidden_unit": "softmax"},
            ],
            "learning_rate": 0.1,
            "rbm": {"learning_rate": 0.1, "batch_size": 20},
        },
        "train": {
            "seed": 0,
            "pretrain_epochs": 5,
            "fine_tune_epochs": 10,
            "batch_size": 20,
            "classifier": "dbn",
            "run_dir": "runs/bars-dbn",
            "enable_plots": False,
        },
    },
    "bars-labels": {
        "data": {
            "name": "bars",
            "options": {"size": 4, "n_samples": 400, "noise": 0.02, "seed": 0},
        },
        "model": {
            "layers": [
                {"visible": 16, "hidden": 12},
                {"visible": 20, "hidden": 24},
            ],
            "labels": 8,
            "rbm": {"learning_rate": 0.1, "batch_size": 20},
        },
        "train": {
            "seed": 0,
            "pretrain_epochs": 10,
            "classifier": "labels",
            "run_dir": "runs/bars-labels",
            "enable_plots": False,
        },
    },
    "digits-svm": {
        "data": {"name": "digits", "options": {"seed": 0}},
        "model": {
            "layers": [
                {"visible": 64, "hidden": 48},
                {"visible": 48, "hidden": 32},
            ],
            "rbm": {"learning_rate": 0.05, "batch_size": 25},
        },
        "train": {
            "seed": 1,
            "pretrain_epochs": 5,
            "classifier": "svm",
            "svm": {"parameters": {"C": 10.0}, "concatenate": False},
            "run_dir": "runs/digits-svm",
            "enable_plots": False,
        },
    },
    "digits-gaussian": {
        "data": {"name": "digits", "options": {"seed": 0, "standardized": True}},
        "model": {
            "layers": [
                {"visible": 64, "hidden": 48, "visible_unit": "gaussian", "hidden_unit": "relu"},
                {"visible": 48, "hidden": 10, "hidden_unit": "softmax"},
            ],
            "learning_rate": 0.01,
            "rbm": {"batch_size": 25},
        },
        "train": {
            "seed": 2,
            "pretrain_epochs": 5,
            "fine_tune_epochs": 10,
            "batch_size": 25,
            "classifier": "dbn",
            "run_dir": "runs/digits-gaussian",
            "enable_plots": False,
        },
    },
}

_PRESET_DIR = Path(__file__).resolve().parents[2] / "configs" / "presets"
_FILE_PRESETS_CACHE: Dict[str, Mapping[str, object]] | None = None


def _read_preset_file(path: Path) -> Mapping[str, object]:
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        import yaml

        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text or "{}")
    else:
        raise ValueError(f"Unsupported preset file type: {path.suffix}")

    if not isinstance(data, Mapping):
        raise TypeError(f"Preset {path.name} must decode to a mapping")
    return data


def _file_presets() -> Dict[str, Mapping[str, object]]:
    global _FILE_PRESETS_CACHE
    if _FILE_PRESETS_CACHE is None:
        presets: Dict[str, Mapping[str, object]] = {}
        if _PRESET_DIR.exists():
            for file in sorted(_PRESET_DIR.iterdir()):
                if file.suffix.lower() not in {".yaml", ".yml", ".json"}:
                    continue
                data = _read_preset_file(file)
                missing = {"data", "model", "train"} - set(data)
                if missing:
                    missing_str = ", ".join(sorted(missing))
                    message = f"Preset {file.name} is missing required sections: {missing_str}"
                    raise KeyError(message)
                presets[file.stem] = json.loads(json.dumps(data))
        _FILE_PRESETS_CACHE = presets
    return {name: deepcopy(cfg) for name, cfg in _FILE_PRESETS_CACHE.items()}


def presets() -> Mapping[str, Mapping[str, object]]:
    combined: Dict[str, Mapping[str, object]] = {}
    combined.update({name: deepcopy(cfg) for name, cfg in _PRESETS.items()})
    combined.update(_file_presets())
    return combined


def load_preset(name: str) -> Mapping[str, object]:
    file_overrides = _file_presets()
    if name in file_overrides:
        return file_overrides[name]
    try:
        return deepcopy(_PRESETS[name])
    except KeyError as exc:
        raise KeyError(f"Unknown preset: {name}") from exc


def build_network(model_cfg: Mapping[str, object], *, seed: int) -> DBN:
    """Instantiate the DBN described by the ``model`` section."""

    if "layers" not in model_cfg:
        raise KeyError("The model section needs a 'layers' list")
    hyperparameters = {key: model_cfg[key] for key in _DBN_HYPERPARAMETERS if key in model_cfg}
    return DBN.from_layer_specs(
        model_cfg["layers"],  # type: ignore[arg-type]
        seed=seed,
        rbm_options=model_cfg.get("rbm"),  # type: ignore[arg-type]
        **hyperparameters,
    )


def run_pipeline(config: Mapping[str, object]) -> RunResult:
    """Train and evaluate one network as described by ``config``."""

    missing = {"data", "model", "train"} - set(config)
    if missing:
        raise KeyError(f"Config is missing required sections: {', '.join(sorted(missing))}")
    data_cfg = dict(config["data"])  # type: ignore[arg-type]
    model_cfg = dict(config["model"])  # type: ignore[arg-type]
    train_cfg = dict(config["train"])  # type: ignore[arg-type]

    classifier = str(train_cfg.get("classifier", "dbn"))
    if classifier not in CLASSIFIERS:
        raise ValueError(f"Unknown classifier {classifier!r}. Available: {', '.join(CLASSIFIERS)}")

    seed = int(train_cfg.get("seed", 0))
    pretrain_epochs = int(train_cfg.get("pretrain_epochs", 5))
    fine_tune_epochs = int(train_cfg.get("fine_tune_epochs", 0)) if classifier == "dbn" else 0
    batch_size = int(train_cfg.get("batch_size", 25))
    loss_name = str(train_cfg.get("loss", "auto"))
    LOSS_REGISTRY.resolve(loss_name)

    dataset = get_dataset(str(data_cfg["name"]), **dict(data_cfg.get("options", {})))
    dbn = build_network(model_cfg, seed=seed)
    label_count = _check_compatible(dbn, dataset, classifier, model_cfg)

    run_dir = _resolve_run_dir(train_cfg, dataset.name, classifier)
    run_dir.mkdir(parents=True, exist_ok=True)

    _print_startup_summary(
        dataset_name=dataset.name,
        dbn=dbn,
        classifier=classifier,
        pretrain_epochs=pretrain_epochs,
        fine_tune_epochs=fine_tune_epochs,
        loss=loss_name,
    )

    jsonl = JsonlSink(run_dir / "metrics.jsonl", phase="pretrain", seed=seed)
    plots = PlotAdapter(run_dir, enable_plots=bool(train_cfg.get("enable_plots", False)))
    pretrain_callbacks = [jsonl, CsvSink(run_dir / "metrics_pretrain.csv"), plots]
    watcher = ConsoleWatcher(verbose_epochs=bool(train_cfg.get("verbose", True)))

    train_x, train_y = dataset.split("train")
    test_x, test_y = dataset.split("test")

    if classifier == "labels":
        dbn.train_with_labels(
            train_x,
            train_y,
            label_count,
            pretrain_epochs,
            watcher=watcher,
            callbacks=pretrain_callbacks,
        )
        predicted = [dbn.predict_labels(sample, label_count) for sample in test_x]
    else:
        dbn.pretrain(train_x, pretrain_epochs, watcher=watcher, callbacks=pretrain_callbacks)
        if classifier == "dbn":
            fine_tune_callbacks = [
                jsonl.with_phase("fine_tune"),
                CsvSink(run_dir / "metrics_fine_tune.csv", phase="fine_tune"),
                plots,
            ]
            dbn.fine_tune(
                train_x,
                train_y,
                fine_tune_epochs,
                batch_size,
                loss=loss_name,
                callbacks=fine_tune_callbacks,
            )
            predicted = [dbn.predict(sample) for sample in test_x]
        else:
            _train_svm(dbn, train_x, train_y, dict(train_cfg.get("svm", {})))
            predicted = [dbn.svm_predict(sample) for sample in test_x]

    test_metrics = compute_metrics(
        ("accuracy", "error_rate", "macro_f1"),
        np.asarray(predicted),
        test_y,
        num_classes=dataset.data_spec.num_classes,
    )
    epochs = pretrain_epochs + fine_tune_epochs
    jsonl.with_phase("test").on_epoch(epochs, test_metrics)
    (run_dir / "metrics_test.json").write_text(json.dumps(dict(test_metrics), indent=2))
    print(f"Test accuracy : {test_metrics['accuracy']:.4f}")

    checkpoint = run_dir / "dbn.npz"
    dbn.store(checkpoint)
    plots.close()

    safe_config = json.loads(json.dumps(config))
    manifest = write_manifest(
        run_dir / "manifest.json",
        config=safe_config,
        network=dbn.describe().to_dict(),
        dataset_provenance=dataset.provenance,
    )
    summary_tail = int(train_cfg.get("summary_tail", 32))
    summary_path = write_summary(jsonl.path, run_dir / "summary.json", tail=summary_tail)
    (run_dir / "config.json").write_text(json.dumps(safe_config, indent=2))

    return RunResult(
        epochs=epochs,
        accuracy=float(test_metrics["accuracy"]),
        metrics_path=str(jsonl.path),
        manifest_path=manifest,
        summary_path=str(summary_path),
        checkpoint_path=str(checkpoint),
    )


def _check_compatible(
    dbn: DBN, dataset: DatasetSpec, classifier: str, model_cfg: Mapping[str, object]
) -> int:
    """Validate network against data; return the label count for label training."""

    spec = dataset.data_spec
    if dbn.input_size() != spec.d_in:
        raise ValueError(
            f"The first layer has {dbn.input_size()} visible units but dataset "
            f"{dataset.name!r} has {spec.d_in} features"
        )
    if spec.value_range == "real" and dbn.layer(0).visible_unit is not UnitType.GAUSSIAN:
        warnings.warn(
            f"Dataset {dataset.name!r} is standardised; binary or relu visible units "
            "expect values in [0, 1]",
            UserWarning,
            stacklevel=3,
        )
    if classifier == "dbn" and dbn.output_size() != spec.num_classes:
        raise ValueError(
            f"Fine-tuning needs {spec.num_classes} output units, the top layer has "
            f"{dbn.output_size()}"
        )
    label_count = int(model_cfg.get("labels", spec.num_classes))  # type: ignore[arg-type]
    if classifier == "labels" and label_count != spec.num_classes:
        raise ValueError(
            f"Dataset {dataset.name!r} has {spec.num_classes} classes, model expects {label_count}"
        )
    return label_count


def _train_svm(dbn: DBN, samples: Array, labels: Array, svm_cfg: Mapping[str, object]) -> None:
    concatenate = bool(svm_cfg.get("concatenate", False))
    if svm_cfg.get("grid_search", False):
        dbn.svm_grid_search(
            samples,
            labels,
            int(svm_cfg.get("n_fold", 5)),  # type: ignore[arg-type]
            svm_cfg.get("grid"),
            concatenate=concatenate,
        )
        print(f"SVM grid search: {dbn.svm_model.search}")
    else:
        dbn.svm_train(samples, labels, svm_cfg.get("parameters"), concatenate=concatenate)


def _resolve_run_dir(train_cfg: Mapping[str, object], dataset: str, classifier: str) -> Path:
    if "run_dir" in train_cfg:
        return Path(str(train_cfg["run_dir"]))
    timestamp = time.strftime("%Y%m%d-%H%M%S")
    return Path("runs") / timestamp / dataset / classifier


def _layer_lines(dbn: DBN) -> List[str]:
    lines = []
    for layer in dbn.layers:
        lines.append(
            f"{layer.num_visible}->{layer.num_hidden} "
            f"({layer.visible_unit.value}/{layer.hidden_unit.value})"
        )
    return lines


def _print_startup_summary(
    *,
    dataset_name: str,
    dbn: DBN,
    classifier: str,
    pretrain_epochs: int,
    fine_tune_epochs: int,
    loss: str,
) -> None:
    layers: Sequence[str] = _layer_lines(dbn)
    print("=== beliefnet run ===")
    print(f"Dataset       : {dataset_name}")
    print(f"Layers        : {', '.join(layers)}")
    print(f"Classifier    : {classifier}")
    print(f"Pretraining   : {pretrain_epochs} epochs")
    print(f"Fine-tuning   : {fine_tune_epochs} epochs")
    print(f"Loss          : {loss}")
    print(f"Parameters    : {dbn.parameter_count()}")
    print("=====================")


__all__ = ["CLASSIFIERS", "build_network", "load_preset", "presets", "run_pipeline"]
