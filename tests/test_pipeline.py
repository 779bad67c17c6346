from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from beliefnet.core.dbn import DBN
from beliefnet.training import pipelines


def _quick(name: str, tmp_path: Path, **train) -> dict:
    config = pipelines.load_preset(name)
    config["train"].update({"run_dir": str(tmp_path / name), "verbose": False})
    config["train"].update(train)
    return config


def test_presets_include_builtin_and_file_presets():
    names = set(pipelines.presets())
    assert {"bars-dbn", "bars-labels", "digits-svm", "digits-gaussian"} <= names
    assert "bars-relu" in names
    assert pipelines.load_preset("bars-relu")["model"]["layers"][0]["hidden_unit"] == "relu6"


def test_load_preset_returns_copies():
    first = pipelines.load_preset("bars-dbn")
    first["train"]["seed"] = 99
    assert pipelines.load_preset("bars-dbn")["train"]["seed"] == 0


def test_unknown_preset():
    with pytest.raises(KeyError):
        pipelines.load_preset("mnist-dbn")


def test_build_network_from_model_section():
    dbn = pipelines.build_network(pipelines.load_preset("digits-gaussian")["model"], seed=0)
    assert isinstance(dbn, DBN)
    assert dbn.input_size() == 64
    assert dbn.output_size() == 10
    assert dbn.learning_rate == pytest.approx(0.01)


def test_fine_tuned_pipeline_writes_artifacts(tmp_path):
    config = _quick("bars-dbn", tmp_path, pretrain_epochs=1, fine_tune_epochs=2)
    result = pipelines.run_pipeline(config)

    assert result.epochs == 3
    assert 0.0 <= result.accuracy <= 1.0
    run_dir = tmp_path / "bars-dbn"
    for name in ("metrics.jsonl", "manifest.json", "summary.json", "dbn.npz", "config.json"):
        assert (run_dir / name).exists()
    assert (run_dir / "metrics_pretrain.csv").exists()
    assert (run_dir / "metrics_fine_tune.csv").exists()

    records = [json.loads(line) for line in Path(result.metrics_path).read_text().splitlines()]
    assert {record["phase"] for record in records} == {"pretrain", "fine_tune", "test"}
    manifest = json.loads(Path(result.manifest_path).read_text())
    assert manifest["network"]["layers"][1]["hidden_unit"] == "softmax"
    assert manifest["dataset"]["type"] == "synthetic"

    restored = pipelines.build_network(config["model"], seed=123)
    restored.load(result.checkpoint_path)
    assert restored.layer(0).w.shape == (16, 12)


def test_label_pipeline(tmp_path):
    result = pipelines.run_pipeline(_quick("bars-labels", tmp_path, pretrain_epochs=2))
    assert result.epochs == 2
    assert 0.0 <= result.accuracy <= 1.0
    summary = json.loads(Path(result.summary_path).read_text())
    assert "pretrain/layer1" in summary["groups"]


def test_svm_pipeline(tmp_path):
    config = _quick("digits-svm", tmp_path, pretrain_epochs=1)
    config["data"]["options"]["max_items"] = 300
    result = pipelines.run_pipeline(config)
    assert 0.0 <= result.accuracy <= 1.0
    metrics = json.loads((tmp_path / "digits-svm" / "metrics_test.json").read_text())
    assert set(metrics) == {"accuracy", "error_rate", "macro_f1"}


def test_plots_are_written_when_enabled(tmp_path):
    config = _quick("bars-dbn", tmp_path, pretrain_epochs=1, fine_tune_epochs=1, enable_plots=True)
    pipelines.run_pipeline(config)
    assert (tmp_path / "bars-dbn" / "reconstruction.png").exists()
    assert (tmp_path / "bars-dbn" / "fine_tune_loss.png").exists()


def test_standardised_data_with_binary_visibles_warns(tmp_path):
    config = _quick("digits-svm", tmp_path, pretrain_epochs=1)
    config["data"]["options"].update({"max_items": 200, "standardized": True})
    with pytest.warns(UserWarning, match="standardised"):
        pipelines.run_pipeline(config)


def test_missing_section_raises(tmp_path):
    config = _quick("bars-dbn", tmp_path)
    del config["model"]
    with pytest.raises(KeyError, match="model"):
        pipelines.run_pipeline(config)


def test_unknown_classifier_raises(tmp_path):
    config = _quick("bars-dbn", tmp_path, classifier="forest")
    with pytest.raises(ValueError, match="forest"):
        pipelines.run_pipeline(config)


def test_input_size_mismatch_raises(tmp_path):
    config = _quick("bars-dbn", tmp_path)
    config["data"]["options"]["size"] = 5
    with pytest.raises(ValueError, match="visible units"):
        pipelines.run_pipeline(config)


def test_output_size_must_match_classes_for_fine_tuning(tmp_path):
    config = _quick("bars-dbn", tmp_path)
    config["model"]["layers"][1]["hidden"] = 6
    with pytest.raises(ValueError, match="output units"):
        pipelines.run_pipeline(config)


def test_unknown_unit_in_layer_raises(tmp_path):
    config = _quick("bars-dbn", tmp_path)
    config["model"]["layers"][0]["hidden_unit"] = "tanh"
    with pytest.raises(ValueError, match="tanh"):
        pipelines.run_pipeline(config)


def test_pipeline_is_reproducible(tmp_path):
    results = []
    for run in ("a", "b"):
        config = _quick("bars-labels", tmp_path / run, pretrain_epochs=1)
        pipelines.run_pipeline(config)
        archive = np.load(tmp_path / run / "bars-labels" / "dbn.npz")
        results.append(archive["layer1.w"])
    np.testing.assert_array_equal(results[0], results[1])


def test_yaml_preset_runs(tmp_path):
    config = _quick("bars-relu", tmp_path, pretrain_epochs=1, fine_tune_epochs=1)
    result = pipelines.run_pipeline(config)
    assert result.epochs == 2


def test_svm_on_label_layout_fails_before_training(tmp_path):
    config = _quick("bars-labels", tmp_path, classifier="svm")
    with pytest.raises(ValueError, match="hidden units"):
        pipelines.run_pipeline(config)


def test_loss_option_reaches_fine_tuning(tmp_path, capsys):
    config = _quick("bars-dbn", tmp_path, pretrain_epochs=1, fine_tune_epochs=2, loss="mse")
    result = pipelines.run_pipeline(config)
    assert "Loss          : mse" in capsys.readouterr().out
    records = [json.loads(line) for line in Path(result.metrics_path).read_text().splitlines()]
    losses = [r["loss"] for r in records if r["phase"] == "fine_tune"]
    assert len(losses) == 2
    assert all(0.0 <= value <= 2.0 for value in losses)


def test_unknown_loss_raises_before_training(tmp_path):
    config = _quick("bars-dbn", tmp_path, loss="hinge")
    with pytest.raises(KeyError, match="hinge"):
        pipelines.run_pipeline(config)
    assert not (tmp_path / "bars-dbn").exists()
