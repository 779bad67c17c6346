import copy
import io

import numpy as np
import pytest

from beliefnet.core.dbn import DBN
from beliefnet.core.rbm import RBM
from beliefnet.core.types import LayerSpec, UnitType
from beliefnet.training.watchers import ConsoleWatcher, SilentWatcher


class CountingRBM(RBM):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.train_calls = 0

    def train(self, data, max_epochs, callbacks=()):
        self.train_calls += 1
        return super().train(data, max_epochs, callbacks)


def _data(rows=12, width=10, seed=0):
    return (np.random.default_rng(seed).random((rows, width)) > 0.5).astype(float)


def test_sizes_single_layer():
    dbn = DBN([RBM(10, 6, seed=0)])
    assert dbn.input_size() == 10
    assert dbn.output_size() == 6
    assert dbn.full_output_size() == 6
    assert dbn.layer_count == len(dbn) == 1


def test_sizes_two_layers():
    dbn = DBN([RBM(10, 6, seed=0), RBM(6, 4, seed=1)])
    assert dbn.input_size() == 10
    assert dbn.output_size() == 4
    assert dbn.full_output_size() == 10
    assert dbn.num_visible(1) == 6
    assert dbn.num_hidden(0) == 6


def test_sizes_four_layers():
    specs = [
        LayerSpec(20, 16),
        LayerSpec(16, 12, hidden_unit=UnitType.RELU),
        LayerSpec(12, 8),
        LayerSpec(8, 5, hidden_unit=UnitType.SOFTMAX),
    ]
    dbn = DBN.from_layer_specs(specs, seed=3)
    assert dbn.input_size() == 20
    assert dbn.output_size() == 5
    assert dbn.full_output_size() == 16 + 12 + 8 + 5
    assert dbn.parameter_count() == 20 * 16 + 16 * 12 + 12 * 8 + 8 * 5
    assert dbn.describe().to_dict()["parameters"] == dbn.parameter_count()


def test_from_layer_specs_accepts_mappings_and_rbm_options():
    dbn = DBN.from_layer_specs(
        [{"visible": 4, "hidden": 3}, {"visible": 3, "hidden": 2, "hidden_unit": "softmax"}],
        seed=0,
        rbm_options={"batch_size": 7, "learning_rate": 0.05},
        learning_rate=0.3,
    )
    assert dbn.layer(1).hidden_unit is UnitType.SOFTMAX
    assert all(layer.batch_size == 7 for layer in dbn.layers)
    assert dbn.layer(0).learning_rate == pytest.approx(0.05)
    assert dbn.learning_rate == pytest.approx(0.3)


def test_construction_errors():
    with pytest.raises(ValueError):
        DBN([])
    with pytest.raises(TypeError):
        DBN([object()])
    rbm = RBM(4, 4)
    with pytest.raises(ValueError):
        DBN([rbm, rbm])


def test_layer_access_and_ownership():
    first, second = RBM(10, 6, seed=0), RBM(6, 4, seed=1)
    dbn = DBN([first, second])
    assert dbn.layer(0) is first
    assert dbn.layer(-1) is second
    assert isinstance(dbn.layers, tuple)
    with pytest.raises(TypeError):
        copy.deepcopy(dbn)
    with pytest.raises(TypeError):
        copy.copy(dbn)


def test_display_prints_layers_and_total(capsys):
    dbn = DBN([RBM(10, 6), RBM(6, 4)])
    total = dbn.display()
    out = capsys.readouterr().out
    assert total == 84
    assert "DBN with 2 layers" in out
    assert "\tRBM: 10->6 : 60 parameters" in out
    assert "\tRBM: 6->4 : 24 parameters" in out
    assert "Total parameters: 84" in out


def test_pretrain_skips_softmax_top_layer():
    bottom = CountingRBM(10, 6, seed=0, batch_size=4)
    top = CountingRBM(6, 3, hidden_unit="softmax", seed=1, batch_size=4)
    dbn = DBN([bottom, top])
    dbn.pretrain(_data(), 2, watcher=SilentWatcher())
    assert bottom.train_calls == 1
    assert top.train_calls == 0


def test_pretrain_propagates_through_skipped_softmax_layer():
    bottom = CountingRBM(10, 6, hidden_unit="softmax", seed=0, batch_size=4)
    top = CountingRBM(6, 3, seed=1, batch_size=4)
    dbn = DBN([bottom, top])
    dbn.pretrain(_data(), 1, watcher=SilentWatcher())
    assert bottom.train_calls == 0
    assert top.train_calls == 1


def test_pretrain_tags_layer_in_callbacks():
    records = []
    dbn = DBN([RBM(10, 6, seed=0, batch_size=4), RBM(6, 4, seed=1, batch_size=4)])
    dbn.pretrain(_data(), 2, watcher=SilentWatcher(), callbacks=[lambda e, m: records.append(m)])
    assert [int(r["layer"]) for r in records] == [0, 0, 1, 1]
    assert all("recon_error" in r for r in records)


def test_console_watcher_reports_progress(capsys):
    dbn = DBN([RBM(10, 6, seed=0, batch_size=4)])
    dbn.pretrain(_data(), 1, watcher=ConsoleWatcher())
    out = capsys.readouterr().out
    assert "DBN: Pretraining" in out
    assert "DBN: Train layer 0 (10->6) with 12 entries" in out
    assert "DBN: Pretraining finished after" in out


def test_pretrain_rejects_wrong_width():
    dbn = DBN([RBM(10, 6)])
    with pytest.raises(ValueError):
        dbn.pretrain(np.zeros((3, 9)), 1, watcher=SilentWatcher())


def test_activation_probabilities_shapes():
    dbn = DBN([RBM(10, 6, seed=0), RBM(6, 4, seed=1)])
    data = _data(5)
    assert dbn.activation_probabilities(data).shape == (5, 4)
    assert dbn.activation_probabilities(data[0]).shape == (4,)
    full = dbn.full_activation_probabilities(data)
    assert full.shape == (5, 10)
    np.testing.assert_allclose(full[:, 6:], dbn.activation_probabilities(data))
    assert 0 <= dbn.predict(data[0]) < 4


def test_store_and_load_round_trip(tmp_path):
    source = DBN([RBM(10, 6, seed=0), RBM(6, 4, seed=1)])
    source.layer(0).b[:] = 0.25
    target = DBN([RBM(10, 6, seed=5), RBM(6, 4, seed=6)])

    buffer = io.BytesIO()
    source.store(buffer)
    buffer.seek(0)
    target.load(buffer)
    for left, right in zip(source.layers, target.layers):
        np.testing.assert_array_equal(left.w, right.w)
        np.testing.assert_array_equal(left.b, right.b)
        np.testing.assert_array_equal(left.c, right.c)

    path = tmp_path / "nested" / "dbn.npz"
    source.store(path)
    assert path.exists()
    fresh = DBN([RBM(10, 6, seed=7), RBM(6, 4, seed=8)])
    fresh.load(path)
    np.testing.assert_array_equal(fresh.layer(1).w, source.layer(1).w)


def test_load_rejects_mismatched_shapes_without_partial_update():
    source = DBN([RBM(10, 6, seed=0), RBM(6, 5, seed=1)])
    target = DBN([RBM(10, 6, seed=2), RBM(6, 4, seed=3)])
    before = target.layer(0).w.copy()
    with pytest.raises(ValueError):
        target.load_state_dict(source.state_dict())
    np.testing.assert_array_equal(target.layer(0).w, before)

    with pytest.raises(KeyError):
        target.load_state_dict({"layer0.w": before})


def test_pretrain_rejects_unchained_layers_before_training():
    bottom = CountingRBM(10, 6, seed=0)
    top = CountingRBM(7, 3, seed=1)
    dbn = DBN([bottom, top])
    with pytest.raises(ValueError, match="layer 1 expects 7"):
        dbn.pretrain(_data(), 1, watcher=SilentWatcher())
    assert bottom.train_calls == 0
