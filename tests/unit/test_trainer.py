import numpy as np
import pytest

from beliefnet.core.dbn import DBN
from beliefnet.core.rbm import RBM
from beliefnet.core.types import EpochHistory
from beliefnet.training.losses import REGISTRY, one_hot
from beliefnet.training.metrics import compute_metric
from beliefnet.training.trainer import DBNTrainer, SGDOptimizer


def _network(hidden_unit="binary", seed=0):
    return DBN(
        [
            RBM(3, 4, hidden_unit=hidden_unit, seed=seed),
            RBM(4, 2, hidden_unit="softmax", seed=seed + 1),
        ]
    )


def _loss(trainer, inputs, targets):
    _, state = trainer.forward(inputs)
    value, _ = trainer.loss_fn(state.pre_activations[-1], targets)
    return value


@pytest.mark.parametrize("hidden_unit", ["binary", "softmax"])
def test_backward_matches_finite_differences(hidden_unit):
    dbn = _network(hidden_unit)
    trainer = DBNTrainer(dbn, SGDOptimizer(lr=0.1))
    rng = np.random.default_rng(0)
    inputs = rng.random((5, 3))
    targets = one_hot(np.array([0, 1, 1, 0, 1]), 2)

    _, state = trainer.forward(inputs)
    _, delta = trainer.loss_fn(state.pre_activations[-1], targets)
    grads = trainer.backward(state, delta)

    eps = 1e-6
    for name, param in trainer.parameters().items():
        numeric = np.zeros_like(param)
        for idx in np.ndindex(param.shape):
            original = param[idx]
            param[idx] = original + eps
            plus = _loss(trainer, inputs, targets)
            param[idx] = original - eps
            minus = _loss(trainer, inputs, targets)
            param[idx] = original
            numeric[idx] = (plus - minus) / (2 * eps)
        np.testing.assert_allclose(grads[name], numeric, rtol=1e-4, atol=1e-7)


def test_optimizer_momentum_schedule_and_weight_cost():
    optimizer = SGDOptimizer(
        lr=1.0, initial_momentum=0.5, final_momentum=0.9, final_momentum_epoch=2, weight_cost=0.1
    )
    assert optimizer.momentum(2) == pytest.approx(0.5)
    assert optimizer.momentum(3) == pytest.approx(0.9)

    params = {"layer0.w": np.ones(2), "layer0.b": np.ones(2)}
    optimizer.step(params, {"layer0.w": np.zeros(2), "layer0.b": np.zeros(2)}, epoch=1)
    np.testing.assert_allclose(params["layer0.w"], [0.9, 0.9])
    np.testing.assert_allclose(params["layer0.b"], [1.0, 1.0])


def test_trainer_requires_chained_layers():
    dbn = DBN([RBM(3, 4), RBM(6, 2)])
    with pytest.raises(ValueError):
        DBNTrainer(dbn, SGDOptimizer(lr=0.1))


def test_train_validates_inputs():
    trainer = DBNTrainer(_network(), SGDOptimizer(lr=0.1))
    x = np.zeros((4, 3))
    with pytest.raises(ValueError):
        trainer.train(x, np.array([0, 1, 0]), 1, 2)
    with pytest.raises(ValueError):
        trainer.train(x, np.array([0, 1, 2, 0]), 1, 2)
    with pytest.raises(ValueError):
        trainer.train(x, np.array([0, 1, 1, 0]), 1, 0)
    with pytest.raises(ValueError):
        trainer.train(np.zeros((0, 3)), np.zeros(0), 1, 2)


def test_visible_biases_are_not_fine_tuned():
    dbn = _network()
    before = [layer.c.copy() for layer in dbn.layers]
    x = np.random.default_rng(1).random((6, 3))
    dbn.fine_tune(x, [0, 1, 0, 1, 0, 1], 2, 3)
    for layer, c in zip(dbn.layers, before):
        np.testing.assert_array_equal(layer.c, c)


def test_loss_registry():
    assert REGISTRY.resolve("auto").name == "ce"
    assert "mse" in REGISTRY.names()
    with pytest.raises(KeyError):
        REGISTRY.resolve("hinge")


def test_metrics():
    predicted = np.array([0, 1, 1, 2])
    targets = np.array([0, 1, 2, 2])
    assert compute_metric("accuracy", predicted, targets) == pytest.approx(0.75)
    assert compute_metric("error_rate", predicted, targets) == pytest.approx(0.25)
    assert 0.0 < compute_metric("macro_f1", predicted, targets, num_classes=3) <= 1.0
    with pytest.raises(KeyError):
        compute_metric("auc", predicted, targets)


def test_fine_tune_with_mse_loss():
    dbn = _network()
    before = dbn.layer(1).w.copy()
    x = np.random.default_rng(3).random((8, 3))
    history = EpochHistory()
    final = dbn.fine_tune(x, [0, 1] * 4, 3, 4, loss="mse", callbacks=[history])

    assert len(history.records) == 3
    assert final == pytest.approx(history.last["loss"])
    # Squared distance between a probability vector and a one-hot target
    assert 0.0 <= final <= 2.0
    assert not np.array_equal(dbn.layer(1).w, before)


def test_fine_tune_losses_differ():
    x = np.random.default_rng(3).random((8, 3))
    ce = _network().fine_tune(x, [0, 1] * 4, 1, 4, loss="ce")
    mse = _network().fine_tune(x, [0, 1] * 4, 1, 4, loss="mse")
    assert ce != mse


def test_fine_tune_rejects_unknown_loss():
    with pytest.raises(KeyError, match="hinge"):
        _network().fine_tune(np.zeros((2, 3)), [0, 1], 1, 2, loss="hinge")
