import numpy as np
import pytest

from beliefnet.classifiers import SVMHead, features
from beliefnet.core.dbn import DBN
from beliefnet.core.rbm import RBM
from beliefnet.data.bars import make_bars
from beliefnet.training.watchers import SilentWatcher


@pytest.fixture()
def trained():
    data, labels = make_bars(size=3, n_samples=90, noise=0.0, seed=0)
    dbn = DBN([RBM(9, 8, seed=0, batch_size=10), RBM(8, 6, seed=1, batch_size=10)])
    dbn.pretrain(data, 3, watcher=SilentWatcher())
    return dbn, data, labels


def test_features_layout(trained):
    dbn, data, _ = trained
    assert features(dbn, data).shape == (90, 6)
    assert features(dbn, data, concatenate=True).shape == (90, 14)


def test_svm_predict_before_training_raises(trained):
    dbn, data, _ = trained
    with pytest.raises(RuntimeError):
        dbn.svm_predict(data[0])


def test_svm_train_and_predict(trained):
    dbn, data, labels = trained
    assert dbn.svm_train(data, labels, {"C": 10.0})
    assert isinstance(dbn.svm_model, SVMHead)
    predictions = [dbn.svm_predict(sample) for sample in data[:20]]
    assert all(isinstance(p, int) and 0 <= p < 6 for p in predictions)


def test_svm_train_on_concatenated_features(trained):
    dbn, data, labels = trained
    dbn.svm_train(data, labels, concatenate=True)
    assert dbn.svm_model.concatenate
    assert dbn.svm_model.model.n_features_in_ == 14
    assert 0 <= dbn.svm_predict(data[3]) < 6


def test_svm_grid_search_records_best_parameters(trained):
    dbn, data, labels = trained
    grid = {"C": [1.0, 10.0], "gamma": ["scale"]}
    assert dbn.svm_grid_search(data, labels, n_fold=3, grid=grid)
    assert dbn.svm_model.search["best_params"]["C"] in (1.0, 10.0)
    assert 0.0 <= dbn.svm_model.search["best_score"] <= 1.0


def test_svm_train_rejects_label_count_mismatch(trained):
    dbn, data, labels = trained
    with pytest.raises(ValueError):
        dbn.svm_train(data, np.asarray(labels)[:-1])
