"""Support vector machine head trained on DBN features."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, Mapping, Sequence

import numpy as np
from sklearn.model_selection import GridSearchCV, StratifiedKFold
from sklearn.svm import SVC

from .core.rbm import sample_buffer
from .core.types import Array

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .core.dbn import DBN

DEFAULT_SVM_PARAMETERS: Mapping[str, object] = {"kernel": "rbf", "C": 1.0, "gamma": "scale"}

DEFAULT_RBF_GRID: Mapping[str, Sequence[object]] = {
    "C": [0.1, 1.0, 10.0, 100.0],
    "gamma": ["scale", 0.01, 0.1, 1.0],
}


@dataclass
class SVMHead:
    """Fitted classifier plus the feature layout it was trained on."""

    model: SVC
    concatenate: bool = False
    search: Dict[str, object] = field(default_factory=dict)


def features(dbn: "DBN", samples: Iterable[Array] | Array, *, concatenate: bool = False) -> Array:
    """Return one feature row per sample, sized for the SVM input."""

    data = sample_buffer(samples, dbn.input_size(), dbn.dtype)
    if concatenate:
        return dbn.full_activation_probabilities(data)
    return dbn.activation_probabilities(data)


def _prepare(dbn, samples, labels, concatenate):
    X = features(dbn, samples, concatenate=concatenate)
    y = np.asarray(list(labels) if not isinstance(labels, np.ndarray) else labels).reshape(-1)
    if X.shape[0] != y.shape[0]:
        raise ValueError("There must be the same number of values than labels")
    return X, y


def svm_train(
    dbn: "DBN",
    samples: Iterable[Array] | Array,
    labels: Iterable[int] | Array,
    parameters: Mapping[str, object] | None = None,
    *,
    concatenate: bool = False,
) -> bool:
    """Fit an SVC on the network features and store it on ``dbn.svm_model``."""

    X, y = _prepare(dbn, samples, labels, concatenate)
    params = dict(DEFAULT_SVM_PARAMETERS)
    params.update(parameters or {})
    model = SVC(**params)
    model.fit(X, y)
    dbn.svm_model = SVMHead(model=model, concatenate=concatenate)
    return True


def svm_grid_search(
    dbn: "DBN",
    samples: Iterable[Array] | Array,
    labels: Iterable[int] | Array,
    n_fold: int = 5,
    grid: Mapping[str, Sequence[object]] | None = None,
    *,
    concatenate: bool = False,
) -> bool:
    """Cross-validated search over ``C`` and ``gamma``; keeps the best model."""

    X, y = _prepare(dbn, samples, labels, concatenate)
    folds = StratifiedKFold(n_splits=n_fold, shuffle=True, random_state=0)
    search = GridSearchCV(SVC(kernel="rbf"), dict(grid or DEFAULT_RBF_GRID), cv=folds)
    search.fit(X, y)
    dbn.svm_model = SVMHead(
        model=search.best_estimator_,
        concatenate=concatenate,
        search={"best_params": dict(search.best_params_), "best_score": float(search.best_score_)},
    )
    return True


def svm_predict(dbn: "DBN", sample: Array) -> int:
    if dbn.svm_model is None:
        raise RuntimeError("No SVM model has been trained for this network")
    head = dbn.svm_model
    X = features(dbn, np.asarray(sample).reshape(1, -1), concatenate=head.concatenate)
    return int(head.model.predict(X)[0])


__all__ = [
    "DEFAULT_RBF_GRID",
    "DEFAULT_SVM_PARAMETERS",
    "SVMHead",
    "features",
    "svm_grid_search",
    "svm_predict",
    "svm_train",
]
