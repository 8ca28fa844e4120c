"""
Algorithm families compared by the model selector.

Every family is trained inside the same imblearn pipeline
(scale -> SMOTE -> model) so oversampling only ever sees training folds.
"""
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List

import numpy as np
import pandas as pd
from imblearn.over_sampling import SMOTE
from imblearn.pipeline import Pipeline as ImbPipeline
from sklearn.inspection import permutation_importance
from sklearn.linear_model import LogisticRegression
from sklearn.neighbors import KNeighborsClassifier, NearestCentroid
from sklearn.neural_network import MLPClassifier
from sklearn.preprocessing import StandardScaler
from sklearn.svm import SVC
from xgboost import XGBClassifier

from titanic_survival.config import SEED, SMOTE_NEIGHBORS
from titanic_survival.errors import ConfigurationError


@dataclass(frozen=True)
class ModelFamily:
    name: str
    make: Callable[[int], object]
    grid: Dict[str, List] = field(default_factory=dict)
    importance: str = "permutation"  # "coef", "tree" or "permutation"

    @property
    def param_grid(self):
        return {f"model__{k}": list(v) for k, v in self.grid.items()}

    def build(self, seed=SEED, smote_neighbors=SMOTE_NEIGHBORS):
        return ImbPipeline([
            ("scale", StandardScaler()),
            ("smote", SMOTE(k_neighbors=smote_neighbors, random_state=seed)),
            ("model", self.make(seed)),
        ])

    def validate(self, n_rows, n_minority, folds, smote_neighbors=SMOTE_NEIGHBORS):
        """Raise ConfigurationError when the grid cannot run on this many rows."""
        if folds < 2:
            raise ConfigurationError(f"{self.name}: need at least 2 folds, got {folds}")
        if n_minority < folds:
            raise ConfigurationError(f"{self.name}: {n_minority} minority rows cannot fill {folds} stratified folds")
        fold_minority = n_minority - math.ceil(n_minority / folds)
        if fold_minority <= smote_neighbors:
            raise ConfigurationError(
                f"{self.name}: SMOTE needs more than {smote_neighbors} minority rows per training fold, got {fold_minority}")
        fold_rows = n_rows - math.ceil(n_rows / folds)
        for k in self.grid.get("n_neighbors", []):
            if k > fold_rows:
                raise ConfigurationError(f"{self.name}: n_neighbors={k} exceeds the {fold_rows} rows of a training fold")

    def importances(self, pipeline, X, y, seed=SEED):
        """Raw, unscaled importance per column of ``X``."""
        model = pipeline.named_steps["model"]
        if self.importance == "coef":
            raw = np.abs(np.ravel(model.coef_))
        elif self.importance == "tree":
            raw = np.asarray(model.feature_importances_, dtype=float)
        else:
            res = permutation_importance(pipeline, X, y, scoring="roc_auc", n_repeats=5, random_state=seed)
            raw = np.clip(res.importances_mean, 0.0, None)
        return pd.Series(raw, index=list(X.columns), dtype=float)


FAMILIES = {
    "glm": ModelFamily(
        "glm", lambda seed: LogisticRegression(max_iter=1000),
        {"C": [0.01, 0.1, 1, 10]}, importance="coef"),
    "svm": ModelFamily(
        "svm", lambda seed: SVC(kernel="rbf"),
        {"C": [0.25, 1, 4], "gamma": ["scale", 0.01, 0.1]}),
    "pam": ModelFamily(
        "pam", lambda seed: NearestCentroid(),
        {"shrink_threshold": [None, 0.2, 0.5, 1.0]}),
    "nnet": ModelFamily(
        "nnet", lambda seed: MLPClassifier(max_iter=2000, random_state=seed),
        {"hidden_layer_sizes": [(3,), (5,), (10,)], "alpha": [1e-4, 1e-2, 1e-1]}),
    "knn": ModelFamily(
        "knn", lambda seed: KNeighborsClassifier(),
        {"n_neighbors": [5, 7, 9, 11, 15]}),
    "xgb": ModelFamily(
        "xgb", lambda seed: XGBClassifier(random_state=seed, n_jobs=1, eval_metric="logloss", tree_method="hist"),
        {"max_depth": [2, 3, 4], "learning_rate": [0.05, 0.1], "n_estimators": [100, 300]}, importance="tree"),
}


def get_family(name):
    try:
        return FAMILIES[name]
    except KeyError:
        raise ConfigurationError(f"unknown model family {name!r}; known: {sorted(FAMILIES)}") from None
