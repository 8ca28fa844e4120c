"""
Cross-validated model selection.

Every family is tuned by grid search over one shared RepeatedStratifiedKFold,
so the per-resample metrics of different families are paired. A family moves
through Configured -> Tuning -> Fitted -> Scored; a family that cannot be
tuned raises ConfigurationError, which ``train_all`` records without stopping
the others. Any other exception raised by a family is logged with its
traceback and recorded the same way.
"""
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.stats import ttest_rel
from sklearn.metrics import make_scorer, recall_score
from sklearn.model_selection import GridSearchCV, RepeatedStratifiedKFold

from titanic_survival.config import (CV_FOLDS, CV_REPEATS, N_JOBS, OUTCOME_CLASSES, SEED, SELECTION_METRIC,
                                     SMOTE_NEIGHBORS, TIE_BREAK_METRIC)
from titanic_survival.errors import ConfigurationError
from titanic_survival.models.registry import FAMILIES, ModelFamily, get_family

logger = logging.getLogger(__name__)

SCORING = {
    "roc_auc": "roc_auc",
    "sensitivity": "recall",
    "specificity": make_scorer(recall_score, pos_label=0),
    "accuracy": "accuracy",
}


class FamilyState(Enum):
    CONFIGURED = "configured"
    TUNING = "tuning"
    FITTED = "fitted"
    SCORED = "scored"


@dataclass(eq=False)
class FittedModel:
    family: ModelFamily
    pipeline: object = field(repr=False)
    params: Dict
    features: list
    resamples: pd.DataFrame = field(repr=False)
    classes: tuple = OUTCOME_CLASSES

    @property
    def name(self):
        return self.family.name


@dataclass
class SelectionResult:
    fitted: Dict[str, FittedModel]
    failures: Dict[str, str]


def make_cv(folds=CV_FOLDS, repeats=CV_REPEATS, seed=SEED):
    return RepeatedStratifiedKFold(n_splits=folds, n_repeats=repeats, random_state=seed)


class FamilyRun:
    """Tune, refit and score one algorithm family."""

    def __init__(self, family: ModelFamily, cv, seed=SEED, n_jobs=N_JOBS, smote_neighbors=SMOTE_NEIGHBORS):
        self.family = family
        self.cv = cv
        self.seed = seed
        self.n_jobs = n_jobs
        self.smote_neighbors = smote_neighbors
        self.state = FamilyState.CONFIGURED

    def _advance(self, expected, new):
        if self.state is not expected:
            raise RuntimeError(f"{self.family.name}: cannot move to {new.value} from {self.state.value}")
        self.state = new

    def tune(self, X, y):
        self._advance(FamilyState.CONFIGURED, FamilyState.TUNING)
        y = np.asarray(y)
        self.family.validate(len(y), int(min(np.bincount(y, minlength=2))), self.cv.get_n_splits() // self.cv.n_repeats,
                             smote_neighbors=self.smote_neighbors)
        search = GridSearchCV(self.family.build(self.seed, self.smote_neighbors), self.family.param_grid,
                              scoring=SCORING, refit=False, cv=self.cv, n_jobs=self.n_jobs, error_score=np.nan)
        try:
            search.fit(X, y)
        except ValueError as exc:
            # raised by GridSearchCV when every fit of every grid point failed
            raise ConfigurationError(f"{self.family.name}: every hyperparameter combination failed: {exc}") from exc
        means = np.asarray(search.cv_results_[f"mean_test_{SELECTION_METRIC}"], dtype=float)
        if np.all(np.isnan(means)):
            raise ConfigurationError(f"{self.family.name}: every hyperparameter combination failed")
        self.cv_results_ = search.cv_results_
        self.best_index_ = int(np.nanargmax(means))
        self.best_params_ = search.cv_results_["params"][self.best_index_]
        logger.info("%s: best %s=%.4f with %s", self.family.name, SELECTION_METRIC, means[self.best_index_],
                    self.best_params_)
        return self

    def fit(self, X, y):
        if self.state is not FamilyState.TUNING:
            raise RuntimeError(f"{self.family.name}: tune before fitting")
        try:
            self.pipeline_ = self.family.build(self.seed, self.smote_neighbors).set_params(**self.best_params_).fit(X, y)
        except ValueError as exc:
            raise ConfigurationError(f"{self.family.name}: refit failed: {exc}") from exc
        self.features_ = list(X.columns)
        self._advance(FamilyState.TUNING, FamilyState.FITTED)
        return self

    def score(self):
        self._advance(FamilyState.FITTED, FamilyState.SCORED)
        n_splits = self.cv.get_n_splits()
        res = {m: [self.cv_results_[f"split{i}_test_{m}"][self.best_index_] for i in range(n_splits)]
               for m in SCORING}
        resamples = pd.DataFrame(res, index=pd.RangeIndex(n_splits, name="resample"))
        return FittedModel(family=self.family, pipeline=self.pipeline_,
                           params={k.replace("model__", ""): v for k, v in self.best_params_.items()},
                           features=self.features_, resamples=resamples)


def train_all(X: pd.DataFrame, y, families: Optional[Sequence] = None, folds: int = CV_FOLDS,
              repeats: int = CV_REPEATS, seed: int = SEED, n_jobs: int = N_JOBS,
              smote_neighbors: int = SMOTE_NEIGHBORS) -> SelectionResult:
    """Tune, fit and score every family on the same resampling folds."""
    y = np.asarray(y).astype(int)
    cv = make_cv(folds, repeats, seed)
    fitted, failures = {}, {}
    for fam in families if families is not None else list(FAMILIES):
        name = fam.name if isinstance(fam, ModelFamily) else fam
        try:
            family = fam if isinstance(fam, ModelFamily) else get_family(fam)
            if X.shape[1] == 0:
                raise ConfigurationError(f"{name}: training table has no columns")
            run = FamilyRun(family, cv, seed=seed, n_jobs=n_jobs, smote_neighbors=smote_neighbors)
            fitted[name] = run.tune(X, y).fit(X, y).score()
        except ConfigurationError as exc:
            logger.warning("Skipping %s: %s", name, exc)
            failures[name] = str(exc)
        except Exception as exc:
            logger.exception("Family %s raised while training", name)
            failures[name] = f"{type(exc).__name__}: {exc}"
    logger.info("Trained %d families, %d failed", len(fitted), len(failures))
    return SelectionResult(fitted=fitted, failures=failures)


def _models(fitted):
    return fitted.fitted if isinstance(fitted, SelectionResult) else fitted


def resamples(fitted) -> pd.DataFrame:
    """Long table: family, resample, metric, value."""
    frames = []
    for name, model in _models(fitted).items():
        long = model.resamples.reset_index().melt(id_vars="resample", var_name="metric", value_name="value")
        long.insert(0, "family", name)
        frames.append(long)
    if not frames:
        return pd.DataFrame(columns=["family", "resample", "metric", "value"])
    return pd.concat(frames, ignore_index=True)


def compare_models(fitted, metric: str = SELECTION_METRIC, tie_break: str = TIE_BREAK_METRIC) -> pd.DataFrame:
    """Rank families by median resampled ``metric``.

    Equal medians are ordered by the median of ``tie_break`` (higher first),
    then by family name.
    """
    models = _models(fitted)
    if not models:
        raise ConfigurationError("no fitted family to compare")
    rows = []
    for name, model in models.items():
        row = {"family": name}
        row.update({m: float(np.nanmedian(model.resamples[m])) for m in model.resamples.columns})
        row.update({f"{m}_mean": float(np.nanmean(model.resamples[m])) for m in model.resamples.columns})
        rows.append(row)
    ranking = (pd.DataFrame(rows)
               .sort_values([metric, tie_break, "family"], ascending=[False, False, True])
               .reset_index(drop=True))
    ranking.insert(0, "rank", np.arange(1, len(ranking) + 1))
    return ranking


def best_model(fitted, metric: str = SELECTION_METRIC, tie_break: str = TIE_BREAK_METRIC) -> FittedModel:
    ranking = compare_models(fitted, metric, tie_break)
    return _models(fitted)[ranking.loc[0, "family"]]


def paired_differences(fitted, metric: str = SELECTION_METRIC) -> pd.DataFrame:
    """Pairwise resample differences with Bonferroni-adjusted paired t-tests."""
    models = _models(fitted)
    pairs = list(itertools.combinations(sorted(models), 2))
    rows = []
    for a, b in pairs:
        ra = models[a].resamples[metric].to_numpy(dtype=float)
        rb = models[b].resamples[metric].to_numpy(dtype=float)
        diff = ra - rb
        _, p = ttest_rel(ra, rb, nan_policy="omit")
        p = 1.0 if np.isnan(p) else float(p)
        rows.append({"family_a": a, "family_b": b, "mean_diff": float(np.nanmean(diff)),
                     "p_value": p, "p_adjusted": min(1.0, p * len(pairs))})
    return pd.DataFrame(rows, columns=["family_a", "family_b", "mean_diff", "p_value", "p_adjusted"])


def variable_importance(model: FittedModel, X: pd.DataFrame, y, seed: int = SEED) -> pd.DataFrame:
    """Importance per feature scaled to 0-100, most important first."""
    X = X[model.features]
    raw = model.family.importances(model.pipeline, X, np.asarray(y).astype(int), seed=seed)
    lo, hi = raw.min(), raw.max()
    if hi > lo:
        scaled = 100.0 * (raw - lo) / (hi - lo)
    else:
        scaled = pd.Series(100.0 if hi > 0 else 0.0, index=raw.index)
    return (pd.DataFrame({"feature": scaled.index, "importance": scaled.to_numpy()})
            .sort_values(["importance", "feature"], ascending=[False, True])
            .reset_index(drop=True))
