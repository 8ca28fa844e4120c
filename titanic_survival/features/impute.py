"""
Missing-value imputation: a deterministic subgroup mean and a multiple
imputation model whose rounds are averaged into one point estimate.
"""
import copy
import logging
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
import pandas as pd
from sklearn.experimental import enable_iterative_imputer  # noqa: F401
from sklearn.impute import IterativeImputer
from sklearn.linear_model import BayesianRidge

from titanic_survival.config import IMPUTATION_ROUNDS, SEED, TARGET
from titanic_survival.errors import ImputationError

logger = logging.getLogger(__name__)


def impute_group_mean(frame: pd.DataFrame, group_col: str, group_value, target: str) -> pd.DataFrame:
    """Fill ``target`` inside the subgroup ``group_col == group_value`` with the subgroup mean.

    Rows outside the subgroup are untouched. A subgroup that has missing
    values but no observed ones raises ImputationError.
    """
    for c in (group_col, target):
        if c not in frame.columns:
            raise ImputationError(f"column {c!r} not found")
    X = frame.copy()
    in_group = X[group_col] == group_value
    if not in_group.any():
        logger.warning("No rows with %s=%r; %s left unchanged", group_col, group_value, target)
        return X
    todo = in_group & X[target].isna()
    if not todo.any():
        return X
    observed = X.loc[in_group, target].dropna()
    if observed.empty:
        raise ImputationError(f"no observed {target} for {group_col}={group_value!r}; nothing to average")
    fill = float(observed.mean())
    X.loc[todo, target] = fill
    logger.info("Filled %d %s values for %s=%s with mean %.3f", int(todo.sum()), target, group_col, group_value, fill)
    return X


@dataclass(frozen=True)
class MultipleImputation:
    """Fitted multiple-imputation model for one numeric column."""
    target: str
    predictors: Tuple[str, ...]
    design_columns: Tuple[str, ...]
    imputers: Tuple[IterativeImputer, ...]

    @property
    def rounds(self):
        return len(self.imputers)

    def design(self, frame):
        missing = [c for c in self.predictors + (self.target,) if c not in frame.columns]
        if missing:
            raise ImputationError(f"missing imputation columns: {', '.join(missing)}")
        return _design_matrix(frame, self.predictors, self.target).reindex(columns=list(self.design_columns), fill_value=0.0)

    def draws(self, frame):
        """One column per round holding that round's values for ``target``."""
        D = self.design(frame)
        col = list(self.design_columns).index(self.target)
        out = {}
        for i, imp in enumerate(self.imputers):
            # transform on a copy so the fitted random state never advances
            out[f"round_{i}"] = copy.deepcopy(imp).transform(D.to_numpy(dtype=float))[:, col]
        return pd.DataFrame(out, index=frame.index)

    def apply(self, frame):
        X = frame.copy()
        raw = pd.to_numeric(X[self.target], errors="coerce")
        combined = self.draws(X).mean(axis=1).clip(lower=0.0)
        X[f"{self.target}Imputed"] = raw.where(raw.notna(), combined)
        return X


def _design_matrix(frame, predictors, target):
    D = pd.get_dummies(frame[list(predictors)], dummy_na=False, dtype=float)
    D[target] = pd.to_numeric(frame[target], errors="coerce")
    return D.astype(float)


def fit_multiple_imputation(frame: pd.DataFrame, predictors: List[str], target: str,
                            rounds: int = IMPUTATION_ROUNDS, outcome: str = TARGET,
                            seed: int = SEED) -> MultipleImputation:
    if outcome in predictors:
        raise ImputationError(f"outcome {outcome!r} must not be used to impute {target!r}")
    if target in predictors:
        raise ImputationError(f"{target!r} cannot predict itself")
    if rounds < 1:
        raise ImputationError(f"rounds must be >= 1, got {rounds}")
    missing = [c for c in list(predictors) + [target] if c not in frame.columns]
    if missing:
        raise ImputationError(f"missing imputation columns: {', '.join(missing)}")
    if frame[target].notna().sum() == 0:
        raise ImputationError(f"{target!r} has no observed values to model")

    D = _design_matrix(frame, predictors, target)
    imputers = []
    for i in range(rounds):
        imp = IterativeImputer(estimator=BayesianRidge(), sample_posterior=True, max_iter=10,
                               min_value=0.0, random_state=seed + i)
        imp.fit(D.to_numpy(dtype=float))
        imputers.append(imp)
    logger.info("Fitted %d imputation rounds for %s on %d rows (%d missing)",
                rounds, target, len(D), int(D[target].isna().sum()))
    return MultipleImputation(target=target, predictors=tuple(predictors),
                              design_columns=tuple(D.columns), imputers=tuple(imputers))


def impute_multiple(frame, predictors, target, rounds=IMPUTATION_ROUNDS, outcome=TARGET, seed=SEED):
    """Fit and apply in one go. Adds ``<target>Imputed`` and ``<target>Missing``.

    An existing ``<target>Missing`` column is kept, so the flag can be taken
    before any earlier fill step touched the column.
    """
    X = frame.copy()
    if f"{target}Missing" not in X.columns:
        X[f"{target}Missing"] = X[target].isna().astype(int)
    model = fit_multiple_imputation(X, predictors, target, rounds=rounds, outcome=outcome, seed=seed)
    return model.apply(X), model
