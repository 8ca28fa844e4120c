"""
End-to-end feature engineering: raw passenger corpus -> engineered train/test tables.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import pandas as pd

from titanic_survival.config import (CATEGORICAL_VARS, GROUP_MEAN_KEY, ID_COL, IMPUTATION_PREDICTORS,
                                     IMPUTATION_ROUNDS, IMPUTATION_TARGET, MIN_LEVEL_FRACTION, NUMERIC_VARS,
                                     PARTITION_COL, SEED, TARGET, TARGET_POSITIVE, TEST_TAG, TRAIN_TAG,
                                     TREATMENT_FOLDS)
from titanic_survival.errors import ImputationError, ParseError
from titanic_survival.features.derive import FareTransform, derive_features
from titanic_survival.features.impute import MultipleImputation, impute_group_mean, impute_multiple
from titanic_survival.features.treatment import TreatmentPlan, apply_treatment_plan, fit_treatment_plan, select_variables

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class FeatureSet:
    X_train: pd.DataFrame = field(repr=False)
    y_train: pd.Series = field(repr=False)
    X_test: pd.DataFrame = field(repr=False)
    test_ids: pd.Series = field(repr=False)
    corpus: pd.DataFrame = field(repr=False)
    plan: TreatmentPlan
    fare_transform: FareTransform
    age_model: MultipleImputation
    selected: List[str]


def prepare_corpus(corpus, fare_transform=None, age_model=None, predictors=IMPUTATION_PREDICTORS,
                   rounds=IMPUTATION_ROUNDS, outcome=TARGET, seed=SEED):
    """Derive features and impute age over the whole derivation corpus.

    Nothing here looks at ``outcome``; passing fitted ``fare_transform`` /
    ``age_model`` reuses them instead of fitting.
    """
    X, fare_transform = derive_features(corpus, fare_transform=fare_transform)
    target = IMPUTATION_TARGET
    X[f"{target}Missing"] = X[target].isna().astype(int)
    group_col, group_value = GROUP_MEAN_KEY
    X = impute_group_mean(X, group_col, group_value, target)
    if age_model is None:
        X, age_model = impute_multiple(X, predictors, target, rounds=rounds, outcome=outcome, seed=seed)
    else:
        X = age_model.apply(X)
    return X, fare_transform, age_model


def _check_complete(frame, name):
    gaps = frame.columns[frame.isna().any()].tolist()
    if gaps:
        raise ImputationError(f"{name} still has missing values in {gaps}")


def engineer_features(corpus: pd.DataFrame, categorical_vars=CATEGORICAL_VARS, numeric_vars=NUMERIC_VARS,
                      predictors=IMPUTATION_PREDICTORS, rounds: int = IMPUTATION_ROUNDS,
                      folds: int = TREATMENT_FOLDS, min_fraction: float = MIN_LEVEL_FRACTION,
                      threshold: Optional[float] = None, seed: int = SEED) -> FeatureSet:
    """Run derive -> impute -> treatment plan on a partition-tagged corpus."""
    if PARTITION_COL not in corpus.columns:
        raise ParseError(f"corpus needs a {PARTITION_COL!r} column")
    X, fare_transform, age_model = prepare_corpus(corpus, predictors=predictors, rounds=rounds, seed=seed)

    train = X[X[PARTITION_COL] == TRAIN_TAG]
    test = X[X[PARTITION_COL] == TEST_TAG]
    if train.empty:
        raise ParseError("corpus has no training rows")

    plan = fit_treatment_plan(train, categorical_vars, numeric_vars, outcome=TARGET, outcome_target=TARGET_POSITIVE,
                              folds=folds, seed=seed, min_fraction=min_fraction, id_col=ID_COL)
    selected = select_variables(plan, threshold)
    if not selected:
        # nothing significant: fall back to the whole plan rather than an empty table
        logger.warning("No variable passed the significance threshold; keeping all %d", len(plan.variables))
        selected = plan.variables

    X_train = plan.cross_frame[selected]
    X_test = apply_treatment_plan(plan, test, keep_vars=selected)
    _check_complete(X_train, "training table")
    _check_complete(X_test, "test table")
    y_train = (train[TARGET] == TARGET_POSITIVE).astype(int).rename(TARGET)
    logger.info("Engineered %d training and %d test rows with %d variables", len(X_train), len(X_test), len(selected))
    return FeatureSet(X_train=X_train, y_train=y_train, X_test=X_test, test_ids=test[ID_COL], corpus=X,
                      plan=plan, fare_transform=fare_transform, age_model=age_model, selected=list(selected))
