import logging

import numpy as np
import pandas as pd
import pytest

from titanic_survival.config import IMPUTATION_PREDICTORS
from titanic_survival.errors import ImputationError
from titanic_survival.features.derive import derive_features
from titanic_survival.features.impute import fit_multiple_imputation, impute_group_mean, impute_multiple


def test_group_mean_fill():
    df = pd.DataFrame({"Group": ["X", "X", "X", "Y"], "Age": [4.0, np.nan, 8.0, np.nan]})
    out = impute_group_mean(df, "Group", "X", "Age")
    assert out.loc[1, "Age"] == 6
    assert np.isnan(out.loc[3, "Age"])
    assert np.isnan(df.loc[1, "Age"])


def test_group_mean_without_observations_fails():
    df = pd.DataFrame({"Group": ["X", "X"], "Age": [np.nan, np.nan]})
    with pytest.raises(ImputationError):
        impute_group_mean(df, "Group", "X", "Age")


def test_group_mean_nothing_to_fill(caplog):
    df = pd.DataFrame({"Group": ["Y"], "Age": [np.nan]})
    with caplog.at_level(logging.WARNING, logger="titanic_survival.features.impute"):
        out = impute_group_mean(df, "Group", "X", "Age")
    assert out["Age"].isna().all()
    assert "No rows with Group='X'" in caplog.text


def test_group_mean_no_warning_when_group_present(caplog):
    df = pd.DataFrame({"Group": ["X", "Y"], "Age": [3.0, np.nan]})
    with caplog.at_level(logging.WARNING, logger="titanic_survival.features.impute"):
        out = impute_group_mean(df, "Group", "X", "Age")
    assert np.isnan(out.loc[1, "Age"])
    assert caplog.records == []


@pytest.fixture
def derived(train_raw):
    return derive_features(train_raw)[0]


def test_outcome_never_predicts(derived):
    with pytest.raises(ImputationError):
        fit_multiple_imputation(derived, IMPUTATION_PREDICTORS + ["Survived"], "Age")


def test_rounds_must_be_positive(derived):
    with pytest.raises(ImputationError):
        fit_multiple_imputation(derived, IMPUTATION_PREDICTORS, "Age", rounds=0)


def test_multiple_imputation_fills_and_flags(derived):
    out, model = impute_multiple(derived, IMPUTATION_PREDICTORS, "Age", rounds=3)
    assert model.rounds == 3
    assert out["AgeImputed"].notna().all()
    assert (out["AgeImputed"] >= 0).all()
    assert out["AgeMissing"].tolist() == derived["Age"].isna().astype(int).tolist()
    observed = derived["Age"].notna()
    np.testing.assert_allclose(out.loc[observed, "AgeImputed"], derived.loc[observed, "Age"])


def test_imputation_is_reproducible(derived):
    out, model = impute_multiple(derived, IMPUTATION_PREDICTORS, "Age", rounds=2)
    again = model.apply(derived)
    pd.testing.assert_series_equal(out["AgeImputed"], again["AgeImputed"])


def test_imputation_ignores_outcome_values(derived):
    out, _ = impute_multiple(derived, IMPUTATION_PREDICTORS, "Age", rounds=2)
    shuffled = derived.assign(Survived=derived["Survived"].sample(frac=1, random_state=0).to_numpy())
    out2, _ = impute_multiple(shuffled, IMPUTATION_PREDICTORS, "Age", rounds=2)
    unlabelled, _ = impute_multiple(derived.drop(columns="Survived"), IMPUTATION_PREDICTORS, "Age", rounds=2)
    pd.testing.assert_series_equal(out["AgeImputed"], out2["AgeImputed"])
    pd.testing.assert_series_equal(out["AgeImputed"], unlabelled["AgeImputed"])
