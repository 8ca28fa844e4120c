import pandas as pd
import pytest

from titanic_survival.config import IMPUTATION_PREDICTORS, TARGET
from titanic_survival.errors import ImputationError, ParseError
from titanic_survival.features.pipeline import engineer_features, prepare_corpus


def test_engineered_tables_are_complete(feature_set, corpus):
    assert not feature_set.X_train.isna().any().any()
    assert not feature_set.X_test.isna().any().any()
    assert len(feature_set.X_train) == 100
    assert len(feature_set.X_test) == 20
    assert list(feature_set.X_test.columns) == feature_set.selected
    assert feature_set.corpus["AgeImputed"].notna().all()
    assert feature_set.corpus["AgeMissing"].sum() == corpus["Age"].isna().sum()


def test_outcome_stays_out_of_features(feature_set):
    assert TARGET not in feature_set.plan.variables
    assert all(TARGET not in v for v in feature_set.plan.score_frame["original"])


def test_derivation_ignores_labels(corpus):
    base, _, _ = prepare_corpus(corpus, rounds=2)
    unlabelled, _, _ = prepare_corpus(corpus.drop(columns=TARGET), rounds=2)
    pd.testing.assert_series_equal(base["AgeImputed"], unlabelled["AgeImputed"])
    pd.testing.assert_series_equal(base["FareTransformed"], unlabelled["FareTransformed"])


def test_outcome_in_imputation_predictors_is_fatal(corpus):
    with pytest.raises(ImputationError):
        engineer_features(corpus, predictors=IMPUTATION_PREDICTORS + [TARGET], rounds=2)


def test_plan_is_fit_on_training_rows_only(corpus):
    a = engineer_features(corpus, rounds=2)
    shifted = corpus.copy()
    shifted.loc[shifted["Partition"] == "test", "Embarked"] = "Z"
    b = engineer_features(shifted, rounds=2)
    emb = next(t for t in a.plan.categorical if t.var == "Embarked")
    emb_b = next(t for t in b.plan.categorical if t.var == "Embarked")
    assert emb.impact == emb_b.impact
    assert "Z" not in emb_b.levels


def test_corpus_needs_partition(corpus):
    with pytest.raises(ParseError):
        engineer_features(corpus.drop(columns="Partition"))
