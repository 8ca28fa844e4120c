import numpy as np
import pandas as pd
import pytest
from sklearn.linear_model import LogisticRegression
from sklearn.neighbors import KNeighborsClassifier

from titanic_survival.errors import ConfigurationError
from titanic_survival.models.predict import predict
from titanic_survival.models.registry import FAMILIES, ModelFamily
from titanic_survival.models.select import (FamilyRun, FamilyState, FittedModel, best_model, compare_models,
                                            make_cv, paired_differences, resamples, train_all, variable_importance)


@pytest.fixture
def selection(feature_set):
    return train_all(feature_set.X_train, feature_set.y_train, families=["glm", "knn"], folds=3, repeats=2, n_jobs=1)


def test_end_to_end(selection, feature_set):
    assert set(selection.fitted) == {"glm", "knn"}
    assert selection.failures == {}
    ranking = compare_models(selection)
    assert ranking["family"].tolist()[0] == best_model(selection).name
    assert ranking["roc_auc"].between(0, 1).all()
    labels = predict(best_model(selection), feature_set.X_test)
    assert len(labels) == 20
    assert set(labels.unique()) <= {0, 1}


def test_resamples_are_paired(selection):
    long = resamples(selection)
    counts = long[long["metric"] == "roc_auc"].groupby("family")["resample"].nunique()
    assert counts.tolist() == [6, 6]
    diffs = paired_differences(selection)
    assert len(diffs) == 1
    assert 0 <= diffs.loc[0, "p_adjusted"] <= 1


def test_failed_family_does_not_stop_others(feature_set):
    huge = ModelFamily("huge_knn", lambda seed: KNeighborsClassifier(), {"n_neighbors": [500]})
    result = train_all(feature_set.X_train, feature_set.y_train, families=[huge, "glm", "nope"],
                       folds=3, repeats=1, n_jobs=1)
    assert set(result.fitted) == {"glm"}
    assert set(result.failures) == {"huge_knn", "nope"}
    assert "n_neighbors" in result.failures["huge_knn"]


def test_invalid_grid_points_are_skipped(feature_set):
    mixed = ModelFamily("mixed_glm", lambda seed: LogisticRegression(max_iter=1000), {"C": [-1.0, 1.0]})
    run = FamilyRun(mixed, make_cv(3, 1), n_jobs=1).tune(feature_set.X_train, feature_set.y_train.to_numpy())
    assert run.best_params_ == {"model__C": 1.0}
    assert np.isfinite(run.cv_results_["mean_test_roc_auc"][run.best_index_])
    model = run.fit(feature_set.X_train, feature_set.y_train).score()
    assert np.isfinite(model.resamples["roc_auc"]).all()


def test_fully_invalid_grid_is_recorded(feature_set):
    bad = ModelFamily("bad_glm", lambda seed: LogisticRegression(), {"C": [-1.0, -2.0]})
    with pytest.raises(ConfigurationError, match="every hyperparameter combination failed"):
        FamilyRun(bad, make_cv(3, 1), n_jobs=1).tune(feature_set.X_train, feature_set.y_train.to_numpy())
    result = train_all(feature_set.X_train, feature_set.y_train, families=[bad, "glm"], folds=3, repeats=1, n_jobs=1)
    assert set(result.fitted) == {"glm"}
    assert set(result.failures) == {"bad_glm"}


def _singular(seed):
    raise np.linalg.LinAlgError("Singular matrix")


def test_unexpected_error_is_recorded(feature_set, caplog):
    broken = ModelFamily("broken", _singular, {"C": [1.0]})
    result = train_all(feature_set.X_train, feature_set.y_train, families=[broken, "glm"], folds=3, repeats=1, n_jobs=1)
    assert set(result.fitted) == {"glm"}
    assert result.failures["broken"] == "LinAlgError: Singular matrix"
    assert "Traceback" in caplog.text


def test_validate_rejects_small_minority():
    with pytest.raises(ConfigurationError):
        FAMILIES["glm"].validate(n_rows=20, n_minority=4, folds=5)
    with pytest.raises(ConfigurationError):
        FAMILIES["glm"].validate(n_rows=100, n_minority=40, folds=1)
    FAMILIES["glm"].validate(n_rows=100, n_minority=40, folds=5)


def test_family_states(feature_set):
    run = FamilyRun(FAMILIES["glm"], make_cv(3, 1), n_jobs=1)
    assert run.state is FamilyState.CONFIGURED
    with pytest.raises(RuntimeError):
        run.fit(feature_set.X_train, feature_set.y_train)
    run.tune(feature_set.X_train, feature_set.y_train.to_numpy())
    assert run.state is FamilyState.TUNING
    run.fit(feature_set.X_train, feature_set.y_train)
    assert run.state is FamilyState.FITTED
    model = run.score()
    assert run.state is FamilyState.SCORED
    assert len(model.resamples) == 3
    assert "C" in model.params


def _scored(name, auc, spec):
    frame = pd.DataFrame({"roc_auc": auc, "specificity": spec, "sensitivity": [0.5] * len(auc)})
    return FittedModel(family=FAMILIES[name], pipeline=None, params={}, features=[], resamples=frame)


def test_ties_broken_by_specificity_then_name():
    models = {
        "glm": _scored("glm", [0.8, 0.9, 0.7], [0.6, 0.6, 0.6]),
        "svm": _scored("svm", [0.8, 0.8, 0.8], [0.9, 0.9, 0.9]),
        "knn": _scored("knn", [0.8, 0.8, 0.8], [0.6, 0.6, 0.6]),
        "pam": _scored("pam", [0.5, 0.5, 0.5], [1.0, 1.0, 1.0]),
    }
    ranking = compare_models(models)
    assert ranking["family"].tolist() == ["svm", "glm", "knn", "pam"]
    assert ranking["rank"].tolist() == [1, 2, 3, 4]


def test_compare_needs_a_model():
    with pytest.raises(ConfigurationError):
        compare_models({})


def test_variable_importance_scaled(selection, feature_set):
    imp = variable_importance(selection.fitted["glm"], feature_set.X_train, feature_set.y_train)
    assert set(imp["feature"]) == set(feature_set.X_train.columns)
    assert imp["importance"].between(0, 100).all()
    assert imp["importance"].iloc[0] == pytest.approx(100.0)
    assert imp["importance"].is_monotonic_decreasing
