import pytest

from titanic_survival.features.pipeline import engineer_features
from titanic_survival.stages.sample import combine_partitions, make_demo_passengers


@pytest.fixture
def train_raw():
    return make_demo_passengers(100, seed=7, missing_age_rate=0.2)


@pytest.fixture
def test_raw():
    return make_demo_passengers(20, seed=8, labelled=False, start_id=101)


@pytest.fixture
def corpus(train_raw, test_raw):
    return combine_partitions(train_raw, test_raw)


@pytest.fixture
def feature_set(corpus):
    return engineer_features(corpus, rounds=2)
