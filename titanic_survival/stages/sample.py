import logging
import os

import numpy as np
import pandas as pd

from titanic_survival.config import ID_COL, PARTITION_COL, RAW_DIR, SEED, TARGET, TEST_TAG, TRAIN_TAG
from titanic_survival.errors import ParseError

logger = logging.getLogger(__name__)

LAST_NAMES = ["Smith", "Johnson", "Brown", "Taylor", "Williams", "Davies", "Miller", "Wilson", "Moore", "Clark"]
FIRST_NAMES = ["John", "James", "William", "Charles", "George", "Henry", "Arthur", "Albert", "Edward", "Robert",
               "Mary", "Anna", "Elizabeth", "Margaret", "Florence", "Ethel"]


def make_demo_passengers(n=800, seed=SEED, missing_age_rate=0.2, labelled=True, start_id=1):
    """Synthetic passengers with the raw schema, for demos and tests."""
    rng=np.random.default_rng(seed); pid=np.arange(start_id, start_id+n)
    pclass=rng.choice([1,2,3], n, p=[0.24,0.20,0.56])
    sex=rng.choice(["male","female"], n, p=[0.65,0.35])
    titles=np.where(sex=="female", rng.choice(["Mrs","Miss"], n, p=[0.55,0.45]),
                    rng.choice(["Mr","Master","Dr"], n, p=[0.88,0.10,0.02]))
    last=rng.choice(LAST_NAMES, n); first=rng.choice(FIRST_NAMES, n)
    name=[f"{l}, {t}. {f}" for l,t,f in zip(last,titles,first)]
    age=np.where(titles=="Master", rng.normal(6,3,n), rng.normal(32,13,n)).clip(0.5,80).round(1)
    age[rng.random(n)<missing_age_rate]=np.nan
    sibsp=rng.poisson(0.5,n).clip(0,8); parch=rng.poisson(0.4,n).clip(0,6)
    fare=np.round(np.exp(rng.normal(3.0,0.8,n)+0.6*(pclass==1))-5,2); fare[fare<0]=0.0
    embarked=rng.choice(["S","C","Q"], n, p=[0.72,0.18,0.10])
    deck=rng.choice(list("ABCDE")+["T"], n, p=[0.18,0.25,0.25,0.16,0.14,0.02])
    has_cabin=rng.random(n)<np.where(pclass==1,0.8,0.1)
    cabin=np.array([f"{d}{rng.integers(1,130)}" if h else None for d,h in zip(deck,has_cabin)], dtype=object)
    prefix=rng.choice(["","","","A/5 ","PC ","STON/O2. "], n)
    ticket=np.array([f"{p}{t}" for p,t in zip(prefix,rng.integers(10000,999999,n))], dtype=object)
    df=pd.DataFrame({ID_COL:pid,"Pclass":pclass,"Name":name,"Sex":sex,"Age":age,"SibSp":sibsp,"Parch":parch,
                     "Ticket":ticket,"Fare":fare,"Cabin":cabin,"Embarked":embarked})
    if labelled:
        prob=np.where(sex=="female",0.74,0.19) + 0.15*(pclass==1) - 0.10*(pclass==3)
        prob += np.where(~np.isnan(age)&(age<12),0.25,0.0); prob=np.clip(prob,0.02,0.98)
        df.insert(1, TARGET, rng.binomial(1,prob).astype(int))
    return df


def combine_partitions(train, test):
    """Row-bind labelled and unlabelled rows under a partition tag."""
    train = train.copy()
    test = test.copy()
    train[PARTITION_COL] = TRAIN_TAG
    test[PARTITION_COL] = TEST_TAG
    test[TARGET] = np.nan
    corpus = pd.concat([train, test], ignore_index=True)
    if corpus[ID_COL].duplicated().any():
        raise ParseError(f"{ID_COL} is not unique across train and test")
    return corpus


def load_data(raw_dir=RAW_DIR, seed=SEED):
    """Partition-tagged corpus from ``raw_dir`` or, when absent, a synthetic one."""
    train_fn, test_fn = os.path.join(raw_dir, "train.csv"), os.path.join(raw_dir, "test.csv")
    if os.path.exists(train_fn) and os.path.exists(test_fn):
        return combine_partitions(pd.read_csv(train_fn), pd.read_csv(test_fn)), False
    logger.info("No raw data under %s, generating demo passengers", raw_dir)
    train = make_demo_passengers(800, seed=seed)
    test = make_demo_passengers(200, seed=seed + 1, labelled=False, start_id=801)
    return combine_partitions(train, test), True
