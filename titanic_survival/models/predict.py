import numpy as np
import pandas as pd

from titanic_survival.config import ID_COL, OUTCOME_LABELS, TARGET
from titanic_survival.errors import ConfigurationError


def predict(model, X: pd.DataFrame) -> pd.Series:
    """0/1 survival labels for the treated rows in ``X``."""
    missing = [c for c in model.features if c not in X.columns]
    if missing:
        raise ConfigurationError(f"{model.name}: input lacks fitted features {missing}")
    codes = np.asarray(model.pipeline.predict(X[model.features])).astype(int)
    names = np.asarray(model.classes, dtype=object)[codes]
    return pd.Series([OUTCOME_LABELS[n] for n in names], index=X.index, name=TARGET, dtype=int)


def submission_frame(ids, labels) -> pd.DataFrame:
    """Identifier and predicted label, in that column order."""
    ids = pd.Series(ids).reset_index(drop=True)
    labels = pd.Series(labels).reset_index(drop=True).astype(int)
    if len(ids) != len(labels):
        raise ValueError(f"{len(ids)} ids but {len(labels)} labels")
    if not labels.isin([0, 1]).all():
        raise ValueError("labels must be 0 or 1")
    return pd.DataFrame({ID_COL: ids, TARGET: labels})[[ID_COL, TARGET]]
