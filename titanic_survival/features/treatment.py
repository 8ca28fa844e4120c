"""
Leakage-safe variable treatment.

A ``TreatmentPlan`` is fitted on labelled training rows only. Each categorical
variable becomes

* ``<var>_catB``  out-of-fold target encoding (cross frame) of the level,
* ``<var>_catP``  prevalence of the level in the training rows,
* ``<var>_lev_<level>``  indicator for every level that is not rare,

and each numeric variable becomes ``<var>_clean`` (missing -> training mean)
plus ``<var>_isBAD`` when the training rows had gaps. Every derived column
gets a significance score from a one-variable logistic likelihood-ratio test,
computed on the cross frame so that no row's own label leaks into its score.

Applying the plan never reads the outcome column and never refits anything.
Rows the plan was fitted on get their own out-of-fold ``catB`` values back;
every other row goes through the full-data encoding.
"""
import logging
import re
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.stats import chi2
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import log_loss
from sklearn.model_selection import StratifiedKFold
from sklearn.preprocessing import TargetEncoder

from titanic_survival.config import MIN_LEVEL_FRACTION, SEED, TARGET, TARGET_POSITIVE, TREATMENT_FOLDS
from titanic_survival.errors import NovelCategoryWarning, ParseError

logger = logging.getLogger(__name__)

NA_LEVEL = "NA"


@dataclass(frozen=True)
class CategoricalTreatment:
    var: str
    levels: Tuple[str, ...]
    impact: Dict[str, float]
    novel_impact: float
    prevalence: Dict[str, float]
    indicator_levels: Tuple[str, ...]

    def indicator_name(self, level):
        return f"{self.var}_lev_{re.sub(r'[^0-9A-Za-z]+', '_', level)}"


@dataclass(frozen=True)
class NumericTreatment:
    var: str
    mean: float
    flag_missing: bool


@dataclass(frozen=True, eq=False)
class TreatmentPlan:
    outcome: str
    outcome_target: object
    categorical: Tuple[CategoricalTreatment, ...]
    numeric: Tuple[NumericTreatment, ...]
    score_frame: pd.DataFrame = field(repr=False)
    cross_frame: pd.DataFrame = field(repr=False)
    # training-row keys and their levels, used to hand back out-of-fold catB values
    row_levels: pd.DataFrame = field(repr=False)
    id_col: Optional[str] = None

    @property
    def variables(self) -> List[str]:
        return self.score_frame["variable"].tolist()


def _levels(values):
    s = pd.Series(values)
    return s.astype(object).where(s.notna(), NA_LEVEL).astype(str)


def significance(x, y):
    """p-value of a single-variable logistic regression vs the intercept-only model."""
    x = np.asarray(x, dtype=float)
    sd = x.std()
    if not np.isfinite(sd) or sd == 0:
        return 1.0
    z = ((x - x.mean()) / sd).reshape(-1, 1)
    model = LogisticRegression(C=np.inf, max_iter=1000).fit(z, y)
    p_null = np.full(len(y), y.mean())
    p_fit = model.predict_proba(z)[:, 1]
    deviance_drop = 2 * len(y) * (log_loss(y, p_null, labels=[0, 1]) - log_loss(y, p_fit, labels=[0, 1]))
    return float(chi2.sf(max(deviance_drop, 0.0), df=1))


def _treat(categorical, numeric, frame, warn=True):
    cols = {}
    for t in categorical:
        if t.var not in frame.columns:
            raise ParseError(f"column {t.var!r} missing from frame")
        codes = _levels(frame[t.var]).set_axis(frame.index)
        novel = sorted(set(codes) - set(t.levels))
        if novel and warn:
            msg = f"{t.var}: unseen levels {novel} mapped to the novel-level default"
            logger.warning(msg)
            warnings.warn(msg, NovelCategoryWarning, stacklevel=3)
        cols[f"{t.var}_catB"] = codes.map(t.impact).fillna(t.novel_impact).astype(float)
        cols[f"{t.var}_catP"] = codes.map(t.prevalence).fillna(0.0).astype(float)
        for level in t.indicator_levels:
            cols[t.indicator_name(level)] = (codes == level).astype(float)
    for t in numeric:
        if t.var not in frame.columns:
            raise ParseError(f"column {t.var!r} missing from frame")
        vals = pd.to_numeric(frame[t.var], errors="coerce")
        cols[f"{t.var}_clean"] = vals.fillna(t.mean).astype(float)
        if t.flag_missing:
            cols[f"{t.var}_isBAD"] = vals.isna().astype(float)
    return pd.DataFrame(cols, index=frame.index)


def fit_treatment_plan(frame: pd.DataFrame, categorical_vars: Sequence[str], numeric_vars: Sequence[str] = (),
                       outcome: str = TARGET, outcome_target=TARGET_POSITIVE, folds: int = TREATMENT_FOLDS,
                       seed: int = SEED, min_fraction: float = MIN_LEVEL_FRACTION,
                       id_col: Optional[str] = None) -> TreatmentPlan:
    """Fit the plan on labelled training rows.

    Training rows are remembered by ``id_col`` (or by index when it is None),
    so applying the plan to them returns their out-of-fold encodings.
    """
    if outcome in categorical_vars or outcome in numeric_vars:
        raise ValueError(f"outcome {outcome!r} cannot be treated as an input variable")
    if frame[outcome].isna().any():
        raise ValueError(f"{int(frame[outcome].isna().sum())} rows have no {outcome}; fit on labelled rows only")
    y = (frame[outcome] == outcome_target).astype(int).to_numpy()
    if len(np.unique(y)) < 2:
        raise ValueError(f"{outcome} has a single class; cannot estimate level effects")

    keys = _row_keys(frame, id_col)
    if keys.has_duplicates:
        raise ValueError("training rows must have unique keys to keep their out-of-fold encodings")
    splits = list(StratifiedKFold(n_splits=folds, shuffle=True, random_state=seed).split(np.zeros(len(y)), y))

    categorical, cross = [], {}
    for var in categorical_vars:
        codes = _levels(frame[var])
        cross[f"{var}_catB"] = _out_of_fold(codes, y, splits)
        enc = TargetEncoder(target_type="binary").fit(codes.to_frame(), y)
        levels = [str(c) for c in enc.categories_[0]]
        freq = codes.value_counts(normalize=True)
        categorical.append(CategoricalTreatment(
            var=var,
            levels=tuple(levels),
            impact=dict(zip(levels, map(float, enc.encodings_[0]))),
            novel_impact=float(enc.target_mean_),
            prevalence={str(k): float(v) for k, v in freq.items()},
            indicator_levels=tuple(sorted(str(k) for k, v in freq.items() if v >= min_fraction)),
        ))
    numeric = []
    for var in numeric_vars:
        vals = pd.to_numeric(frame[var], errors="coerce")
        mean = float(vals.mean()) if vals.notna().any() else 0.0
        numeric.append(NumericTreatment(var=var, mean=mean, flag_missing=bool(vals.isna().any())))

    cross_frame = _treat(categorical, numeric, frame, warn=False)
    for col, values in cross.items():
        cross_frame[col] = values

    n = cross_frame.shape[1]
    rows = []
    for col in cross_frame.columns:
        orig, code = _origin(col, categorical_vars, numeric_vars)
        sig = significance(cross_frame[col].to_numpy(), y)
        rows.append({"variable": col, "original": orig, "code": code, "sig": sig, "recommended": sig < 1.0 / n})
    score_frame = pd.DataFrame(rows)
    logger.info("Treatment plan: %d derived variables from %d inputs, %d recommended",
                n, len(categorical_vars) + len(numeric_vars), int(score_frame["recommended"].sum()))
    row_levels = pd.DataFrame({var: _levels(frame[var]).to_numpy() for var in categorical_vars}, index=keys)
    return TreatmentPlan(outcome=outcome, outcome_target=outcome_target, categorical=tuple(categorical),
                         numeric=tuple(numeric), score_frame=score_frame, cross_frame=cross_frame,
                         row_levels=row_levels, id_col=id_col)


def _row_keys(frame, id_col):
    if id_col is not None and id_col in frame.columns:
        return pd.Index(frame[id_col].to_numpy())
    return pd.Index(frame.index)


def _out_of_fold(codes, y, splits):
    """Encode each fold with a TargetEncoder fitted on the other folds only."""
    out = np.empty(len(y), dtype=float)
    X = codes.to_frame()
    for train_idx, held_idx in splits:
        enc = TargetEncoder(target_type="binary").fit(X.iloc[train_idx], y[train_idx])
        out[held_idx] = enc.transform(X.iloc[held_idx])[:, 0]
    return out


def _restore_cross(plan, frame, out):
    """Rows the plan was fit on get back their out-of-fold catB, if their level is unchanged."""
    pos = plan.row_levels.index.get_indexer(_row_keys(frame, plan.id_col))
    hit = pos >= 0
    if not hit.any():
        return out
    for t in plan.categorical:
        col = f"{t.var}_catB"
        fitted_levels = plan.row_levels[t.var].to_numpy()[np.where(hit, pos, 0)]
        match = hit & (fitted_levels == _levels(frame[t.var]).to_numpy())
        values = out[col].to_numpy(copy=True)
        values[match] = plan.cross_frame[col].to_numpy()[pos[match]]
        out[col] = values
    return out


def _origin(col, categorical_vars, numeric_vars):
    for var in list(categorical_vars) + list(numeric_vars):
        for code in ("catB", "catP", "lev", "clean", "isBAD"):
            if col == f"{var}_{code}" or (code == "lev" and col.startswith(f"{var}_lev_")):
                return var, code
    return col, "unknown"


def select_variables(plan: TreatmentPlan, threshold: Optional[float] = None) -> List[str]:
    """Variables whose significance beats ``threshold`` (default 1/number of variables)."""
    sf = plan.score_frame
    if threshold is None:
        threshold = 1.0 / max(len(sf), 1)
    keep = sf.loc[sf["sig"] < threshold, "variable"].tolist()
    logger.info("Kept %d of %d variables at significance < %.4g", len(keep), len(sf), threshold)
    return keep


def apply_treatment_plan(plan: TreatmentPlan, frame: pd.DataFrame, keep_vars: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Treat new rows with the frozen plan. The outcome column, if present, is ignored."""
    out = _restore_cross(plan, frame, _treat(plan.categorical, plan.numeric, frame))
    if keep_vars is not None:
        unknown = [v for v in keep_vars if v not in out.columns]
        if unknown:
            raise ValueError(f"variables not produced by this plan: {unknown}")
        out = out[list(keep_vars)]
    return out
