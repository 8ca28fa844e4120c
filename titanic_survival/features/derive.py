"""
Per-passenger feature derivation: title, family-size bucket, cabin deck,
ticket type and a Box-Cox normalised fare.

Only the fare transform is fitted; its lambda is learned once on the
derivation corpus and reused unchanged for any later frame.
"""
import logging
import re
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy import special, stats
from sklearn.base import BaseEstimator, TransformerMixin

from titanic_survival.config import ID_COL, RAW_COLUMNS, TOP_CLASS
from titanic_survival.errors import ParseError

logger = logging.getLogger(__name__)

TITLE_PATTERN = re.compile(r",\s+([A-Za-z]+)\.")

# Known names the pattern cannot read. Keep this a lookup table, not a rule.
TITLE_OVERRIDES = {
    "Rothes, the Countess. of (Lucy Noel Martha Dyer-Edwards)": "Countess",
}

# Evaluated top to bottom, first match wins.
TITLE_BUCKETS = (
    ("Mr", frozenset({"Mr"})),
    ("Mrs", frozenset({"Mrs", "Mme"})),
    ("Miss", frozenset({"Miss", "Mlle", "Ms"})),
    ("Master", frozenset({"Master"})),
    ("Upperclass", frozenset({"Lady", "Countess", "Sir", "Don", "Dona", "Jonkheer"})),
    ("Clerical", frozenset({"Rev"})),
    ("Military", frozenset({"Capt", "Col", "Major"})),
    ("Professional", frozenset({"Dr"})),
)

DEGENERATE_DECKS = frozenset({"T"})
UNKNOWN_DECK = "unknown"
FARE_FLOOR = 1.0


def _is_missing(value):
    return value is None or (isinstance(value, float) and np.isnan(value)) or value is pd.NA


def raw_title(name):
    if _is_missing(name):
        raise ParseError("cannot extract a title from a missing name")
    m = TITLE_PATTERN.search(str(name))
    if m:
        return m.group(1)
    if name in TITLE_OVERRIDES:
        return TITLE_OVERRIDES[name]
    raise ParseError(f"no title found in name {name!r}")


def collapse_title(title):
    for bucket, members in TITLE_BUCKETS:
        if title in members:
            return bucket
    raise ParseError(f"title {title!r} is outside the known vocabulary")


def extract_title(name):
    """Collapsed title of a passenger name such as ``"Braund, Mr. Owen Harris"``."""
    return collapse_title(raw_title(name))


def bucket_family_size(sibsp, parch):
    if _is_missing(sibsp) or _is_missing(parch):
        raise ParseError("family size needs both sibling and parent counts")
    size = int(sibsp) + int(parch) + 1
    if size == 1:
        return "Single"
    if size > 4:
        return "Large"
    return "Small"


def extract_cabin_deck(cabin):
    if _is_missing(cabin):
        return None
    m = re.search(r"[A-Z]", str(cabin))
    return m.group(0) if m else None


def finalize_cabin_deck(deck, pclass):
    if deck is None or deck in DEGENERATE_DECKS or _is_missing(pclass) or int(pclass) != TOP_CLASS:
        return UNKNOWN_DECK
    return deck


def ticket_type(ticket):
    if _is_missing(ticket):
        raise ParseError("ticket code is missing")
    return "Alphanumeric" if re.search(r"[A-Za-z]", str(ticket)) else "Numeric"


def clamp_fare(fares):
    fares = pd.to_numeric(pd.Series(fares), errors="coerce")
    return fares.where(fares > 0, FARE_FLOOR).fillna(FARE_FLOOR)


@dataclass(frozen=True)
class FareTransform:
    """Box-Cox transform with a frozen lambda."""
    lmbda: float

    def apply(self, fares):
        clamped = clamp_fare(fares)
        return pd.Series(special.boxcox(clamped.to_numpy(dtype=float), self.lmbda),
                         index=clamped.index, name="FareTransformed")


def fit_fare_transform(fares):
    clamped = clamp_fare(fares).to_numpy(dtype=float)
    if np.ptp(clamped) == 0:
        # boxcox cannot fit a constant vector
        return FareTransform(lmbda=1.0)
    _, lmbda = stats.boxcox(clamped)
    logger.info("Fitted fare Box-Cox lambda=%.4f on %d fares", lmbda, len(clamped))
    return FareTransform(lmbda=float(lmbda))


class FeatureEngineer(BaseEstimator, TransformerMixin):
    """Adds Title, FamilySizeBucket, CabinDeck, TicketType and FareTransformed.

    When ``fare_transform`` is given it is used as is; otherwise one is fitted
    on the frame passed to ``fit``.
    """

    def __init__(self, fare_transform=None):
        self.fare_transform = fare_transform

    def fit(self, X, y=None):
        _check_raw(X)
        self.fare_transform_ = self.fare_transform or fit_fare_transform(X["Fare"])
        return self

    def transform(self, X):
        _check_raw(X)
        X = X.copy()
        X["Title"] = X["Name"].map(extract_title)
        X["FamilySizeBucket"] = [bucket_family_size(s, p) for s, p in zip(X["SibSp"], X["Parch"])]
        decks = X["Cabin"].map(extract_cabin_deck)
        X["CabinDeck"] = [finalize_cabin_deck(d, c) for d, c in zip(decks, X["Pclass"])]
        X["TicketType"] = X["Ticket"].map(ticket_type)
        X["FareTransformed"] = self.fare_transform_.apply(X["Fare"]).to_numpy()
        return X


def _check_raw(X):
    missing = [c for c in [ID_COL] + RAW_COLUMNS if c not in X.columns]
    if missing:
        raise ParseError(f"missing raw columns: {', '.join(missing)}")
    if X[ID_COL].duplicated().any():
        dupes = X.loc[X[ID_COL].duplicated(), ID_COL].tolist()
        raise ParseError(f"duplicate passenger ids: {dupes[:5]}")


def derive_features(frame, fare_transform=None):
    """Derive every engineered column; returns the new frame and the fare transform used."""
    fe = FeatureEngineer(fare_transform=fare_transform).fit(frame)
    out = fe.transform(frame)
    logger.info("Derived features for %d passengers", len(out))
    return out, fe.fare_transform_
