# Per-fold preprocessing: categorical encoding + minority-class upsampling
# A PreprocessingSpec is immutable; fit() learns the category vocabulary from
# the training portion only and returns a FittedPreprocessor that is applied
# functionally to any subset. Upsampling is reserved for training data.

from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.preprocessing import OneHotEncoder, OrdinalEncoder
from imblearn.over_sampling import RandomOverSampler

from .errors import DataQualityError
from .models import UPSAMPLE_THEN_ENCODE, ENCODE_THEN_UPSAMPLE

UNKNOWN_CATEGORY = '__unknown__'

ALLOWED_ORDERS = (UPSAMPLE_THEN_ENCODE, ENCODE_THEN_UPSAMPLE)


def class_distribution(y):
    """Class label -> count, sorted by label."""
    return {k: int(v) for k, v in sorted(pd.Series(y).value_counts().items())}


def upsample_records(X, y, ratio=1.0, random_state=None):
    """
    Duplicate records (with replacement) until every class reaches
    ceil(ratio * majority_count).

    Classes already at or above the target keep their records unchanged.
    Original records come first, followed by the drawn duplicates, and the
    duplicates keep the index of the record they copy.

    Returns:
        (X_upsampled, y_upsampled)
    """
    y = pd.Series(np.asarray(y), index=X.index, name=getattr(y, 'name', None))
    if ratio <= 0 or len(y) == 0:
        return X, y

    counts = y.value_counts()
    target = int(np.ceil(ratio * counts.max()))
    strategy = {cls: target for cls, n in counts.items() if n < target}
    if not strategy:
        return X, y

    sampler = RandomOverSampler(sampling_strategy=strategy, random_state=random_state)
    sampler.fit_resample(X, y)
    index = sampler.sample_indices_
    return X.iloc[index], y.iloc[index]


@dataclass(frozen=True)
class PreprocessingSpec:
    """
    Declares the transforms for one model family.

    encode: True -> indicator columns (one per feature/category),
            False -> native category codes
    upsample_ratio: target fraction of the majority class count, 0 disables
    order: UPSAMPLE_THEN_ENCODE or ENCODE_THEN_UPSAMPLE
    seed: base seed for upsampling draws
    """
    encode: bool = True
    upsample_ratio: float = 1.0
    order: str = ENCODE_THEN_UPSAMPLE
    seed: int = 0

    @classmethod
    def for_family(cls, family, upsample_ratio, seed):
        return cls(
            encode=family.needs_encoding,
            upsample_ratio=upsample_ratio,
            order=family.preprocessing_order,
            seed=seed,
        )

    def fit(self, X, y=None, fold_id=0):
        """Learn the category vocabulary from the training portion."""
        if self.order not in ALLOWED_ORDERS:
            raise ValueError(f"Unknown preprocessing order '{self.order}'. Allowed: {ALLOWED_ORDERS}")
        if not 0 <= self.upsample_ratio <= 1:
            raise ValueError(f"upsample_ratio must be in [0, 1], got {self.upsample_ratio}")
        if len(X) == 0:
            raise DataQualityError("Cannot fit preprocessing on an empty training portion")

        columns = list(X.columns)
        as_text = X.astype(str)
        vocabulary = {col: sorted(as_text[col].unique().tolist()) for col in columns}
        categories = [vocabulary[col] + [UNKNOWN_CATEGORY] for col in columns]

        if self.encode:
            encoder = OneHotEncoder(categories=categories, sparse_output=False, dtype=float)
        else:
            encoder = OrdinalEncoder(categories=categories, dtype=float)
        encoder.fit(as_text)

        return FittedPreprocessor(self, columns, vocabulary, encoder, fold_id)


class FittedPreprocessor:
    """Learned statistics of a PreprocessingSpec, applied without mutating inputs."""

    def __init__(self, spec, columns, vocabulary, encoder, fold_id=0):
        self.spec = spec
        self.columns = columns
        self.vocabulary = vocabulary
        self.encoder = encoder
        self.fold_id = fold_id

    @property
    def feature_names(self):
        return list(self.encoder.get_feature_names_out(self.columns))

    def _random_state(self):
        # Distinct but reproducible stream per fold
        return np.random.RandomState((self.spec.seed * 1009 + self.fold_id + 1) % (2 ** 32))

    def transform(self, X):
        """Encode a subset. Unseen categories go to the unknown bucket."""
        missing = [c for c in self.columns if c not in X.columns]
        if missing:
            raise DataQualityError(f"Columns missing at transform time: {missing}")

        if len(X) == 0:
            return pd.DataFrame(columns=self.feature_names, dtype=float)

        as_text = X[self.columns].astype(str)
        for col in self.columns:
            known = as_text[col].isin(self.vocabulary[col])
            as_text[col] = as_text[col].where(known, UNKNOWN_CATEGORY)

        encoded = self.encoder.transform(as_text)
        return pd.DataFrame(encoded, columns=self.feature_names, index=X.index)

    def upsample(self, X, y):
        return upsample_records(X, y, self.spec.upsample_ratio, random_state=self._random_state())

    def transform_training(self, X, y):
        """Encode and upsample a training portion in the declared order."""
        if self.spec.order == UPSAMPLE_THEN_ENCODE:
            X_up, y_up = self.upsample(X, y)
            return self.transform(X_up), y_up

        X_enc = self.transform(X)
        return self.upsample(X_enc, y)
