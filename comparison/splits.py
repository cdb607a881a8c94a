# Stratified train/test split and stratified k-fold construction
# Splits and folds are derived once per run from the configured seed

from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.model_selection import StratifiedKFold

from .errors import DataQualityError, InsufficientDataError


@dataclass(frozen=True)
class Split:
    """Disjoint, covering train/test partition of a dataset."""
    train: pd.DataFrame
    test: pd.DataFrame
    train_proportion: float
    strata_field: str


@dataclass(frozen=True)
class Fold:
    """
    One cross-validation fold over the training split.

    train_index / validation_index are positional indices into the
    training subset the folds were made from.
    """
    fold_id: int
    train_index: tuple
    validation_index: tuple

    def select(self, subset):
        """Return (fold_train, fold_validation) frames of subset."""
        return (
            subset.iloc[list(self.train_index)],
            subset.iloc[list(self.validation_index)],
        )


def _validate_fold(fold, n_records):
    train_set = set(fold.train_index)
    val_set = set(fold.validation_index)
    if not train_set.isdisjoint(val_set):
        overlap = train_set.intersection(val_set)
        raise ValueError(f"CV LEAK: Fold {fold.fold_id} train/validation overlap! {len(overlap)} shared indices")
    if len(train_set) + len(val_set) != n_records:
        raise ValueError(f"Fold {fold.fold_id} does not cover the training subset")


class DatasetSplitter:
    """Stratified splitting with an explicit seed."""

    def __init__(self, seed):
        self.seed = seed

    def split(self, dataset, train_proportion, strata_field):
        """
        Stratified train/test partition.

        Each label group is shuffled and cut independently at
        round(n_class * train_proportion), then the groups are concatenated,
        so per-class proportions match within one record.
        """
        if strata_field not in dataset.columns:
            raise DataQualityError(f"Strata field '{strata_field}' not found. Available: {list(dataset.columns)}")
        if not 0 < train_proportion < 1:
            raise DataQualityError(f"train_proportion must be in (0, 1), got {train_proportion}")
        if len(dataset) == 0:
            raise DataQualityError("Cannot split an empty dataset")

        rng = np.random.RandomState(self.seed)
        labels = dataset[strata_field].to_numpy()

        train_positions = []
        test_positions = []
        for cls in sorted(pd.unique(labels).tolist()):
            members = np.flatnonzero(labels == cls)
            members = members[rng.permutation(len(members))]
            n_train = int(np.floor(len(members) * train_proportion + 0.5))
            train_positions.append(members[:n_train])
            test_positions.append(members[n_train:])

        # Keep the original record order inside each subset
        train_positions = np.sort(np.concatenate(train_positions))
        test_positions = np.sort(np.concatenate(test_positions))

        return Split(
            train=dataset.iloc[train_positions],
            test=dataset.iloc[test_positions],
            train_proportion=train_proportion,
            strata_field=strata_field,
        )

    def make_folds(self, train_subset, k, strata_field):
        """
        k stratified folds over train_subset.

        Raises:
            InsufficientDataError if any label class has fewer than k records
        """
        if k < 2:
            raise DataQualityError(f"Fold count must be >= 2, got {k}")
        if strata_field not in train_subset.columns:
            raise DataQualityError(f"Strata field '{strata_field}' not found in training subset")

        labels = train_subset[strata_field]
        counts = labels.value_counts()
        rare = {cls: int(n) for cls, n in counts.items() if n < k}
        if rare:
            raise InsufficientDataError(
                f"Cannot stratify {k} folds: classes with fewer than {k} records: {rare}"
            )

        cv = StratifiedKFold(n_splits=k, shuffle=True, random_state=self.seed)
        folds = []
        for fold_id, (train_idx, val_idx) in enumerate(cv.split(np.zeros(len(labels)), labels.to_numpy())):
            fold = Fold(
                fold_id=fold_id,
                train_index=tuple(int(i) for i in train_idx),
                validation_index=tuple(int(i) for i in val_idx),
            )
            _validate_fold(fold, len(labels))
            folds.append(fold)

        return folds


def split(dataset, train_proportion, strata_field, seed):
    return DatasetSplitter(seed).split(dataset, train_proportion, strata_field)


def make_folds(train_subset, k, strata_field, seed):
    return DatasetSplitter(seed).make_folds(train_subset, k, strata_field)
