import pytest
import numpy as np
import pandas as pd

from comparison.errors import DataQualityError, InsufficientDataError
from comparison.splits import DatasetSplitter, split, make_folds


def test_two_class_scenario_counts(two_class_df):
    s = split(two_class_df, 0.8, "label", seed=7)

    train_counts = s.train["label"].value_counts().to_dict()
    test_counts = s.test["label"].value_counts().to_dict()

    assert abs(train_counts["A"] - 56) <= 1
    assert abs(train_counts["B"] - 24) <= 1
    assert abs(test_counts["A"] - 14) <= 1
    assert abs(test_counts["B"] - 6) <= 1


@pytest.mark.parametrize("seed", [0, 1, 42, 525])
@pytest.mark.parametrize("proportion", [0.5, 0.75, 0.9])
def test_split_is_disjoint_covering_and_stratified(tiny_crash_df, seed, proportion):
    s = split(tiny_crash_df, proportion, "injury_severity", seed)

    train_idx = set(s.train.index)
    test_idx = set(s.test.index)
    assert train_idx.isdisjoint(test_idx)
    assert train_idx | test_idx == set(tiny_crash_df.index)

    full = tiny_crash_df["injury_severity"].value_counts()
    train = s.train["injury_severity"].value_counts()
    for cls, n in full.items():
        # Within one record of the exact share
        assert abs(train[cls] - n * proportion) <= 1


def test_split_is_deterministic(tiny_crash_df):
    a = split(tiny_crash_df, 0.75, "injury_severity", seed=3)
    b = split(tiny_crash_df, 0.75, "injury_severity", seed=3)
    assert a.train.index.tolist() == b.train.index.tolist()
    assert a.test.index.tolist() == b.test.index.tolist()


def test_split_changes_with_seed(tiny_crash_df):
    a = split(tiny_crash_df, 0.75, "injury_severity", seed=3)
    b = split(tiny_crash_df, 0.75, "injury_severity", seed=4)
    assert a.train.index.tolist() != b.train.index.tolist()


def test_split_rejects_bad_proportion(tiny_crash_df):
    with pytest.raises(DataQualityError, match="train_proportion"):
        split(tiny_crash_df, 1.0, "injury_severity", seed=0)


def test_split_rejects_missing_strata_field(tiny_crash_df):
    with pytest.raises(DataQualityError, match="not found"):
        split(tiny_crash_df, 0.75, "no_such_column", seed=0)


@pytest.mark.parametrize("k", [2, 3, 5, 10])
def test_folds_partition_training_subset(tiny_crash_df, k):
    s = split(tiny_crash_df, 0.75, "injury_severity", seed=1)
    folds = make_folds(s.train, k, "injury_severity", seed=1)

    assert len(folds) == k
    assert [f.fold_id for f in folds] == list(range(k))

    all_val = []
    for fold in folds:
        assert set(fold.train_index).isdisjoint(fold.validation_index)
        all_val.extend(fold.validation_index)

    # Every record validated exactly once, trained on in k-1 folds
    assert sorted(all_val) == list(range(len(s.train)))
    train_membership = np.zeros(len(s.train), dtype=int)
    for fold in folds:
        train_membership[list(fold.train_index)] += 1
    assert (train_membership == k - 1).all()


def test_folds_are_stratified(tiny_crash_df):
    s = split(tiny_crash_df, 0.75, "injury_severity", seed=1)
    folds = make_folds(s.train, 3, "injury_severity", seed=1)
    overall = s.train["injury_severity"].value_counts(normalize=True)

    for fold in folds:
        _, val = fold.select(s.train)
        share = val["injury_severity"].value_counts(normalize=True)
        for cls in overall.index:
            assert abs(share[cls] - overall[cls]) < 0.1


def test_folds_deterministic(tiny_crash_df):
    s = split(tiny_crash_df, 0.75, "injury_severity", seed=1)
    a = make_folds(s.train, 4, "injury_severity", seed=9)
    b = make_folds(s.train, 4, "injury_severity", seed=9)
    assert a == b


def test_rare_class_raises_insufficient_data():
    df = pd.DataFrame({
        "feature": ["x"] * 23,
        "label": ["A"] * 20 + ["B"] * 3,
    })
    with pytest.raises(InsufficientDataError, match="fewer than 5"):
        make_folds(df, 5, "label", seed=0)


def test_insufficient_data_is_a_data_quality_error():
    assert issubclass(InsufficientDataError, DataQualityError)


def test_fold_count_below_two_rejected(tiny_crash_df):
    with pytest.raises(DataQualityError, match=">= 2"):
        DatasetSplitter(0).make_folds(tiny_crash_df, 1, "injury_severity")
