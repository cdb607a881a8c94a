import pytest
from sklearn.dummy import DummyClassifier

from comparison.errors import ResourceExhaustionError
from comparison.grid_search import GridSearchExecutor, FailedObservation
from comparison.aggregation import MetricAggregator
from comparison.models import ModelFamily, build_family
from comparison.preprocessing import PreprocessingSpec
from comparison.splits import DatasetSplitter

METRICS = ["f1", "accuracy", "roc_auc"]


class HeldOutSensitiveFamily(ModelFamily):
    """Prior baseline that fails in every fold where a marked record is held out."""
    name = "held_out_sensitive"
    default_grid = {"strategy": ["prior"]}

    def __init__(self, seed, marked=(), param_grid=None, n_samples=None):
        super().__init__(seed, param_grid=param_grid, n_samples=n_samples)
        self.marked = set(marked)

    def build_estimator(self, config):
        return DummyClassifier(**config)

    def train(self, X, y, config):
        missing = self.marked - set(X.index)
        if missing:
            raise RuntimeError(f"records {sorted(missing)} held out")
        return super().train(X, y, config)


class BrokenConfigFamily(ModelFamily):
    """One configuration always works, the other never does."""
    name = "broken_config"
    default_grid = {"strategy": ["prior", "explode"]}

    def build_estimator(self, config):
        if config["strategy"] == "explode":
            raise ValueError("degenerate configuration")
        return DummyClassifier(**config)


class NoProbaFamily(BrokenConfigFamily):
    name = "no_proba"
    supports_proba = False


@pytest.fixture
def split_and_folds(tiny_crash_df):
    splitter = DatasetSplitter(seed=0)
    s = splitter.split(tiny_crash_df, 0.75, "injury_severity")
    return s, splitter


def _xy(s):
    return s.train.drop(columns=["injury_severity"]), s.train["injury_severity"]


def test_one_observation_per_config_fold_metric(split_and_folds):
    s, splitter = split_and_folds
    folds = splitter.make_folds(s.train, 3, "injury_severity")
    X, y = _xy(s)
    family = build_family("instance_based", seed=0, param_grid={"n_neighbors": [3, 5], "weights": ["uniform"], "p": [2]})

    result = GridSearchExecutor(parallelism=1, verbose=False).run(
        family, X, y, folds, PreprocessingSpec.for_family(family, 1.0, 0), METRICS)

    assert result.failures == []
    assert len(result.observations) == 2 * 3 * len(METRICS)
    assert result.n_units == 6
    assert result.n_dispatched == 6
    assert not result.aborted
    keys = {(o.config_index, o.fold_id, o.metric) for o in result.observations}
    assert len(keys) == len(result.observations)
    assert all(0.0 <= o.value <= 1.0 for o in result.observations)


def test_partial_configuration_scenario(split_and_folds):
    s, splitter = split_and_folds
    folds = splitter.make_folds(s.train, 10, "injury_severity")
    X, y = _xy(s)

    # One marked record from the validation set of folds 0 and 1
    marked = [s.train.index[folds[0].validation_index[0]], s.train.index[folds[1].validation_index[0]]]
    family = HeldOutSensitiveFamily(seed=0, marked=marked)

    result = GridSearchExecutor(parallelism=1, verbose=False).run(
        family, X, y, folds, PreprocessingSpec(seed=0), METRICS)

    assert sorted(f.fold_id for f in result.failures) == [0, 1]
    assert all(isinstance(f, FailedObservation) for f in result.failures)
    assert "held out" in result.failures[0].reason

    aggregated = MetricAggregator().aggregate(result.observations, result.failures, n_folds=10)
    for r in aggregated.results:
        assert r.partial is True
        assert r.n_folds == 8
        assert len(r.values) == 8


def test_all_folds_failed_configuration_excluded(split_and_folds):
    s, splitter = split_and_folds
    folds = splitter.make_folds(s.train, 10, "injury_severity")
    X, y = _xy(s)
    family = BrokenConfigFamily(seed=0)

    result = GridSearchExecutor(parallelism=1, verbose=False).run(
        family, X, y, folds, PreprocessingSpec(seed=0), METRICS)

    assert len(result.failures) == 10
    assert {f.config_index for f in result.failures} == {1}

    aggregator = MetricAggregator()
    aggregated = aggregator.aggregate(result.observations, result.failures, n_folds=10)
    assert [e.config_index for e in aggregated.excluded] == [1]
    for metric in METRICS:
        ranked = aggregator.rank(aggregated, metric)
        assert [r.config_index for r in ranked] == [0]


def test_abort_stops_dispatch_and_keeps_results(split_and_folds):
    s, splitter = split_and_folds
    folds = splitter.make_folds(s.train, 3, "injury_severity")
    X, y = _xy(s)
    family = build_family("probabilistic_generative", seed=0)  # 4 configs x 3 folds

    polls = []

    def should_abort():
        polls.append(1)
        return len(polls) > 2

    result = GridSearchExecutor(parallelism=1, batch_size=2, should_abort=should_abort, verbose=False).run(
        family, X, y, folds, PreprocessingSpec.for_family(family, 1.0, 0), METRICS)

    assert result.aborted
    assert result.n_dispatched == 4
    assert result.n_units == 12
    assert len(result.observations) == 4 * len(METRICS)


def test_completed_units_are_skipped(split_and_folds):
    s, splitter = split_and_folds
    folds = splitter.make_folds(s.train, 3, "injury_severity")
    X, y = _xy(s)
    family = build_family("probabilistic_generative", seed=0, param_grid={"alpha": [1.0], "bandwidth": [0.0]})

    result = GridSearchExecutor(parallelism=1, verbose=False).run(
        family, X, y, folds, PreprocessingSpec.for_family(family, 1.0, 0), METRICS,
        completed={(0, 0), (0, 2)})

    assert result.n_skipped == 2
    assert result.n_dispatched == 1
    assert {o.fold_id for o in result.observations} == {1}


def test_parallel_matches_sequential(split_and_folds):
    s, splitter = split_and_folds
    folds = splitter.make_folds(s.train, 3, "injury_severity")
    X, y = _xy(s)
    family = build_family("tree_ensemble", seed=0, param_grid={
        "n_estimators": [10], "max_features": ["sqrt"], "min_samples_leaf": [1, 3]})
    spec = PreprocessingSpec.for_family(family, 1.0, 0)

    seq = GridSearchExecutor(parallelism=1, verbose=False).run(family, X, y, folds, spec, METRICS)
    par = GridSearchExecutor(parallelism=2, verbose=False).run(family, X, y, folds, spec, METRICS)

    assert seq.observations == par.observations


def test_zero_workers_is_resource_exhaustion():
    with pytest.raises(ResourceExhaustionError):
        GridSearchExecutor(parallelism=0)


def test_proba_metric_on_family_without_proba(split_and_folds):
    s, splitter = split_and_folds
    folds = splitter.make_folds(s.train, 3, "injury_severity")
    X, y = _xy(s)
    with pytest.raises(ValueError, match="predict_proba"):
        GridSearchExecutor(parallelism=1, verbose=False).run(
            NoProbaFamily(seed=0), X, y, folds, PreprocessingSpec(seed=0), ["roc_auc"])


class InterruptedFamily(ModelFamily):
    """Prior baseline whose n-th training call is interrupted by Ctrl-C."""
    name = "interrupted"
    default_grid = {"strategy": ["prior", "most_frequent"]}

    def __init__(self, seed, interrupt_at=3, param_grid=None, n_samples=None):
        super().__init__(seed, param_grid=param_grid, n_samples=n_samples)
        self.interrupt_at = interrupt_at
        self.calls = 0

    def build_estimator(self, config):
        return DummyClassifier(**config)

    def train(self, X, y, config):
        self.calls += 1
        if self.calls == self.interrupt_at:
            raise KeyboardInterrupt
        return super().train(X, y, config)


def test_keyboard_interrupt_keeps_completed_batches(split_and_folds):
    s, splitter = split_and_folds
    folds = splitter.make_folds(s.train, 3, "injury_severity")
    X, y = _xy(s)
    family = InterruptedFamily(seed=0)  # 2 configs x 3 folds, third unit interrupted

    result = GridSearchExecutor(parallelism=1, batch_size=2, verbose=False).run(
        family, X, y, folds, PreprocessingSpec(seed=0), METRICS)

    assert result.aborted
    assert result.n_dispatched == 2
    assert result.failures == []
    assert {(o.config_index, o.fold_id) for o in result.observations} == {(0, 0), (0, 1)}
    assert len(result.observations) == 2 * len(METRICS)
