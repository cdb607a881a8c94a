# Grid search over (configuration x fold) units in a scoped joblib worker pool
# Units share no state; each returns its observations or a failure record

import signal
from contextlib import ExitStack
from dataclasses import dataclass, field

import numpy as np
from joblib import Parallel, delayed, cpu_count, parallel_config

from .errors import FoldExecutionError, ResourceExhaustionError
from .evaluation import fit_and_score, needs_proba


@dataclass(frozen=True)
class MetricObservation:
    """One metric value for one (configuration, fold) unit."""
    family: str
    config_index: int
    params: tuple
    fold_id: int
    metric: str
    value: float

    @property
    def config(self):
        return dict(self.params)


@dataclass(frozen=True)
class FailedObservation:
    """A (configuration, fold) unit that raised instead of producing metrics."""
    family: str
    config_index: int
    params: tuple
    fold_id: int
    reason: str

    @property
    def config(self):
        return dict(self.params)


@dataclass
class GridSearchResult:
    family: str
    configs: list
    metrics: list
    n_folds: int
    observations: list = field(default_factory=list)
    failures: list = field(default_factory=list)
    n_units: int = 0
    n_dispatched: int = 0
    n_skipped: int = 0
    aborted: bool = False


def default_parallelism():
    """Physical core count."""
    return max(1, cpu_count(only_physical_cores=True))


def params_of(config):
    return tuple(sorted(config.items()))


def _ignore_interrupts():
    # Worker initializer: Ctrl-C reaches the whole process group, only the
    # parent decides whether to stop
    signal.signal(signal.SIGINT, signal.SIG_IGN)


def _evaluate_unit(family, config_index, config, fold, X, y, spec, metrics):
    """Evaluate one configuration on one fold. Never raises."""
    params = params_of(config)
    try:
        X_train, X_val = fold.select(X)
        y_train = y.iloc[list(fold.train_index)]
        y_val = y.iloc[list(fold.validation_index)]

        scores, _, _ = fit_and_score(
            family, config, X_train, y_train, X_val, y_val, spec, metrics, fold_id=fold.fold_id
        )

        bad = [m for m, v in scores.items() if not np.isfinite(v)]
        if bad:
            raise ValueError(f"non-finite metric values: {bad}")

        return [
            MetricObservation(family.name, config_index, params, fold.fold_id, metric, scores[metric])
            for metric in metrics
        ], None
    except Exception as exc:
        error = FoldExecutionError(family.name, config_index, fold.fold_id, exc)
        return [], FailedObservation(family.name, config_index, params, fold.fold_id, str(error))


class GridSearchExecutor:
    """
    Runs every (configuration, fold) unit of a model family.

    One worker pool per run() call, released on every exit path. Units are
    dispatched in batches; should_abort (a zero-argument callable) is polled
    before each batch and stops further dispatch while keeping the results
    already collected.
    """

    def __init__(self, parallelism=None, seed=0, batch_size=None, should_abort=None, verbose=True):
        if parallelism is None:
            parallelism = default_parallelism()
        if not isinstance(parallelism, int) or parallelism < 1:
            raise ResourceExhaustionError(f"Worker pool needs at least one worker, got parallelism={parallelism!r}")

        self.parallelism = parallelism
        self.seed = seed
        self.batch_size = batch_size or 2 * parallelism
        self.should_abort = should_abort
        self.verbose = verbose

    def _log(self, msg):
        if self.verbose:
            print(msg)

    def _open_pool(self, stack):
        try:
            stack.enter_context(parallel_config(backend='loky', initializer=_ignore_interrupts))
            return stack.enter_context(Parallel(n_jobs=self.parallelism))
        except (OSError, RuntimeError, ValueError) as exc:
            raise ResourceExhaustionError(
                f"Could not start a pool of {self.parallelism} workers: {exc}"
            ) from exc

    def run(self, family, X, y, folds, preprocessing_spec, metrics, completed=None):
        """
        Evaluate the family's search space on every fold.

        Args:
            family: ModelFamily
            X, y: training split features and labels (fold indices are positional)
            folds: list of Fold
            preprocessing_spec: PreprocessingSpec fitted per fold inside each unit
            metrics: metric names
            completed: optional set of (config_index, fold_id) to skip

        Returns:
            GridSearchResult
        """
        metrics = list(metrics)
        if needs_proba(metrics) and not family.supports_proba:
            raise ValueError(f"{family.name} has no predict_proba; cannot compute {metrics}")

        configs = family.search_space()
        completed = set(completed or ())

        units = []
        n_skipped = 0
        for config_index, config in enumerate(configs):
            for fold in folds:
                if (config_index, fold.fold_id) in completed:
                    n_skipped += 1
                    continue
                units.append((config_index, config, fold))

        result = GridSearchResult(
            family=family.name,
            configs=configs,
            metrics=metrics,
            n_folds=len(folds),
            n_units=len(units) + n_skipped,
            n_skipped=n_skipped,
        )

        self._log(f"\n[{family.name}] {len(configs)} configurations x {len(folds)} folds "
                  f"= {result.n_units} units ({n_skipped} already done), {self.parallelism} workers")

        with ExitStack() as stack:
            parallel = self._open_pool(stack)

            for start in range(0, len(units), self.batch_size):
                if self.should_abort is not None and self.should_abort():
                    result.aborted = True
                    self._log(f"[{family.name}] Abort requested: {len(units) - start} units not dispatched")
                    break

                batch = units[start:start + self.batch_size]
                try:
                    outputs = parallel(
                        delayed(_evaluate_unit)(family, ci, config, fold, X, y, preprocessing_spec, metrics)
                        for ci, config, fold in batch
                    )
                except KeyboardInterrupt:
                    result.aborted = True
                    self._log(f"[{family.name}] Interrupted: batch of {len(batch)} units dropped, "
                              f"{len(units) - start - len(batch)} units not dispatched")
                    break
                result.n_dispatched += len(batch)

                for observations, failure in outputs:
                    result.observations.extend(observations)
                    if failure is not None:
                        result.failures.append(failure)

                self._log(f"  [{family.name}] {result.n_dispatched}/{len(units)} units done, "
                          f"{len(result.failures)} failed")

        metric_order = {m: i for i, m in enumerate(metrics)}
        result.observations.sort(key=lambda o: (o.config_index, o.fold_id, metric_order[o.metric]))
        result.failures.sort(key=lambda f: (f.config_index, f.fold_id))

        for failure in result.failures:
            self._log(f"  FAILED: {failure.reason}")

        return result
