# Fold-level observations -> per-configuration summary statistics and ranking
# Pure functions of the observation set; recomputable at any time

from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from scipy.stats import sem

from .errors import AllFoldsFailedError
from .evaluation import METRIC_DIRECTIONS
from .models import format_config


@dataclass(frozen=True)
class AggregatedResult:
    family: str
    config_index: int
    params: tuple
    metric: str
    mean: float
    std_error: float
    n_folds: int
    partial: bool
    values: tuple = ()

    @property
    def config(self):
        return dict(self.params)

    @property
    def label(self):
        return f"{self.family}[{format_config(self.config)}]"


@dataclass(frozen=True)
class ExcludedConfiguration:
    """A configuration with no surviving folds; never ranked."""
    family: str
    config_index: int
    params: tuple
    reasons: tuple

    @property
    def config(self):
        return dict(self.params)


@dataclass
class AggregationResult:
    results: list = field(default_factory=list)
    excluded: list = field(default_factory=list)

    def for_metric(self, metric):
        return [r for r in self.results if r.metric == metric]


def standard_error(values):
    """Standard error of the mean (ddof=1); 0.0 for a single value."""
    values = np.asarray(values, dtype=float)
    if len(values) < 2:
        return 0.0
    return float(sem(values, ddof=1))


class MetricAggregator:
    """Reduces MetricObservations to AggregatedResults."""

    def aggregate(self, observations, failures=(), n_folds=None, search_spaces=None):
        """
        Mean and standard error per (family, configuration, metric).

        Args:
            observations: MetricObservations
            failures: FailedObservations
            n_folds: expected folds per configuration; fewer successes -> partial
            search_spaces: optional {family: [config, ...]}; configurations with
                no observations and no failures are reported as excluded
                (not evaluated)

        Returns:
            AggregationResult with results ordered by family appearance,
            config_index, then metric appearance
        """
        observations = list(observations)
        failures = list(failures)

        rows = [
            {
                'family': o.family, 'config_index': o.config_index, 'params': o.params,
                'fold_id': o.fold_id, 'metric': o.metric, 'value': o.value,
            }
            for o in observations
        ]
        df = pd.DataFrame(rows, columns=['family', 'config_index', 'params', 'fold_id', 'metric', 'value'])

        family_order = {}
        metric_order = {}
        for o in observations:
            family_order.setdefault(o.family, len(family_order))
            metric_order.setdefault(o.metric, len(metric_order))
        for f in failures:
            family_order.setdefault(f.family, len(family_order))

        failures_by_config = {}
        for f in failures:
            failures_by_config.setdefault((f.family, f.config_index), []).append(f)

        output = AggregationResult()
        seen = set()

        for (family, config_index, metric), group in df.groupby(['family', 'config_index', 'metric'], sort=False):
            group = group.sort_values('fold_id')
            values = group['value'].to_numpy(dtype=float)
            n = len(values)
            expected = n_folds if n_folds is not None else n + len(failures_by_config.get((family, config_index), []))
            output.results.append(AggregatedResult(
                family=family,
                config_index=int(config_index),
                params=group['params'].iloc[0],
                metric=metric,
                mean=float(np.mean(values)),
                std_error=standard_error(values),
                n_folds=n,
                partial=n < expected,
                values=tuple(float(v) for v in values),
            ))
            seen.add((family, int(config_index)))

        for (family, config_index), failed in failures_by_config.items():
            if (family, config_index) in seen:
                continue
            failed = sorted(failed, key=lambda f: f.fold_id)
            output.excluded.append(ExcludedConfiguration(
                family=family,
                config_index=config_index,
                params=failed[0].params,
                reasons=tuple(f"fold {f.fold_id}: {f.reason}" for f in failed),
            ))

        for family, configs in (search_spaces or {}).items():
            family_order.setdefault(family, len(family_order))
            for config_index, config in enumerate(configs):
                key = (family, config_index)
                if key in seen or key in failures_by_config:
                    continue
                output.excluded.append(ExcludedConfiguration(
                    family=family,
                    config_index=config_index,
                    params=tuple(sorted(config.items())),
                    reasons=('not evaluated',),
                ))

        output.results.sort(key=lambda r: (family_order[r.family], r.config_index, metric_order[r.metric]))
        output.excluded.sort(key=lambda e: (family_order[e.family], e.config_index))
        return output

    def rank(self, aggregated, metric, direction=None):
        """
        Order configurations best-to-worst for one metric.

        Mean descending ("max") or ascending ("min"); ties go to the lower
        standard error, then to the earlier family and configuration.
        Partial results are ranked; excluded configurations never appear.
        """
        if isinstance(aggregated, AggregationResult):
            aggregated = aggregated.results
        direction = direction or METRIC_DIRECTIONS.get(metric, 'max')
        if direction not in ('max', 'min'):
            raise ValueError(f"direction must be 'max' or 'min', got {direction!r}")

        candidates = [r for r in aggregated if r.metric == metric]
        family_order = {}
        for r in candidates:
            family_order.setdefault(r.family, len(family_order))

        sign = -1.0 if direction == 'max' else 1.0
        return sorted(
            candidates,
            key=lambda r: (sign * r.mean, r.std_error, family_order[r.family], r.config_index),
        )

    def require_ranked(self, aggregated, family, config_index=None):
        """
        Return the AggregatedResults of one configuration, or of every
        configuration of the family when config_index is None.

        Raises:
            AllFoldsFailedError if nothing asked for has a surviving fold
        """
        if isinstance(aggregated, AggregationResult):
            aggregated = aggregated.results
        found = [
            r for r in aggregated
            if r.family == family and (config_index is None or r.config_index == config_index)
        ]
        if not found:
            target = f"{family} config #{config_index}" if config_index is not None else f"every {family} configuration"
            raise AllFoldsFailedError(f"{target} has no successful folds")
        return found


def aggregate(observations, failures=(), n_folds=None, search_spaces=None):
    return MetricAggregator().aggregate(observations, failures, n_folds, search_spaces)


def rank(aggregated, metric, direction=None):
    return MetricAggregator().rank(aggregated, metric, direction)
