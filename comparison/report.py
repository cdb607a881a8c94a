# Comparison report: read-only view over aggregated results of every family

import numpy as np
import pandas as pd

from .aggregation import AggregationResult, MetricAggregator
from .models import format_config


class ComparisonReport:
    """
    Aggregated results of all model families with per-metric rankings.

    Ranked results (full and partial) and excluded configurations are kept
    apart; nothing is recomputed beyond sorting and selecting.
    """

    def __init__(self, results, excluded, metrics):
        self.results = list(results)
        self.excluded = list(excluded)
        self.metrics = list(metrics)
        self._aggregator = MetricAggregator()

    @classmethod
    def build(cls, per_family_aggregates, metrics=None):
        """
        Args:
            per_family_aggregates: {family: AggregationResult} or a list of
                AggregationResult, in family evaluation order
            metrics: requested metric names (default: as observed)
        """
        if isinstance(per_family_aggregates, dict):
            per_family_aggregates = list(per_family_aggregates.values())
        elif isinstance(per_family_aggregates, AggregationResult):
            per_family_aggregates = [per_family_aggregates]

        results = []
        excluded = []
        for aggregated in per_family_aggregates:
            results.extend(aggregated.results)
            excluded.extend(aggregated.excluded)

        if metrics is None:
            metrics = []
            for r in results:
                if r.metric not in metrics:
                    metrics.append(r.metric)

        return cls(results, excluded, metrics)

    @property
    def families(self):
        order = []
        for item in self.results + self.excluded:
            if item.family not in order:
                order.append(item.family)
        return order

    def ranking(self, metric):
        return self._aggregator.rank(self.results, metric)

    def best_per_metric(self):
        """metric -> best AggregatedResult across all families (None if nothing ranked)."""
        best = {}
        for metric in self.metrics:
            ranked = self.ranking(metric)
            best[metric] = ranked[0] if ranked else None
        return best

    def best_per_family(self, metric):
        """family -> its best AggregatedResult for metric."""
        best = {}
        for result in self.ranking(metric):
            best.setdefault(result.family, result)
        return best

    def partial_results(self):
        return [r for r in self.results if r.partial]

    def to_frame(self):
        """
        One row per ranked (family, configuration); columns <metric>_mean,
        <metric>_se and <metric>_rank per metric, plus n_folds and partial.
        Rows follow the ranking of the first metric.
        """
        rows = {}
        for result in self.results:
            key = (result.family, result.config_index)
            row = rows.setdefault(key, {
                'family': result.family,
                'config_index': result.config_index,
                'config': format_config(result.config),
                'n_folds': result.n_folds,
                'partial': result.partial,
            })
            row[f'{result.metric}_mean'] = result.mean
            row[f'{result.metric}_se'] = result.std_error

        for metric in self.metrics:
            for position, result in enumerate(self.ranking(metric), start=1):
                rows[(result.family, result.config_index)][f'{metric}_rank'] = position

        columns = ['family', 'config_index', 'config']
        for metric in self.metrics:
            columns += [f'{metric}_mean', f'{metric}_se', f'{metric}_rank']
        columns += ['n_folds', 'partial']

        frame = pd.DataFrame(list(rows.values()), columns=columns)
        if self.metrics and len(frame):
            frame = frame.sort_values(f'{self.metrics[0]}_rank', kind='stable').reset_index(drop=True)
        return frame

    def summary_frame(self):
        """Best configuration per metric; a metric with nothing ranked gets an explicit marker row."""
        rows = []
        for metric, best in self.best_per_metric().items():
            if best is None:
                rows.append({
                    'metric': metric, 'family': None, 'config': 'no ranked configurations',
                    'mean': np.nan, 'std_error': np.nan, 'n_folds': 0, 'partial': False,
                })
                continue
            rows.append({
                'metric': metric,
                'family': best.family,
                'config': format_config(best.config),
                'mean': best.mean,
                'std_error': best.std_error,
                'n_folds': best.n_folds,
                'partial': best.partial,
            })
        return pd.DataFrame(rows, columns=['metric', 'family', 'config', 'mean', 'std_error', 'n_folds', 'partial'])

    def excluded_frame(self):
        rows = [
            {
                'family': e.family,
                'config_index': e.config_index,
                'config': format_config(e.config),
                'reasons': '; '.join(e.reasons),
            }
            for e in self.excluded
        ]
        return pd.DataFrame(rows, columns=['family', 'config_index', 'config', 'reasons'])

    def to_dict(self):
        def _result(r):
            if r is None:
                return None
            return {
                'family': r.family,
                'config_index': r.config_index,
                'config': r.config,
                'mean': r.mean,
                'std_error': r.std_error,
                'n_folds': r.n_folds,
                'partial': r.partial,
            }

        return {
            'metrics': self.metrics,
            'families': self.families,
            'best_per_metric': {m: _result(r) for m, r in self.best_per_metric().items()},
            'best_per_family': {
                m: {f: _result(r) for f, r in self.best_per_family(m).items()}
                for m in self.metrics
            },
            'rankings': {
                m: [_result(r) for r in self.ranking(m)]
                for m in self.metrics
            },
            'partial': [
                {'family': family, 'config_index': config_index, 'n_folds': n_folds}
                for family, config_index, n_folds in sorted(
                    {(r.family, r.config_index, r.n_folds) for r in self.partial_results()},
                    key=lambda item: (self.families.index(item[0]), item[1]),
                )
            ],
            'excluded': [
                {'family': e.family, 'config_index': e.config_index, 'config': e.config, 'reasons': list(e.reasons)}
                for e in self.excluded
            ],
        }
