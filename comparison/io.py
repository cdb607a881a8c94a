# I/O utilities for comparison runs
# Config loading, result saving, observation persistence, run directory management

import os
import json
import hashlib
from datetime import datetime

import yaml
import numpy as np
import pandas as pd

from .evaluation import confusion_matrix_frame
from .errors import ResumeMismatchError
from .grid_search import MetricObservation, FailedObservation, params_of

OBSERVATION_COLUMNS = ['family', 'config_index', 'params', 'fold_id', 'metric', 'value']
FAILURE_COLUMNS = ['family', 'config_index', 'params', 'fold_id', 'reason']


def load_config(config_path):
    """Read a YAML config file; the document must be a mapping."""
    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Config file not found: {config_path}") from None

    if not isinstance(config, dict):
        raise ValueError(f"Config file must contain a mapping of sections: {config_path}")
    return config


def config_hash(config):
    """Key-order independent digest of a config."""
    payload = json.dumps(config, sort_keys=True, default=str)
    return hashlib.sha1(payload.encode()).hexdigest()[:10]


def _run_identity(config):
    # Everything that decides which units exist and what they score
    data = config.get('data') or {}
    return {
        'seed': config['experiment']['seed'],
        'target_column': data.get('target_column'),
        'columns_to_drop': data.get('columns_to_drop'),
        'sentinel_values': data.get('sentinel_values'),
        'split': config.get('split'),
        'cross_validation': config.get('cross_validation'),
        'preprocessing': config.get('preprocessing'),
        'models': config.get('models'),
        'metrics': (config.get('metrics') or {}).get('names'),
    }


def run_fingerprint(config):
    """
    Digest of the settings a resumed run must share with the run it continues.

    Execution settings (parallelism, batch size), output location and plot
    switches are left out: they change how a run executes, not its results.
    """
    return config_hash(_run_identity(config))


def dataset_hash(df):
    """Digest of the column names and the full table content."""
    digest = hashlib.sha1(','.join(map(str, df.columns)).encode())
    digest.update(pd.util.hash_pandas_object(df, index=False).to_numpy().tobytes())
    return digest.hexdigest()[:12]


def create_run_dir(config, output_dir=None):
    """Create runs/<name>_<timestamp>_<fingerprint> for a new comparison."""
    root = output_dir or config['experiment'].get('output_dir', 'runs')
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = os.path.join(root, f"{config['experiment']['name']}_{stamp}_{run_fingerprint(config)}")
    os.makedirs(run_dir, exist_ok=True)
    return run_dir


def check_resumable(run_dir, config, df):
    """
    Refuse to resume run_dir with different settings or a different dataset.

    Raises:
        ResumeMismatchError naming every mismatch
    """
    saved = load_config(os.path.join(run_dir, 'config.yaml'))
    saved_identity = _run_identity(saved)
    identity = _run_identity(config)

    problems = [
        f"'{key}' was {saved_identity[key]!r}, now {identity[key]!r}"
        for key in identity
        if config_hash(saved_identity[key]) != config_hash(identity[key])
    ]

    profile_path = os.path.join(run_dir, 'data_profile.json')
    if os.path.exists(profile_path):
        with open(profile_path, 'r') as f:
            profile = json.load(f)
        if profile.get('dataset_hash') != dataset_hash(df):
            problems.append("dataset content differs from the one the run was started on")

    if problems:
        raise ResumeMismatchError(
            f"Cannot resume {run_dir}:\n  - " + "\n  - ".join(problems)
        )
    return True


def save_observations(run_dir, observations, failures):
    """Write raw per-fold records; a later run can resume from them."""
    obs_rows = [
        {
            'family': o.family, 'config_index': o.config_index,
            'params': json.dumps(dict(o.params), sort_keys=True),
            'fold_id': o.fold_id, 'metric': o.metric, 'value': o.value,
        }
        for o in observations
    ]
    fail_rows = [
        {
            'family': f.family, 'config_index': f.config_index,
            'params': json.dumps(dict(f.params), sort_keys=True),
            'fold_id': f.fold_id, 'reason': f.reason,
        }
        for f in failures
    ]
    pd.DataFrame(obs_rows, columns=OBSERVATION_COLUMNS).to_csv(
        os.path.join(run_dir, 'observations.csv'), index=False)
    pd.DataFrame(fail_rows, columns=FAILURE_COLUMNS).to_csv(
        os.path.join(run_dir, 'failures.csv'), index=False)


def load_observations(run_dir):
    """
    Read observations.csv / failures.csv written by save_observations.

    Returns:
        (observations, failures); empty lists when the files are missing
    """
    observations = []
    failures = []

    obs_path = os.path.join(run_dir, 'observations.csv')
    if os.path.exists(obs_path):
        df = pd.read_csv(obs_path, float_precision='round_trip')
        for row in df.itertuples(index=False):
            observations.append(MetricObservation(
                family=row.family,
                config_index=int(row.config_index),
                params=tuple(sorted(json.loads(row.params).items())),
                fold_id=int(row.fold_id),
                metric=row.metric,
                value=float(row.value),
            ))

    fail_path = os.path.join(run_dir, 'failures.csv')
    if os.path.exists(fail_path):
        df = pd.read_csv(fail_path, keep_default_na=False)
        for row in df.itertuples(index=False):
            failures.append(FailedObservation(
                family=row.family,
                config_index=int(row.config_index),
                params=tuple(sorted(json.loads(row.params).items())),
                fold_id=int(row.fold_id),
                reason=row.reason,
            ))

    return observations, failures


def matching_records(records, family, configs=None):
    """
    Records of one family. With configs (the current search space), a record
    only matches when its params equal the configuration now at its index.
    """
    matched = []
    for record in records:
        if record.family != family:
            continue
        if configs is not None:
            if record.config_index >= len(configs):
                continue
            if record.params != params_of(configs[record.config_index]):
                continue
        matched.append(record)
    return matched


def completed_units(observations, failures, family, configs=None):
    """(config_index, fold_id) pairs of a family that already have a matching record."""
    done = {(o.config_index, o.fold_id) for o in matching_records(observations, family, configs)}
    done |= {(f.config_index, f.fold_id) for f in matching_records(failures, family, configs)}
    return done


def _json_metrics(metrics):
    # NaN is not valid JSON; a missing score is written as null
    return {m: (float(v) if np.isfinite(v) else None) for m, v in metrics.items()}


def save_results(run_dir, config, report, test_results=None, confusion_table=None,
                 predictions=None, run_info=None):
    """Save all comparison artifacts to run directory."""
    with open(os.path.join(run_dir, 'config.yaml'), 'w') as f:
        yaml.dump(config, f, default_flow_style=False)

    report.to_frame().to_csv(os.path.join(run_dir, 'comparison.csv'), index=False)
    report.summary_frame().to_csv(os.path.join(run_dir, 'best_per_metric.csv'), index=False)
    report.excluded_frame().to_csv(os.path.join(run_dir, 'excluded.csv'), index=False)

    held_out = {}
    for family, res in (test_results or {}).items():
        entry = {'config': res.get('config'), 'metrics': _json_metrics(res.get('metrics', {}))}
        if res.get('error'):
            entry['error'] = res['error']
        held_out[family] = entry

    results_json = {
        'experiment_name': config['experiment']['name'],
        'seed': config['experiment']['seed'],
        'target_column': config['data']['target_column'],
        'run_info': run_info or {},
        'report': report.to_dict(),
        'test_results': held_out,
    }
    with open(os.path.join(run_dir, 'report.json'), 'w') as f:
        json.dump(results_json, f, indent=2, default=str, allow_nan=False)

    if confusion_table is not None:
        confusion_matrix_frame(confusion_table).to_csv(
            os.path.join(run_dir, 'confusion_matrix.csv'), index=False)
        with open(os.path.join(run_dir, 'confusion_matrix.json'), 'w') as f:
            json.dump(confusion_table, f, indent=2, default=str)

    if predictions is not None:
        # Held-out (actual, predicted) pairs of the model behind the confusion table
        predictions.to_csv(os.path.join(run_dir, 'predictions.csv'), index=False)

    if config.get('metrics', {}).get('save_plots', False):
        _save_cv_plot(run_dir, config, report)

    print(f"Results saved to: {run_dir}")
    return run_dir


def _save_cv_plot(run_dir, config, report):
    """Fold score distribution of each family's best configuration, one panel per metric."""
    import matplotlib
    matplotlib.use('Agg')
    import matplotlib.pyplot as plt

    metrics = report.metrics
    fig, axes = plt.subplots(1, len(metrics), figsize=(5 * len(metrics), 5), squeeze=False)
    axes = axes.flatten()

    for ax, metric in zip(axes, metrics):
        best = report.best_per_family(metric)
        if not best:
            ax.set_title(f"{metric.upper()} (no ranked configurations)")
            continue
        families = list(best)
        ax.boxplot([list(best[f].values) for f in families])
        ax.set_xticks(range(1, len(families) + 1))
        ax.set_xticklabels(families, rotation=30, ha='right')
        ax.set_title(f"{metric.upper()} across folds")
        ax.set_ylabel(metric)

    plt.suptitle(f"{config['experiment']['name']} - {config['data']['target_column']}", fontsize=14)
    plt.tight_layout()
    plt.savefig(os.path.join(run_dir, 'cv_distribution.png'), dpi=150)
    plt.close()


def save_data_profile(run_dir, df, X, y, dataset_source, n_raw_rows=None):
    """Save dataset fingerprint/profile for reproducibility tracking."""
    profile = {
        'dataset_path': str(dataset_source) if dataset_source is not None else 'in_memory',
        'dataset_hash': dataset_hash(df),
        'raw_rows': int(n_raw_rows) if n_raw_rows is not None else len(df),
        'total_rows': len(df),
        'total_columns': len(df.columns),
        'feature_count': len(X.columns),
        'features_used': list(X.columns),
        'target_column': y.name,
        'class_distribution': {str(k): int(v) for k, v in y.value_counts().sort_index().items()},
        'categories_per_feature': {col: int(X[col].nunique()) for col in X.columns},
        'timestamp': datetime.now().isoformat()
    }

    with open(os.path.join(run_dir, 'data_profile.json'), 'w') as f:
        json.dump(profile, f, indent=2)

    return profile
