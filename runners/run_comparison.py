# Model-family comparison runner
# Splits once, grid-searches every family on the same folds, reports and saves

import argparse
import signal
import sys
import os
import threading

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from comparison.config_schema import resolve_config, validate_config, ConfigValidationError
from comparison.errors import AllFoldsFailedError
from comparison.io import (
    load_config, save_results, create_run_dir, save_data_profile, check_resumable,
    save_observations, load_observations, matching_records, completed_units
)
from comparison.data import load_dataset, clean_dataset, preprocess_data, validate_data_integrity
from comparison.splits import DatasetSplitter
from comparison.preprocessing import PreprocessingSpec, class_distribution
from comparison.models import build_family, format_config, get_family_info
from comparison.grid_search import GridSearchExecutor
from comparison.aggregation import MetricAggregator
from comparison.report import ComparisonReport
from comparison.evaluation import evaluate_on_test


def compare_model_families(df, config, previous_observations=(), previous_failures=(),
                           should_abort=None, verbose=True):
    """
    Run every configured model family against the same split and folds.

    Args:
        df: cleaned dataset (features + target column)
        config: resolved and validated config
        previous_observations / previous_failures: records of an earlier run;
            their units are not re-evaluated
        should_abort: optional zero-argument callable polled between batches

    Returns:
        dict with split, folds, report, observations, failures,
        test_results, confusion_table, predictions, aborted
    """
    seed = config['experiment']['seed']
    target = config['data']['target_column']
    metrics = list(config['metrics']['names'])
    primary_metric = metrics[0]
    models_cfg = config['models']
    execution = config.get('execution') or {}

    splitter = DatasetSplitter(seed)
    split = splitter.split(df, config['split']['train_proportion'], target)
    folds = splitter.make_folds(split.train, config['cross_validation']['n_splits'], target)

    if verbose:
        print(f"\nTrain: {len(split.train)} records {class_distribution(split.train[target])}")
        print(f"Test:  {len(split.test)} records {class_distribution(split.test[target])}")
        print(f"Folds: {len(folds)}")

    X_train = split.train.drop(columns=[target])
    y_train = split.train[target]

    executor = GridSearchExecutor(
        parallelism=execution.get('parallelism'),
        seed=seed,
        batch_size=execution.get('batch_size'),
        should_abort=should_abort,
        verbose=verbose,
    )
    aggregator = MetricAggregator()

    per_family = {}
    families = {}
    specs = {}
    all_observations = []
    all_failures = []
    aborted = False

    for name in models_cfg['families']:
        family = build_family(
            name, seed,
            param_grid=(models_cfg.get('params') or {}).get(name),
            n_samples=models_cfg.get('n_samples'),
        )
        spec = PreprocessingSpec.for_family(family, config['preprocessing']['upsample_ratio'], seed)
        families[name] = family
        specs[name] = spec

        configs = family.search_space()
        family_obs = matching_records(previous_observations, name, configs)
        family_fail = matching_records(previous_failures, name, configs)
        stale = sum(1 for r in list(previous_observations) + list(previous_failures) if r.family == name)
        stale -= len(family_obs) + len(family_fail)
        if stale and verbose:
            print(f"\n[{name}] Ignoring {stale} earlier records that do not match the current search space")

        if verbose:
            info = get_family_info(name)
            encoding = 'indicator columns' if info['needs_encoding'] else 'native category codes'
            print(f"\n[{name}] {encoding}, {info['preprocessing_order']}, "
                  f"hyperparameters: {', '.join(sorted(family.param_grid))}")

        if aborted:
            if verbose:
                print(f"\n[{name}] Skipped: run aborted")
        else:
            done = completed_units(family_obs, family_fail, name, configs)
            result = executor.run(family, X_train, y_train, folds, spec, metrics, completed=done)
            family_obs += result.observations
            family_fail += result.failures
            aborted = result.aborted

        all_observations += family_obs
        all_failures += family_fail
        per_family[name] = aggregator.aggregate(
            family_obs, family_fail, n_folds=len(folds),
            search_spaces={name: configs},
        )

    report = ComparisonReport.build(per_family, metrics)

    test_results = {}
    confusion_table = None
    predictions = None
    if not aborted:
        best_per_family = report.best_per_family(primary_metric)
        for name in models_cfg['families']:
            try:
                aggregator.require_ranked(report.results, name)
            except AllFoldsFailedError as exc:
                test_results[name] = {'family': name, 'config': None, 'metrics': {}, 'error': str(exc)}
                continue

            best = best_per_family[name]
            try:
                test_results[name] = evaluate_on_test(
                    families[name], best.config, split, specs[name], metrics, target
                )
            except Exception as exc:
                test_results[name] = {
                    'family': name, 'config': best.config, 'metrics': {},
                    'error': f"held-out refit failed: {type(exc).__name__}: {exc}",
                }

            if verbose and test_results[name]['error']:
                print(f"[{name}] Held-out evaluation: {test_results[name]['error']}")

        best_overall = report.best_per_metric()[primary_metric]
        if best_overall is not None:
            chosen = test_results[best_overall.family]
            confusion_table = chosen.get('confusion_matrix')
            predictions = chosen.get('predictions')

    return {
        'split': split,
        'folds': folds,
        'report': report,
        'observations': all_observations,
        'failures': all_failures,
        'test_results': test_results,
        'confusion_table': confusion_table,
        'predictions': predictions,
        'aborted': aborted,
    }


def _print_summary(report, test_results):
    print("\n" + "=" * 60)
    print("BEST CONFIGURATION PER METRIC (cross-validation)")
    print("=" * 60)
    for metric, best in report.best_per_metric().items():
        if best is None:
            print(f"{metric:10s} | no ranked configurations")
            continue
        flag = " (partial)" if best.partial else ""
        print(f"{metric:10s} | {best.family:25s} | {best.mean:.4f} ± {best.std_error:.4f}{flag}")
        print(f"{'':10s} | {format_config(best.config)}")

    if report.excluded:
        print(f"\nExcluded configurations: {len(report.excluded)}")
        for e in report.excluded:
            print(f"  {e.family} #{e.config_index} [{format_config(e.config)}]: {e.reasons[0]}")

    if test_results:
        print("\n" + "=" * 60)
        print("HELD-OUT TEST SPLIT (best configuration per family)")
        print("=" * 60)
        for family, res in test_results.items():
            scores = " | ".join(f"{m}: {v:.4f}" for m, v in res['metrics'].items())
            print(f"{family:25s} | {scores}")
            if res['error']:
                print(f"{'':25s} | ERROR: {res['error']}")


def run_comparison(config_path=None, dataset_path=None, output_dir=None, config=None,
                   parallelism=None, resume_dir=None, should_abort=None):
    """
    Run a full model-family comparison.

    Args:
        config_path: Path to YAML config file
        dataset_path: Optional CSV path or DataFrame (overrides config)
        output_dir: Optional output directory (overrides config)
        config: config dict, used when config_path is None
        parallelism: Optional worker count (overrides config)
        resume_dir: earlier run directory; its recorded units are skipped
            and its artifacts are overwritten
        should_abort: optional zero-argument callable polled between batches

    Returns:
        run_dir: Path to comparison output directory
    """
    raw_config = load_config(config_path) if config_path else (config or {})
    config = resolve_config(raw_config)

    if output_dir:
        config['experiment']['output_dir'] = output_dir
    if parallelism is not None:
        config['execution']['parallelism'] = parallelism

    try:
        validate_config(config)
    except ConfigValidationError as e:
        print(f"\nCONFIG ERROR:\n{e}")
        raise

    seed = config['experiment']['seed']
    target = config['data']['target_column']

    print("=" * 60)
    print("MODEL FAMILY COMPARISON")
    print("=" * 60)
    print(f"Experiment: {config['experiment']['name']}")
    print(f"Target: {target}")
    print(f"Seed: {seed}")
    print(f"Families: {config['models']['families']}")
    print(f"Metrics: {config['metrics']['names']}")
    print("=" * 60)

    df_raw, source = load_dataset(config, dataset_path)
    df = clean_dataset(df_raw, config)

    X, y = preprocess_data(df, config)
    validate_data_integrity(X, y, config)

    print(f"\nDataset shape: {X.shape} ({len(df_raw)} raw records)")
    print(f"Class distribution: {class_distribution(y)}")

    previous_observations, previous_failures = [], []
    if resume_dir:
        check_resumable(resume_dir, config, df)
        previous_observations, previous_failures = load_observations(resume_dir)
        print(f"Resuming from {resume_dir}: {len(previous_observations)} observations, "
              f"{len(previous_failures)} failures already recorded")

    outcome = compare_model_families(
        df, config,
        previous_observations=previous_observations,
        previous_failures=previous_failures,
        should_abort=should_abort,
    )

    _print_summary(outcome['report'], outcome['test_results'])

    run_dir = resume_dir or create_run_dir(config)
    save_data_profile(run_dir, df, X, y, source, n_raw_rows=len(df_raw))
    save_observations(run_dir, outcome['observations'], outcome['failures'])
    save_results(
        run_dir, config, outcome['report'],
        test_results=outcome['test_results'],
        confusion_table=outcome['confusion_table'],
        predictions=outcome['predictions'],
        run_info={
            'aborted': outcome['aborted'],
            'n_folds': len(outcome['folds']),
            'train_records': len(outcome['split'].train),
            'test_records': len(outcome['split'].test),
            'n_observations': len(outcome['observations']),
            'n_failures': len(outcome['failures']),
            'families': {name: get_family_info(name) for name in config['models']['families']},
        },
    )

    print("\n" + "=" * 60)
    if outcome['aborted']:
        print(f"Comparison aborted; partial results kept. Resume with --resume {run_dir}")
    else:
        print("Comparison complete!")
    print("=" * 60)

    return run_dir


def main():
    parser = argparse.ArgumentParser(
        description='Cross-validate and compare classification model families'
    )
    parser.add_argument('--config', '-c', type=str, default='configs/comparison.yaml',
                        help='Path to config YAML file')
    parser.add_argument('--dataset', '-d', type=str, default=None,
                        help='Path to dataset CSV (overrides config)')
    parser.add_argument('--output-dir', '-o', type=str, default=None,
                        help='Output directory for runs (overrides config)')
    parser.add_argument('--parallelism', '-j', type=int, default=None,
                        help='Worker count (default: physical cores)')
    parser.add_argument('--resume', type=str, default=None,
                        help='Run directory of an interrupted comparison to resume')
    args = parser.parse_args()

    # First Ctrl-C stops dispatching new work; running units finish and are saved
    abort_requested = threading.Event()

    def _request_abort(signum, frame):
        if abort_requested.is_set():
            raise KeyboardInterrupt
        print("\nAbort requested: finishing dispatched work (Ctrl-C again to force)")
        abort_requested.set()

    signal.signal(signal.SIGINT, _request_abort)

    run_comparison(
        args.config, args.dataset,
        output_dir=args.output_dir,
        parallelism=args.parallelism,
        resume_dir=args.resume,
        should_abort=abort_requested.is_set,
    )


if __name__ == "__main__":
    main()
