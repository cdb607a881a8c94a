# Config schema validation
# Fills defaults, folds flat options into sections, validates types and ranges

import copy

from .evaluation import SUPPORTED_METRICS
from .models import MODEL_FAMILIES

DEFAULT_SEED = 525

DEFAULT_SENTINELS = ['N/A', 'UNKNOWN', 'OTHER', '']

DEFAULT_CONFIG = {
    'experiment': {
        'name': 'severity_comparison',
        'seed': DEFAULT_SEED,
        'output_dir': 'runs',
    },
    'data': {
        'dataset_path': None,
        'target_column': 'injury_severity',
        'columns_to_drop': [],
        'sentinel_values': list(DEFAULT_SENTINELS),
    },
    'split': {
        'train_proportion': 0.75,
    },
    'cross_validation': {
        'n_splits': 10,
    },
    'preprocessing': {
        'upsample_ratio': 1.0,
    },
    'models': {
        'families': ['tree_ensemble', 'kernel_margin', 'instance_based', 'probabilistic_generative'],
        'params': {},
        'n_samples': None,
    },
    'metrics': {
        'names': list(SUPPORTED_METRICS),
        'save_plots': False,
    },
    'execution': {
        'parallelism': None,
        'batch_size': None,
    },
}

REQUIRED_KEYS = {
    'experiment': ['name', 'seed'],
    'data': ['target_column'],
    'split': ['train_proportion'],
    'cross_validation': ['n_splits'],
    'preprocessing': ['upsample_ratio'],
    'models': ['families'],
    'metrics': ['names'],
}

# Flat option name -> (section, key)
FLAT_OPTIONS = {
    'train_proportion': ('split', 'train_proportion'),
    'fold_count': ('cross_validation', 'n_splits'),
    'upsample_ratio': ('preprocessing', 'upsample_ratio'),
    'metrics': ('metrics', 'names'),
    'parallelism': ('execution', 'parallelism'),
    'seed': ('experiment', 'seed'),
}


class ConfigValidationError(Exception):
    """Raised when config validation fails."""
    pass


def resolve_config(config=None):
    """
    Merge a user config over DEFAULT_CONFIG.

    Flat options (train_proportion, fold_count, upsample_ratio, metrics,
    parallelism, seed) given at the top level are moved into their sections.
    The input dict is not modified.
    """
    config = copy.deepcopy(config or {})
    resolved = copy.deepcopy(DEFAULT_CONFIG)

    for flat_key, (section, key) in FLAT_OPTIONS.items():
        if flat_key in config and not isinstance(config[flat_key], dict):
            config.setdefault(section, {})
            if not isinstance(config[section], dict):
                config[section] = {}
            config[section][key] = config.pop(flat_key)

    for section, values in config.items():
        if isinstance(values, dict) and isinstance(resolved.get(section), dict):
            resolved[section].update(values)
        else:
            resolved[section] = values

    return resolved


def validate_config(config):
    """
    Validate a resolved comparison configuration.

    Raises:
        ConfigValidationError listing every problem found
    """
    errors = []

    for section, required_keys in REQUIRED_KEYS.items():
        if not isinstance(config.get(section), dict):
            errors.append(f"Missing required section: '{section}'")
            continue
        for key in required_keys:
            if key not in config[section]:
                errors.append(f"Missing required key: '{section}.{key}'")

    if errors:
        raise ConfigValidationError("Config validation failed:\n  - " + "\n  - ".join(errors))

    seed = config['experiment']['seed']
    if not isinstance(seed, int) or isinstance(seed, bool):
        errors.append("experiment.seed must be an integer")

    proportion = config['split']['train_proportion']
    if not isinstance(proportion, (int, float)) or not 0 < proportion < 1:
        errors.append(f"split.train_proportion must be in (0, 1), got {proportion!r}")

    n_splits = config['cross_validation']['n_splits']
    if not isinstance(n_splits, int) or isinstance(n_splits, bool):
        errors.append("cross_validation.n_splits must be an integer")
    elif n_splits < 2:
        errors.append("cross_validation.n_splits must be >= 2")

    ratio = config['preprocessing']['upsample_ratio']
    if not isinstance(ratio, (int, float)) or not 0 <= ratio <= 1:
        errors.append(f"preprocessing.upsample_ratio must be in [0, 1], got {ratio!r}")

    families = config['models']['families']
    if not families:
        errors.append("models.families must name at least one model family")
    else:
        unknown = [f for f in families if f not in MODEL_FAMILIES]
        if unknown:
            errors.append(f"Unknown model families {unknown}. Allowed: {sorted(MODEL_FAMILIES)}")

    params = config['models'].get('params') or {}
    for family, grid in params.items():
        if family not in families:
            errors.append(f"models.params.{family} given but '{family}' is not in models.families")
            continue
        if not isinstance(grid, dict):
            errors.append(f"models.params.{family} must be a mapping of parameter -> list of values")
            continue
        for name, values in grid.items():
            if not isinstance(values, list) or not values:
                errors.append(f"models.params.{family}.{name} must be a non-empty list")

    n_samples = config['models'].get('n_samples')
    if n_samples is not None and (not isinstance(n_samples, int) or n_samples < 1):
        errors.append("models.n_samples must be a positive integer or null")

    metrics = config['metrics']['names']
    if not metrics:
        errors.append("metrics.names must list at least one metric")
    else:
        unknown = [m for m in metrics if m not in SUPPORTED_METRICS]
        if unknown:
            errors.append(f"Unknown metrics {unknown}. Allowed: {list(SUPPORTED_METRICS)}")
        if len(set(metrics)) != len(metrics):
            errors.append("metrics.names contains duplicates")

    execution = config.get('execution') or {}
    parallelism = execution.get('parallelism')
    if parallelism is not None and (not isinstance(parallelism, int) or parallelism < 1):
        errors.append("execution.parallelism must be a positive integer or null")
    batch_size = execution.get('batch_size')
    if batch_size is not None and (not isinstance(batch_size, int) or batch_size < 1):
        errors.append("execution.batch_size must be a positive integer or null")

    if errors:
        raise ConfigValidationError("Config validation failed:\n  - " + "\n  - ".join(errors))

    return True
