# Comparison package
# Resampling and hyperparameter-search orchestration for model-family comparison

from .errors import (
    ComparisonError,
    DataQualityError,
    InsufficientDataError,
    FoldExecutionError,
    AllFoldsFailedError,
    ResourceExhaustionError,
    ResumeMismatchError,
)
from .config_schema import validate_config, resolve_config, ConfigValidationError
from .io import (
    load_config, save_results, create_run_dir, save_data_profile, save_observations,
    load_observations, check_resumable, run_fingerprint
)
from .data import load_dataset, clean_dataset, preprocess_data, validate_data_integrity
from .splits import DatasetSplitter, Split, Fold
from .preprocessing import PreprocessingSpec, FittedPreprocessor
from .models import ModelFamily, build_family, register_family, MODEL_FAMILIES
from .grid_search import GridSearchExecutor, MetricObservation, FailedObservation
from .aggregation import MetricAggregator, AggregatedResult, ExcludedConfiguration
from .report import ComparisonReport
from .evaluation import SUPPORTED_METRICS, compute_metrics, confusion_matrix_table

__all__ = [
    'ComparisonError',
    'DataQualityError',
    'InsufficientDataError',
    'FoldExecutionError',
    'AllFoldsFailedError',
    'ResourceExhaustionError',
    'ResumeMismatchError',
    'validate_config',
    'resolve_config',
    'ConfigValidationError',
    'load_config',
    'save_results',
    'create_run_dir',
    'save_data_profile',
    'save_observations',
    'load_observations',
    'check_resumable',
    'run_fingerprint',
    'load_dataset',
    'clean_dataset',
    'preprocess_data',
    'validate_data_integrity',
    'DatasetSplitter',
    'Split',
    'Fold',
    'PreprocessingSpec',
    'FittedPreprocessor',
    'ModelFamily',
    'build_family',
    'register_family',
    'MODEL_FAMILIES',
    'GridSearchExecutor',
    'MetricObservation',
    'FailedObservation',
    'MetricAggregator',
    'AggregatedResult',
    'ExcludedConfiguration',
    'ComparisonReport',
    'SUPPORTED_METRICS',
    'compute_metrics',
    'confusion_matrix_table',
]
