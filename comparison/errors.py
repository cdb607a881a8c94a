# Error taxonomy for comparison runs
# Data problems are fatal before training; fold problems are recorded, not raised


class ComparisonError(Exception):
    """Base class for all harness errors."""
    pass


class DataQualityError(ComparisonError, ValueError):
    """Raised when the dataset cannot be used (schema, missing values, rare classes)."""
    pass


class InsufficientDataError(DataQualityError):
    """Raised when a label class has too few records to stratify across folds."""
    pass


class FoldExecutionError(ComparisonError):
    """Failure inside a single (configuration, fold) unit."""

    def __init__(self, family, config_index, fold_id, cause):
        self.family = family
        self.config_index = config_index
        self.fold_id = fold_id
        self.cause = cause
        super().__init__(
            f"{family} config #{config_index} fold {fold_id}: "
            f"{type(cause).__name__}: {cause}"
        )


class AllFoldsFailedError(ComparisonError):
    """Raised when a configuration has no surviving folds to aggregate."""
    pass


class ResourceExhaustionError(ComparisonError):
    """Raised when the worker pool cannot be provisioned."""
    pass


class ResumeMismatchError(ComparisonError):
    """Raised when a run directory was produced by different settings or data."""
    pass
