# Data loading, cleaning and integrity checks
# Every feature column is treated as categorical (speed limit included)

import numpy as np
import pandas as pd

from .errors import DataQualityError


def load_dataset(config, dataset_path=None):
    """
    Load the dataset as an all-string table.

    dataset_path may be a CSV path or an in-memory DataFrame; it overrides
    data.dataset_path from the config.

    Returns:
        (df, source) where source is the path or 'in_memory'
    """
    source = dataset_path if dataset_path is not None else config['data'].get('dataset_path')

    if source is None:
        raise ValueError("No dataset given: set data.dataset_path or pass --dataset")

    if isinstance(source, pd.DataFrame):
        print(f"Using in-memory dataset: {source.shape}")
        return source.copy(), 'in_memory'

    print(f"Loading dataset: {source}")
    # keep_default_na=False so sentinel strings such as "N/A" reach cleaning intact
    df = pd.read_csv(source, dtype=str, keep_default_na=False)
    return df, source


def _is_sentinel(series, sentinels):
    text = series.astype(str).str.strip()
    return series.isna() | text.str.upper().isin(sentinels)


def clean_dataset(df, config):
    """
    Drop configured columns and every record holding a missing/sentinel value.

    Sentinel matching is case-insensitive and ignores surrounding whitespace.
    All remaining values are cast to stripped strings.

    Raises:
        DataQualityError if the target is missing, a column is entirely
        missing, or no records survive
    """
    target = config['data']['target_column']
    sentinels = {str(s).strip().upper() for s in config['data'].get('sentinel_values', [])}

    cols_to_drop = config['data'].get('columns_to_drop', [])
    df = df.drop(columns=[c for c in cols_to_drop if c in df.columns])

    if target not in df.columns:
        raise DataQualityError(f"Target column '{target}' not found in dataset. Available: {list(df.columns)}")

    if len(df) == 0:
        raise DataQualityError("Dataset is empty")

    missing_mask = pd.DataFrame({col: _is_sentinel(df[col], sentinels) for col in df.columns}, index=df.index)

    all_missing = [col for col in df.columns if missing_mask[col].all()]
    if all_missing:
        raise DataQualityError(f"Columns with no usable values: {all_missing}")

    keep = ~missing_mask.any(axis=1)
    dropped = int((~keep).sum())
    if dropped:
        per_column = {col: int(n) for col, n in missing_mask.sum().items() if n}
        print(f"Dropped {dropped} records with missing/sentinel values: {per_column}")

    if not keep.any():
        raise DataQualityError("No records left after removing missing/sentinel values")

    cleaned = df.loc[keep].astype(str).apply(lambda s: s.str.strip())

    return cleaned.reset_index(drop=True)


def preprocess_data(df, config):
    """
    Split a cleaned table into features and label.

    Returns:
        X: DataFrame of categorical features
        y: Series of labels
    """
    target = config['data']['target_column']
    if target not in df.columns:
        raise DataQualityError(f"Target column '{target}' not found in dataset. Available: {list(df.columns)}")

    feature_cols = [c for c in df.columns if c != target]
    X = df[feature_cols].copy()
    y = df[target].copy()
    return X, y


def validate_data_integrity(X, y, config):
    """
    Validate a cleaned dataset before any training starts.

    Checks:
    - at least one feature column
    - no NaN or sentinel values left
    - every feature column categorical (string valued)
    - at least two label classes

    Raises:
        DataQualityError listing every problem found
    """
    errors = []
    sentinels = {str(s).strip().upper() for s in config['data'].get('sentinel_values', [])}

    if X.shape[1] == 0:
        errors.append("No feature columns left")

    nan_cols = X.columns[X.isnull().any()].tolist()
    if nan_cols:
        errors.append(f"NaN values found in features: {nan_cols}")
    if y.isnull().any():
        errors.append(f"NaN values found in target ({y.name}): {int(y.isnull().sum())} missing")

    sentinel_cols = [col for col in X.columns if _is_sentinel(X[col], sentinels).any()]
    if sentinel_cols:
        errors.append(f"Sentinel values survived cleaning in: {sentinel_cols}")
    if _is_sentinel(y, sentinels).any():
        errors.append(f"Sentinel values survived cleaning in target ({y.name})")

    numeric_cols = X.select_dtypes(include=[np.number]).columns.tolist()
    if numeric_cols:
        errors.append(f"Feature columns must be categorical, found numeric: {numeric_cols}")

    if y.nunique() < 2:
        errors.append(f"Target ({y.name}) needs at least two classes, found {y.nunique()}")

    if errors:
        raise DataQualityError("Data integrity check failed:\n  - " + "\n  - ".join(errors))

    return True
