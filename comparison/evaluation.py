"""Classification metrics and confusion-matrix tables.

All metrics are "higher is better". Recall, precision and F1 are macro
averaged so minority severity classes weigh as much as the majority class.
"""

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score, precision_score, recall_score, f1_score,
    roc_auc_score, confusion_matrix
)

SUPPORTED_METRICS = ('accuracy', 'recall', 'precision', 'f1', 'roc_auc')

# Metrics that need per-class scores from predict_proba
PROBA_METRICS = frozenset({'roc_auc'})

METRIC_DIRECTIONS = {metric: 'max' for metric in SUPPORTED_METRICS}


def needs_proba(metrics):
    return any(m in PROBA_METRICS for m in metrics)


def compute_metrics(y_true, y_pred, metrics, proba=None, classes=None):
    """
    Compute the requested metrics for one set of predictions.

    Args:
        y_true: true labels
        y_pred: predicted labels
        metrics: iterable of metric names from SUPPORTED_METRICS
        proba: (n_samples, n_classes) scores, required for roc_auc
        classes: class labels in the column order of proba

    Returns:
        dict metric -> float, in the order requested
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    scores = {}

    for metric in metrics:
        if metric == 'accuracy':
            value = accuracy_score(y_true, y_pred)
        elif metric == 'recall':
            value = recall_score(y_true, y_pred, average='macro', zero_division=0)
        elif metric == 'precision':
            value = precision_score(y_true, y_pred, average='macro', zero_division=0)
        elif metric == 'f1':
            value = f1_score(y_true, y_pred, average='macro', zero_division=0)
        elif metric == 'roc_auc':
            value = _roc_auc(y_true, proba, classes)
        else:
            raise ValueError(f"Unknown metric '{metric}'. Supported: {list(SUPPORTED_METRICS)}")
        scores[metric] = float(value)

    return scores


def _roc_auc(y_true, proba, classes):
    if proba is None or classes is None:
        raise ValueError("roc_auc requires class probabilities")

    proba = np.asarray(proba)
    classes = list(classes)

    if len(classes) == 2:
        # Positive class is the second column, as in sklearn's predict_proba
        return roc_auc_score((y_true == classes[1]).astype(int), proba[:, 1])

    return roc_auc_score(y_true, proba, multi_class='ovr', average='macro', labels=classes)


def confusion_matrix_table(y_true, y_pred, labels=None, title='Confusion Matrix'):
    """
    Build the predicted x actual count table for the heatmap display.

    Rows are predicted labels in reverse order so the diagonal runs from the
    top-left corner once drawn; columns are actual labels.

    Returns:
        dict with row_labels, col_labels, counts (list of lists), title
    """
    if labels is None:
        labels = sorted(set(np.asarray(y_true).tolist()) | set(np.asarray(y_pred).tolist()))
    labels = list(labels)

    # sklearn: rows = truth, columns = prediction
    cm = confusion_matrix(y_true, y_pred, labels=labels)
    by_prediction = cm.T[::-1]

    return {
        'row_labels': list(reversed(labels)),
        'col_labels': labels,
        'counts': by_prediction.astype(int).tolist(),
        'title': title,
    }


def confusion_matrix_frame(table):
    """Long-form (Prediction, Truth, Freq) frame of a confusion table."""
    rows = []
    for i, predicted in enumerate(table['row_labels']):
        for j, actual in enumerate(table['col_labels']):
            rows.append({
                'Prediction': predicted,
                'Truth': actual,
                'Freq': table['counts'][i][j],
            })
    return pd.DataFrame(rows, columns=['Prediction', 'Truth', 'Freq'])


def fit_and_score(family, config, X_train, y_train, X_eval, y_eval, spec, metrics, fold_id=0):
    """
    Fit preprocessing and model on the training portion, score on the eval portion.

    The preprocessor is fitted on X_train only; upsampling is applied to the
    training portion only.

    Returns:
        (scores dict, y_pred array, fitted model)
    """
    fitted_pre = spec.fit(X_train, y_train, fold_id=fold_id)
    X_fit, y_fit = fitted_pre.transform_training(X_train, y_train)
    X_val = fitted_pre.transform(X_eval)

    model = family.train(X_fit, y_fit, config)
    y_pred = model.predict(X_val)

    proba = None
    if needs_proba(metrics):
        proba = model.predict_proba(X_val)

    scores = compute_metrics(y_eval, y_pred, metrics, proba=proba, classes=model.classes_)
    return scores, y_pred, model


def evaluate_on_test(family, config, split, spec, metrics, target_column):
    """
    Refit one configuration on the full training split and score the test split.

    Returns:
        dict with metrics, predictions, the confusion table and error
        (None, or the metrics that came out non-finite)
    """
    X_train = split.train.drop(columns=[target_column])
    y_train = split.train[target_column]
    X_test = split.test.drop(columns=[target_column])
    y_test = split.test[target_column]

    scores, y_pred, model = fit_and_score(
        family, config, X_train, y_train, X_test, y_test, spec, metrics, fold_id=-1
    )
    labels = sorted(set(y_train.tolist()) | set(y_test.tolist()))
    table = confusion_matrix_table(
        y_test, y_pred, labels=labels,
        title=f"Confusion Matrix - {family.name}"
    )

    invalid = [m for m, v in scores.items() if not np.isfinite(v)]

    return {
        'family': family.name,
        'config': dict(config),
        'metrics': scores,
        'error': f"non-finite held-out metrics: {invalid}" if invalid else None,
        'predictions': pd.DataFrame({'actual': y_test.to_numpy(), 'predicted': y_pred}, index=y_test.index),
        'confusion_matrix': table,
    }
