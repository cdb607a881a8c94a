# Model families: one learning algorithm + its hyperparameter search space
# Algorithms come from sklearn; the harness only sees the train/predict contract

from abc import ABC, abstractmethod

import numpy as np
from sklearn.ensemble import RandomForestClassifier
from sklearn.model_selection import ParameterGrid, ParameterSampler
from sklearn.naive_bayes import BernoulliNB
from sklearn.neighbors import KNeighborsClassifier
from sklearn.svm import SVC

UPSAMPLE_THEN_ENCODE = 'upsample_then_encode'
ENCODE_THEN_UPSAMPLE = 'encode_then_upsample'


def format_config(config):
    return ', '.join(f"{name}={config[name]}" for name in sorted(config))


class FittedModel:
    """A trained estimator for one configuration."""

    def __init__(self, family_name, config, estimator):
        self.family_name = family_name
        self.config = dict(config)
        self.estimator = estimator

    @property
    def classes_(self):
        return self.estimator.classes_

    def predict(self, X):
        return np.asarray(self.estimator.predict(X))

    def predict_proba(self, X):
        if not hasattr(self.estimator, 'predict_proba'):
            raise NotImplementedError(f"{self.family_name} does not produce class probabilities")
        return np.asarray(self.estimator.predict_proba(X))


class ModelFamily(ABC):
    """
    Base class for a model family.

    Subclasses declare:
        name: registry key
        default_grid: parameter name -> list of candidate values
        needs_encoding: True if features must be indicator columns,
            False if the algorithm takes native category codes
        preprocessing_order: UPSAMPLE_THEN_ENCODE or ENCODE_THEN_UPSAMPLE
        supports_proba: True if predict_proba is available
    """

    name = None
    default_grid = {}
    needs_encoding = True
    preprocessing_order = ENCODE_THEN_UPSAMPLE
    supports_proba = True

    def __init__(self, seed, param_grid=None, n_samples=None):
        self.seed = seed
        self.param_grid = dict(param_grid) if param_grid else dict(self.default_grid)
        self.n_samples = n_samples

    def search_space(self):
        """
        Enumerate hyperparameter configurations.

        Full grid by default; a seeded sample of n_samples configurations
        when n_samples is set. Order is deterministic and is the insertion
        order used for rank tie-breaks.
        """
        grid = ParameterGrid(self.param_grid)
        if self.n_samples is None or self.n_samples >= len(grid):
            return [dict(config) for config in grid]

        sampler = ParameterSampler(self.param_grid, n_iter=self.n_samples, random_state=self.seed)
        return [dict(config) for config in sampler]

    def train(self, X, y, config):
        estimator = self.build_estimator(config)
        estimator.fit(X, np.asarray(y))
        return FittedModel(self.name, config, estimator)

    @abstractmethod
    def build_estimator(self, config):
        """Return an unfitted sklearn estimator for this configuration."""
        pass

    def __repr__(self):
        return f"{type(self).__name__}(seed={self.seed}, grid={self.param_grid})"


class TreeEnsembleFamily(ModelFamily):
    # Random forest over native category codes
    name = 'tree_ensemble'
    default_grid = {
        'max_features': ['sqrt', 0.5],
        'n_estimators': [100, 300],
        'min_samples_leaf': [1, 5],
    }
    needs_encoding = False
    preprocessing_order = UPSAMPLE_THEN_ENCODE

    def build_estimator(self, config):
        return RandomForestClassifier(random_state=self.seed, **config)


class KernelMarginFamily(ModelFamily):
    # RBF support vector machine; C is the cost, gamma the kernel bandwidth
    name = 'kernel_margin'
    default_grid = {
        'C': [0.25, 1.0, 4.0],
        'gamma': ['scale', 0.1],
    }

    def build_estimator(self, config):
        return SVC(kernel='rbf', probability=True, random_state=self.seed, **config)


class InstanceBasedFamily(ModelFamily):
    # k nearest neighbours with Minkowski distance of power p
    name = 'instance_based'
    default_grid = {
        'n_neighbors': [5, 11, 21],
        'weights': ['uniform', 'distance'],
        'p': [1, 2],
    }

    def build_estimator(self, config):
        return KNeighborsClassifier(**config)


class SmoothedBernoulliNB(BernoulliNB):
    """
    Bernoulli naive Bayes with bandwidth shrinkage of the class likelihoods.

    After the usual Laplace-smoothed fit (alpha), each class-conditional
    feature probability is mixed with the pooled probability over all
    classes: p' = (1 - bandwidth) * p_class + bandwidth * p_pooled.
    bandwidth = 0 is plain BernoulliNB.
    """

    def __init__(self, *, alpha=1.0, bandwidth=0.0, force_alpha=True, binarize=0.0,
                 fit_prior=True, class_prior=None):
        super().__init__(alpha=alpha, force_alpha=force_alpha, binarize=binarize,
                         fit_prior=fit_prior, class_prior=class_prior)
        self.bandwidth = bandwidth

    def fit(self, X, y, sample_weight=None):
        if not 0 <= self.bandwidth < 1:
            raise ValueError(f"bandwidth must be in [0, 1), got {self.bandwidth}")

        super().fit(X, y, sample_weight=sample_weight)

        if self.bandwidth > 0:
            X = np.asarray(X, dtype=float)
            if self.binarize is not None:
                X = (X > self.binarize).astype(float)
            pooled = (X.sum(axis=0) + self.alpha) / (X.shape[0] + 2 * self.alpha)
            class_prob = np.exp(self.feature_log_prob_)
            mixed = (1 - self.bandwidth) * class_prob + self.bandwidth * pooled
            self.feature_log_prob_ = np.log(mixed)

        return self


class ProbabilisticGenerativeFamily(ModelFamily):
    # Naive Bayes over indicator columns
    name = 'probabilistic_generative'
    default_grid = {
        'alpha': [0.5, 1.0],
        'bandwidth': [0.0, 0.25],
    }
    preprocessing_order = UPSAMPLE_THEN_ENCODE

    def build_estimator(self, config):
        return SmoothedBernoulliNB(**config)


MODEL_FAMILIES = {
    TreeEnsembleFamily.name: TreeEnsembleFamily,
    KernelMarginFamily.name: KernelMarginFamily,
    InstanceBasedFamily.name: InstanceBasedFamily,
    ProbabilisticGenerativeFamily.name: ProbabilisticGenerativeFamily,
}


def build_family(name, seed, param_grid=None, n_samples=None):
    """Instantiate a registered model family by name."""
    if name not in MODEL_FAMILIES:
        raise ValueError(
            f"Unknown model family: '{name}'. "
            f"Available: {sorted(MODEL_FAMILIES)}"
        )
    return MODEL_FAMILIES[name](seed, param_grid=param_grid, n_samples=n_samples)


def register_family(family_class):
    """Register an additional ModelFamily subclass under its name."""
    if not (isinstance(family_class, type) and issubclass(family_class, ModelFamily)):
        raise TypeError(f"Expected a ModelFamily subclass, got {family_class!r}")
    if not family_class.name:
        raise ValueError(f"{family_class.__name__} must declare a name")
    MODEL_FAMILIES[family_class.name] = family_class
    return family_class


def get_family_info(name):
    """Get the declared requirements of a model family."""
    family_class = MODEL_FAMILIES[name]
    return {
        'name': name,
        'needs_encoding': family_class.needs_encoding,
        'preprocessing_order': family_class.preprocessing_order,
        'supports_proba': family_class.supports_proba,
        'hyperparameters': sorted(family_class.default_grid),
    }
