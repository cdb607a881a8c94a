import copy
import pytest
import pandas as pd
import numpy as np

from comparison.config_schema import resolve_config


@pytest.fixture(scope="session")
def seed():
    return 42


@pytest.fixture
def tiny_crash_df(seed):
    """
    Small deterministic crash table.
    Includes:
      - injury_severity label with imbalanced classes (NONE 60, MINOR 40, SERIOUS 20)
      - categorical features loosely tied to severity, speed limit as a category
    """
    rng = np.random.default_rng(seed)
    labels = np.array(["NONE"] * 60 + ["MINOR"] * 40 + ["SERIOUS"] * 20)
    n = len(labels)

    speed = {"NONE": ["25", "35"], "MINOR": ["35", "45"], "SERIOUS": ["55", "65"]}
    surface = {"NONE": ["DRY"], "MINOR": ["DRY", "WET"], "SERIOUS": ["WET", "ICE"]}

    df = pd.DataFrame({
        "speed_limit": [rng.choice(speed[lab]) for lab in labels],
        "road_surface": [rng.choice(surface[lab]) for lab in labels],
        "light_condition": rng.choice(["DAYLIGHT", "DARK"], size=n),
        "restraint": [("NONE" if lab == "SERIOUS" and rng.random() < 0.7 else rng.choice(["BELT", "NONE"]))
                      for lab in labels],
        "injury_severity": labels,
    })
    # Shuffle so classes are interleaved like real records
    return df.sample(frac=1.0, random_state=seed).reset_index(drop=True)


@pytest.fixture
def two_class_df():
    """Label classes {A: 70, B: 30} with a single categorical feature."""
    labels = ["A"] * 70 + ["B"] * 30
    return pd.DataFrame({
        "feature": [f"v{i % 4}" for i in range(100)],
        "label": labels,
    })


@pytest.fixture
def base_config(tmp_path, seed):
    """
    Small, fast comparison config: every family with a two-point grid,
    three folds, one worker.
    """
    cfg = {
        "experiment": {
            "name": "pytest_comparison",
            "seed": seed,
            "output_dir": str(tmp_path / "runs"),
        },
        "data": {
            "dataset_path": "DUMMY.csv",
            "target_column": "injury_severity",
        },
        "split": {"train_proportion": 0.75},
        "cross_validation": {"n_splits": 3},
        "preprocessing": {"upsample_ratio": 1.0},
        "models": {
            "families": ["tree_ensemble", "kernel_margin", "instance_based", "probabilistic_generative"],
            "params": {
                "tree_ensemble": {"n_estimators": [10], "max_features": ["sqrt"], "min_samples_leaf": [1, 3]},
                "kernel_margin": {"C": [0.5, 1.0], "gamma": ["scale"]},
                "instance_based": {"n_neighbors": [3, 5], "weights": ["uniform"], "p": [2]},
                "probabilistic_generative": {"alpha": [1.0], "bandwidth": [0.0, 0.25]},
            },
        },
        "metrics": {"names": ["f1", "accuracy", "recall", "precision", "roc_auc"], "save_plots": False},
        "execution": {"parallelism": 1},
    }
    return cfg


@pytest.fixture
def resolved_config(base_config):
    return resolve_config(copy.deepcopy(base_config))


@pytest.fixture
def patch_dataset_loader(monkeypatch, tiny_crash_df):
    """
    Monkeypatch load_dataset so comparisons don't hit disk.
    """
    def _fake_load_dataset(config, dataset_path=None):
        return tiny_crash_df.copy(), "test_dataset.csv"

    monkeypatch.setattr("comparison.data.load_dataset", _fake_load_dataset)
    monkeypatch.setattr("runners.run_comparison.load_dataset", _fake_load_dataset)
    return _fake_load_dataset


@pytest.fixture
def freeze_time(monkeypatch):
    """
    Make run_dir deterministic by freezing datetime.now().
    """
    import datetime as dt

    class _FixedDT:
        @staticmethod
        def now():
            return dt.datetime(2026, 1, 4, 12, 34, 56)

    monkeypatch.setattr("comparison.io.datetime", _FixedDT)
    return _FixedDT


@pytest.fixture
def write_yaml(tmp_path):
    import yaml
    def _write(cfg, name="temp.yaml"):
        p = tmp_path / name
        with open(p, "w") as f:
            yaml.safe_dump(cfg, f, default_flow_style=False)
        return str(p)
    return _write
