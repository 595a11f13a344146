import numpy as np
import pandas as pd
import pytest

import abalone_rings as ar


def make_abalone_frame(n=300, seed=0):
    """Abalone-shaped rows where rings are driven by shell weight."""
    rng = np.random.default_rng(seed)
    length = rng.uniform(0.2, 0.75, n)
    whole = 2.0 * length ** 3 * rng.uniform(0.8, 1.2, n)
    shell = 0.28 * whole * rng.uniform(0.7, 1.3, n)
    return pd.DataFrame({
        "sex": rng.choice(["M", "F", "I"], size=n),
        "length": length,
        "diameter": 0.8 * length + rng.normal(0, 0.01, n),
        "height": 0.3 * length + rng.normal(0, 0.005, n),
        "whole_weight": whole,
        "shucked_weight": 0.45 * whole * rng.uniform(0.9, 1.1, n),
        "viscera_weight": 0.22 * whole * rng.uniform(0.9, 1.1, n),
        "shell_weight": shell,
        "rings": np.round(3 + 40 * shell + rng.normal(0, 0.5, n)),
    })[ar.COLUMNS]


@pytest.fixture
def abalone_df():
    return make_abalone_frame()


@pytest.fixture
def abalone_file(tmp_path, abalone_df):
    path = tmp_path / "abalone.data"
    abalone_df.to_csv(path, header=False, index=False)
    return path


@pytest.fixture
def split(abalone_df):
    return ar.split_train_test(abalone_df, test_size=0.2, seed=7)


@pytest.fixture
def design(split):
    X_tr, X_te, y_tr, y_te = split
    X_tr_d, X_te_d, _ = ar.prepare_design(X_tr, X_te)
    return X_tr_d, X_te_d, y_tr, y_te


@pytest.fixture
def fast_config(tmp_path):
    return ar.AnalysisConfig(
        artifacts_dir=tmp_path / "artifacts",
        cv_folds=3,
        max_k=5,
        poly_degrees=(1, 2),
        n_jobs=1,
    )
