import numpy as np
import pytest

import abalone_rings as ar


def test_split_is_reproducible(abalone_df):
    a = ar.split_train_test(abalone_df, test_size=0.25, seed=3)
    b = ar.split_train_test(abalone_df, test_size=0.25, seed=3)
    assert list(a[0].index) == list(b[0].index)
    assert list(a[1].index) == list(b[1].index)


def test_split_seed_changes_partition(abalone_df):
    a = ar.split_train_test(abalone_df, seed=1)
    b = ar.split_train_test(abalone_df, seed=2)
    assert list(a[1].index) != list(b[1].index)


def test_split_proportion_and_target(abalone_df):
    X_tr, X_te, y_tr, y_te = ar.split_train_test(abalone_df, test_size=0.2)
    assert len(X_te) == 60
    assert len(X_tr) == 240
    assert ar.TARGET not in X_tr.columns
    assert set(X_tr.index).isdisjoint(X_te.index)
    assert list(y_tr.index) == list(X_tr.index)


@pytest.mark.parametrize("test_size", [0.0, 1.0, -0.1, 1.5])
def test_split_rejects_bad_proportion(abalone_df, test_size):
    with pytest.raises(ValueError):
        ar.split_train_test(abalone_df, test_size=test_size)


def test_prepare_design_columns(design):
    X_tr_d, X_te_d, _, _ = design
    assert list(X_tr_d.columns) == ar.NUMERIC + ["sex_I", "sex_M"]
    assert list(X_te_d.columns) == list(X_tr_d.columns)
    assert set(np.unique(X_tr_d[["sex_I", "sex_M"]])) <= {0.0, 1.0}


def test_prepare_design_centers_and_scales_on_train(split, design):
    X_tr, X_te, _, _ = split
    X_tr_d, X_te_d, _, _ = design

    np.testing.assert_allclose(X_tr_d[ar.NUMERIC].mean(), 0.0, atol=1e-10)
    np.testing.assert_allclose(X_tr_d[ar.NUMERIC].std(ddof=0), 1.0, atol=1e-10)

    expected = (X_te["length"] - X_tr["length"].mean()) / X_tr["length"].std(ddof=0)
    np.testing.assert_allclose(X_te_d["length"], expected)
    assert list(X_te_d.index) == list(X_te.index)


def test_dummy_encoding_matches_sex(split, design):
    X_tr, _, _, _ = split
    X_tr_d, _, _, _ = design
    np.testing.assert_array_equal(X_tr_d["sex_M"], (X_tr["sex"] == "M").astype(float))
    np.testing.assert_array_equal(X_tr_d["sex_I"], (X_tr["sex"] == "I").astype(float))


def test_rmse_known_value():
    assert ar.rmse([1, 2, 3], [1, 2, 5]) == pytest.approx(np.sqrt(4 / 3))
    assert ar.rmse(np.array([[1.0], [2.0]]), [1.0, 2.0]) == 0.0


def test_evaluate_predictions_perfect_fit():
    y = np.array([4.0, 7.0, 9.0, 12.0])
    metrics = ar.evaluate_predictions(y, y)
    assert metrics == {"RMSE": 0.0, "MAE": 0.0, "R2": 1.0}
