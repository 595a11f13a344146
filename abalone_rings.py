#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Abalone Rings: Model Comparison Pipeline
========================================
A single, runnable script that:
  1) Loads the abalone measurements (UCI abalone.data, a headed CSV, or a UCI download)
  2) Cleans the rows and produces lightweight EDA artifacts
  3) Splits once into train/test with a fixed seed and proportion
  4) Centers/scales the measurements and dummy-encodes sex, learned on train rows only
  5) Fits OLS with full statsmodels diagnostics
  6) Tunes polynomial, ridge, lasso, elastic net, PCR, PLS and KNN regressors with CV
  7) Runs forward/backward/exhaustive subset selection scored by AIC/BIC/adjusted R^2
  8) Scores every model on the same held-out rows (RMSE on the ring scale)
  9) Writes the comparison table, plots, and the best pipeline (.joblib)
"""

from __future__ import annotations

import argparse
import itertools
import json
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

# Headless plots saved to files
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

import joblib
import statsmodels.api as sm
from statsmodels.stats.outliers_influence import variance_inflation_factor
from statsmodels.stats.stattools import durbin_watson

# Sklearn
from sklearn.base import clone
from sklearn.compose import ColumnTransformer, TransformedTargetRegressor
from sklearn.cross_decomposition import PLSRegression
from sklearn.decomposition import PCA
from sklearn.dummy import DummyRegressor
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import ElasticNet, Lasso, LinearRegression, Ridge
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score
from sklearn.model_selection import GridSearchCV, KFold, cross_validate, train_test_split
from sklearn.neighbors import KNeighborsRegressor
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, PolynomialFeatures, StandardScaler

RNG_SEED = 42
TEST_SIZE = 0.2
CV_FOLDS = 10
UCI_ABALONE_ID = 1

TARGET = "rings"
CATEGORICAL = ["sex"]
NUMERIC = [
    "length", "diameter", "height", "whole_weight",
    "shucked_weight", "viscera_weight", "shell_weight",
]
COLUMNS = CATEGORICAL + NUMERIC + [TARGET]
SEX_LEVELS = {"M", "F", "I"}

SUBSET_DIRECTIONS = ("forward", "backward", "exhaustive")
SUBSET_CRITERIA = ("aic", "bic", "adjr2")
SCORING = "neg_root_mean_squared_error"

warnings.filterwarnings("ignore", category=UserWarning)
warnings.filterwarnings("ignore", category=ConvergenceWarning)

# ----------------------------- Utilities -----------------------------

def safe_expm1(z: np.ndarray) -> np.ndarray:
    """Stable inverse for log1p to protect against extreme predictions."""
    return np.expm1(np.clip(z, -50, 20))

def rmse(y_true, y_pred) -> float:
    return float(np.sqrt(mean_squared_error(np.ravel(y_true), np.ravel(y_pred))))

def evaluate_predictions(y_true, y_pred) -> Dict[str, float]:
    y_true = np.ravel(y_true)
    y_pred = np.ravel(y_pred)
    return {
        "RMSE": rmse(y_true, y_pred),
        "MAE": float(mean_absolute_error(y_true, y_pred)),
        "R2": float(r2_score(y_true, y_pred)),
    }

def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)

def find_file(candidates: List[Path]) -> Optional[Path]:
    for p in candidates:
        if p.exists():
            return p
    return None

def section(title: str) -> None:
    print(f"\n=== {title} ===")

# ----------------------------- Configuration -----------------------------

@dataclass
class AnalysisConfig:
    data_path: Optional[Path] = None
    data_dir: Path = Path(".")
    fetch: bool = False
    artifacts_dir: Path = Path("./artifacts")
    test_size: float = TEST_SIZE
    seed: int = RNG_SEED
    cv_folds: int = CV_FOLDS
    poly_degrees: Tuple[int, ...] = (1, 2, 3)
    max_k: int = 50
    log_target: bool = False
    keep_zero_height: bool = False
    skip_eda: bool = False
    subset_criterion: str = "bic"
    n_jobs: Optional[int] = -1

# ----------------------------- Data Loading -----------------------------

def normalise_column(name) -> str:
    """'Whole weight', 'Whole.weight' and 'Whole_weight' all become 'whole_weight'."""
    out = str(name).strip().lower()
    for ch in (" ", ".", "-"):
        out = out.replace(ch, "_")
    while "__" in out:
        out = out.replace("__", "_")
    return out.strip("_")

def locate_abalone_file(data_path: Optional[Path], data_dir: Path) -> Path:
    """Use the explicit path if given, else look for abalone.data/abalone.csv in common places."""
    if data_path is not None:
        if not Path(data_path).exists():
            raise FileNotFoundError(f"Abalone data file not found: {data_path}")
        return Path(data_path)
    candidates = []
    for name in ("abalone.data", "abalone.csv"):
        candidates += [data_dir / name, Path.cwd() / name]
    path = find_file(candidates)
    if path is None:
        raise FileNotFoundError(
            "Could not find abalone.data or abalone.csv. Pass --data_path, "
            "place the file in --data_dir, or use --fetch."
        )
    return path

def _has_header(path: Path) -> bool:
    """A data row has numeric measurements after the sex field; a header row has none."""
    first = pd.read_csv(path, header=None, nrows=1, dtype=str, encoding="utf-8-sig")
    measurements = first.iloc[0, 1:len(COLUMNS)]
    return not pd.to_numeric(measurements, errors="coerce").notna().any()

def validate_schema(df: pd.DataFrame) -> pd.DataFrame:
    """Keep the canonical columns and check their types and levels."""
    missing = [c for c in COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Missing columns in abalone data: {missing}")
    out = df[COLUMNS].copy()

    sex = out["sex"]
    out["sex"] = sex.where(sex.isna(), sex.astype(str).str.strip().str.upper())
    unknown = sorted(set(out["sex"].dropna()) - SEX_LEVELS)
    if unknown:
        raise ValueError(f"Unexpected sex levels {unknown}; expected one of {sorted(SEX_LEVELS)}")

    for c in NUMERIC + [TARGET]:
        converted = pd.to_numeric(out[c], errors="coerce")
        invalid = converted.isna() & out[c].notna()
        if invalid.any():
            raise ValueError(
                f"Column '{c}' has non-numeric values, e.g. {out.loc[invalid, c].iloc[0]!r}"
            )
        out[c] = converted.astype(float)
    return out

def read_abalone_csv(path: Path) -> pd.DataFrame:
    if _has_header(path):
        df = pd.read_csv(path, encoding="utf-8-sig")
        df.columns = [normalise_column(c) for c in df.columns]
    else:
        df = pd.read_csv(path, header=None, names=COLUMNS, encoding="utf-8-sig")
    return validate_schema(df)

def fetch_abalone() -> pd.DataFrame:
    """Download the UCI abalone dataset (id=1)."""
    from ucimlrepo import fetch_ucirepo

    abalone = fetch_ucirepo(id=UCI_ABALONE_ID)
    df = pd.concat([abalone.data.features, abalone.data.targets], axis=1)
    df.columns = [normalise_column(c) for c in df.columns]
    return validate_schema(df)

def load_abalone(data_path: Optional[Path] = None, data_dir: Path = Path("."), fetch: bool = False) -> pd.DataFrame:
    if fetch:
        return fetch_abalone()
    return read_abalone_csv(locate_abalone_file(data_path, data_dir))

def clean_abalone(df: pd.DataFrame, keep_zero_height: bool = False) -> Tuple[pd.DataFrame, Dict[str, int]]:
    """
    Drop rows with missing values and, unless asked not to, rows whose height
    is not positive (the UCI file has two). Returns (clean_df, drop_counts).
    """
    out = df.dropna()
    dropped_missing = len(df) - len(out)
    dropped_height = 0
    if not keep_zero_height:
        keep = out["height"] > 0
        dropped_height = int((~keep).sum())
        out = out.loc[keep]
    report = {"rows_in": int(len(df)), "dropped_missing": int(dropped_missing),
              "dropped_zero_height": dropped_height, "rows_out": int(len(out))}
    return out.reset_index(drop=True), report

# ----------------------------- EDA (light) -----------------------------

def eda_snapshot(df: pd.DataFrame, outdir: Path) -> None:
    """Save a compact EDA snapshot (tables + a few plots)."""
    ensure_dir(outdir)
    meta = {
        "n_rows": int(df.shape[0]),
        "n_cols": int(df.shape[1]),
        "n_numeric": int(df.select_dtypes(include=[np.number]).shape[1]),
        "n_categorical": int(df.select_dtypes(exclude=[np.number]).shape[1]),
    }
    (outdir / "meta.json").write_text(json.dumps(meta, indent=2))

    describe = df.describe()
    describe.to_csv(outdir / "describe.csv")
    by_sex = df.groupby("sex")[TARGET].describe()
    by_sex.to_csv(outdir / "rings_by_sex.csv")
    print(describe.T.to_string())
    print("\nRings by sex:")
    print(by_sex.to_string())

    plt.figure(figsize=(7,4))
    plt.hist(df[TARGET], bins=np.arange(df[TARGET].min(), df[TARGET].max() + 2) - 0.5)
    plt.title("Rings: distribution")
    plt.xlabel("Rings"); plt.ylabel("Count"); plt.tight_layout()
    plt.savefig(outdir / "rings_hist.png"); plt.close()

    numeric = NUMERIC + [TARGET]
    corr = df[numeric].corr()
    corr.to_csv(outdir / "correlation.csv")
    fig, ax = plt.subplots(figsize=(8,7))
    im = ax.imshow(corr.values, cmap="coolwarm", vmin=-1, vmax=1)
    ax.set_xticks(range(len(numeric))); ax.set_xticklabels(numeric, rotation=45, ha="right")
    ax.set_yticks(range(len(numeric))); ax.set_yticklabels(numeric)
    for i in range(len(numeric)):
        for j in range(len(numeric)):
            ax.text(j, i, f"{corr.values[i, j]:.2f}", ha="center", va="center", fontsize=7)
    fig.colorbar(im, ax=ax)
    ax.set_title("Correlation of measurements")
    fig.tight_layout(); fig.savefig(outdir / "correlation_heatmap.png"); plt.close(fig)

    plt.figure(figsize=(7,4))
    plt.scatter(df["shell_weight"], df[TARGET], s=8, alpha=0.5)
    plt.title("Shell weight vs Rings")
    plt.xlabel("shell_weight"); plt.ylabel("Rings"); plt.tight_layout()
    plt.savefig(outdir / "shell_weight_vs_rings.png"); plt.close()

    levels = sorted(df["sex"].unique())
    plt.figure(figsize=(6,4))
    plt.boxplot([df.loc[df["sex"] == s, TARGET] for s in levels])
    plt.xticks(range(1, len(levels) + 1), levels)
    plt.title("Rings by sex")
    plt.xlabel("sex"); plt.ylabel("Rings"); plt.tight_layout()
    plt.savefig(outdir / "rings_by_sex.png"); plt.close()

# ----------------------------- Partition & Preprocessing -----------------------------

def split_train_test(df: pd.DataFrame, test_size: float = TEST_SIZE, seed: int = RNG_SEED):
    """One fixed split shared by every model: (X_train, X_test, y_train, y_test)."""
    if not 0.0 < test_size < 1.0:
        raise ValueError(f"test_size must be in (0, 1), got {test_size}")
    X = df.drop(columns=[TARGET])
    y = df[TARGET].astype(float)
    return train_test_split(X, y, test_size=test_size, random_state=seed)

def build_preprocessor(X: pd.DataFrame) -> ColumnTransformer:
    """Center/scale numeric columns, dummy-encode categoricals with the first level dropped."""
    num_cols = X.select_dtypes(include=[np.number]).columns.tolist()
    obj_cols = X.select_dtypes(exclude=[np.number]).columns.tolist()
    pre = ColumnTransformer([
        ("num", StandardScaler(), num_cols),
        ("cat", OneHotEncoder(drop="first", handle_unknown="ignore", sparse_output=False, dtype=float), obj_cols),
    ], remainder="drop", verbose_feature_names_out=False)
    return pre.set_output(transform="pandas")

def prepare_design(X_train: pd.DataFrame, X_test: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame, ColumnTransformer]:
    """Fit the preprocessor on the training rows and apply it to both sets."""
    pre = build_preprocessor(X_train)
    X_tr = pre.fit_transform(X_train).astype(float)
    X_te = pre.transform(X_test).astype(float)
    X_tr.index = X_train.index
    X_te.index = X_test.index
    return X_tr, X_te, pre

# ----------------------------- Linear Regression (statsmodels) -----------------------------

def fit_ols(X_tr: pd.DataFrame, y_tr: pd.Series):
    return sm.OLS(np.asarray(y_tr, dtype=float), sm.add_constant(X_tr, has_constant="add")).fit()

def vif_table(X_tr: pd.DataFrame) -> pd.DataFrame:
    exog = sm.add_constant(X_tr, has_constant="add")
    rows = [
        {"feature": col, "VIF": float(variance_inflation_factor(exog.values, i))}
        for i, col in enumerate(exog.columns) if col != "const"
    ]
    return pd.DataFrame(rows).sort_values("VIF", ascending=False).reset_index(drop=True)

def plot_ols_diagnostics(results, outpath: Path) -> None:
    """Residuals vs fitted, normal Q-Q, scale-location, residuals vs leverage."""
    fitted = results.fittedvalues
    resid = results.resid
    influence = results.get_influence()
    std_resid = influence.resid_studentized_internal
    leverage = influence.hat_matrix_diag

    fig, axes = plt.subplots(2, 2, figsize=(10,8))
    ax = axes[0, 0]
    ax.scatter(fitted, resid, s=8, alpha=0.5)
    ax.axhline(0, color="red", linestyle="--")
    ax.set_title("Residuals vs Fitted"); ax.set_xlabel("Fitted"); ax.set_ylabel("Residual")

    sm.qqplot(std_resid, line="45", ax=axes[0, 1])
    axes[0, 1].set_title("Normal Q-Q")

    ax = axes[1, 0]
    ax.scatter(fitted, np.sqrt(np.abs(std_resid)), s=8, alpha=0.5)
    ax.set_title("Scale-Location"); ax.set_xlabel("Fitted"); ax.set_ylabel("sqrt(|std residual|)")

    ax = axes[1, 1]
    ax.scatter(leverage, std_resid, s=8, alpha=0.5)
    ax.axhline(0, color="red", linestyle="--")
    ax.set_title("Residuals vs Leverage"); ax.set_xlabel("Leverage"); ax.set_ylabel("Std residual")

    fig.tight_layout(); fig.savefig(outpath); plt.close(fig)

def report_ols(X_tr: pd.DataFrame, X_te: pd.DataFrame, y_tr: pd.Series, y_te: pd.Series, artifacts: Path):
    """Print the OLS summary and diagnostics; returns (results, held-out RMSE)."""
    results = fit_ols(X_tr, y_tr)
    print(results.summary())

    dw = durbin_watson(results.resid)
    print(f"\nDurbin-Watson: {dw:.4f}")

    vif = vif_table(X_tr)
    vif.to_csv(artifacts / "vif.csv", index=False)
    print("\nVariance inflation factors:")
    print(vif.to_string(index=False))

    plot_ols_diagnostics(results, artifacts / "ols_diagnostics.png")

    y_pred = results.predict(sm.add_constant(X_te, has_constant="add"))
    test_rmse = rmse(y_te, y_pred)
    print(f"\nOLS held-out RMSE: {test_rmse:.4f}")
    return results, test_rmse

# ----------------------------- Subset Selection -----------------------------

@dataclass
class SubsetSelection:
    direction: str
    criterion: str
    features: List[str]
    path: pd.DataFrame
    results: object

def _subset_exog(X: pd.DataFrame, cols: Sequence[str]) -> pd.DataFrame:
    if not cols:
        return pd.DataFrame({"const": np.ones(len(X))}, index=X.index)
    return sm.add_constant(X[list(cols)], has_constant="add")

def _fit_subset(X: pd.DataFrame, y: np.ndarray, cols: Sequence[str]):
    return sm.OLS(y, _subset_exog(X, cols)).fit()

def _criterion_value(results, criterion: str) -> float:
    """Lower is better for every criterion."""
    if criterion == "aic":
        return float(results.aic)
    if criterion == "bic":
        return float(results.bic)
    return -float(results.rsquared_adj)

def select_subset(X: pd.DataFrame, y, direction: str = "forward", criterion: str = "bic") -> SubsetSelection:
    """
    Best subset per size by residual sum of squares, then the size picked by
    AIC, BIC or adjusted R^2.
      - forward: start empty, add the predictor that lowers RSS most
      - backward: start full, drop the predictor whose removal raises RSS least
      - exhaustive: enumerate every subset of every size
    """
    if direction not in SUBSET_DIRECTIONS:
        raise ValueError(f"direction must be one of {SUBSET_DIRECTIONS}, got {direction!r}")
    if criterion not in SUBSET_CRITERIA:
        raise ValueError(f"criterion must be one of {SUBSET_CRITERIA}, got {criterion!r}")

    features = list(X.columns)
    y = np.asarray(y, dtype=float)

    def rss(cols: Sequence[str]) -> float:
        return float(_fit_subset(X, y, cols).ssr)

    best_by_size: Dict[int, List[str]] = {}

    if direction == "forward":
        current: List[str] = []
        best_by_size[0] = []
        remaining = list(features)
        while remaining:
            chosen = min(remaining, key=lambda c: rss(current + [c]))
            current = current + [chosen]
            remaining.remove(chosen)
            best_by_size[len(current)] = list(current)
    elif direction == "backward":
        current = list(features)
        best_by_size[len(current)] = list(current)
        while current:
            dropped = min(current, key=lambda c: rss([f for f in current if f != c]))
            current = [f for f in current if f != dropped]
            best_by_size[len(current)] = list(current)
    else:
        for k in range(len(features) + 1):
            best = min(itertools.combinations(features, k), key=lambda cols: rss(list(cols)))
            best_by_size[k] = list(best)

    rows = []
    fits = {}
    for size in sorted(best_by_size):
        cols = best_by_size[size]
        res = _fit_subset(X, y, cols)
        fits[size] = res
        rows.append({
            "size": size, "RSS": float(res.ssr), "aic": float(res.aic), "bic": float(res.bic),
            "adjr2": float(res.rsquared_adj), "features": ", ".join(cols),
        })
    path = pd.DataFrame(rows)
    best_size = min(fits, key=lambda s: _criterion_value(fits[s], criterion))
    return SubsetSelection(direction, criterion, best_by_size[best_size], path, fits[best_size])

def predict_subset(selection: SubsetSelection, X: pd.DataFrame) -> np.ndarray:
    return np.asarray(selection.results.predict(_subset_exog(X, selection.features)))

# ----------------------------- Modeling -----------------------------

@dataclass
class ModelSpec:
    name: str
    steps: List[Tuple[str, object]]
    grid: Optional[dict]

def build_model(X: pd.DataFrame, steps: List[Tuple[str, object]], log_target: bool = False):
    """Preprocessing + model steps; optionally fit on log1p(rings) and predict on the ring scale."""
    pipe = Pipeline([("pre", build_preprocessor(X))] + list(steps))
    if log_target:
        return TransformedTargetRegressor(regressor=pipe, func=np.log1p, inverse_func=safe_expm1)
    return pipe

def _pipeline_of(model) -> Pipeline:
    if isinstance(model, TransformedTargetRegressor):
        return model.regressor_
    return model

def _prefixed(grid: dict, log_target: bool) -> dict:
    prefix = "regressor__" if log_target else ""
    return {prefix + k: list(v) for k, v in grid.items()}

def _plain_params(params: dict) -> dict:
    return {k.replace("regressor__", ""): v for k, v in params.items()}

def model_specs(X: pd.DataFrame, config: AnalysisConfig) -> List[ModelSpec]:
    """Candidate models and their CV grids."""
    n_features = build_preprocessor(X).fit_transform(X).shape[1]
    n_fold_train = len(X) - int(np.ceil(len(X) / config.cv_folds))
    max_k = max(1, min(config.max_k, n_fold_train))
    components = list(range(1, n_features + 1))
    return [
        ModelSpec("Baseline (mean)", [("reg", DummyRegressor(strategy="mean"))], grid=None),
        ModelSpec("Linear", [("reg", LinearRegression())], grid=None),
        ModelSpec("Polynomial", [("poly", PolynomialFeatures(include_bias=False)), ("reg", LinearRegression())],
                  grid={"poly__degree": config.poly_degrees}),
        ModelSpec("Ridge", [("reg", Ridge())], grid={"reg__alpha": np.logspace(-3, 3, 25)}),
        ModelSpec("Lasso", [("reg", Lasso(max_iter=10000))], grid={"reg__alpha": np.logspace(-4, 1, 25)}),
        ModelSpec("ElasticNet", [("reg", ElasticNet(max_iter=10000))],
                  grid={"reg__alpha": np.logspace(-4, 1, 20), "reg__l1_ratio": [0.1, 0.3, 0.5, 0.7, 0.9]}),
        ModelSpec("PCR", [("pca", PCA()), ("reg", LinearRegression())], grid={"pca__n_components": components}),
        ModelSpec("PLS", [("reg", PLSRegression(scale=False))], grid={"reg__n_components": components}),
        ModelSpec("KNN", [("reg", KNeighborsRegressor())],
                  grid={"reg__n_neighbors": range(1, max_k + 1), "reg__weights": ["uniform", "distance"]}),
    ]

def result_row(name: str, y_tr, train_pred, y_te, test_pred, cv_mean: float, cv_std: float, params: dict) -> dict:
    test = evaluate_predictions(y_te, test_pred)
    return {
        "model": name,
        "cv_RMSE_mean": cv_mean, "cv_RMSE_std": cv_std,
        "train_RMSE": rmse(y_tr, train_pred),
        "test_RMSE": test["RMSE"], "test_MAE": test["MAE"], "test_R2": test["R2"],
        "params": params,
    }

def fit_and_compare(X_tr: pd.DataFrame, X_te: pd.DataFrame, y_tr: pd.Series, y_te: pd.Series,
                    config: AnalysisConfig) -> Tuple[List[dict], Dict[str, object], Dict[str, GridSearchCV]]:
    """
    CV inside the training rows; metrics on the held-out rows.
    Returns (result_rows, fitted_models_by_name, searches_by_name)
    """
    cv = KFold(n_splits=config.cv_folds, shuffle=True, random_state=config.seed)

    rows = []
    fitted_models: Dict[str, object] = {}
    searches: Dict[str, GridSearchCV] = {}

    for spec in model_specs(X_tr, config):
        model = build_model(X_tr, spec.steps, config.log_target)

        if not spec.grid:
            cv_res = cross_validate(model, X_tr, y_tr, cv=cv, scoring=SCORING, n_jobs=config.n_jobs)
            fitted = model.fit(X_tr, y_tr)
            params = {}
            cv_rmse_mean = float(-np.mean(cv_res["test_score"]))
            cv_rmse_std = float(np.std(cv_res["test_score"]))
        else:
            search = GridSearchCV(model, param_grid=_prefixed(spec.grid, config.log_target),
                                  scoring=SCORING, cv=cv, n_jobs=config.n_jobs)
            search.fit(X_tr, y_tr)
            fitted = search.best_estimator_
            params = _plain_params(search.best_params_)
            cv_rmse_mean = float(-search.best_score_)
            cv_rmse_std = float(search.cv_results_["std_test_score"][search.best_index_])
            searches[spec.name] = search

        row = result_row(spec.name, y_tr, fitted.predict(X_tr), y_te, fitted.predict(X_te),
                         cv_rmse_mean, cv_rmse_std, params)
        print(f"{spec.name:<16} cv RMSE {cv_rmse_mean:.4f}  test RMSE {row['test_RMSE']:.4f}  {params}")
        rows.append(row)
        fitted_models[spec.name] = fitted

    return rows, fitted_models, searches

# ----------------------------- Tuning Diagnostics -----------------------------

def grid_curve(search: GridSearchCV, param: str) -> pd.DataFrame:
    """CV RMSE along one grid parameter, other parameters held at their best values."""
    res = pd.DataFrame(search.cv_results_)
    mask = np.ones(len(res), dtype=bool)
    key = None
    for name, value in search.best_params_.items():
        if name.split("__")[-1] == param:
            key = name
            continue
        mask &= (res[f"param_{name}"] == value).to_numpy()
    if key is None:
        raise ValueError(f"Parameter {param!r} is not part of the grid")
    sub = res.loc[mask]
    curve = pd.DataFrame({
        param: sub[f"param_{key}"].to_numpy(),
        "cv_RMSE_mean": -sub["mean_test_score"].to_numpy(),
        "cv_RMSE_std": sub["std_test_score"].to_numpy(),
    })
    return curve.sort_values(param).reset_index(drop=True)

def polynomial_degree_table(search: GridSearchCV, X_tr, y_tr, X_te, y_te) -> pd.DataFrame:
    curve = grid_curve(search, "degree")
    key = next(k for k in search.best_params_ if k.endswith("poly__degree"))
    test_rmse = []
    for degree in curve["degree"]:
        model = clone(search.best_estimator_).set_params(**{key: int(degree)}).fit(X_tr, y_tr)
        test_rmse.append(rmse(y_te, model.predict(X_te)))
    curve["test_RMSE"] = test_rmse
    return curve

def coefficient_path(X_design: pd.DataFrame, y, estimator, alphas: Sequence[float]) -> pd.DataFrame:
    """Coefficients refit along the alpha grid (rows: alpha, columns: features)."""
    coefs = {}
    for alpha in alphas:
        est = clone(estimator).set_params(alpha=float(alpha)).fit(X_design, y)
        coefs[float(alpha)] = np.ravel(est.coef_)
    return pd.DataFrame.from_dict(coefs, orient="index", columns=X_design.columns)

def zero_coefficients(model) -> List[str]:
    pipe = _pipeline_of(model)
    names = pipe.named_steps["pre"].get_feature_names_out()
    coef = np.ravel(pipe.named_steps["reg"].coef_)
    return [n for n, c in zip(names, coef) if c == 0.0]

def plot_curve(curve: pd.DataFrame, param: str, outpath: Path, title: str, logx: bool = False) -> None:
    x = curve[param].astype(float)
    plt.figure(figsize=(7,4))
    plt.errorbar(x, curve["cv_RMSE_mean"], yerr=curve["cv_RMSE_std"], marker="o", capsize=2, label="CV RMSE")
    if "test_RMSE" in curve:
        plt.plot(x, curve["test_RMSE"], marker="s", label="Test RMSE")
    if logx:
        plt.xscale("log")
    plt.title(title)
    plt.xlabel(param); plt.ylabel("RMSE"); plt.legend(); plt.grid(True); plt.tight_layout()
    plt.savefig(outpath); plt.close()

def plot_coefficient_path(path: pd.DataFrame, best_alpha: float, outpath: Path, title: str) -> None:
    plt.figure(figsize=(8,5))
    for col in path.columns:
        plt.plot(path.index, path[col], label=col)
    plt.axvline(best_alpha, color="black", linestyle="--", label="CV alpha")
    plt.xscale("log")
    plt.title(title)
    plt.xlabel("alpha"); plt.ylabel("Coefficient"); plt.legend(fontsize=7); plt.grid(True); plt.tight_layout()
    plt.savefig(outpath); plt.close()

def plot_explained_variance(ratio: np.ndarray, outpath: Path) -> None:
    comps = np.arange(1, len(ratio) + 1)
    plt.figure(figsize=(7,4))
    plt.bar(comps, ratio, alpha=0.6, label="Component")
    plt.plot(comps, np.cumsum(ratio), marker="o", color="red", label="Cumulative")
    plt.title("PCA explained variance (training rows)")
    plt.xlabel("Component"); plt.ylabel("Explained variance ratio"); plt.legend(); plt.tight_layout()
    plt.savefig(outpath); plt.close()

def report_tuning(searches: Dict[str, GridSearchCV], fitted: Dict[str, object], X_tr, X_te, y_tr, y_te,
                  X_design: pd.DataFrame, config: AnalysisConfig, artifacts: Path) -> None:
    """Per-family tuning tables and plots."""
    y_fit = np.log1p(y_tr) if config.log_target else y_tr

    if "Polynomial" in searches:
        table = polynomial_degree_table(searches["Polynomial"], X_tr, y_tr, X_te, y_te)
        table.to_csv(artifacts / "polynomial_degrees.csv", index=False)
        print("\nPolynomial degree vs RMSE:")
        print(table.to_string(index=False))
        plot_curve(table, "degree", artifacts / "polynomial_degrees.png", "Polynomial regression")

    penalised = {
        "Ridge": Ridge(),
        "Lasso": Lasso(max_iter=10000),
        "ElasticNet": ElasticNet(max_iter=10000),
    }
    for name, estimator in penalised.items():
        if name not in searches:
            continue
        search = searches[name]
        params = _plain_params(search.best_params_)
        if name == "ElasticNet":
            estimator = estimator.set_params(l1_ratio=params["reg__l1_ratio"])
        alphas = search.param_grid[next(k for k in search.param_grid if k.endswith("reg__alpha"))]
        path = coefficient_path(X_design, y_fit, estimator, alphas)
        path.to_csv(artifacts / f"{name.lower()}_path.csv", index_label="alpha")
        plot_coefficient_path(path, params["reg__alpha"], artifacts / f"{name.lower()}_path.png",
                              f"{name} coefficient path")
        plot_curve(grid_curve(search, "alpha"), "alpha", artifacts / f"{name.lower()}_cv.png",
                   f"{name} CV RMSE", logx=True)

    if "Lasso" in fitted:
        zeros = zero_coefficients(fitted["Lasso"])
        print(f"\nLasso zeroed coefficients: {zeros if zeros else 'none'}")

    if "PCR" in searches:
        curve = grid_curve(searches["PCR"], "n_components")
        curve.to_csv(artifacts / "pcr_components.csv", index=False)
        plot_curve(curve, "n_components", artifacts / "pcr_components.png", "PCR: CV RMSE by components")
        ratio = PCA().fit(X_design).explained_variance_ratio_
        plot_explained_variance(ratio, artifacts / "pca_explained_variance.png")
        print("\nPCA cumulative explained variance:", np.round(np.cumsum(ratio), 4).tolist())

    if "PLS" in searches:
        curve = grid_curve(searches["PLS"], "n_components")
        curve.to_csv(artifacts / "pls_components.csv", index=False)
        plot_curve(curve, "n_components", artifacts / "pls_components.png", "PLS: CV RMSE by components")

    if "KNN" in searches:
        curve = grid_curve(searches["KNN"], "n_neighbors")
        curve.to_csv(artifacts / "knn_neighbors.csv", index=False)
        plot_curve(curve, "n_neighbors", artifacts / "knn_neighbors.png", "KNN: CV RMSE by k")

# ----------------------------- Reporting -----------------------------

def plot_model_comparison(results_df: pd.DataFrame, outpath: Path) -> None:
    ordered = results_df.sort_values("test_RMSE", ascending=False)
    plt.figure(figsize=(8,5))
    plt.barh(ordered["model"], ordered["test_RMSE"])
    plt.title("Held-out RMSE by model")
    plt.xlabel("Test RMSE (rings)"); plt.tight_layout()
    plt.savefig(outpath); plt.close()

def plot_predictions(y_true, y_pred, outpath: Path, title: str) -> None:
    y_true = np.ravel(y_true)
    y_pred = np.ravel(y_pred)
    lo, hi = min(y_true.min(), y_pred.min()), max(y_true.max(), y_pred.max())
    plt.figure(figsize=(6,6))
    plt.scatter(y_true, y_pred, s=8, alpha=0.5)
    plt.plot([lo, hi], [lo, hi], "r--", label="Perfect prediction")
    plt.title(title)
    plt.xlabel("Actual rings"); plt.ylabel("Predicted rings"); plt.legend(); plt.tight_layout()
    plt.savefig(outpath); plt.close()

# ----------------------------- Analysis -----------------------------

def run_analysis(config: AnalysisConfig) -> pd.DataFrame:
    """Run every step and return the comparison table sorted by held-out RMSE."""
    artifacts = Path(config.artifacts_dir)
    ensure_dir(artifacts)

    section("Data")
    raw = load_abalone(config.data_path, Path(config.data_dir), config.fetch)
    df, drops = clean_abalone(raw, keep_zero_height=config.keep_zero_height)
    print(f"Rows: {drops['rows_in']} in, {drops['dropped_missing']} dropped (missing), "
          f"{drops['dropped_zero_height']} dropped (height <= 0), {drops['rows_out']} kept")

    if not config.skip_eda:
        section("Exploratory summary")
        eda_snapshot(df, artifacts / "eda")

    X_tr, X_te, y_tr, y_te = split_train_test(df, config.test_size, config.seed)
    print(f"\nTrain rows: {len(X_tr)}  Test rows: {len(X_te)}  (seed={config.seed}, test_size={config.test_size})")
    X_tr_d, X_te_d, _ = prepare_design(X_tr, X_te)

    section("Linear regression (OLS)")
    _, ols_rmse = report_ols(X_tr_d, X_te_d, y_tr, y_te, artifacts)

    section("Cross-validated model family")
    rows, fitted, searches = fit_and_compare(X_tr, X_te, y_tr, y_te, config)
    linear = next(r for r in rows if r["model"] == "Linear")
    linear["ols_test_RMSE"] = ols_rmse
    print(f"Linear pipeline test RMSE {linear['test_RMSE']:.4f}  statsmodels OLS test RMSE {ols_rmse:.4f}")
    report_tuning(searches, fitted, X_tr, X_te, y_tr, y_te, X_tr_d, config, artifacts)

    section(f"Subset selection ({config.subset_criterion})")
    for direction in SUBSET_DIRECTIONS:
        selection = select_subset(X_tr_d, y_tr, direction, config.subset_criterion)
        selection.path.to_csv(artifacts / f"subset_{direction}.csv", index=False)
        print(f"{direction:<10} -> {selection.features}")
        rows.append(result_row(
            f"Subset ({direction})", y_tr, predict_subset(selection, X_tr_d),
            y_te, predict_subset(selection, X_te_d), float("nan"), float("nan"),
            {"criterion": selection.criterion, "features": selection.features},
        ))

    results_df = pd.DataFrame(rows).sort_values("test_RMSE").reset_index(drop=True)
    results_df.to_csv(artifacts / "model_comparison.csv", index=False)
    section("Model Comparison (sorted by held-out RMSE)")
    print(results_df.to_string(index=False))
    plot_model_comparison(results_df, artifacts / "model_comparison.png")

    # Subset rows are statsmodels fits; persist the best sklearn pipeline
    best_name = next(name for name in results_df["model"] if name in fitted)
    best_model = fitted[best_name]
    print(f"\nSelected best pipeline: {best_name}")
    plot_predictions(y_te, best_model.predict(X_te), artifacts / "best_predictions.png",
                     f"{best_name}: predicted vs actual (test)")
    joblib.dump(best_model, artifacts / "best_model.joblib")
    return results_df

# ----------------------------- Main Entry -----------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Compare regression models for abalone ring counts.")
    ap.add_argument("--data_path", type=str, default=None, help="abalone.data (headerless UCI) or a CSV with a header")
    ap.add_argument("--data_dir", type=str, default=".", help="Directory searched for abalone.data/abalone.csv")
    ap.add_argument("--fetch", action="store_true", help="Download the UCI dataset instead of reading a file")
    ap.add_argument("--artifacts_dir", type=str, default="./artifacts", help="Where to save outputs")
    ap.add_argument("--test_size", type=float, default=TEST_SIZE, help="Held-out proportion")
    ap.add_argument("--seed", type=int, default=RNG_SEED, help="Split and CV seed")
    ap.add_argument("--cv_folds", type=int, default=CV_FOLDS, help="K for K-fold CV on the training rows")
    ap.add_argument("--poly_degrees", type=int, nargs="+", default=[1, 2, 3], help="Candidate polynomial degrees")
    ap.add_argument("--max_k", type=int, default=50, help="Largest k tried for KNN")
    ap.add_argument("--subset_criterion", choices=SUBSET_CRITERIA, default="bic", help="Subset size criterion")
    ap.add_argument("--log_target", action="store_true", help="Fit sklearn models on log1p(rings)")
    ap.add_argument("--keep_zero_height", action="store_true", help="Keep rows with height <= 0")
    ap.add_argument("--skip_eda", action="store_true", help="Skip the EDA snapshot")
    ap.add_argument("--n_jobs", type=int, default=-1, help="Parallel jobs for CV")
    return ap

def main(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)
    config = AnalysisConfig(
        data_path=Path(args.data_path) if args.data_path else None,
        data_dir=Path(args.data_dir),
        fetch=args.fetch,
        artifacts_dir=Path(args.artifacts_dir),
        test_size=args.test_size,
        seed=args.seed,
        cv_folds=args.cv_folds,
        poly_degrees=tuple(args.poly_degrees),
        max_k=args.max_k,
        log_target=args.log_target,
        keep_zero_height=args.keep_zero_height,
        skip_eda=args.skip_eda,
        subset_criterion=args.subset_criterion,
        n_jobs=args.n_jobs,
    )
    run_analysis(config)

    print(f"\nArtifacts saved to: {Path(config.artifacts_dir).resolve()}")
    print(" - EDA figures & tables")
    print(" - OLS summary diagnostics + VIF")
    print(" - Tuning curves and coefficient paths")
    print(" - Subset selection paths")
    print(" - Model comparison CSV + plots")
    print(" - best_model.joblib")

if __name__ == "__main__":
    main()
