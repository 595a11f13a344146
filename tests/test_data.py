import json
from types import SimpleNamespace

import numpy as np
import pytest

import abalone_rings as ar


@pytest.mark.parametrize("raw", ["Whole weight", "Whole.weight", "Whole_weight", " whole-weight "])
def test_normalise_column(raw):
    assert ar.normalise_column(raw) == "whole_weight"


def test_read_headerless_uci_file(abalone_file, abalone_df):
    df = ar.read_abalone_csv(abalone_file)
    assert list(df.columns) == ar.COLUMNS
    assert len(df) == len(abalone_df)
    np.testing.assert_allclose(df["shell_weight"], abalone_df["shell_weight"])


def test_read_csv_with_header_normalises_names(tmp_path, abalone_df):
    pretty = {c: c.replace("_", ".").capitalize() for c in ar.COLUMNS}
    path = tmp_path / "abalone.csv"
    abalone_df.rename(columns=pretty).to_csv(path, index=False)

    df = ar.read_abalone_csv(path)
    assert list(df.columns) == ar.COLUMNS
    assert set(df["sex"]) == {"M", "F", "I"}


def test_extra_columns_are_dropped(tmp_path, abalone_df):
    path = tmp_path / "abalone.csv"
    abalone_df.assign(id=range(len(abalone_df))).to_csv(path, index=False)
    assert list(ar.read_abalone_csv(path).columns) == ar.COLUMNS


def test_load_finds_file_in_data_dir(abalone_file):
    df = ar.load_abalone(data_dir=abalone_file.parent)
    assert len(df) > 0


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        ar.load_abalone(data_path=tmp_path / "nope.data")


def test_missing_column_raises(abalone_df):
    with pytest.raises(ValueError, match="shell_weight"):
        ar.validate_schema(abalone_df.drop(columns=["shell_weight"]))


def test_unknown_sex_level_raises(abalone_df):
    bad = abalone_df.copy()
    bad.loc[0, "sex"] = "X"
    with pytest.raises(ValueError, match="sex"):
        ar.validate_schema(bad)


def test_lowercase_sex_is_accepted(abalone_df):
    df = abalone_df.copy()
    df["sex"] = df["sex"].str.lower()
    assert set(ar.validate_schema(df)["sex"]) == {"M", "F", "I"}


def test_non_numeric_measurement_raises(abalone_df):
    bad = abalone_df.astype({"length": object})
    bad.loc[3, "length"] = "long"
    with pytest.raises(ValueError, match="length"):
        ar.validate_schema(bad)


def test_clean_drops_missing_and_zero_height(abalone_df):
    df = abalone_df.copy()
    df.loc[0, "height"] = 0.0
    df.loc[1, "whole_weight"] = np.nan

    clean, report = ar.clean_abalone(df)
    assert report == {"rows_in": len(df), "dropped_missing": 1,
                      "dropped_zero_height": 1, "rows_out": len(df) - 2}
    assert len(clean) == len(df) - 2
    assert (clean["height"] > 0).all()
    assert list(clean.index) == list(range(len(clean)))


def test_clean_can_keep_zero_height(abalone_df):
    df = abalone_df.copy()
    df.loc[0, "height"] = 0.0
    clean, report = ar.clean_abalone(df, keep_zero_height=True)
    assert report["dropped_zero_height"] == 0
    assert len(clean) == len(df)


def test_eda_snapshot_writes_tables_and_plots(tmp_path, abalone_df):
    ar.eda_snapshot(abalone_df, tmp_path)
    for name in ["meta.json", "describe.csv", "rings_by_sex.csv", "correlation.csv",
                 "rings_hist.png", "correlation_heatmap.png", "rings_by_sex.png"]:
        assert (tmp_path / name).exists(), name
    meta = json.loads((tmp_path / "meta.json").read_text())
    assert meta["n_rows"] == len(abalone_df)
    assert meta["n_categorical"] == 1


def test_headerless_file_with_missing_sex_in_first_row(tmp_path, abalone_df):
    df = abalone_df.copy()
    df.loc[0, "sex"] = np.nan
    path = tmp_path / "abalone.data"
    df.to_csv(path, header=False, index=False)

    loaded = ar.read_abalone_csv(path)
    assert list(loaded.columns) == ar.COLUMNS
    assert len(loaded) == len(df)
    _, report = ar.clean_abalone(loaded)
    assert report["dropped_missing"] == 1


def test_headerless_file_with_byte_order_mark(tmp_path, abalone_df):
    path = tmp_path / "abalone.data"
    path.write_bytes(b"\xef\xbb\xbf" + abalone_df.to_csv(header=False, index=False).encode("utf-8"))

    loaded = ar.read_abalone_csv(path)
    assert len(loaded) == len(abalone_df)
    assert loaded.loc[0, "sex"] == abalone_df.loc[0, "sex"]


def test_headed_csv_with_byte_order_mark(tmp_path, abalone_df):
    path = tmp_path / "abalone.csv"
    path.write_bytes(b"\xef\xbb\xbf" + abalone_df.to_csv(index=False).encode("utf-8"))
    assert list(ar.read_abalone_csv(path).columns) == ar.COLUMNS


def test_lookup_without_path_raises_when_nothing_found(tmp_path, monkeypatch):
    empty = tmp_path / "empty"
    empty.mkdir()
    monkeypatch.chdir(empty)
    with pytest.raises(FileNotFoundError, match="--fetch"):
        ar.load_abalone(data_dir=tmp_path)


def test_fetch_normalises_uci_column_names(monkeypatch, abalone_df):
    uci_names = {
        "sex": "Sex", "length": "Length", "diameter": "Diameter", "height": "Height",
        "whole_weight": "Whole_weight", "shucked_weight": "Shucked_weight",
        "viscera_weight": "Viscera_weight", "shell_weight": "Shell_weight",
    }
    features = abalone_df.drop(columns=[ar.TARGET]).rename(columns=uci_names)
    targets = abalone_df[[ar.TARGET]].rename(columns={ar.TARGET: "Rings"})
    calls = []

    def fake_fetch(id):
        calls.append(id)
        return SimpleNamespace(data=SimpleNamespace(features=features, targets=targets))

    monkeypatch.setattr("ucimlrepo.fetch_ucirepo", fake_fetch)

    df = ar.load_abalone(fetch=True)
    assert calls == [ar.UCI_ABALONE_ID]
    assert list(df.columns) == ar.COLUMNS
    np.testing.assert_allclose(df["rings"], abalone_df["rings"])
