import numpy as np
import pandas as pd
import pytest

from series_datasets import load_all_datasets, load_series_csv


def _write(path, values, extra_text=True):
    cols = {}
    if extra_text:
        cols["date"] = [f"2020-01-{i % 28 + 1:02d}" for i in range(len(values))]
    cols["value"] = values
    pd.DataFrame(cols).to_csv(path, index=False)


def test_first_numeric_column_and_prefix_stripped(tmp_path):
    path = tmp_path / "01_sunspots.csv"
    _write(path, [1.0, 2.0, 3.0])

    values, name = load_series_csv(str(path))

    assert name == "sunspots"
    np.testing.assert_array_equal(values, [1.0, 2.0, 3.0])


def test_name_without_prefix_is_kept(tmp_path):
    path = tmp_path / "river_flow.csv"
    _write(path, [1.0, 2.0, 3.0])
    assert load_series_csv(str(path))[1] == "river_flow"


def test_named_column_and_nan_rows(tmp_path):
    path = tmp_path / "02_temp.csv"
    pd.DataFrame({"a": [1.0, 2.0, 3.0], "b": [4.0, np.nan, 6.0]}).to_csv(path, index=False)

    values, _ = load_series_csv(str(path), column="b")
    np.testing.assert_array_equal(values, [4.0, 6.0])

    with pytest.raises(ValueError):
        load_series_csv(str(path), column="c")


def test_no_numeric_column_raises(tmp_path):
    path = tmp_path / "03_text.csv"
    pd.DataFrame({"label": ["x", "y", "z"]}).to_csv(path, index=False)
    with pytest.raises(ValueError):
        load_series_csv(str(path))


def test_load_all_sorted_and_truncated(tmp_path):
    _write(tmp_path / "02_b.csv", np.arange(1.0, 41.0))
    _write(tmp_path / "01_a.csv", np.arange(1.0, 31.0))

    series_list, names = load_all_datasets(str(tmp_path))

    assert names == ["a", "b"]
    assert [len(s) for s in series_list] == [30, 30]
    np.testing.assert_array_equal(series_list[1], np.arange(1.0, 31.0))


def test_explicit_length(tmp_path):
    _write(tmp_path / "01_a.csv", np.arange(1.0, 31.0))
    series_list, _ = load_all_datasets(str(tmp_path), length=10)
    assert len(series_list[0]) == 10

    with pytest.raises(ValueError):
        load_all_datasets(str(tmp_path), length=31)
    with pytest.raises(ValueError):
        load_all_datasets(str(tmp_path), length=2)


def test_empty_folder_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_all_datasets(str(tmp_path))
