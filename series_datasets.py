# series_datasets.py
"""
Load the univariate series used for the gap-injection experiments from
local CSV files.

Every ``*.csv`` file under DATA_DIR is one dataset, taken in sorted file-name
order (the dataset id used by the block scripts is the 1-based position in
that order):

  data/
    01_sunspots.csv
    02_temperature.csv
    03_streamflow.csv

The series is the first numeric column unless a column name is given.
Series are expected to be pre-cleaned; any NaN rows are dropped here and
all series are truncated to a common length so methods are compared on
equal footing.
"""

import glob
import os
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

DATA_DIR = "data"

# Common length used by the paper-style runs; None -> shortest series
DEFAULT_LENGTH: Optional[int] = None


# -------------------------------------------------------------------------
# Single-file loader
# -------------------------------------------------------------------------
def load_series_csv(path: str, column: Optional[str] = None) -> Tuple[np.ndarray, str]:
    """
    Read one numeric column from a CSV file.

    Returns (values, name) where name is the file stem without a leading
    ordering prefix such as "01_".
    """
    df = pd.read_csv(path)

    if column is None:
        num_cols = [c for c in df.columns if pd.api.types.is_numeric_dtype(df[c])]
        if not num_cols:
            raise ValueError(f"No numeric column found in {path!r}.")
        column = num_cols[0]
    elif column not in df.columns:
        raise ValueError(f"Column {column!r} not found in {path!r}.")

    values = df[column].astype(float).dropna().to_numpy()

    stem = os.path.splitext(os.path.basename(path))[0]
    prefix, _, rest = stem.partition("_")
    name = rest if prefix.isdigit() and rest else stem

    return values, name


# -------------------------------------------------------------------------
# Unified loader
# -------------------------------------------------------------------------
def load_all_datasets(data_dir: str = DATA_DIR, length: Optional[int] = DEFAULT_LENGTH) -> Tuple[List[np.ndarray], List[str]]:
    """
    Load every CSV in `data_dir` (sorted by file name) and truncate all
    series to a common length.

    Parameters
    ----------
    data_dir : str
        Folder containing one CSV per dataset.
    length : int, optional
        Common length. Defaults to the length of the shortest series.

    Returns
    -------
    series_list, names
    """
    files = sorted(glob.glob(os.path.join(data_dir, "*.csv")))
    if not files:
        raise FileNotFoundError(f"No dataset files found under {data_dir!r}")

    series_list = []
    names = []
    for path in files:
        values, name = load_series_csv(path)
        series_list.append(values)
        names.append(name)

    shortest = min(len(s) for s in series_list)
    if length is None:
        length = shortest
    if length > shortest:
        raise ValueError(f"Requested length {length} exceeds the shortest series ({shortest}).")
    if length < 3:
        raise ValueError(f"Series must have at least 3 points, got length {length}.")

    series_list = [s[:length].copy() for s in series_list]
    return series_list, names
