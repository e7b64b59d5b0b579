#%%
"""
interp_validation.py

Framework for benchmarking univariate interpolation methods against
synthetically damaged time series.

The workflow has four stages:
    1. a gap generator that removes contiguous blocks of values from a
       complete series under (proportion missing, gap width) constraints,
    2. an experiment runner that applies every registered interpolation
       method to every (dataset, proportion, gap width, replicate) cell,
    3. a metric engine computing 17 performance criteria per imputed series,
    4. aggregation over replicates and selection of the best method per
       criterion, plus an overall majority winner per condition.

To use it as a library:
    - provide an ordered collection of (name, series) pairs
    - pick interpolators with `interpolators.build_interpolators(...)`
    - call `run_benchmark(...)`

The pieces can also be called one by one (`run_experiment`,
`score_results`, `aggregate`, `select_best`, `summarize`), which is what the
block scripts `run_one_block.py` / `run_parallel_blocks.py` do.
"""

import os

# ---------------------------------------------------------------------------
# Limit BLAS/OMP threads so that parallel evaluations don't oversubscribe.
# This is helpful on HPC or when using joblib. Adjust/remove if not needed.
# ---------------------------------------------------------------------------
os.environ["OMP_NUM_THREADS"] = "1"
os.environ["OPENBLAS_NUM_THREADS"] = "1"
os.environ["MKL_NUM_THREADS"] = "1"
os.environ["VECLIB_MAXIMUM_THREADS"] = "1"
os.environ["NUMEXPR_NUM_THREADS"] = "1"

# ---------------------------------------------------------------------------
# Standard libraries
# ---------------------------------------------------------------------------
import math
import warnings
import zlib
from collections import namedtuple
from typing import Callable, Dict, Iterator, List, Optional, Tuple

# ---------------------------------------------------------------------------
# Third-party libraries
# ---------------------------------------------------------------------------
import numpy as np
import pandas as pd
from joblib import Parallel, delayed


# -----------------------------------------------------------------------------
# Public API (exported symbols)
# -----------------------------------------------------------------------------
__all__ = [
    # Errors and markers
    "ConfigurationError",
    "GenerationWarning",
    "AlgorithmFailure",
    "MetricUndefined",
    "UNDEFINED",
    "is_undefined",
    # Gap generator
    "check_gap_parameters",
    "effective_missing_count",
    "generate_gaps",
    # Experiment grid and runner
    "ExperimentKey",
    "replicate_seed",
    "check_experiment_config",
    "ResultTensor",
    "run_experiment",
    # Metrics
    "METRIC_NAMES",
    "METRIC_DIRECTIONS",
    "score",
    "score_results",
    # Aggregation and selection
    "aggregate",
    "select_best",
    "summarize",
    # Utilities
    "run_benchmark",
    "flatten_results",
    "numeric_table",
]

# ---------------------------------------------------------------------------
# Defaults used in the experiments (can be overridden by the user)
# ---------------------------------------------------------------------------
BASE_SEED = 42

DEFAULT_PROPORTIONS: List[float] = [0.05, 0.10, 0.15, 0.20, 0.25, 0.30]
DEFAULT_GAP_WIDTHS: List[int] = [1, 5, 10, 20]
DEFAULT_N_REPLICATES = 100

METRIC_NAMES: List[str] = [
    "pearson_r",
    "r_squared",
    "abs_diff",
    "mean_bias",
    "mean_error",
    "mean_abs_error",
    "mean_rel_error",
    "mean_abs_rel_error",
    "mean_abs_pct_error",
    "sse",
    "mse",
    "rms_rel_error",
    "nmse",
    "reduction_of_error",
    "rmse",
    "nrmse",
    "rms_std_error",
]

# "max": larger is better, "min": smaller is better
METRIC_DIRECTIONS: Dict[str, str] = {
    name: ("max" if name in ("pearson_r", "r_squared", "reduction_of_error") else "min")
    for name in METRIC_NAMES
}

CONDITION_COLUMNS = ["dataset", "proportion", "gap_width"]
EVALUATION_COLUMNS = CONDITION_COLUMNS + ["algorithm", "n_replicates", "n_failures"] + METRIC_NAMES
BEST_COLUMNS = CONDITION_COLUMNS + ["metric", "direction", "best_algorithm", "best_value"]
SUMMARY_COLUMNS = CONDITION_COLUMNS + ["best_algorithm", "n_wins", "n_criteria"]


# =============================================================================
# Errors, warnings and result markers
# =============================================================================
class ConfigurationError(ValueError):
    """Invalid experiment parameters; raised before any simulation runs."""


class GenerationWarning(UserWarning):
    """The missing count had to change: rounded to a multiple of the gap width, or raised to every interior position."""


class AlgorithmFailure:
    """
    Marker stored in place of an imputed series when an algorithm raised, or
    returned something that is not a complete series of the right length.
    """

    def __init__(self, algorithm: str, key, reason: str):
        self.algorithm = algorithm
        self.key = key
        self.reason = reason

    def __repr__(self):
        return f"AlgorithmFailure(algorithm={self.algorithm!r}, key={self.key!r}, reason={self.reason!r})"


class MetricUndefined:
    """
    Singleton sentinel for a metric that is mathematically undefined for a
    comparison (division by an exact zero). Distinct from NaN and from
    AlgorithmFailure; aggregation and selection treat it as absent.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "UNDEFINED"

    def __str__(self):
        return "UNDEFINED"

    def __reduce__(self):
        # pickle by reference so joblib workers and block files keep identity
        return "UNDEFINED"


UNDEFINED = MetricUndefined()


def is_undefined(value) -> bool:
    return value is UNDEFINED


def _is_comparable(value) -> bool:
    if value is None or value is UNDEFINED:
        return False
    try:
        return not np.isnan(value)
    except TypeError:
        return False


# =============================================================================
# Gap Generator
# =============================================================================
"""
Missingness is injected as contiguous blocks ("gaps") of a fixed width into
the interior of a complete series. The first and last positions are always
kept so that every interpolator has an anchor on both sides.

Missing count rule:
    exact = proportion_missing * n
    if exact is not a whole multiple of gap_width, the number of blocks is
    rounded down when the fractional remainder is <= 0.5 and up otherwise.
    The rounding is reported as a GenerationWarning.
"""

_ROUND_TOL = 1e-9


def _as_series(series) -> np.ndarray:
    x = np.asarray(series, dtype=float)
    if x.ndim != 1:
        raise ConfigurationError(f"Series must be one-dimensional, got shape {x.shape}.")
    return x


def check_gap_parameters(n: int, proportion_missing: float, gap_width: int) -> None:
    """
    Validate one (series length, proportion, gap width) combination.

    Raises ConfigurationError when:
      - n <= 2
      - gap_width is not a positive integer
      - proportion_missing is outside [0, (n - 2) / n]
      - proportion_missing * gap_width >= n - 2
    """
    if n <= 2:
        raise ConfigurationError(f"Series length must be > 2, got {n}.")

    if isinstance(gap_width, (bool, np.bool_)) or not isinstance(gap_width, (int, np.integer)):
        raise ConfigurationError(f"gap_width must be a positive integer, got {gap_width!r}.")
    if gap_width < 1:
        raise ConfigurationError(f"gap_width must be a positive integer, got {gap_width}.")

    try:
        p = float(proportion_missing)
    except (TypeError, ValueError):
        raise ConfigurationError(f"proportion_missing must be a number, got {proportion_missing!r}.")
    if not np.isfinite(p) or p < 0 or p > (n - 2) / n:
        raise ConfigurationError(
            f"proportion_missing must be in [0, {(n - 2) / n:.4f}] for n={n}, got {p}."
        )

    if p * gap_width >= n - 2:
        raise ConfigurationError(
            f"proportion_missing * gap_width must be < n - 2 "
            f"({p} * {gap_width} >= {n - 2})."
        )


def effective_missing_count(n: int, proportion_missing: float, gap_width: int) -> Tuple[int, bool]:
    """
    Return (effective missing count, was_rounded).

    The count is always a multiple of gap_width; `was_rounded` tells whether
    proportion_missing * n had to be moved to reach that multiple.
    """
    exact = float(proportion_missing) * n
    blocks = exact / gap_width

    nearest = round(blocks)
    if math.isclose(blocks, nearest, rel_tol=0.0, abs_tol=_ROUND_TOL):
        return int(nearest) * gap_width, False

    lower = math.floor(blocks)
    frac = blocks - lower
    n_blocks = lower if frac <= 0.5 + _ROUND_TOL else lower + 1
    return int(n_blocks) * gap_width, True


def _draw_gap_positions(n: int, target: int, gap_width: int, rng: np.random.Generator) -> np.ndarray:
    """
    Draw `target` interior positions as non-overlapping blocks of `gap_width`.

    Availability is tracked with a shrinking, sorted pool of interior
    positions. A block start is eligible when the next gap_width pool entries
    are consecutive integers. Only whole blocks are drawn; a trailing
    remainder shorter than gap_width (only possible when `target` is not a
    multiple of it) is taken as the last block. If the pool becomes too
    fragmented to hold the next block, the pool counts as exhausted and every
    interior position is returned.
    """
    interior = np.arange(1, n - 1)
    if target >= interior.size:
        return interior

    pool = interior
    chosen = []
    remaining = target

    while remaining > 0:
        width = gap_width if remaining >= gap_width else remaining
        if pool.size < width:
            return interior
        span = pool[width - 1:] - pool[: pool.size - width + 1]
        starts = np.flatnonzero(span == width - 1)
        if starts.size == 0:
            return interior

        i = int(starts[rng.integers(starts.size)])
        chosen.append(pool[i:i + width])
        pool = np.delete(pool, np.s_[i:i + width])
        remaining -= width

    return np.sort(np.concatenate(chosen))


def generate_gaps(
    series,
    proportion_missing: float,
    gap_width: int,
    *,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> np.ndarray:
    """
    Return a copy of `series` with contiguous blocks replaced by NaN.

    Parameters
    ----------
    series : array-like of float
        Complete series (no NaN), length n > 2.
    proportion_missing : float
        Fraction of the n positions to remove.
    gap_width : int
        Width of each removed block.
    rng : numpy.random.Generator, optional
        Source of randomness. Takes precedence over `seed`.
    seed : int, optional
        Seed for a fresh generator when `rng` is not given.

    Returns
    -------
    gapped : numpy.ndarray
        Same length as `series`; positions 0 and n-1 are never missing.
    """
    x = _as_series(series)
    n = x.size
    check_gap_parameters(n, proportion_missing, gap_width)
    if not np.all(np.isfinite(x)):
        raise ConfigurationError("Series must be complete (no NaN/inf) before gaps are injected.")

    target, rounded = effective_missing_count(n, proportion_missing, gap_width)
    if rounded:
        warnings.warn(
            f"Requested {float(proportion_missing) * n:g} missing values is not a multiple of "
            f"gap_width={gap_width}; using {target} instead.",
            GenerationWarning,
            stacklevel=2,
        )

    gapped = x.copy()
    if target == 0:
        return gapped

    if rng is None:
        rng = np.random.default_rng(seed)
    positions = _draw_gap_positions(n, target, int(gap_width), rng)
    if positions.size != target:
        warnings.warn(
            f"Available positions exhausted before placing {target} values in blocks of "
            f"{gap_width}; every interior position ({positions.size}) is marked missing.",
            GenerationWarning,
            stacklevel=2,
        )
    gapped[positions] = np.nan
    return gapped


#%%
# =============================================================================
# Experiment grid (keys, seeding, result tensor)
# =============================================================================
ExperimentKey = namedtuple("ExperimentKey", ["dataset", "proportion", "gap_width", "replicate"])


def replicate_seed(random_seed: int, key: ExperimentKey) -> np.random.SeedSequence:
    """
    Deterministic per-replicate seed derived from the experiment key values
    (not from loop positions), so a replicate draws the same gaps whatever
    the scheduling order, the block split or the list order of the grid.
    """
    dataset_code = zlib.crc32(str(key.dataset).encode("utf-8"))
    proportion_code = int(round(float(key.proportion) * 1_000_000))
    return np.random.SeedSequence(
        [int(random_seed), dataset_code, proportion_code, int(key.gap_width), int(key.replicate)]
    )


def _as_dataset_dict(datasets) -> Dict[str, np.ndarray]:
    """Normalise {name: series} or [(name, series), ...] to an ordered dict of read-only arrays."""
    items = datasets.items() if isinstance(datasets, dict) else datasets
    out: Dict[str, np.ndarray] = {}
    for name, series in items:
        if name in out:
            raise ConfigurationError(f"Duplicate dataset name: {name!r}")
        x = _as_series(series).copy()
        x.setflags(write=False)
        out[name] = x
    return out


def _as_algorithm_dict(algorithms) -> Dict[str, Callable]:
    items = algorithms.items() if isinstance(algorithms, dict) else algorithms
    out: Dict[str, Callable] = {}
    for name, fn in items:
        if name in out:
            raise ConfigurationError(f"Duplicate algorithm id: {name!r}")
        if not callable(fn):
            raise ConfigurationError(f"Algorithm {name!r} is not callable.")
        out[name] = fn
    return out


def check_experiment_config(
    datasets,
    algorithms,
    proportions: List[float],
    gap_widths: List[int],
    n_replicates: int,
    random_seed: int = BASE_SEED,
) -> Dict[str, np.ndarray]:
    """
    Validate a full experiment before anything is drawn.

    Returns the normalised dataset dict. Raises ConfigurationError on the
    first invalid parameter and emits one GenerationWarning for every
    (dataset, proportion, gap width) whose missing count gets rounded.
    """
    data = _as_dataset_dict(datasets)
    if not data:
        raise ConfigurationError("At least one dataset is required.")
    if not _as_algorithm_dict(algorithms):
        raise ConfigurationError("At least one algorithm is required.")

    if isinstance(n_replicates, (bool, np.bool_)) or not isinstance(n_replicates, (int, np.integer)) or n_replicates < 1:
        raise ConfigurationError(f"n_replicates must be a positive integer, got {n_replicates!r}.")
    if isinstance(random_seed, (bool, np.bool_)) or not isinstance(random_seed, (int, np.integer)) or random_seed < 0:
        raise ConfigurationError(f"random_seed must be a non-negative integer, got {random_seed!r}.")

    proportions = list(proportions)
    gap_widths = list(gap_widths)
    if not proportions or not gap_widths:
        raise ConfigurationError("proportions and gap_widths must be non-empty.")
    if len(set(proportions)) != len(proportions) or len(set(gap_widths)) != len(gap_widths):
        raise ConfigurationError("proportions and gap_widths must not contain duplicates.")
    for p in proportions:
        if not (0.0 <= float(p) < 1.0):
            raise ConfigurationError(f"Proportions must lie in [0, 1), got {p}.")

    for name, x in data.items():
        if not np.all(np.isfinite(x)):
            raise ConfigurationError(f"Dataset {name!r} contains missing or non-finite values.")
        for p in proportions:
            for w in gap_widths:
                check_gap_parameters(x.size, p, w)

    for name, x in data.items():
        for p in proportions:
            for w in gap_widths:
                target, rounded = effective_missing_count(x.size, p, w)
                if rounded:
                    warnings.warn(
                        f"{name}: proportion={p}, gap_width={w} -> {float(p) * x.size:g} "
                        f"missing values requested, using {target}.",
                        GenerationWarning,
                        stacklevel=2,
                    )
    return data


class ResultTensor:
    """
    Write-once mapping over the five experiment axes

        (dataset, algorithm, proportion, gap_width, replicate)

    Cells are addressed as ``tensor[experiment_key, algorithm]`` and hold
    either an imputed series (read-only numpy array) or an AlgorithmFailure.
    Axis order is the order given at construction and is what aggregation
    and reporting iterate over.
    """

    AXES = ("dataset", "algorithm", "proportion", "gap_width", "replicate")

    def __init__(self, datasets, algorithms, proportions, gap_widths, n_replicates: int):
        self.datasets = list(datasets)
        self.algorithms = list(algorithms)
        self.proportions = list(proportions)
        self.gap_widths = list(gap_widths)
        self.replicates = list(range(int(n_replicates)))
        self._cells: Dict[Tuple[ExperimentKey, str], object] = {}

    @property
    def shape(self) -> Tuple[int, int, int, int, int]:
        return (
            len(self.datasets),
            len(self.algorithms),
            len(self.proportions),
            len(self.gap_widths),
            len(self.replicates),
        )

    def conditions(self) -> Iterator[Tuple[str, float, int]]:
        """Iterate over (dataset, proportion, gap_width) in axis order."""
        for dataset in self.datasets:
            for p in self.proportions:
                for w in self.gap_widths:
                    yield dataset, p, w

    def replicate_keys(self, dataset, proportion, gap_width) -> List[ExperimentKey]:
        return [ExperimentKey(dataset, proportion, gap_width, r) for r in self.replicates]

    def experiment_keys(self) -> Iterator[ExperimentKey]:
        for dataset, p, w in self.conditions():
            yield from self.replicate_keys(dataset, p, w)

    def _check_index(self, index):
        try:
            key, algorithm = index
        except (TypeError, ValueError):
            raise KeyError(f"Index must be (ExperimentKey, algorithm), got {index!r}")
        key = ExperimentKey(*key)
        if (
            key.dataset not in self.datasets
            or key.proportion not in self.proportions
            or key.gap_width not in self.gap_widths
            or key.replicate not in self.replicates
            or algorithm not in self.algorithms
        ):
            raise KeyError(f"Index outside tensor axes: {index!r}")
        return key, algorithm

    def __setitem__(self, index, value):
        index = self._check_index(index)
        if index in self._cells:
            raise ValueError(f"Cell {index!r} has already been written.")
        self._cells[index] = value

    def __getitem__(self, index):
        return self._cells[self._check_index(index)]

    def get(self, index, default=None):
        return self._cells.get(tuple(index), default)

    def __contains__(self, index):
        return tuple(index) in self._cells

    def __len__(self):
        return len(self._cells)

    def __iter__(self):
        return iter(self._cells)

    def items(self):
        return self._cells.items()

    def failures(self) -> List[AlgorithmFailure]:
        return [v for v in self._cells.values() if isinstance(v, AlgorithmFailure)]

    def is_complete(self) -> bool:
        return len(self._cells) == int(np.prod(self.shape))

    def __repr__(self):
        return f"ResultTensor(shape={self.shape}, filled={len(self._cells)})"


#%%
# =============================================================================
# Parallel runner
# =============================================================================
def _impute_one(fn: Callable, gapped: np.ndarray, key: ExperimentKey, name: str):
    """Run one algorithm on one gapped series; failures become markers."""
    try:
        filled = np.asarray(fn(gapped.copy()), dtype=float)
    except Exception as e:
        print(f"[run_experiment] WARNING: {name} failed on {tuple(key)}: {e!r}")
        return AlgorithmFailure(name, key, f"{type(e).__name__}: {e}")

    if filled.shape != gapped.shape:
        return AlgorithmFailure(
            name, key, f"returned shape {filled.shape}, expected {gapped.shape}"
        )
    n_left = int(np.isnan(filled).sum())
    if n_left:
        return AlgorithmFailure(name, key, f"left {n_left} missing value(s)")

    filled.setflags(write=False)
    return filled


def _run_unit(series: np.ndarray, key: ExperimentKey, algorithms: Dict[str, Callable], random_seed: int):
    """
    One unit of work: draw the replicate's gaps from its own generator and
    run the given algorithms on it. Returns [((key, algorithm), value), ...].
    """
    rng = np.random.default_rng(replicate_seed(random_seed, key))
    with warnings.catch_warnings():
        # already reported once per condition by check_experiment_config
        warnings.simplefilter("ignore", GenerationWarning)
        gapped = generate_gaps(series, key.proportion, key.gap_width, rng=rng)

    return [((key, name), _impute_one(fn, gapped, key, name)) for name, fn in algorithms.items()]


def run_experiment(
    datasets,
    algorithms,
    proportions: List[float],
    gap_widths: List[int],
    n_replicates: int,
    *,
    random_seed: int = BASE_SEED,
    n_jobs: int = 1,
    backend: Optional[str] = None,
    split_algorithms: bool = False,
    verbose: int = 0,
    progress_callback=None,
) -> ResultTensor:
    """
    Apply every algorithm to every (dataset, proportion, gap_width, replicate)
    cell and return the filled ResultTensor.

    Parallelism:
    ------------
    - Units of work are replicates (all algorithms share one gapped draw), or
      (replicate, algorithm) pairs when `split_algorithms=True`. Each unit
      regenerates its gaps from `replicate_seed(random_seed, key)`, so both
      splits, any `n_jobs` and any backend give identical tensors.
    - Units are dispatched with joblib.Parallel(n_jobs, backend).
    - A failing algorithm only marks its own cell.
    - `progress_callback(done_units, total_units)` is called in the parent
      process as units complete.
    """
    data = check_experiment_config(
        datasets, algorithms, proportions, gap_widths, n_replicates, random_seed
    )
    algos = _as_algorithm_dict(algorithms)
    tensor = ResultTensor(data.keys(), algos.keys(), proportions, gap_widths, n_replicates)

    keys = list(tensor.experiment_keys())
    if split_algorithms:
        units = [(key, [name]) for key in keys for name in algos]
    else:
        units = [(key, list(algos)) for key in keys]

    print(
        f"[run_experiment] {len(data)} dataset(s) x {len(algos)} algorithm(s) x "
        f"{len(tensor.proportions)} proportion(s) x {len(tensor.gap_widths)} gap width(s) x "
        f"{n_replicates} replicate(s) = {len(keys) * len(algos)} cells "
        f"in {len(units)} units (n_jobs={n_jobs})"
    )

    outputs = Parallel(n_jobs=n_jobs, backend=backend, verbose=verbose, return_as="generator")(
        delayed(_run_unit)(
            data[key.dataset], key, {name: algos[name] for name in names}, random_seed
        )
        for key, names in units
    )

    for done, cells in enumerate(outputs, start=1):
        for index, value in cells:
            tensor[index] = value
        if progress_callback is not None:
            progress_callback(done, len(units))

    n_failed = len(tensor.failures())
    if n_failed:
        print(f"[run_experiment] {n_failed} cell(s) recorded as AlgorithmFailure.")
    return tensor


#%%
# =============================================================================
# Metric engine
# =============================================================================
"""
Seventeen criteria comparing a ground-truth series x with an imputed series
X (both length n):

    pearson_r            Pearson correlation
    r_squared            pearson_r ** 2
    abs_diff             sum |x - X|
    mean_bias            mean (X - x)
    mean_error           mean (x - X)
    mean_abs_error       |sum (x - X)| / n
    mean_rel_error       sum ((x - X) / x)
    mean_abs_rel_error   mean |(x - X) / x|
    mean_abs_pct_error   100 * mean_abs_rel_error
    sse                  sum (x - X)^2
    mse                  sse / n
    rms_rel_error        sqrt(mean(((X - x) / x)^2))
    nmse                 sse / sum (x - mean(x))^2
    reduction_of_error   1 - nmse
    rmse                 sqrt(mse)
    nrmse                100 * rmse / (max(x) - min(x))
    rms_std_error        sqrt(mean(((X - x) / sd(x))^2)), sd with ddof=1

The relative family is UNDEFINED when x contains an exact zero and
rms_std_error is UNDEFINED when sd(x) is exactly zero. Everything else is
computed as is, inf/NaN included.
"""

_RELATIVE_METRICS = ("mean_rel_error", "mean_abs_rel_error", "mean_abs_pct_error", "rms_rel_error")


def score(original, imputed) -> Dict[str, object]:
    """Return the metric vector {name: float | UNDEFINED} in METRIC_NAMES order."""
    x = np.asarray(original, dtype=float)
    X = np.asarray(imputed, dtype=float)
    if x.shape != X.shape:
        raise ValueError(f"Length mismatch: original {x.shape} vs imputed {X.shape}.")
    n = x.size

    vals: Dict[str, object] = {}
    with np.errstate(all="ignore"):
        diff = x - X
        xc = x - x.mean()
        Xc = X - X.mean()
        ss_x = np.sum(xc ** 2)

        r = np.sum(xc * Xc) / np.sqrt(ss_x * np.sum(Xc ** 2))
        sse = np.sum(diff ** 2)
        mse = sse / n
        nmse = sse / ss_x
        rmse = np.sqrt(mse)

        vals["pearson_r"] = r
        vals["r_squared"] = r ** 2
        vals["abs_diff"] = np.sum(np.abs(diff))
        vals["mean_bias"] = np.mean(X - x)
        vals["mean_error"] = np.mean(diff)
        vals["mean_abs_error"] = np.abs(np.sum(diff)) / n

        if np.any(x == 0):
            for name in _RELATIVE_METRICS:
                vals[name] = UNDEFINED
        else:
            rel = diff / x
            vals["mean_rel_error"] = np.sum(rel)
            vals["mean_abs_rel_error"] = np.mean(np.abs(rel))
            vals["mean_abs_pct_error"] = 100.0 * np.mean(np.abs(rel))
            vals["rms_rel_error"] = np.sqrt(np.mean(((X - x) / x) ** 2))

        vals["sse"] = sse
        vals["mse"] = mse
        vals["nmse"] = nmse
        vals["reduction_of_error"] = 1.0 - nmse
        vals["rmse"] = rmse
        vals["nrmse"] = 100.0 * rmse / (np.max(x) - np.min(x))

        sd = np.std(x, ddof=1)
        vals["rms_std_error"] = UNDEFINED if sd == 0 else np.sqrt(np.mean(((X - x) / sd) ** 2))

    return {name: (vals[name] if vals[name] is UNDEFINED else float(vals[name])) for name in METRIC_NAMES}


def score_results(result_tensor: ResultTensor, datasets) -> Dict[Tuple[ExperimentKey, str], object]:
    """
    Score every cell of `result_tensor` against its dataset's ground truth.
    AlgorithmFailure markers are passed through unchanged.
    """
    data = _as_dataset_dict(datasets)
    out: Dict[Tuple[ExperimentKey, str], object] = {}
    for index, value in result_tensor.items():
        key, _ = index
        if isinstance(value, AlgorithmFailure):
            out[index] = value
        else:
            out[index] = score(data[key.dataset], value)
    return out


#%%
# =============================================================================
# Aggregation, best-method selection, majority summary
# =============================================================================
def _table(rows: List[dict], columns: List[str], object_columns=()) -> pd.DataFrame:
    """
    Rows -> DataFrame. `object_columns` keep object dtype so that None stays
    None (newer pandas would otherwise infer a string column holding NaN).
    """
    return pd.DataFrame(
        {
            c: pd.Series([r[c] for r in rows], dtype=object if c in object_columns else None)
            for c in columns
        },
        columns=columns,
    )


def aggregate(result_tensor: ResultTensor, metric_vectors: Dict) -> pd.DataFrame:
    """
    Average every metric over replicates.

    Returns one row per (dataset, proportion, gap_width, algorithm), in tensor
    axis order. UNDEFINED values and failed replicates are excluded from the
    means; a metric that is undefined on every scored replicate stays
    UNDEFINED. Conditions with no entry at all in `metric_vectors` (e.g.
    blocks that were never run) are skipped.

    Columns: dataset, proportion, gap_width, algorithm, n_replicates,
             n_failures, <17 metrics>
    """
    rows = []
    for dataset, p, w in result_tensor.conditions():
        keys = result_tensor.replicate_keys(dataset, p, w)
        for algorithm in result_tensor.algorithms:
            vectors = []
            n_failures = 0
            for key in keys:
                v = metric_vectors.get((key, algorithm))
                if v is None:
                    continue
                if isinstance(v, AlgorithmFailure):
                    n_failures += 1
                else:
                    vectors.append(v)

            if not vectors and not n_failures:
                continue

            row = dict(
                dataset=dataset,
                proportion=p,
                gap_width=w,
                algorithm=algorithm,
                n_replicates=len(vectors),
                n_failures=n_failures,
            )
            for name in METRIC_NAMES:
                vals = [v[name] for v in vectors if v[name] is not UNDEFINED]
                if vals:
                    with np.errstate(all="ignore"):
                        row[name] = float(np.mean(vals))
                else:
                    row[name] = UNDEFINED
            rows.append(row)

    return pd.DataFrame(rows, columns=EVALUATION_COLUMNS)


def select_best(evaluation_rows: pd.DataFrame, direction_table: Dict[str, str] = METRIC_DIRECTIONS) -> pd.DataFrame:
    """
    For each (dataset, proportion, gap_width) and metric, pick the algorithm
    whose aggregated value is largest ("max") or smallest ("min").

    Tie policy: the first algorithm in row order wins, and rows come out of
    `aggregate` in registry order, so ties go to the earliest registered
    algorithm. UNDEFINED and NaN values never win; when no algorithm has a
    comparable value, best_algorithm is None and best_value is UNDEFINED.
    """
    for metric, direction in direction_table.items():
        if direction not in ("max", "min"):
            raise ConfigurationError(f"Direction for {metric!r} must be 'max' or 'min', got {direction!r}.")
        if metric not in evaluation_rows.columns:
            raise ConfigurationError(f"Unknown metric in direction table: {metric!r}")

    rows = []
    for (dataset, p, w), grp in evaluation_rows.groupby(CONDITION_COLUMNS, sort=False):
        for metric, direction in direction_table.items():
            best_alg, best_val = None, UNDEFINED
            for algorithm, val in zip(grp["algorithm"], grp[metric]):
                if not _is_comparable(val):
                    continue
                if best_alg is None or (val > best_val if direction == "max" else val < best_val):
                    best_alg, best_val = algorithm, float(val)
            rows.append(
                dict(
                    dataset=dataset,
                    proportion=p,
                    gap_width=w,
                    metric=metric,
                    direction=direction,
                    best_algorithm=best_alg,
                    best_value=best_val,
                )
            )

    return _table(rows, BEST_COLUMNS, object_columns=("best_algorithm", "best_value"))


def summarize(best_rows: pd.DataFrame, algorithm_order: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Majority vote over criteria: for each (dataset, proportion, gap_width),
    return the algorithm that wins the most metrics.

    Ties on the count go to the algorithm listed first in `algorithm_order`
    (registry order); without it, to the first winner in metric order.
    """
    rows = []
    for (dataset, p, w), grp in best_rows.groupby(CONDITION_COLUMNS, sort=False):
        winners = [a for a in grp["best_algorithm"] if a is not None and not pd.isna(a)]

        counts: Dict[str, int] = {}
        for a in winners:
            counts[a] = counts.get(a, 0) + 1

        order = list(algorithm_order) if algorithm_order is not None else []
        order += [a for a in dict.fromkeys(winners) if a not in order]

        best, best_n = None, 0
        for a in order:
            if counts.get(a, 0) > best_n:
                best, best_n = a, counts[a]

        rows.append(
            dict(
                dataset=dataset,
                proportion=p,
                gap_width=w,
                best_algorithm=best,
                n_wins=best_n,
                n_criteria=len(grp),
            )
        )

    return _table(rows, SUMMARY_COLUMNS, object_columns=("best_algorithm",))


#%%
# -----------------------------------------------------------------------------
# End-to-end runner and utilities
# -----------------------------------------------------------------------------
def run_benchmark(
    datasets,
    algorithms: Optional[Dict[str, Callable]] = None,
    proportions: List[float] = DEFAULT_PROPORTIONS,
    gap_widths: List[int] = DEFAULT_GAP_WIDTHS,
    n_replicates: int = DEFAULT_N_REPLICATES,
    *,
    random_seed: int = BASE_SEED,
    n_jobs: int = 1,
    backend: Optional[str] = None,
    split_algorithms: bool = False,
    direction_table: Dict[str, str] = METRIC_DIRECTIONS,
    verbose: int = 0,
) -> Dict[str, object]:
    """
    Run the whole pipeline and return

        {
          "evaluation":     DataFrame (aggregate),
          "best":           DataFrame (select_best),
          "summary":        DataFrame (summarize),
          "metric_vectors": {(ExperimentKey, algorithm): MetricVector | AlgorithmFailure},
        }

    Imputed series are dropped once scored. `algorithms=None` uses the full
    default panel from `interpolators.build_interpolators()`.
    """
    if algorithms is None:
        from interpolators import build_interpolators

        algorithms = build_interpolators()

    tensor = run_experiment(
        datasets,
        algorithms,
        proportions,
        gap_widths,
        n_replicates,
        random_seed=random_seed,
        n_jobs=n_jobs,
        backend=backend,
        split_algorithms=split_algorithms,
        verbose=verbose,
    )
    metric_vectors = score_results(tensor, datasets)

    evaluation = aggregate(tensor, metric_vectors)
    best = select_best(evaluation, direction_table)
    summary = summarize(best, algorithm_order=tensor.algorithms)

    return dict(
        evaluation=evaluation,
        best=best,
        summary=summary,
        metric_vectors=metric_vectors,
    )


def flatten_results(metric_vectors: Dict) -> pd.DataFrame:
    """
    Convert replicate-level metric vectors into a long-form DataFrame.

    Output columns:
      dataset, proportion, gap_width, replicate, algorithm, metric, value, status

    status is "ok", "undefined" (value NaN) or "failed" (value NaN, one row
    per metric so failures are visible in every per-metric view).
    """
    rows = []
    for (key, algorithm), v in metric_vectors.items():
        failed = isinstance(v, AlgorithmFailure)
        for name in METRIC_NAMES:
            if failed:
                value, status = np.nan, "failed"
            elif v[name] is UNDEFINED:
                value, status = np.nan, "undefined"
            else:
                value, status = float(v[name]), "ok"
            rows.append(
                dict(
                    dataset=key.dataset,
                    proportion=key.proportion,
                    gap_width=key.gap_width,
                    replicate=key.replicate,
                    algorithm=algorithm,
                    metric=name,
                    value=value,
                    status=status,
                )
            )
    return pd.DataFrame(
        rows,
        columns=["dataset", "proportion", "gap_width", "replicate", "algorithm", "metric", "value", "status"],
    )


def numeric_table(df: pd.DataFrame) -> pd.DataFrame:
    """Copy of a result table with UNDEFINED replaced by NaN, for numeric work or plotting."""
    out = df.copy()
    for c in out.columns:
        if out[c].dtype == object:
            out[c] = out[c].map(lambda v: np.nan if v is UNDEFINED else v)
    return out.infer_objects()


#%%
# ---------- example __main__ --------------------------------------------------
def demo(n_points: int = 200, n_replicates: int = 10) -> Dict[str, object]:
    """Small run on two synthetic series (a sine wave and a random walk)."""
    from interpolators import build_interpolators

    t = np.arange(n_points, dtype=float)
    walk = 50.0 + np.cumsum(np.random.default_rng(BASE_SEED).normal(size=n_points))
    datasets = [
        ("sine", 10.0 + np.sin(2 * np.pi * t / 25.0)),
        ("walk", walk),
    ]

    res = run_benchmark(
        datasets,
        build_interpolators(["LI", "NCS", "LOCF", "RMEA"]),
        proportions=[0.1, 0.2],
        gap_widths=[1, 5],
        n_replicates=n_replicates,
    )
    print(res["summary"].to_string(index=False))
    return res


if __name__ == "__main__":
    demo()
# %%
