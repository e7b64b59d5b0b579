"""
interpolators.py

Panel of univariate interpolation methods used by the gap-injection
benchmark in `interp_validation`.

Every method follows the same contract:

    f(gapped: np.ndarray) -> np.ndarray

The input is a 1-D float array in which missing positions hold NaN; the
output is a new array of the same length without NaN. Tunable parameters
(window sizes, seeds, ...) are baked in when the panel is built, so the
harness only ever sees plain callables keyed by a stable identifier.

To use it:
    algorithms = build_interpolators(["LI", "NCS", "KAF"])
    filled = algorithms["LI"](gapped)
"""

import warnings
from functools import partial
from typing import Callable, Dict, List

import numpy as np
import pandas as pd

from scipy.interpolate import CubicSpline, PchipInterpolator
from sklearn.impute import SimpleImputer
from statsmodels.tsa.statespace.structural import UnobservedComponents
from statsmodels.tools.sm_exceptions import ConvergenceWarning


warnings.filterwarnings("ignore", category=ConvergenceWarning)

__all__ = [
    "INTERPOLATOR_IDS",
    "build_interpolators",
    "nearest_neighbour",
    "linear",
    "natural_cubic_spline",
    "fmm_cubic_spline",
    "hermite_cubic_spline",
    "kalman_smoothing",
    "locf",
    "nocb",
    "moving_average",
    "central_tendency",
    "random_substitution",
    "frequency_reconstruction",
]

# Default panel, in reporting order
INTERPOLATOR_IDS: List[str] = [
    "NN",
    "LI",
    "NCS",
    "FMM",
    "HCS",
    "KAF",
    "LOCF",
    "NOCB",
    "SMA",
    "LWMA",
    "EWMA",
    "RMEA",
    "RMED",
    "RMOD",
    "RRND",
    "FRQ",
]


# =============================================================================
# Helpers
# =============================================================================
def _split_observed(gapped):
    """Return (values, missing mask, observed positions, observed values)."""
    y = np.asarray(gapped, dtype=float).copy()
    miss = np.isnan(y)
    pos = np.flatnonzero(~miss)
    if pos.size == 0:
        raise ValueError("Cannot interpolate a series with no observed values.")
    return y, miss, pos, y[pos]


def _fill_edges(y: np.ndarray) -> np.ndarray:
    # leading/trailing NaNs only appear when an endpoint is missing
    return pd.Series(y).ffill().bfill().to_numpy(dtype=float)


# =============================================================================
# Interpolation family
# =============================================================================
def nearest_neighbour(gapped) -> np.ndarray:
    """Copy the nearest observed value into each gap."""
    y, miss, pos, _ = _split_observed(gapped)
    if pos.size == 1:
        return np.full_like(y, y[pos[0]])
    out = pd.Series(y).interpolate(method="nearest").to_numpy(dtype=float)
    return _fill_edges(out)


def linear(gapped) -> np.ndarray:
    y, miss, pos, obs = _split_observed(gapped)
    y[miss] = np.interp(np.flatnonzero(miss), pos, obs)
    return y


def _spline(gapped, bc_type: str) -> np.ndarray:
    y, miss, pos, obs = _split_observed(gapped)
    if pos.size < 3:
        return linear(gapped)
    spline = CubicSpline(pos, obs, bc_type=bc_type, extrapolate=True)
    y[miss] = spline(np.flatnonzero(miss))
    return y


def natural_cubic_spline(gapped) -> np.ndarray:
    """Cubic spline with zero second derivative at both ends."""
    return _spline(gapped, "natural")


def fmm_cubic_spline(gapped) -> np.ndarray:
    """
    Cubic spline with not-a-knot end conditions, the closest scipy analogue
    of the Forsythe-Malcolm-Moler end treatment.
    """
    return _spline(gapped, "not-a-knot")


def hermite_cubic_spline(gapped) -> np.ndarray:
    """Shape-preserving piecewise cubic Hermite interpolation (PCHIP)."""
    y, miss, pos, obs = _split_observed(gapped)
    if pos.size < 2:
        return nearest_neighbour(gapped)
    y[miss] = PchipInterpolator(pos, obs, extrapolate=True)(np.flatnonzero(miss))
    return y


# =============================================================================
# State-space smoothing
# =============================================================================
def kalman_smoothing(gapped, level: str = "local level") -> np.ndarray:
    """
    Fit a structural state-space model by maximum likelihood and replace the
    missing values with the Kalman-smoothed level. statsmodels handles the
    NaN observations natively.
    """
    y, miss, pos, _ = _split_observed(gapped)
    if not miss.any():
        return y
    model = UnobservedComponents(y, level=level)
    res = model.fit(disp=False)
    y[miss] = res.smoothed_state[0][miss]
    return y


# =============================================================================
# Carry-forward / carry-backward
# =============================================================================
def locf(gapped) -> np.ndarray:
    """Last observation carried forward (remaining leading gaps: backward)."""
    y, _, _, _ = _split_observed(gapped)
    return pd.Series(y).ffill().bfill().to_numpy(dtype=float)


def nocb(gapped) -> np.ndarray:
    """Next observation carried backward (remaining trailing gaps: forward)."""
    y, _, _, _ = _split_observed(gapped)
    return pd.Series(y).bfill().ffill().to_numpy(dtype=float)


# =============================================================================
# Moving averages
# =============================================================================
def moving_average(gapped, k: int = 4, weighting: str = "simple") -> np.ndarray:
    """
    Replace each missing value by a weighted mean of the observed values in a
    symmetric window of half-width k around it.

    Weighting:
      - "simple":      all observations weigh 1
      - "linear":      weight 1 / (1 + distance)
      - "exponential": weight 0.5 ** distance

    If fewer than two observations fall inside the window, the window is
    widened one step at a time until two are found (or the series is
    exhausted). Only originally observed values enter the averages.
    """
    if k < 1:
        raise ValueError(f"Window half-width k must be >= 1, got {k}.")
    weighting = weighting.lower()
    if weighting not in ("simple", "linear", "exponential"):
        raise ValueError(f"Unknown weighting: {weighting!r}")

    y, miss, pos, obs = _split_observed(gapped)
    n = y.size
    out = y.copy()

    for i in np.flatnonzero(miss):
        width = k
        while True:
            in_win = np.abs(pos - i) <= width
            if in_win.sum() >= 2 or width >= n:
                break
            width += 1

        dist = np.abs(pos[in_win] - i)
        if weighting == "simple":
            w = np.ones_like(dist, dtype=float)
        elif weighting == "linear":
            w = 1.0 / (1.0 + dist)
        else:
            w = 0.5 ** dist
        out[i] = float(np.sum(w * obs[in_win]) / np.sum(w))

    return out


# =============================================================================
# Central-tendency and random substitution
# =============================================================================
def central_tendency(gapped, strategy: str = "mean") -> np.ndarray:
    """Substitute the observed mean / median / mode (most frequent value)."""
    y, miss, _, _ = _split_observed(gapped)
    imp = SimpleImputer(strategy=strategy)
    filled = imp.fit_transform(y.reshape(-1, 1))
    return filled.ravel().astype(float)


def random_substitution(gapped, random_state: int = 0) -> np.ndarray:
    """
    Draw each missing value uniformly between the observed min and max.
    The generator is created from `random_state` on every call so the
    method stays a pure function of its input.
    """
    y, miss, _, obs = _split_observed(gapped)
    rng = np.random.default_rng(random_state)
    y[miss] = rng.uniform(obs.min(), obs.max(), size=int(miss.sum()))
    return y


# =============================================================================
# Frequency-domain reconstruction
# =============================================================================
def frequency_reconstruction(
    gapped,
    keep_fraction: float = 0.1,
    n_iter: int = 100,
    tol: float = 1e-8,
) -> np.ndarray:
    """
    Iterative low-pass Fourier reconstruction.

    Start from a linear fill, then repeatedly:
      1. take the real FFT of the (de-meaned) current estimate,
      2. keep only the `keep_fraction` largest-magnitude coefficients,
      3. invert, and overwrite the missing positions with the result.

    Observed positions are never modified. Stops after `n_iter` rounds or
    when the update of the missing values falls below `tol`.
    """
    if not 0.0 < keep_fraction <= 1.0:
        raise ValueError(f"keep_fraction must be in (0, 1], got {keep_fraction}.")

    _, miss, _, _ = _split_observed(gapped)
    est = linear(gapped)
    if not miss.any():
        return est

    n = est.size
    for _ in range(n_iter):
        mu = est.mean()
        coeffs = np.fft.rfft(est - mu)
        n_keep = max(1, int(np.ceil(keep_fraction * coeffs.size)))
        drop = np.argsort(np.abs(coeffs))[:-n_keep]
        coeffs[drop] = 0.0
        recon = np.fft.irfft(coeffs, n=n) + mu

        delta = np.max(np.abs(recon[miss] - est[miss]))
        est[miss] = recon[miss]
        if delta < tol:
            break

    return est


# =============================================================================
# Registry factory
# =============================================================================
def build_interpolators(
    requested: List[str] | None = None,
    *,
    ma_window: int = 4,
    fft_keep_fraction: float = 0.1,
    fft_iters: int = 100,
    random_state: int = 0,
) -> Dict[str, Callable[[np.ndarray], np.ndarray]]:
    """
    Return an ordered {id: callable} dict for the requested methods.

    - `requested=None` (or the token "all") gives the full default panel in
      INTERPOLATOR_IDS order.
    - Otherwise the returned order follows `requested`.
    - Common aliases are accepted ("linear", "mean", "kalman", ...).
    """
    factories: Dict[str, Callable] = {
        "NN": nearest_neighbour,
        "LI": linear,
        "NCS": natural_cubic_spline,
        "FMM": fmm_cubic_spline,
        "HCS": hermite_cubic_spline,
        "KAF": kalman_smoothing,
        "LOCF": locf,
        "NOCB": nocb,
        "SMA": partial(moving_average, k=ma_window, weighting="simple"),
        "LWMA": partial(moving_average, k=ma_window, weighting="linear"),
        "EWMA": partial(moving_average, k=ma_window, weighting="exponential"),
        "RMEA": partial(central_tendency, strategy="mean"),
        "RMED": partial(central_tendency, strategy="median"),
        "RMOD": partial(central_tendency, strategy="most_frequent"),
        "RRND": partial(random_substitution, random_state=random_state),
        "FRQ": partial(
            frequency_reconstruction,
            keep_fraction=fft_keep_fraction,
            n_iter=fft_iters,
        ),
    }

    aliases = {
        "nearest": "NN",
        "nearestneighbour": "NN",
        "nearestneighbor": "NN",
        "linear": "LI",
        "naturalspline": "NCS",
        "naturalcubicspline": "NCS",
        "fmmspline": "FMM",
        "pchip": "HCS",
        "hermite": "HCS",
        "kalman": "KAF",
        "sma": "SMA",
        "lwma": "LWMA",
        "ewma": "EWMA",
        "mean": "RMEA",
        "median": "RMED",
        "mode": "RMOD",
        "random": "RRND",
        "fourier": "FRQ",
        "fft": "FRQ",
    }

    def _norm(name: str) -> str:
        return str(name).lower().replace(" ", "").replace("-", "").replace("_", "")

    if requested is None:
        requested = INTERPOLATOR_IDS
    if isinstance(requested, str):
        requested = [requested]
    if any(_norm(x) == "all" for x in requested):
        requested = INTERPOLATOR_IDS

    algos: Dict[str, Callable[[np.ndarray], np.ndarray]] = {}
    for name in requested:
        key = str(name).upper()
        if key not in factories:
            key = aliases.get(_norm(name), key)
        if key not in factories:
            raise ValueError(f"Unknown interpolator requested: {name}")
        algos[key] = factories[key]

    return algos
