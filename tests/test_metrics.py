import pickle

import numpy as np
import pytest

from interp_validation import METRIC_NAMES, UNDEFINED, MetricUndefined, is_undefined, score

RELATIVE = {"mean_rel_error", "mean_abs_rel_error", "mean_abs_pct_error", "rms_rel_error"}


def test_metric_vector_has_the_seventeen_names_in_order():
    v = score([1.0, 2.0, 4.0], [1.0, 3.0, 3.0])
    assert list(v) == METRIC_NAMES
    assert len(v) == 17


def test_identical_series_give_perfect_scores():
    x = np.linspace(1.0, 10.0, 50) + np.sin(np.arange(50))
    v = score(x, x.copy())

    assert v["pearson_r"] == pytest.approx(1.0)
    assert v["r_squared"] == pytest.approx(1.0)
    assert v["reduction_of_error"] == pytest.approx(1.0)
    for name in (
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
        "rmse",
        "nrmse",
        "rms_std_error",
    ):
        assert v[name] == 0.0, name


def test_hand_computed_values():
    x = [1.0, 2.0, 4.0]
    X = [1.0, 3.0, 3.0]
    v = score(x, X)

    assert v["abs_diff"] == pytest.approx(2.0)
    assert v["mean_bias"] == pytest.approx(0.0)
    assert v["mean_error"] == pytest.approx(0.0)
    assert v["sse"] == pytest.approx(2.0)
    assert v["mse"] == pytest.approx(2.0 / 3.0)
    assert v["rmse"] == pytest.approx(np.sqrt(2.0 / 3.0))
    assert v["nmse"] == pytest.approx(3.0 / 7.0)
    assert v["reduction_of_error"] == pytest.approx(4.0 / 7.0)
    assert v["mean_rel_error"] == pytest.approx(-0.25)
    assert v["mean_abs_rel_error"] == pytest.approx(0.25)
    assert v["mean_abs_pct_error"] == pytest.approx(25.0)
    assert v["rms_rel_error"] == pytest.approx(np.sqrt(0.3125 / 3.0))
    assert v["nrmse"] == pytest.approx(100.0 * np.sqrt(2.0 / 3.0) / 3.0)
    assert v["rms_std_error"] == pytest.approx(np.sqrt(2.0 / 7.0))
    assert v["pearson_r"] == pytest.approx(np.corrcoef(x, X)[0, 1])
    assert v["r_squared"] == pytest.approx(np.corrcoef(x, X)[0, 1] ** 2)


def test_mean_abs_error_is_absolute_value_of_summed_error():
    # errors cancel out: |sum| / n is zero although every point is off by one
    v = score([1.0, 2.0, 3.0, 4.0], [2.0, 1.0, 4.0, 3.0])
    assert v["mean_abs_error"] == 0.0
    assert v["abs_diff"] == pytest.approx(4.0)


def test_mean_rel_error_is_a_sum_not_a_mean():
    v = score([2.0, 2.0, 2.0, 2.0], [1.0, 1.0, 1.0, 1.0])
    assert v["mean_rel_error"] == pytest.approx(2.0)
    assert v["mean_abs_rel_error"] == pytest.approx(0.5)


def test_zero_in_original_makes_only_relative_metrics_undefined():
    x = np.array([0.0, 1.0, 2.0, 3.0, 5.0])
    X = np.array([0.5, 1.0, 2.5, 3.0, 4.0])
    v = score(x, X)

    undefined = {name for name, val in v.items() if val is UNDEFINED}
    assert undefined == RELATIVE
    for name in set(METRIC_NAMES) - RELATIVE:
        assert isinstance(v[name], float)


def test_constant_original_makes_standardized_error_undefined():
    x = np.full(6, 3.0)
    X = np.array([3.0, 2.0, 3.0, 4.0, 3.0, 3.0])
    v = score(x, X)

    assert v["rms_std_error"] is UNDEFINED
    # other metrics still compute, even when they come out NaN or inf
    assert isinstance(v["pearson_r"], float) and np.isnan(v["pearson_r"])
    assert isinstance(v["nmse"], float) and np.isinf(v["nmse"])
    assert isinstance(v["nrmse"], float)
    assert v["mean_abs_rel_error"] == pytest.approx(2.0 / 18.0)


def test_length_mismatch_raises():
    with pytest.raises(ValueError):
        score([1.0, 2.0, 3.0], [1.0, 2.0])


def test_undefined_is_a_pickle_stable_singleton():
    assert MetricUndefined() is UNDEFINED
    assert pickle.loads(pickle.dumps(UNDEFINED)) is UNDEFINED
    assert is_undefined(UNDEFINED)
    assert not is_undefined(float("nan"))
    assert repr(UNDEFINED) == "UNDEFINED"
