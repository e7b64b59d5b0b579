import warnings

import numpy as np
import pytest

from interp_validation import (
    ConfigurationError,
    GenerationWarning,
    check_gap_parameters,
    effective_missing_count,
    generate_gaps,
)


def _runs(mask):
    """Lengths of maximal runs of True in a boolean mask."""
    runs, cur = [], 0
    for m in mask:
        if m:
            cur += 1
        elif cur:
            runs.append(cur)
            cur = 0
    if cur:
        runs.append(cur)
    return runs


@pytest.fixture
def series():
    return np.sin(np.linspace(0, 6 * np.pi, 100)) + 2.0


@pytest.mark.parametrize("proportion", [0.05, 0.1, 0.2, 0.3])
@pytest.mark.parametrize("gap_width", [1, 3, 5, 10])
def test_endpoints_kept_and_count_is_multiple_of_width(series, proportion, gap_width):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", GenerationWarning)
        for seed in range(5):
            gapped = generate_gaps(series, proportion, gap_width, seed=seed)
            miss = np.isnan(gapped)
            target, _ = effective_missing_count(series.size, proportion, gap_width)

            assert not miss[0] and not miss[-1]
            assert miss.sum() == target
            assert miss.sum() % gap_width == 0
            np.testing.assert_array_equal(gapped[~miss], series[~miss])


def test_blocks_are_whole_gap_widths(series):
    for seed in range(10):
        gapped = generate_gaps(series, 0.3, 5, seed=seed)
        runs = _runs(np.isnan(gapped))
        assert sum(runs) == 30
        assert all(r % 5 == 0 for r in runs)


def test_single_block_is_contiguous(series):
    gapped = generate_gaps(series, 0.1, 10, seed=3)
    assert _runs(np.isnan(gapped)) == [10]


def test_same_seed_same_gaps_different_seed_different_gaps(series):
    a = generate_gaps(series, 0.2, 2, seed=123)
    b = generate_gaps(series, 0.2, 2, seed=123)
    c = generate_gaps(series, 0.2, 2, seed=124)

    np.testing.assert_array_equal(np.isnan(a), np.isnan(b))
    assert not np.array_equal(np.isnan(a), np.isnan(c))


def test_rng_argument_takes_precedence(series):
    a = generate_gaps(series, 0.2, 2, rng=np.random.default_rng(7), seed=1)
    b = generate_gaps(series, 0.2, 2, seed=7)
    np.testing.assert_array_equal(np.isnan(a), np.isnan(b))


@pytest.mark.parametrize("gap_width", [1, 2, 7, 25])
def test_zero_proportion_returns_identical_copy(series, gap_width):
    gapped = generate_gaps(series, 0.0, gap_width, seed=0)
    assert not np.isnan(gapped).any()
    np.testing.assert_array_equal(gapped, series)
    assert gapped is not series


def test_input_is_not_modified(series):
    before = series.copy()
    generate_gaps(series, 0.3, 3, seed=0)
    np.testing.assert_array_equal(series, before)


def test_width_one_is_mcar(series):
    gapped = generate_gaps(series, 0.25, 1, seed=9)
    assert np.isnan(gapped).sum() == 25


class _ExplodingRng:
    def integers(self, *args, **kwargs):
        raise AssertionError("random draw happened before validation")


def test_too_wide_request_raises_before_any_draw():
    x = np.arange(1.0, 21.0)  # n = 20, n - 2 = 18
    with pytest.raises(ConfigurationError):
        generate_gaps(x, 0.5, 36, rng=_ExplodingRng())


@pytest.mark.parametrize(
    "n, proportion, gap_width",
    [
        (2, 0.0, 1),        # series too short
        (50, -0.1, 1),      # negative proportion
        (50, 0.97, 1),      # above (n - 2) / n
        (50, 0.1, 0),       # non-positive width
        (50, 0.1, 2.5),     # non-integer width
        (50, 0.1, True),    # bool is not a width
        (50, 0.5, 96),      # proportion * width >= n - 2
    ],
)
def test_invalid_parameters_raise_configuration_error(n, proportion, gap_width):
    with pytest.raises(ConfigurationError):
        check_gap_parameters(n, proportion, gap_width)


def test_configuration_error_is_a_value_error():
    assert issubclass(ConfigurationError, ValueError)


def test_non_finite_series_rejected():
    x = np.array([1.0, np.nan, 3.0, 4.0, 5.0])
    with pytest.raises(ConfigurationError):
        generate_gaps(x, 0.2, 1, seed=0)


@pytest.mark.parametrize(
    "n, proportion, gap_width, expected, rounded",
    [
        (100, 0.10, 10, 10, False),
        (100, 0.10, 5, 10, False),
        (100, 0.07, 5, 5, True),    # 1.4 blocks -> down
        (100, 0.08, 5, 10, True),   # 1.6 blocks -> up
        (100, 0.075, 5, 5, True),   # exactly 1.5 blocks -> down
        (100, 0.02, 5, 0, True),    # 0.4 blocks -> nothing removed
        (100, 0.0, 5, 0, False),
    ],
)
def test_effective_missing_count_rounding(n, proportion, gap_width, expected, rounded):
    assert effective_missing_count(n, proportion, gap_width) == (expected, rounded)


def test_rounding_emits_generation_warning(series):
    with pytest.warns(GenerationWarning):
        gapped = generate_gaps(series, 0.08, 5, seed=0)
    assert np.isnan(gapped).sum() == 10


def test_exact_request_emits_no_warning(series):
    with warnings.catch_warnings():
        warnings.simplefilter("error", GenerationWarning)
        generate_gaps(series, 0.1, 5, seed=0)


def test_exhaustion_marks_every_interior_position():
    x = np.arange(1.0, 11.0)  # n = 10, 8 interior positions
    with pytest.warns(GenerationWarning):
        gapped = generate_gaps(x, 0.8, 3, seed=0)  # 8 / 3 -> rounded up to 9
    miss = np.isnan(gapped)
    assert miss.sum() == x.size - 2
    assert not miss[0] and not miss[-1]


def test_fragmented_pool_falls_back_to_exhaustion():
    # n = 12, width 4, target 8: a first block at positions 4-7 leaves runs of
    # 3 on both sides, so the second block cannot be placed.
    x = np.arange(1.0, 13.0)
    counts = set()
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", GenerationWarning)
        for seed in range(60):
            miss = np.isnan(generate_gaps(x, 0.66, 4, seed=seed))
            assert not miss[0] and not miss[-1]
            assert miss.sum() in (8, x.size - 2)
            if miss.sum() == 8:
                assert all(r % 4 == 0 for r in _runs(miss))
            counts.add(int(miss.sum()))
    assert counts == {8, 10}


def test_fragmented_pool_is_warned():
    x = np.arange(1.0, 13.0)
    for seed in range(60):
        with warnings.catch_warnings(record=True) as record:
            warnings.simplefilter("always")
            miss = np.isnan(generate_gaps(x, 0.66, 4, seed=seed))
        if miss.sum() == x.size - 2:
            assert any("exhausted" in str(w.message) for w in record)
            return
    pytest.fail("no seed produced a fragmented pool")


@pytest.mark.parametrize("seed", range(20))
def test_dense_request_never_cuts_several_short_blocks(seed):
    x = np.arange(1.0, 101.0)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", GenerationWarning)
        miss = np.isnan(generate_gaps(x, 0.9, 10, seed=seed))

    runs = _runs(miss)
    assert sum(r % 10 != 0 for r in runs) <= 1
    assert miss.sum() in (90, x.size - 2)
    assert not miss[0] and not miss[-1]
