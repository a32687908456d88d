"""Validation and adapters for marginal_table."""

import sys
from pathlib import Path
_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import numpy as np
import pytest
from scipy import stats

from errors import InvalidMarginalError, NortaError
from marginal_table import from_counts, from_pmf, from_scipy, negative_binomial


def test_from_pmf_moments():
    m = from_pmf([0, 1, 2, 3], [0.1, 0.4, 0.3, 0.2])
    assert m.size == 4
    assert np.allclose(m.cdf, [0.1, 0.5, 0.8, 1.0])
    assert m.cdf[-1] == 1.0
    mean_F = 0.1 * 0.1 + 0.4 * 0.5 + 0.3 * 0.8 + 0.2 * 1.0
    var_F = 0.1 * 0.01 + 0.4 * 0.25 + 0.3 * 0.64 + 0.2 * 1.0 - mean_F ** 2
    assert m.mean_F == pytest.approx(mean_F, abs=1e-12)
    assert m.sd_F == pytest.approx(np.sqrt(var_F), abs=1e-12)
    assert m.mean_X == pytest.approx(1.6)
    assert m.sd_X == pytest.approx(np.sqrt(0.84))


def test_weights_and_moments_by_kind():
    m = from_pmf([2.0, 5.0, 7.5], [0.2, 0.5, 0.3])
    assert np.array_equal(m.weights("rank"), m.cdf)
    assert np.array_equal(m.weights("linear"), m.support)
    assert m.moments("rank") == (m.mean_F, m.sd_F)
    assert m.moments("linear") == (m.mean_X, m.sd_X)
    with pytest.raises(ValueError, match="Unknown correlation kind"):
        m.weights("kendall")
    with pytest.raises(ValueError):
        m.moments("kendall")


def test_masses_renormalised_within_tolerance():
    m = from_pmf([0, 1], [0.5, 0.5 + 5e-7])
    assert m.mass.sum() == pytest.approx(1.0, abs=1e-15)


@pytest.mark.parametrize("support,mass,msg", [
    ([0], [1.0], "at least 2"),
    ([0, 1, 1], [0.2, 0.3, 0.5], "strictly increasing"),
    ([2, 1, 3], [0.2, 0.3, 0.5], "strictly increasing"),
    ([0, 1, 2], [0.5, -0.1, 0.6], "non-negative"),
    ([0, 1, 2], [0.2, 0.3, 0.4], "sum to"),
    ([0, 1, 2], [0.0, 1.0, 0.0], "one point"),
    ([0, np.nan, 2], [0.2, 0.3, 0.5], "finite"),
    ([0, 1, 2], [0.2, 0.8], "points but mass"),
    ([[0, 1], [2, 3]], [[0.25, 0.25], [0.25, 0.25]], "1-D"),
])
def test_validation_errors(support, mass, msg):
    with pytest.raises(InvalidMarginalError, match=msg):
        from_pmf(support, mass)


def test_validation_error_types():
    with pytest.raises(ValueError):
        from_pmf([0], [1.0])
    with pytest.raises(NortaError):
        from_pmf([0], [1.0])


def test_arrays_read_only():
    m = from_pmf([0, 1, 2], [0.2, 0.3, 0.5])
    with pytest.raises(ValueError):
        m.mass[0] = 0.9
    with pytest.raises(AttributeError):
        m.label = "changed"


def test_from_counts():
    m = from_counts([1, 2, 3, 4], [12, 30, 29, 9], label="ties")
    assert np.allclose(m.mass, np.array([12, 30, 29, 9]) / 80)
    assert m.label == "ties"
    with pytest.raises(InvalidMarginalError):
        from_counts([1, 2], [0, 0])
    with pytest.raises(InvalidMarginalError):
        from_counts([1, 2], [3, -1])


def test_quantile_is_generalised_inverse():
    m = from_pmf([10, 20, 30], [0.2, 0.5, 0.3])
    u = np.array([0.0, 0.1, 0.19, 0.2000001, 0.69, 0.71, 1.0])
    assert np.array_equal(m.quantile(u), [10, 10, 10, 20, 20, 30, 30])


def test_from_scipy_bounded_support():
    m = from_scipy(stats.binom(10, 0.3))
    assert np.array_equal(m.support, np.arange(11))
    assert np.allclose(m.mass, stats.binom(10, 0.3).pmf(np.arange(11)), atol=1e-15)
    assert m.label.startswith("binom")


def test_from_scipy_truncates_and_lumps_tail():
    dist = stats.poisson(3.0)
    q = 1.0 - 1e-6
    m = from_scipy(dist, truncation_quantile=q)
    hi = dist.ppf(q)
    assert m.support[0] == 0
    assert m.support[-1] == hi
    assert m.cdf[-1] == 1.0
    assert m.mass.sum() == pytest.approx(1.0, abs=1e-15)
    # Cut tail mass lands on the last point.
    assert m.mass[-1] == pytest.approx(dist.pmf(hi) + dist.sf(hi), rel=1e-9)
    assert m.mean_X == pytest.approx(3.0, abs=1e-4)


def test_from_scipy_rejects_bad_quantile():
    with pytest.raises(ValueError):
        from_scipy(stats.poisson(3.0), truncation_quantile=1.0)


def test_negative_binomial_table():
    m = negative_binomial(15.68, 0.3861)
    dist = stats.nbinom(15.68, 0.3861)
    assert m.support[0] == 0
    assert m.size == int(dist.ppf(1.0 - 1e-6)) + 1
    assert m.mean_X == pytest.approx(dist.mean(), rel=1e-4)
    assert m.sd_X == pytest.approx(dist.std(), rel=1e-3)
    assert "nbinom" in repr(m)
