"""Accuracy and limit checks for bivariate_normal: bvn_cdf, bvn_cdf_grid, bvn_pdf."""

import sys
from pathlib import Path
_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import numpy as np
import pytest
from scipy import integrate
from scipy.special import ndtr

import config
from bivariate_normal import (bvn_cdf, bvn_cdf_grid, bvn_pdf, bvn_pdf_drho,
                              norm_ppf)


def _quad_bvn(a, b, rho):
    """Reference Phi2 by conditioning on Z1: int_{-inf}^a phi(z) Phi((b - rho z)/s) dz."""
    s = np.sqrt(1.0 - rho * rho)
    f = lambda z: np.exp(-0.5 * z * z) / np.sqrt(2.0 * np.pi) * ndtr((b - rho * z) / s)
    lower = -12.0
    points = None
    if rho != 0.0 and lower < b / rho < a:
        points = [b / rho]
    val, _ = integrate.quad(f, lower, a, points=points, epsabs=1e-14, epsrel=1e-12,
                            limit=200)
    return val


LIMITS = [(-1.5, 0.3), (0.7, 2.1), (-2.5, -2.0), (1.0, 1.0), (0.0, -0.4)]
RHOS = [-0.99, -0.93, -0.5, 0.0, 0.3, 0.92, 0.93, 0.99]


@pytest.mark.parametrize("a,b", LIMITS)
@pytest.mark.parametrize("rho", RHOS)
def test_matches_quadrature(a, b, rho):
    assert bvn_cdf(a, b, rho) == pytest.approx(_quad_bvn(a, b, rho), abs=1e-9)


@pytest.mark.parametrize("rho", [-0.95, -0.6, -0.1, 0.0, 0.4, 0.9, 0.95, 0.999])
def test_orthant_closed_form(rho):
    expected = 0.25 + np.arcsin(rho) / (2.0 * np.pi)
    assert bvn_cdf(0.0, 0.0, rho) == pytest.approx(expected, abs=1e-12)


def test_independence_is_product():
    a = np.linspace(-3, 3, 13)
    b = np.linspace(-2.5, 2.0, 13)
    assert np.allclose(bvn_cdf(a, b, 0.0), ndtr(a) * ndtr(b), atol=1e-15)


def test_infinite_limits():
    assert bvn_cdf(-np.inf, 0.4, 0.3) == 0.0
    assert bvn_cdf(1.2, -np.inf, -0.7) == 0.0
    assert bvn_cdf(np.inf, 0.4, 0.3) == pytest.approx(ndtr(0.4), abs=1e-15)
    assert bvn_cdf(-0.8, np.inf, 0.3) == pytest.approx(ndtr(-0.8), abs=1e-15)
    assert bvn_cdf(np.inf, np.inf, 0.5) == 1.0


def test_degenerate_rho_limits():
    a, b = -0.3, 0.8
    assert bvn_cdf(a, b, 1.0) == pytest.approx(ndtr(min(a, b)), abs=1e-15)
    assert bvn_cdf(a, b, -1.0) == pytest.approx(max(0.0, ndtr(a) + ndtr(b) - 1.0), abs=1e-15)
    assert bvn_cdf(-1.0, -1.0, -1.0) == 0.0
    # Approaching the limits is continuous.
    assert bvn_cdf(a, b, 1.0 - 1e-12) == pytest.approx(bvn_cdf(a, b, 1.0), abs=1e-6)
    assert bvn_cdf(a, b, -1.0 + 1e-12) == pytest.approx(bvn_cdf(a, b, -1.0), abs=1e-6)


def test_symmetry_in_limits():
    rng = np.random.default_rng(3)
    a = rng.normal(size=50)
    b = rng.normal(size=50)
    rho = rng.uniform(-0.99, 0.99, size=50)
    assert np.allclose(bvn_cdf(a, b, rho), bvn_cdf(b, a, rho), atol=1e-14)


def test_monotone_in_rho():
    rhos = np.linspace(-1.0, 1.0, 401)
    for a, b in LIMITS:
        vals = bvn_cdf(a, b, rhos)
        assert np.all(np.diff(vals) >= -1e-14), (a, b)


def test_values_in_unit_interval():
    a = np.linspace(-8, 8, 41)
    for rho in (-0.999, -0.5, 0.5, 0.999):
        vals = bvn_cdf_grid(a, a, rho)
        assert vals.min() >= 0.0 and vals.max() <= 1.0


def test_scalar_in_scalar_out():
    assert isinstance(bvn_cdf(0.1, 0.2, 0.3), float)
    assert isinstance(bvn_pdf(0.1, 0.2, 0.3), float)
    assert bvn_cdf([0.1, 0.2], 0.2, 0.3).shape == (2,)


def test_rejects_rho_outside_unit_interval():
    with pytest.raises(ValueError):
        bvn_cdf(0.0, 0.0, 1.2)
    with pytest.raises(ValueError):
        bvn_cdf_grid([0.0], [0.0], np.nan)
    with pytest.raises(ValueError):
        bvn_pdf(0.0, 0.0, 1.0)


@pytest.mark.parametrize("rho", [-0.97, -0.4, 0.0, 0.5, 0.93])
def test_pdf_is_rho_derivative(rho):
    h = 1e-5
    a = np.array([-1.2, 0.0, 0.5, 2.0])
    b = np.array([0.3, -0.7, 0.5, 1.1])
    fd = (bvn_cdf(a, b, rho + h) - bvn_cdf(a, b, rho - h)) / (2.0 * h)
    assert np.allclose(bvn_pdf(a, b, rho), fd, atol=1e-8)


def test_pdf_zero_on_infinite_limits():
    assert bvn_pdf(np.inf, 0.2, 0.5) == 0.0
    assert bvn_pdf(-np.inf, 0.2, 0.5) == 0.0


@pytest.mark.parametrize("rho", [-0.9, -0.3, 0.0, 0.45, 0.88])
def test_pdf_drho_is_pdf_derivative(rho):
    h = 1e-6
    a = np.array([-1.2, 0.0, 0.5, 2.0, np.inf])
    b = np.array([0.3, -0.7, 0.5, 1.1, 0.4])
    fd = (bvn_pdf(a, b, rho + h) - bvn_pdf(a, b, rho - h)) / (2.0 * h)
    assert np.allclose(bvn_pdf_drho(a, b, rho), fd, rtol=1e-6, atol=1e-8)
    assert bvn_pdf_drho(0.7, -0.2, 0.0) == pytest.approx(bvn_pdf(0.7, -0.2, 0.0) * 0.7 * -0.2)


def test_grid_matches_pointwise():
    a = np.concatenate([[-np.inf], norm_ppf([0.1, 0.5, 0.8]), [np.inf]])
    b = np.concatenate([[-np.inf], norm_ppf([0.3, 0.45, 0.6, 0.9]), [np.inf]])
    for rho in (-1.0, -0.96, -0.2, 0.6, 0.96, 1.0):
        grid = bvn_cdf_grid(a, b, rho)
        assert grid.shape == (5, 6)
        assert np.allclose(grid, bvn_cdf(a[:, None], b[None, :], rho), atol=1e-13)


def test_numba_and_numpy_paths_agree(monkeypatch):
    a = np.linspace(-4, 4, 17)
    b = np.linspace(-3.5, 3.0, 11)
    for rho in (-0.999, -0.93, -0.3, 0.0, 0.45, 0.924, 0.926, 0.999):
        monkeypatch.setattr(config, "USE_NUMBA", True)
        jit = bvn_cdf_grid(a, b, rho)
        monkeypatch.setattr(config, "USE_NUMBA", False)
        vec = bvn_cdf_grid(a, b, rho)
        assert np.allclose(jit, vec, atol=1e-13), rho
