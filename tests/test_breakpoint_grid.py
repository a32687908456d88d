"""Layout and identities of breakpoint_grid."""

import sys
from pathlib import Path
_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import numpy as np
import pytest
from scipy.special import ndtr

from bivariate_normal import bvn_cdf_grid, norm_ppf
from breakpoint_grid import build_grid, cached_grid


def test_layout(small_pair):
    m1, m2 = small_pair
    grid = build_grid(m1, m2, "rank")
    assert (grid.m1, grid.m2, grid.n_cells) == (4, 6, 24)
    assert grid.a.shape == (5,) and grid.b.shape == (7,)
    assert grid.a[0] == -np.inf and grid.a[-1] == np.inf
    assert grid.b[0] == -np.inf and grid.b[-1] == np.inf
    assert np.allclose(grid.a_inner, norm_ppf(m1.cdf[:-1]))
    assert np.all(np.diff(grid.a) > 0)
    # Corner weights telescope to zero.
    assert grid.d1.sum() == pytest.approx(0.0, abs=1e-14)
    assert grid.d1[0] == -m1.cdf[0]
    assert grid.d1[-1] == 1.0
    with pytest.raises(ValueError):
        grid.a[1] = 0.0


def test_linear_weights(small_pair):
    m1, m2 = small_pair
    grid = build_grid(m1, m2, "linear")
    assert np.array_equal(grid.w1, m1.support)
    assert (grid.mean2, grid.sd2) == (m2.mean_X, m2.sd_X)


@pytest.mark.parametrize("kind", ["rank", "linear"])
@pytest.mark.parametrize("rho", [-0.8, 0.0, 0.35, 0.99])
def test_corner_sum_equals_cell_sum(small_pair, kind, rho):
    m1, m2 = small_pair
    grid = build_grid(m1, m2, kind)
    full = bvn_cdf_grid(grid.a, grid.b, rho)
    cells = np.diff(np.diff(full, axis=0), axis=1)
    direct = grid.w1 @ cells @ grid.w2
    inner = bvn_cdf_grid(grid.a_inner, grid.b_inner, rho)
    by_parts = grid.d1_inner @ inner @ grid.d2_inner + grid.boundary_term
    assert by_parts == pytest.approx(direct, abs=1e-13)


def test_independence_gives_product_of_means(small_pair):
    m1, m2 = small_pair
    grid = build_grid(m1, m2, "rank")
    inner = np.outer(ndtr(grid.a_inner), ndtr(grid.b_inner))
    g = grid.d1_inner @ inner @ grid.d2_inner + grid.boundary_term
    assert g == pytest.approx(grid.mean1 * grid.mean2, abs=1e-14)
    assert grid.correlation_from_g(g) == pytest.approx(0.0, abs=1e-12)


def test_target_constant_round_trip(small_pair):
    grid = build_grid(*small_pair)
    for r in (-0.4, 0.0, 0.7):
        assert grid.correlation_from_g(grid.target_constant(r)) == pytest.approx(r, abs=1e-14)


def test_cell_index_matches_quantile(small_pair):
    m1, m2 = small_pair
    grid = build_grid(m1, m2)
    rng = np.random.default_rng(11)
    z1 = rng.standard_normal(5000)
    z2 = rng.standard_normal(5000)
    i, j = grid.cell_index(z1, z2)
    assert np.array_equal(m1.support[i], m1.quantile(ndtr(z1)))
    assert np.array_equal(m2.support[j], m2.quantile(ndtr(z2)))
    # Cells are closed on the right.
    i_edge, _ = grid.cell_index(grid.a_inner[:1], grid.b_inner[:1])
    assert i_edge[0] == 0


def test_cached_grid_reuses_instances(small_pair):
    m1, m2 = small_pair
    g1 = cached_grid(m1, m2, "rank")
    assert cached_grid(m1, m2, "rank") is g1
    assert cached_grid(m1, m2, "linear") is not g1
    assert cached_grid(m2, m1, "rank") is not g1


def test_unknown_kind(small_pair):
    with pytest.raises(ValueError, match="Unknown correlation kind"):
        build_grid(*small_pair, kind="kendall")
