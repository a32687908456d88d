"""
Normal-quantile breakpoints for a pair of discrete marginals.

The latent pair (Z1, Z2) maps to support point i of marginal 1 exactly when
Z1 falls in (a[i], a[i+1]], where

    a[0] = -inf,  a[i+1] = Phi^-1(cdf1[i]) for 0 <= i < m1 - 1,  a[m1] = +inf

and likewise for b.  The breakpoints partition the plane into m1 x m2
rectangular cells; cell (i, j) carries weight w1[i] * w2[j] and has
probability given by four corner values of Phi2.

Summation by parts turns the cell sum into a corner sum,

    g_r(rho) = sum_{p,q} d1[p] d2[q] Phi2(a[p], b[q]; rho),
    d[p] = w[p-1] - w[p]   (w[-1] = w[m] = 0),

in which the p = 0 / q = 0 corners vanish and the p = m1 / q = m2 corners
reduce to univariate Phi.  Those boundary terms do not depend on rho and are
precomputed here, so the strategies only ever evaluate the interior
(m1-1) x (m2-1) corner block.
"""

import functools
from dataclasses import dataclass

import numpy as np

import config
from bivariate_normal import norm_cdf, norm_ppf


def _frozen(arr):
    arr = np.array(arr, dtype=float)
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True, eq=False)
class BreakpointGrid:
    """Immutable breakpoints and corner weights for one marginal pair."""
    marginal1: object
    marginal2: object
    kind: str
    a: np.ndarray           # (m1 + 1,) extended breakpoints
    b: np.ndarray           # (m2 + 1,)
    w1: np.ndarray          # (m1,) cell weights
    w2: np.ndarray          # (m2,)
    d1: np.ndarray          # (m1 + 1,) corner weights
    d2: np.ndarray          # (m2 + 1,)
    mean1: float
    sd1: float
    mean2: float
    sd2: float
    boundary_term: float    # rho-independent part of the corner sum

    @property
    def m1(self) -> int:
        return self.w1.shape[0]

    @property
    def m2(self) -> int:
        return self.w2.shape[0]

    @property
    def n_cells(self) -> int:
        return self.m1 * self.m2

    @property
    def a_inner(self):
        """Interior breakpoints a[1..m1-1]."""
        return self.a[1:-1]

    @property
    def b_inner(self):
        return self.b[1:-1]

    @property
    def d1_inner(self):
        return self.d1[1:-1]

    @property
    def d2_inner(self):
        return self.d2[1:-1]

    def target_constant(self, target):
        """r_X * sigma1 * sigma2 + mu1 * mu2, the value g_r must reach."""
        return target * self.sd1 * self.sd2 + self.mean1 * self.mean2

    def correlation_from_g(self, g):
        """Correlation implied by a value of g_r."""
        return (g - self.mean1 * self.mean2) / (self.sd1 * self.sd2)

    def cell_index(self, z1, z2):
        """Cell indices (i, j) of latent normal draws."""
        i = np.searchsorted(self.a_inner, z1, side="left")
        j = np.searchsorted(self.b_inner, z2, side="left")
        return i, j


def build_grid(marginal1, marginal2, kind="rank"):
    """Build the BreakpointGrid for two MarginalTables.

    Costs m1 + m2 inverse-normal evaluations.

    Parameters
    ----------
    kind : str
        'rank' weights cells by F1(x) * F2(y); 'linear' by x * y.
    """
    if kind not in config.CORRELATION_KINDS:
        raise ValueError(f"Unknown correlation kind {kind!r}; "
                         f"choose from {config.CORRELATION_KINDS}")

    def _side(marginal):
        inner = norm_ppf(np.clip(marginal.cdf[:-1], 0.0, 1.0))
        z = np.concatenate([[-np.inf], inner, [np.inf]])
        w = np.asarray(marginal.weights(kind), dtype=float)
        w_ext = np.concatenate([[0.0], w, [0.0]])
        d = w_ext[:-1] - w_ext[1:]
        return z, w, d

    a, w1, d1 = _side(marginal1)
    b, w2, d2 = _side(marginal2)
    mean1, sd1 = marginal1.moments(kind)
    mean2, sd2 = marginal2.moments(kind)

    # Row p = m1 has Phi2(+inf, b) = Phi(b); column q = m2 has Phi(a); the
    # shared corner (+inf, +inf) = 1 is counted once.
    phi_a = norm_cdf(a)
    phi_b = norm_cdf(b)
    boundary = (d1[-1] * np.dot(d2, phi_b)
                + d2[-1] * np.dot(d1, phi_a)
                - d1[-1] * d2[-1])

    return BreakpointGrid(
        marginal1=marginal1,
        marginal2=marginal2,
        kind=kind,
        a=_frozen(a),
        b=_frozen(b),
        w1=_frozen(w1),
        w2=_frozen(w2),
        d1=_frozen(d1),
        d2=_frozen(d2),
        mean1=float(mean1),
        sd1=float(sd1),
        mean2=float(mean2),
        sd2=float(sd2),
        boundary_term=float(boundary),
    )


@functools.lru_cache(maxsize=config.GRID_CACHE_SIZE)
def cached_grid(marginal1, marginal2, kind="rank"):
    """build_grid memoised on the (immutable) marginal pair and kind."""
    return build_grid(marginal1, marginal2, kind)
