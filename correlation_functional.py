"""
Strategies for the correlation functional g_r(rho) = E[w1(X1) w2(X2)].

Four interchangeable strategies, selected by tag through ``make_functional``
(the same name -> implementation lookup as ``get_generator`` elsewhere in
the codebase):

  NI1   exact, brute force: full corner matrix, four-corner cell differences,
        weighted double sum.  Stateless.
  NI2a  row-cumulative: each row of corners is accumulated along b as a
        running value, Phi2(a, b_q) = Phi2(a, b_{q-1}) + integral of
        phi(z) Phi((a - rho z)/s) over (b_{q-1}, b_q], by Gauss-Legendre
        panels.  One direct Phi2 per row; corners cached for the current
        rho only.
  NI2b  NI2a plus reuse across root-finder iterations: for small steps in
        rho the cached corners are moved by integrating the closed-form
        derivative dPhi2/drho = phi2 (endpoint-corrected trapezoid), with a
        local error estimate, scheduled full recomputation and a drift bound.
  NI3   Monte Carlo: normal pairs at rho are bucketed into breakpoint cells
        and the empirical mean of w1 * w2 is returned with its standard
        error.  Keeps a running estimator (sample count, running gradient
        by common random numbers) for the stochastic root finder.

Every strategy exposes ``evaluate(rho) -> (value, std_error)``; the exact
ones report a zero standard error.  Each instance owns its own cache, so
two calibrations never share mutable state.
"""

import warnings

import numpy as np
from joblib import Parallel, delayed
from numpy.polynomial.legendre import leggauss
from scipy.special import ndtr

import config
from bivariate_normal import bvn_cdf, bvn_cdf_grid, bvn_pdf, bvn_pdf_drho
from errors import PrecisionWarning

_INV_SQRT_2PI = 1.0 / np.sqrt(2.0 * np.pi)

# Upper bound on rows x quadrature nodes held in memory at once by NI2a.
_NI2A_CHUNK = 2_000_000


class CorrelationFunctional:
    """Common interface: evaluate g_r at a trial rho."""
    name = None
    exact = True

    def __init__(self, grid):
        self.grid = grid
        self.n_evaluations = 0
        self.n_bvn_calls = 0

    def evaluate(self, rho):
        """Return (g_r(rho), standard error)."""
        raise NotImplementedError

    def residual(self, rho, target):
        """f_r(rho) = g_r(rho) - r_X sigma1 sigma2 - mu1 mu2."""
        value, _ = self.evaluate(rho)
        return value - self.grid.target_constant(target)

    def correlation_at(self, rho):
        """Correlation of (w1(X1), w2(X2)) induced by latent correlation rho."""
        value, _ = self.evaluate(rho)
        return self.grid.correlation_from_g(value)

    def reset(self):
        """Drop cached state (counters are kept)."""

    def diagnostics(self):
        return {"evaluations": self.n_evaluations,
                "bvn_calls": self.n_bvn_calls}


def _corner_sum(grid, corners):
    """g_r from the interior corner block by summation by parts."""
    return float(grid.d1_inner @ corners @ grid.d2_inner) + grid.boundary_term


# ---------------------------------------------------------------------------
# NI1 - exact, brute force
# ---------------------------------------------------------------------------

class NI1(CorrelationFunctional):
    name = "NI1"

    def evaluate(self, rho):
        grid = self.grid
        corners = bvn_cdf_grid(grid.a, grid.b, rho)
        cells = np.diff(np.diff(corners, axis=0), axis=1)
        self.n_evaluations += 1
        self.n_bvn_calls += corners.size
        return float(grid.w1 @ cells @ grid.w2), 0.0


# ---------------------------------------------------------------------------
# NI2a - row-cumulative quadrature
# ---------------------------------------------------------------------------

class NI2a(CorrelationFunctional):
    name = "NI2a"

    def __init__(self, grid, quad_points=None, panel_width=None,
                 direct_rho=None):
        super().__init__(grid)
        if quad_points is None:
            quad_points = config.NI2A_QUAD_POINTS
        self.panel_width = config.NI2A_PANEL_WIDTH if panel_width is None else panel_width
        self.direct_rho = config.NI2A_DIRECT_RHO if direct_rho is None else direct_rho
        self._nodes, self._weights = leggauss(quad_points)

        # Rows with zero corner weight never contribute.
        self._rows = np.flatnonzero(grid.d1_inner != 0.0)
        b = grid.b_inner
        finite = np.isfinite(b)
        self._q0 = int(np.argmax(finite)) if finite.any() else b.shape[0]
        self._q1 = self._q0 + int(finite.sum())
        self.n_quadrature_nodes = 0
        self.reset()

    def reset(self):
        self._rho = None
        self._corners = None
        self._value = None

    def _row_cumulative(self, a_rows, rho):
        """Interior corners for the given rows by running accumulation along b."""
        grid = self.grid
        b = grid.b_inner
        n_cols = b.shape[0]
        out = np.zeros((a_rows.shape[0], n_cols))
        q0, q1 = self._q0, self._q1
        # b = +inf columns: Phi2(a, +inf) = Phi(a)
        out[:, q1:] = ndtr(a_rows)[:, None]
        if q1 == q0:
            return out

        out[:, q0] = bvn_cdf(a_rows, b[q0], rho)
        self.n_bvn_calls += a_rows.shape[0]
        if q1 - q0 == 1:
            return out

        s = np.sqrt(1.0 - rho * rho)
        lo = b[q0:q1 - 1]
        hi = b[q0 + 1:q1]
        width = hi - lo
        n_panels = np.maximum(1, np.ceil(width / (self.panel_width * s))).astype(int)

        # Panel edges for every interval, flattened; interval k owns
        # n_panels[k] consecutive panels.
        panel_interval = np.repeat(np.arange(width.shape[0]), n_panels)
        first_panel = np.concatenate([[0], np.cumsum(n_panels)[:-1]])
        pos = np.arange(panel_interval.shape[0]) - first_panel[panel_interval]
        step = width[panel_interval] / n_panels[panel_interval]
        left = lo[panel_interval] + pos * step
        half = step / 2.0

        z = ((left + half)[:, None] + half[:, None] * self._nodes[None, :]).ravel()
        wz = (half[:, None] * self._weights[None, :]).ravel() * _INV_SQRT_2PI * np.exp(-0.5 * z * z)
        starts = np.concatenate([[0], np.cumsum(n_panels * self._nodes.shape[0])[:-1]])
        self.n_quadrature_nodes += z.shape[0] * a_rows.shape[0]

        chunk = max(1, _NI2A_CHUNK // z.shape[0])
        for r0 in range(0, a_rows.shape[0], chunk):
            rows = slice(r0, r0 + chunk)
            integrand = ndtr((a_rows[rows, None] - rho * z[None, :]) / s) * wz[None, :]
            increments = np.add.reduceat(integrand, starts, axis=1)
            out[rows, q0 + 1:q1] = out[rows, q0][:, None] + np.cumsum(increments, axis=1)
        return np.clip(out, 0.0, 1.0)

    def _corners_at(self, rho):
        grid = self.grid
        corners = np.zeros((grid.m1 - 1, grid.m2 - 1))
        if self._rows.size == 0:
            return corners
        a_rows = grid.a_inner[self._rows]
        if abs(rho) >= self.direct_rho:
            corners[self._rows] = bvn_cdf_grid(a_rows, grid.b_inner, rho)
            self.n_bvn_calls += a_rows.shape[0] * grid.b_inner.shape[0]
        else:
            corners[self._rows] = self._row_cumulative(a_rows, rho)
        return corners

    def evaluate(self, rho):
        rho = float(rho)
        self.n_evaluations += 1
        if rho == self._rho:
            return self._value, 0.0
        corners = self._corners_at(rho)
        self._rho = rho
        self._corners = corners
        self._value = _corner_sum(self.grid, corners)
        return self._value, 0.0


# ---------------------------------------------------------------------------
# NI2b - incremental correction across iterations
# ---------------------------------------------------------------------------

class NI2b(NI2a):
    name = "NI2b"

    def __init__(self, grid, max_step=None, step_tolerance=None,
                 drift_bound=None, refresh_every=None, **kwargs):
        self.max_step = config.NI2B_MAX_STEP if max_step is None else max_step
        self.step_tolerance = (config.NI2B_STEP_TOLERANCE
                               if step_tolerance is None else step_tolerance)
        self.drift_bound = config.NI2B_DRIFT_BOUND if drift_bound is None else drift_bound
        self.refresh_every = (config.NI2B_REFRESH_EVERY
                              if refresh_every is None else refresh_every)
        self.n_full = 0
        self.n_corrections = 0
        self.n_rejected = 0
        self.n_drift_warnings = 0
        super().__init__(grid, **kwargs)

    def reset(self):
        super().reset()
        self._density = None
        self._slope = None
        self._since_refresh = 0
        self._drift = 0.0

    def _interior_density(self, rho):
        grid = self.grid
        return bvn_pdf(grid.a_inner[:, None], grid.b_inner[None, :], rho)

    def _interior_slope(self, rho):
        grid = self.grid
        return bvn_pdf_drho(grid.a_inner[:, None], grid.b_inner[None, :], rho)

    def _full(self, rho):
        self._corners = self._corners_at(rho)
        if abs(rho) < 1.0:
            self._density = self._interior_density(rho)
            self._slope = self._interior_slope(rho)
        else:
            self._density = self._slope = None
        self._rho = rho
        self._value = _corner_sum(self.grid, self._corners)
        self._since_refresh = 0
        self._drift = 0.0
        self.n_full += 1

    def evaluate(self, rho):
        rho = float(rho)
        self.n_evaluations += 1
        if rho == self._rho:
            return self._value, 0.0

        if (self._density is None
                or abs(rho) >= 1.0
                or abs(rho - self._rho) > self.max_step
                or self._since_refresh >= self.refresh_every):
            self._full(rho)
            return self._value, 0.0

        grid = self.grid
        delta = rho - self._rho
        density = self._interior_density(rho)
        slope = self._interior_slope(rho)
        midpoint = self._interior_density(self._rho + 0.5 * delta)

        # Two fourth-order rules for K(rho) - K(rho0) = integral of phi2:
        # endpoint-corrected trapezoid (values and slopes at both ends) and
        # Simpson (values at ends and midpoint).  Their gap estimates the
        # error of the first.
        hermite = (0.5 * delta * (self._density + density)
                   + delta * delta / 12.0 * (self._slope - slope))
        simpson = delta / 6.0 * (self._density + 4.0 * midpoint + density)
        step_error = abs(float(grid.d1_inner @ (hermite - simpson) @ grid.d2_inner))

        if step_error > self.step_tolerance:
            self.n_rejected += 1
            self._full(rho)
            return self._value, 0.0

        if self._drift + step_error > self.drift_bound:
            self.n_drift_warnings += 1
            warnings.warn(
                f"NI2b correction drift {self._drift + step_error:.3e} exceeds "
                f"{self.drift_bound:.3e} after {self._since_refresh} corrections "
                f"(rho={rho:.10g}); recomputing corners",
                PrecisionWarning, stacklevel=2)
            self._full(rho)
            return self._value, 0.0

        self._corners = self._corners + hermite
        self._density = density
        self._slope = slope
        self._rho = rho
        self._value = _corner_sum(grid, self._corners)
        self._since_refresh += 1
        self._drift += step_error
        self.n_corrections += 1
        return self._value, 0.0

    def diagnostics(self):
        out = super().diagnostics()
        out.update({"full_recomputations": self.n_full,
                    "corrections": self.n_corrections,
                    "rejected_corrections": self.n_rejected,
                    "drift_warnings": self.n_drift_warnings})
        return out


# ---------------------------------------------------------------------------
# NI3 - Monte Carlo
# ---------------------------------------------------------------------------

def _mc_chunk(grid, rho, h, n, seed):
    """Sufficient statistics of one Monte Carlo chunk (map step).

    Returns (n, sum, sum_sq, sum_plus, sum_minus, rho_plus, rho_minus) where
    the plus/minus sums reuse the same normals at rho +/- h.
    """
    rng = np.random.default_rng(seed)
    z1 = rng.standard_normal(n)
    e = rng.standard_normal(n)

    def _values(r):
        z2 = r * z1 + np.sqrt(max(1.0 - r * r, 0.0)) * e
        i, j = grid.cell_index(z1, z2)
        return grid.w1[i] * grid.w2[j]

    v = _values(rho)
    r_plus = min(rho + h, 1.0)
    r_minus = max(rho - h, -1.0)
    return (n, float(v.sum()), float(np.dot(v, v)),
            float(_values(r_plus).sum()), float(_values(r_minus).sum()),
            r_plus, r_minus)


class NI3(CorrelationFunctional):
    name = "NI3"
    exact = False

    def __init__(self, grid, sample_size=None, gradient_step=None, seed=None,
                 n_jobs=None, n_chunks=None):
        super().__init__(grid)
        self.n_chunks = config.MC_CHUNKS if n_chunks is None else n_chunks
        self.sample_size = config.MC_SAMPLE_SIZE if sample_size is None else sample_size
        self.gradient_step = (config.NI3_GRADIENT_STEP
                              if gradient_step is None else gradient_step)
        self.n_jobs = config.N_JOBS if n_jobs is None else n_jobs
        self.rng = np.random.default_rng(seed)
        self.reset()

    def reset(self):
        self.n_samples = 0
        self.estimate = None
        self.std_error = None
        self.gradient = None
        self._n_gradients = 0

    def evaluate(self, rho):
        rho = float(rho)
        # The split into chunks is fixed so that a seed gives the same
        # estimate whatever n_jobs schedules them on.
        n_chunks = max(1, min(self.n_chunks, self.sample_size))
        sizes = np.full(n_chunks, self.sample_size // n_chunks)
        sizes[: self.sample_size % n_chunks] += 1
        seeds = self.rng.integers(0, 2 ** 63 - 1, size=n_chunks)

        if self.n_jobs == 1:
            parts = [_mc_chunk(self.grid, rho, self.gradient_step, int(n), s)
                     for n, s in zip(sizes, seeds)]
        else:
            parts = Parallel(n_jobs=self.n_jobs)(
                delayed(_mc_chunk)(self.grid, rho, self.gradient_step, int(n), s)
                for n, s in zip(sizes, seeds))

        n = sum(p[0] for p in parts)
        total = sum(p[1] for p in parts)
        total_sq = sum(p[2] for p in parts)
        total_plus = sum(p[3] for p in parts)
        total_minus = sum(p[4] for p in parts)
        r_plus, r_minus = parts[0][5], parts[0][6]

        mean = total / n
        var = max(total_sq / n - mean * mean, 0.0) * n / max(n - 1, 1)
        se = float(np.sqrt(var / n))

        slope = (total_plus - total_minus) / n / (r_plus - r_minus)
        self._n_gradients += 1
        if self.gradient is None:
            self.gradient = slope
        else:
            self.gradient += (slope - self.gradient) / self._n_gradients

        self.n_samples += n
        self.n_evaluations += 1
        self.estimate = mean
        self.std_error = se
        return mean, se

    def diagnostics(self):
        out = super().diagnostics()
        out.update({"samples": self.n_samples, "gradient": self.gradient})
        return out


# ---------------------------------------------------------------------------
# Selection and helpers
# ---------------------------------------------------------------------------

STRATEGY_CLASSES = {
    "NI1": NI1,
    "NI2a": NI2a,
    "NI2b": NI2b,
    "NI3": NI3,
}


def make_functional(name, grid, seed=None, sample_size=None, n_jobs=None,
                    **kwargs):
    """Return a fresh functional for strategy *name* over *grid*.

    ``seed``, ``sample_size`` and ``n_jobs`` only apply to NI3; other
    keyword arguments are passed to the strategy's constructor.
    """
    if name not in STRATEGY_CLASSES:
        raise ValueError(f"Unknown strategy {name!r}; choose from {list(STRATEGY_CLASSES)}")
    if name == "NI3":
        return NI3(grid, sample_size=sample_size, seed=seed, n_jobs=n_jobs, **kwargs)
    return STRATEGY_CLASSES[name](grid, **kwargs)


def _limit_value(grid, upper):
    """g_r at rho = +1 (upper) or rho = -1 from the closed-form corners.

    Phi2(a, b; 1) = Phi(min(a, b)) and Phi2(a, b; -1) = max(0, Phi(a) + Phi(b) - 1),
    so each row of the corner sum splits at one sorted breakpoint and the
    whole sum costs O(m1 log m2 + m2) with cumulative sums over the columns.
    """
    a, b = grid.a_inner, grid.b_inner
    d1, d2 = grid.d1_inner, grid.d2_inner
    phi_a = ndtr(a)
    cum_d = np.concatenate([[0.0], np.cumsum(d2)])
    cum_dphi = np.concatenate([[0.0], np.cumsum(d2 * ndtr(b))])
    if upper:
        k = np.searchsorted(b, a, side="left")
        rows = cum_dphi[k] + phi_a * (cum_d[-1] - cum_d[k])
    else:
        k = np.searchsorted(b, -a, side="right")
        rows = (cum_dphi[-1] - cum_dphi[k]) + (phi_a - 1.0) * (cum_d[-1] - cum_d[k])
    return float(d1 @ rows) + grid.boundary_term


def attainable_range(grid):
    """(lowest, highest) correlation reachable, from the exact rho = -1, +1 limits."""
    return (grid.correlation_from_g(_limit_value(grid, upper=False)),
            grid.correlation_from_g(_limit_value(grid, upper=True)))
