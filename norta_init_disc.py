"""
NORTA initialization for pairs of discrete marginals.

compute_rho(marginal1, marginal2, target, ...) finds the correlation rho_Z
of a latent standard bivariate normal pair such that pushing the pair
through Phi and the marginals' quantile functions reproduces the target
rank (or linear) correlation.  fit_correlation_matrix does the same for
every pair of a d-dimensional marginal list, one independent calibration
per pair, fanned out with joblib.

Strategy guidance
-----------------
  NI1   exact; cost grows with m1 * m2 Phi2 calls per evaluation.  Default
        for small tables (m1 * m2 <= config.AUTO_NI1_MAX_CELLS).
  NI2a  exact; one Phi2 per row, the rest by cumulative quadrature.
  NI2b  exact; NI2a plus derivative corrections across iterations.  Auto
        default for larger tables.
  NI3   Monte Carlo + stochastic approximation.  Approximate, reports a
        standard error; auto only above config.AUTO_EXACT_MAX_CELLS.

Typical runtimes (negative-binomial pair, m1 x m2 ~ 60 x 60, Numba on):
  NI1 / NI2a / NI2b: well under a second; NI3 with defaults: a few seconds.
"""

import time
import warnings

import numpy as np
from joblib import Parallel, delayed

import config
from breakpoint_grid import cached_grid
from correlation_functional import attainable_range, make_functional
from errors import (InvalidMarginalError, PrecisionWarning,
                    UnachievableCorrelationError)
from marginal_table import MarginalTable, from_scipy
from root_finder import find_bracket, solve_bracketed, solve_stochastic


def as_marginal(marginal, truncation_quantile=None):
    """Return *marginal* as a MarginalTable, tabulating scipy distributions."""
    if isinstance(marginal, MarginalTable):
        return marginal
    if hasattr(marginal, "pmf") and hasattr(marginal, "support"):
        return from_scipy(marginal, truncation_quantile)
    raise InvalidMarginalError(
        f"expected a MarginalTable or frozen scipy.stats discrete distribution, "
        f"got {type(marginal).__name__}")


def select_strategy(grid):
    """Pick a strategy from the table sizes ('auto')."""
    cells = grid.n_cells
    if cells <= config.AUTO_NI1_MAX_CELLS:
        return "NI1"
    if cells <= config.AUTO_EXACT_MAX_CELLS:
        return "NI2b"
    return "NI3"


def _initial_rho(target, kind):
    """Starting point from the continuous-marginal relation."""
    if kind == "rank":
        return 2.0 * np.sin(np.pi * target / 6.0)
    return target


def compute_rho(marginal1, marginal2, target_correlation, correlation_kind="rank",
                strategy="auto", grid=None, seed=None, truncation_quantile=None,
                root_tolerance=None, residual_tolerance=None,
                max_iterations=None, max_seconds=None, mc_sample_size=None,
                mc_batches=None, n_jobs=None):
    """Calibrate the latent normal correlation for one marginal pair.

    Parameters
    ----------
    marginal1, marginal2 : MarginalTable or frozen scipy.stats discrete law
        scipy distributions are tabulated at *truncation_quantile*.
    target_correlation : float
        Target correlation r_X in (-1, 1).
    correlation_kind : str
        'rank' (correlation of F1(X1), F2(X2)) or 'linear' (of X1, X2).
    strategy : str
        'NI1', 'NI2a', 'NI2b', 'NI3' or 'auto'.
    grid : BreakpointGrid or None
        Reuse a grid built for the same pair (compared by support and
        masses, so re-tabulated scipy laws match) and kind.
    seed : int or None
        Seed for NI3.
    root_tolerance, residual_tolerance, max_iterations, max_seconds :
        Deterministic root-finder controls (defaults in config).
    mc_sample_size, mc_batches, n_jobs :
        NI3 controls: normal pairs per batch, Robbins-Monro iterations, and
        joblib workers per batch.

    Returns
    -------
    dict with keys 'rho', 'iterations', 'residual', 'strategy',
    'correlation_kind', 'evaluations', 'bvn_calls', 'std_error',
    'achieved_correlation', 'attainable_range', 'diagnostics',
    'warnings', 'elapsed_s'.

    Raises
    ------
    InvalidMarginalError
        A marginal fails validation.
    UnachievableCorrelationError
        The target lies outside the attainable range of the pair.
    NonConvergenceError
        The deterministic root finder hit its iteration or time cap.
    """
    if correlation_kind not in config.CORRELATION_KINDS:
        raise ValueError(f"Unknown correlation kind {correlation_kind!r}; "
                         f"choose from {config.CORRELATION_KINDS}")
    if strategy != "auto" and strategy not in config.STRATEGIES:
        raise ValueError(f"Unknown strategy {strategy!r}; "
                         f"choose from {config.STRATEGIES + ['auto']}")
    target = float(target_correlation)
    if not -1.0 < target < 1.0:
        raise ValueError(f"target correlation must lie in (-1, 1), got {target}")
    if mc_sample_size is None:
        mc_sample_size = config.MC_SAMPLE_SIZE
    if mc_batches is None:
        mc_batches = config.MC_BATCHES
    if max_seconds is None:
        max_seconds = config.MAX_SECONDS

    t0 = time.perf_counter()
    m1 = as_marginal(marginal1, truncation_quantile)
    m2 = as_marginal(marginal2, truncation_quantile)
    if grid is None:
        grid = cached_grid(m1, m2, correlation_kind)
    elif not (grid.marginal1.same_table(m1) and grid.marginal2.same_table(m2)
              and grid.kind == correlation_kind):
        raise ValueError("grid was built for a different marginal pair or kind")

    if strategy == "auto":
        strategy = select_strategy(grid)

    attainable = attainable_range(grid)
    if not attainable[0] < target < attainable[1]:
        raise UnachievableCorrelationError(target, attainable, correlation_kind)

    functional = make_functional(strategy, grid, seed=seed,
                                 sample_size=mc_sample_size, n_jobs=n_jobs)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        if functional.exact:
            sol = _solve_exact(functional, target, attainable, correlation_kind,
                               root_tolerance, residual_tolerance,
                               max_iterations, max_seconds)
            std_error = 0.0
        else:
            sol = solve_stochastic(
                functional, target, _initial_rho(target, correlation_kind),
                lo=-1.0 + config.RHO_BOUND_EPS, hi=1.0 - config.RHO_BOUND_EPS,
                n_batches=mc_batches, max_seconds=max_seconds)
            std_error = sol["std_error"]
            if std_error > config.NI3_SE_WARNING:
                warnings.warn(
                    f"NI3 standard error of rho {std_error:.3e} exceeds "
                    f"{config.NI3_SE_WARNING:.3e}; raise mc_sample_size or "
                    f"mc_batches", PrecisionWarning)

    notes = []
    for w in caught:
        if issubclass(w.category, PrecisionWarning):
            notes.append(str(w.message))
        warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)

    constant = grid.target_constant(target)
    return {
        "rho": float(sol["rho"]),
        "iterations": int(sol["iterations"]),
        "residual": float(sol["residual"]),
        "strategy": strategy,
        "correlation_kind": correlation_kind,
        "evaluations": functional.n_evaluations,
        "bvn_calls": functional.n_bvn_calls,
        "std_error": float(std_error),
        "achieved_correlation": float(grid.correlation_from_g(sol["residual"] + constant)),
        "attainable_range": attainable,
        "diagnostics": functional.diagnostics(),
        "warnings": notes,
        "elapsed_s": time.perf_counter() - t0,
    }


def _solve_exact(functional, target, attainable, kind, root_tolerance,
                 residual_tolerance, max_iterations, max_seconds):
    """Bracket around the continuous-marginal start inside [-1+eps, 1-eps], then solve."""
    eps = config.RHO_BOUND_EPS
    lo, hi = -1.0 + eps, 1.0 - eps

    def _residual(rho):
        return functional.residual(rho, target)

    try:
        bracket = find_bracket(_residual, _initial_rho(target, kind), lo, hi)
    except ValueError:
        raise UnachievableCorrelationError(target, attainable, kind) from None
    return solve_bracketed(_residual, bracket["lo"], bracket["hi"],
                           f_lo=bracket["f_lo"], f_hi=bracket["f_hi"],
                           root_tolerance=root_tolerance,
                           residual_tolerance=residual_tolerance,
                           max_iterations=max_iterations,
                           max_seconds=max_seconds)


# ---------------------------------------------------------------------------
# Full correlation matrix, one pair at a time
# ---------------------------------------------------------------------------

def _calibrate_pair(i, j, marginal_i, marginal_j, target, kwargs):
    """Run compute_rho for one (i, j) pair and tag the result."""
    res = compute_rho(marginal_i, marginal_j, target, **kwargs)
    res.update({"i": i, "j": j, "target": target})
    return res


def fit_correlation_matrix(marginals, target_matrix, correlation_kind="rank",
                           strategy="auto", seed=None, n_jobs=1, **options):
    """Calibrate rho_Z for every pair of a list of marginals.

    Pairs are independent units of work and are distributed with joblib
    (n_jobs=-1 uses all cores).  NI3 pairs get seeds seed + pair index.

    Parameters
    ----------
    marginals : list of MarginalTable or frozen scipy discrete laws
    target_matrix : (d, d) array-like
        Symmetric target correlation matrix with unit diagonal.
    options :
        Passed to compute_rho.

    Returns
    -------
    dict with keys 'rho' ((d, d) latent correlation matrix), 'pairs' (list
    of per-pair result dicts) and 'min_eigenvalue' (of 'rho'; negative
    means the latent matrix is not a valid correlation matrix and needs
    repair before sampling).
    """
    target = np.asarray(target_matrix, dtype=float)
    d = len(marginals)
    if target.shape != (d, d):
        raise ValueError(f"target matrix has shape {target.shape}, expected ({d}, {d})")
    if not np.allclose(target, target.T):
        raise ValueError("target matrix must be symmetric")
    if not np.allclose(np.diag(target), 1.0):
        raise ValueError("target matrix must have a unit diagonal")

    tables = [as_marginal(m, options.get("truncation_quantile")) for m in marginals]
    pairs = [(i, j) for i in range(d) for j in range(i + 1, d)]
    jobs = []
    for idx, (i, j) in enumerate(pairs):
        kwargs = dict(options, correlation_kind=correlation_kind,
                      strategy=strategy,
                      seed=(seed + idx) if seed is not None else None)
        jobs.append((i, j, tables[i], tables[j], float(target[i, j]), kwargs))

    if n_jobs == 1:
        results = [_calibrate_pair(*args) for args in jobs]
    else:
        results = Parallel(n_jobs=n_jobs)(
            delayed(_calibrate_pair)(*args) for args in jobs)

    rho = np.eye(d)
    for res in results:
        rho[res["i"], res["j"]] = rho[res["j"], res["i"]] = res["rho"]
    return {
        "rho": rho,
        "pairs": results,
        "min_eigenvalue": float(np.linalg.eigvalsh(rho).min()),
    }
