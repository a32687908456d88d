"""
Read-only tabulation of a discrete marginal distribution.

A MarginalTable is the finite view the correlation engine works on: ordered
support points, their masses, the cumulative probabilities and the first two
moments of both F(X) (rank targets) and X (linear targets).  Tables are
validated once on construction and never mutated afterwards; their arrays
are flagged read-only so they can be shared across calibrations and worker
processes without copies or locks.

Constructors
------------
- from_pmf(support, mass)                   : explicit probability table
- from_counts(values, counts)               : tie-frequency table (counts per value)
- from_scipy(dist, truncation_quantile)     : frozen scipy.stats discrete law
- negative_binomial(s, p, truncation_quantile)

The scipy adapter truncates unbounded supports at ``truncation_quantile``
(default ``config.TRUNCATION_QUANTILE``) and lumps the cut tail mass into
the end point, so every table sums to one.
"""

from dataclasses import dataclass

import numpy as np
from scipy import stats

import config
from errors import InvalidMarginalError

# Longest integer lattice from_scipy will tabulate.
_MAX_LATTICE = 10_000_000


def _frozen(arr):
    arr = np.array(arr, dtype=float)
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True, eq=False)
class MarginalTable:
    """Validated discrete marginal.  Build with ``from_pmf`` and friends."""
    support: np.ndarray
    mass: np.ndarray
    cdf: np.ndarray
    mean_F: float
    sd_F: float
    mean_X: float
    sd_X: float
    label: str = ""

    @property
    def size(self) -> int:
        return self.support.shape[0]

    def weights(self, kind="rank"):
        """Values w(x_i) entering E[w1(X1) w2(X2)] for the correlation *kind*."""
        if kind == "rank":
            return self.cdf
        if kind == "linear":
            return self.support
        raise ValueError(f"Unknown correlation kind {kind!r}; "
                         f"choose from {config.CORRELATION_KINDS}")

    def moments(self, kind="rank"):
        """(mean, sd) of w(X) for the correlation *kind*."""
        if kind == "rank":
            return self.mean_F, self.sd_F
        if kind == "linear":
            return self.mean_X, self.sd_X
        raise ValueError(f"Unknown correlation kind {kind!r}; "
                         f"choose from {config.CORRELATION_KINDS}")

    def same_table(self, other):
        """True when *other* tabulates the same support points and masses."""
        return other is self or (isinstance(other, MarginalTable)
                                 and np.array_equal(self.support, other.support)
                                 and np.array_equal(self.mass, other.mass))

    def quantile(self, u):
        """Generalised inverse F^-1(u) = min{x : F(x) >= u}."""
        idx = np.searchsorted(self.cdf, u, side="left")
        return self.support[np.minimum(idx, self.size - 1)]

    def __repr__(self):
        name = f" {self.label!r}" if self.label else ""
        return (f"MarginalTable{name}(m={self.size}, "
                f"support=[{self.support[0]:g}, {self.support[-1]:g}], "
                f"mean_F={self.mean_F:.6g}, sd_F={self.sd_F:.6g})")


def _validate(support, mass):
    if support.ndim != 1 or mass.ndim != 1:
        raise InvalidMarginalError("support and mass must be 1-D")
    if support.shape != mass.shape:
        raise InvalidMarginalError(
            f"support has {support.size} points but mass has {mass.size}")
    if support.size < 2:
        raise InvalidMarginalError(
            f"need at least 2 support points, got {support.size}")
    if not (np.all(np.isfinite(support)) and np.all(np.isfinite(mass))):
        raise InvalidMarginalError("support and mass must be finite")
    if np.any(np.diff(support) <= 0):
        raise InvalidMarginalError("support must be strictly increasing")
    if np.any(mass < 0):
        raise InvalidMarginalError("masses must be non-negative")
    total = mass.sum()
    if abs(total - 1.0) > config.MASS_TOLERANCE:
        raise InvalidMarginalError(
            f"masses sum to {total:.10g}, expected 1 "
            f"(tolerance {config.MASS_TOLERANCE:g})")
    if np.count_nonzero(mass) < 2:
        raise InvalidMarginalError(
            "marginal puts all mass on one point; its variance is zero")


def from_pmf(support, mass, label=""):
    """Build a MarginalTable from support points and probability masses.

    Masses are renormalised to sum to exactly one after validation.

    Raises
    ------
    InvalidMarginalError
        Fewer than 2 points, non-finite values, support not strictly
        increasing, negative masses, masses not summing to ~1, or all mass
        on a single point.
    """
    support = np.asarray(support, dtype=float)
    mass = np.asarray(mass, dtype=float)
    _validate(support, mass)

    mass = mass / mass.sum()
    cdf = np.minimum(np.cumsum(mass), 1.0)
    cdf[-1] = 1.0

    mean_F = float(np.dot(mass, cdf))
    var_F = float(np.dot(mass, cdf * cdf)) - mean_F ** 2
    mean_X = float(np.dot(mass, support))
    var_X = float(np.dot(mass, (support - mean_X) ** 2))

    return MarginalTable(
        support=_frozen(support),
        mass=_frozen(mass),
        cdf=_frozen(cdf),
        mean_F=mean_F,
        sd_F=float(np.sqrt(max(var_F, 0.0))),
        mean_X=mean_X,
        sd_X=float(np.sqrt(max(var_X, 0.0))),
        label=label,
    )


def from_counts(values, counts, label=""):
    """Build a MarginalTable from a tie-frequency table.

    Parameters
    ----------
    values : array-like
        Distinct observed values, strictly increasing.
    counts : array-like of int
        Number of observations at each value, e.g. ``[12, 30, 29, 9]``.
    """
    counts = np.asarray(counts, dtype=float)
    if counts.ndim != 1 or np.any(counts < 0) or counts.sum() <= 0:
        raise InvalidMarginalError("counts must be non-negative with a positive total")
    return from_pmf(values, counts / counts.sum(), label=label)


def from_scipy(dist, truncation_quantile=None, label=""):
    """Tabulate a frozen scipy.stats discrete distribution.

    Parameters
    ----------
    dist : scipy.stats frozen discrete distribution
        e.g. ``scipy.stats.nbinom(15.68, 0.3861)``.
    truncation_quantile : float or None
        Unbounded upper supports are cut at ``dist.ppf(truncation_quantile)``
        and unbounded lower supports at ``dist.ppf(1 - truncation_quantile)``.
        Defaults to ``config.TRUNCATION_QUANTILE``.
    """
    if truncation_quantile is None:
        truncation_quantile = config.TRUNCATION_QUANTILE
    if not 0.5 < truncation_quantile < 1.0:
        raise ValueError("truncation_quantile must lie in (0.5, 1)")

    lo, hi = dist.support()
    if not np.isfinite(lo):
        lo = dist.ppf(1.0 - truncation_quantile)
    if not np.isfinite(hi):
        hi = dist.ppf(truncation_quantile)

    xk = getattr(dist.dist, "xk", None)
    if xk is not None:
        support = np.asarray(xk, dtype=float)
        support = support[(support >= lo) & (support <= hi)]
    else:
        if hi - lo + 1 > _MAX_LATTICE:
            raise ValueError(
                f"support [{lo:g}, {hi:g}] too long to tabulate; "
                f"lower truncation_quantile")
        support = np.arange(lo, hi + 1.0)

    mass = dist.pmf(support)
    # Cut tails go to the end points.
    mass[0] = dist.cdf(support[0])
    mass[-1] += dist.sf(support[-1])
    if not label:
        name = getattr(dist.dist, "name", None) or "discrete"
        label = f"{name}{tuple(round(float(a), 6) for a in dist.args)}"
    return from_pmf(support, mass, label=label)


def negative_binomial(s, p, truncation_quantile=None):
    """Negative binomial marginal (scipy ``nbinom`` parameterisation)."""
    return from_scipy(stats.nbinom(s, p), truncation_quantile,
                      label=f"nbinom(s={s:g}, p={p:g})")
