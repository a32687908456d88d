"""
Standard bivariate normal CDF and its derivative in rho.

Provides:
- bvn_cdf(a, b, rho)       : Phi2(a, b; rho), broadcasting over arrays
- bvn_cdf_grid(a, b, rho)  : all corners Phi2(a[p], b[q]; rho) as a matrix
- bvn_pdf(a, b, rho)       : bivariate density, equal to dPhi2/drho
- bvn_pdf_drho(a, b, rho)  : d bvn_pdf / drho, for higher-order corrections in rho
- norm_cdf, norm_ppf       : univariate Phi and Phi^-1

Phi2 follows Drezner & Wesolowsky (1989) as refined by Genz (2004): a
20-point Gauss-Legendre rule on Sheppard's arcsine integral for
|rho| < 0.925 and an asymptotic expansion plus correction quadrature for
|rho| >= 0.925.  Absolute error is around 1e-15, far below the 1e-7 the
root finder needs.

Precision boundary: a cell probability is the difference of four corner
values.  Far from the origin the cell mass falls below what the absolute
corner error can resolve, so relative cell accuracy degrades there; the
weighted sum g_r stays accurate in absolute terms because the corner weights
are bounded.

When config.USE_NUMBA is True the corner matrix is filled by a JIT kernel
parallel over rows (prange); otherwise a vectorised NumPy path is used.
"""

import math

import numpy as np
from numba import njit, prange
from scipy.special import ndtr, ndtri

import config

_TWO_PI = 2.0 * math.pi
_SQRT_TWO_PI = math.sqrt(_TWO_PI)

# Genz switches from the arcsine quadrature to the asymptotic expansion here.
_HIGH_RHO = 0.925

# 20-point Gauss-Legendre rule on [-1, 1].
_GL_HALF_NODES = np.array([
    0.07652652113349733, 0.2277858511416451, 0.3737060887154196,
    0.5108670019508271, 0.6360536807265150, 0.7463319064601508,
    0.8391169718222188, 0.9122344282513259, 0.9639719272779138,
    0.9931285991850949,
])
_GL_HALF_WEIGHTS = np.array([
    0.1527533871307259, 0.1491729864726037, 0.1420961093183821,
    0.1316886384491766, 0.1181945319615184, 0.1019301198172404,
    0.08327674157670475, 0.06267204833410906, 0.04060142980038694,
    0.01761400713915212,
])
GL_NODES = np.concatenate([-_GL_HALF_NODES[::-1], _GL_HALF_NODES])
GL_WEIGHTS = np.concatenate([_GL_HALF_WEIGHTS[::-1], _GL_HALF_WEIGHTS])


def norm_cdf(x):
    return ndtr(x)


def norm_ppf(p):
    return ndtri(p)


def _check_rho(rho):
    rho = np.asarray(rho, dtype=float)
    if np.any(np.abs(rho) > 1.0) or np.any(np.isnan(rho)):
        raise ValueError("rho must lie in [-1, 1]")
    return rho


# ---------------------------------------------------------------------------
# Numba JIT block
# ---------------------------------------------------------------------------

@njit(cache=True)
def _phid(x):
    return 0.5 * math.erfc(-x / math.sqrt(2.0))


@njit(cache=True)
def _bvnu_jit(h, k, r, nodes, weights):
    """Upper orthant P(X > h, Y > k) for finite h, k and |r| < 1."""
    hk = h * k
    bvn = 0.0
    if abs(r) < 0.925:
        hs = (h * h + k * k) / 2.0
        asr = math.asin(r)
        for i in range(nodes.shape[0]):
            sn = math.sin(asr * (1.0 + nodes[i]) / 2.0)
            bvn += weights[i] * math.exp((sn * hk - hs) / (1.0 - sn * sn))
        return bvn * asr / (4.0 * math.pi) + _phid(-h) * _phid(-k)

    if r < 0.0:
        k = -k
        hk = -hk
    if abs(r) < 1.0:
        as_ = (1.0 - r) * (1.0 + r)
        a = math.sqrt(as_)
        bs = (h - k) ** 2
        c = (4.0 - hk) / 8.0
        d = (12.0 - hk) / 16.0
        asr = -(bs / as_ + hk) / 2.0
        if asr > -100.0:
            bvn = a * math.exp(asr) * (1.0 - c * (bs - as_) * (1.0 - d * bs / 5.0) / 3.0
                                       + c * d * as_ * as_ / 5.0)
        if hk > -100.0:
            b = math.sqrt(bs)
            bvn -= (math.exp(-hk / 2.0) * math.sqrt(2.0 * math.pi) * _phid(-b / a)
                    * b * (1.0 - c * bs * (1.0 - d * bs / 5.0) / 3.0))
        a /= 2.0
        for i in range(nodes.shape[0]):
            xs = (a * (nodes[i] + 1.0)) ** 2
            rs = math.sqrt(1.0 - xs)
            asr = -(bs / xs + hk) / 2.0
            if asr > -100.0:
                bvn += a * weights[i] * math.exp(asr) * (
                    math.exp(-hk * (1.0 - rs) / (2.0 * (1.0 + rs))) / rs
                    - (1.0 + c * xs * (1.0 + d * xs)))
        bvn = -bvn / (2.0 * math.pi)
    if r > 0.0:
        return bvn + _phid(-max(h, k))
    return -bvn + max(0.0, _phid(-h) - _phid(-k))


@njit(cache=True)
def _bvn_cdf_jit(a, b, r, nodes, weights):
    if a == -np.inf or b == -np.inf:
        return 0.0
    if a == np.inf:
        return _phid(b)
    if b == np.inf:
        return _phid(a)
    if r >= 1.0:
        return _phid(min(a, b))
    if r <= -1.0:
        return max(0.0, _phid(a) + _phid(b) - 1.0)
    p = _bvnu_jit(-a, -b, r, nodes, weights)
    return min(max(p, 0.0), 1.0)


@njit(cache=True, parallel=True)
def _bvn_cdf_grid_jit(a, b, r, nodes, weights):
    """Corner matrix Phi2(a[p], b[q]; r), parallel over rows."""
    m1 = a.shape[0]
    m2 = b.shape[0]
    out = np.empty((m1, m2), dtype=np.float64)
    for p in prange(m1):
        for q in range(m2):
            out[p, q] = _bvn_cdf_jit(a[p], b[q], r, nodes, weights)
    return out


# ---------------------------------------------------------------------------
# NumPy path
# ---------------------------------------------------------------------------

def _bvnu_numpy(h, k, r):
    """Vectorised upper orthant for finite h, k and |r| < 1 (1-D arrays)."""
    out = np.empty_like(h)
    low = np.abs(r) < _HIGH_RHO

    if np.any(low):
        hl, kl, rl = h[low], k[low], r[low]
        hk = hl * kl
        hs = (hl * hl + kl * kl) / 2.0
        asr = np.arcsin(rl)
        acc = np.zeros_like(hl)
        for x, w in zip(GL_NODES, GL_WEIGHTS):
            sn = np.sin(asr * (1.0 + x) / 2.0)
            acc += w * np.exp((sn * hk - hs) / (1.0 - sn * sn))
        out[low] = acc * asr / (4.0 * np.pi) + ndtr(-hl) * ndtr(-kl)

    high = ~low
    if np.any(high):
        hh, rh = h[high], r[high]
        kh = np.where(rh < 0.0, -k[high], k[high])
        hk = hh * kh
        as_ = (1.0 - rh) * (1.0 + rh)
        a = np.sqrt(as_)
        bs = (hh - kh) ** 2
        c = (4.0 - hk) / 8.0
        d = (12.0 - hk) / 16.0
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            asr = -(bs / as_ + hk) / 2.0
            bvn = np.where(
                asr > -100.0,
                a * np.exp(asr) * (1.0 - c * (bs - as_) * (1.0 - d * bs / 5.0) / 3.0
                                   + c * d * as_ * as_ / 5.0),
                0.0)
            b = np.sqrt(bs)
            tail = (np.exp(-np.maximum(hk, -200.0) / 2.0) * _SQRT_TWO_PI * ndtr(-b / a)
                    * b * (1.0 - c * bs * (1.0 - d * bs / 5.0) / 3.0))
            bvn -= np.where(hk > -100.0, tail, 0.0)
            half = a / 2.0
            for x, w in zip(GL_NODES, GL_WEIGHTS):
                xs = (half * (x + 1.0)) ** 2
                rs = np.sqrt(1.0 - xs)
                asr = -(bs / xs + hk) / 2.0
                term = half * w * np.exp(asr) * (
                    np.exp(-hk * (1.0 - rs) / (2.0 * (1.0 + rs))) / rs
                    - (1.0 + c * xs * (1.0 + d * xs)))
                bvn += np.where(asr > -100.0, term, 0.0)
        bvn = -bvn / _TWO_PI
        pos = rh > 0.0
        out[high] = np.where(
            pos,
            bvn + ndtr(-np.maximum(hh, kh)),
            -bvn + np.maximum(0.0, ndtr(-hh) - ndtr(-kh)))
    return out


def bvn_cdf(a, b, rho):
    """Standard bivariate normal CDF Phi2(a, b; rho) = P(Z1 <= a, Z2 <= b).

    Parameters
    ----------
    a, b : float or array-like
        Upper limits; +/-inf allowed.
    rho : float or array-like
        Correlation in [-1, 1].  rho = +/-1 use the exact degenerate limits.

    Returns
    -------
    float or ndarray
        Broadcast shape of the inputs, values in [0, 1].
    """
    rho = _check_rho(rho)
    a, b, rho = np.broadcast_arrays(np.asarray(a, dtype=float),
                                    np.asarray(b, dtype=float), rho)
    shape = a.shape
    a, b, rho = a.ravel(), b.ravel(), rho.ravel()
    out = np.zeros(a.shape, dtype=float)

    a_top = a == np.inf
    b_top = b == np.inf
    zero = (a == -np.inf) | (b == -np.inf)
    out[a_top & ~zero] = ndtr(b[a_top & ~zero])
    only_b = b_top & ~a_top & ~zero
    out[only_b] = ndtr(a[only_b])

    finite = ~(zero | a_top | b_top)
    comono = finite & (rho >= 1.0)
    counter = finite & (rho <= -1.0)
    out[comono] = ndtr(np.minimum(a[comono], b[comono]))
    out[counter] = np.maximum(0.0, ndtr(a[counter]) + ndtr(b[counter]) - 1.0)

    inner = finite & ~comono & ~counter
    if np.any(inner):
        out[inner] = _bvnu_numpy(-a[inner], -b[inner], rho[inner])

    out = np.clip(out, 0.0, 1.0).reshape(shape)
    if out.ndim == 0:
        return float(out)
    return out


def bvn_cdf_grid(a, b, rho):
    """All corners Phi2(a[p], b[q]; rho) for 1-D breakpoint arrays.

    Returns
    -------
    ndarray of shape (len(a), len(b))
    """
    rho = float(_check_rho(rho))
    a = np.ascontiguousarray(a, dtype=np.float64)
    b = np.ascontiguousarray(b, dtype=np.float64)
    if config.USE_NUMBA:
        return _bvn_cdf_grid_jit(a, b, rho, GL_NODES, GL_WEIGHTS)
    return bvn_cdf(a[:, None], b[None, :], rho)


def bvn_pdf(a, b, rho):
    """Bivariate standard normal density; equals dPhi2(a, b; rho)/drho.

    Zero wherever a or b is infinite.  rho must lie strictly inside (-1, 1).
    """
    rho = np.asarray(rho, dtype=float)
    if np.any(np.abs(rho) >= 1.0):
        raise ValueError("bvn_pdf needs |rho| < 1")
    a, b, rho = np.broadcast_arrays(np.asarray(a, dtype=float),
                                    np.asarray(b, dtype=float), rho)
    finite = np.isfinite(a) & np.isfinite(b)
    af = np.where(finite, a, 0.0)
    bf = np.where(finite, b, 0.0)
    s2 = 1.0 - rho * rho
    q = (af * af - 2.0 * rho * af * bf + bf * bf) / (2.0 * s2)
    out = np.where(finite, np.exp(-q) / (_TWO_PI * np.sqrt(s2)), 0.0)
    if out.ndim == 0:
        return float(out)
    return out


def bvn_pdf_drho(a, b, rho):
    """d^2 Phi2 / drho^2, the rho-derivative of bvn_pdf.

    dphi2/drho = phi2 * (rho / s2 + (a b s2 - rho (a^2 - 2 rho a b + b^2)) / s2^2)
    with s2 = 1 - rho^2.  Zero wherever a or b is infinite.
    """
    rho = np.asarray(rho, dtype=float)
    if np.any(np.abs(rho) >= 1.0):
        raise ValueError("bvn_pdf_drho needs |rho| < 1")
    a, b, rho = np.broadcast_arrays(np.asarray(a, dtype=float),
                                    np.asarray(b, dtype=float), rho)
    finite = np.isfinite(a) & np.isfinite(b)
    af = np.where(finite, a, 0.0)
    bf = np.where(finite, b, 0.0)
    s2 = 1.0 - rho * rho
    quad = af * af - 2.0 * rho * af * bf + bf * bf
    density = np.exp(-quad / (2.0 * s2)) / (_TWO_PI * np.sqrt(s2))
    factor = rho / s2 + (af * bf * s2 - rho * quad) / (s2 * s2)
    out = np.where(finite, density * factor, 0.0)
    if out.ndim == 0:
        return float(out)
    return out
