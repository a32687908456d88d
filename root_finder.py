"""
Root finders for f_r(rho) = g_r(rho) - r_X sigma1 sigma2 - mu1 mu2.

find_bracket
    Steps out from a starting point until f_r changes sign, so that the
    bracketed search starts from a short interval around the root.

solve_bracketed
    Deterministic path (NI1 / NI2a / NI2b).  g_r is continuous and
    non-decreasing in rho, so a sign change over the bracket pins down the
    single root.  Illinois-modified regula falsi: the secant point of the
    bracket ends, with the retained end's residual halved whenever the same
    end survives twice in a row, and a bisection step whenever the secant
    point is not strictly inside the bracket.

solve_stochastic
    Stochastic path (NI3).  A single noisy residual cannot decide a
    bisection, so instead Robbins-Monro steps

        rho_{k+1} = rho_k - a_k * f_hat(rho_k),  a_k = gain / ((k + offset) * G_k)

    with G_k the functional's running gradient estimate, over a fixed
    batch budget.  The estimate is the Polyak-Ruppert average of the last
    ``polyak_fraction`` of the iterates.
"""

import time

import numpy as np

import config
from errors import NonConvergenceError


def find_bracket(func, x0, lo, hi, step=None, growth=None):
    """Bracket the root of a non-decreasing *func* by stepping out from *x0*.

    Steps go towards the sign change, starting at *step* and growing by
    *growth*, and stop at *lo* or *hi*.

    Returns
    -------
    dict with keys 'lo', 'hi', 'f_lo', 'f_hi' and 'evaluations'.  When
    func(x0) is exactly zero both ends are x0.

    Raises
    ------
    ValueError
        No sign change between x0 and the end of [lo, hi] it steps towards.
    """
    if step is None:
        step = config.BRACKET_STEP
    if growth is None:
        growth = config.BRACKET_GROWTH

    x0 = min(max(x0, lo), hi)
    f0 = func(x0)
    evaluations = 1
    if f0 == 0.0:
        return {"lo": x0, "hi": x0, "f_lo": 0.0, "f_hi": 0.0,
                "evaluations": evaluations}

    direction = 1.0 if f0 < 0.0 else -1.0
    end = hi if direction > 0 else lo
    x, fx = x0, f0
    while True:
        if x == end:
            raise ValueError(f"f_r does not change sign between {x0} and {end} "
                             f"(f({end})={fx:.3e})")
        x_new = x + direction * step
        if (x_new - end) * direction >= 0.0:
            x_new = end
        f_new = func(x_new)
        evaluations += 1
        if f_new == 0.0 or np.sign(f_new) != np.sign(f0):
            break
        x, fx = x_new, f_new
        step *= growth

    if direction > 0:
        return {"lo": x, "hi": x_new, "f_lo": fx, "f_hi": f_new,
                "evaluations": evaluations}
    return {"lo": x_new, "hi": x, "f_lo": f_new, "f_hi": fx,
            "evaluations": evaluations}


def solve_bracketed(func, lo, hi, f_lo=None, f_hi=None, root_tolerance=None,
                    residual_tolerance=None, max_iterations=None,
                    max_seconds=None):
    """Find the root of a monotone *func* on [lo, hi].

    Parameters
    ----------
    func : callable
        rho -> f_r(rho).
    f_lo, f_hi : float or None
        Residuals at the bracket ends if already known.
    root_tolerance : float
        Stop when the step |rho_k - rho_{k-1}| or the bracket width falls
        below this.
    residual_tolerance : float
        Stop when |f_r| falls below this.
    max_iterations : int
    max_seconds : float or None
        Wall-clock cap.

    Returns
    -------
    dict with keys 'rho', 'residual', 'iterations', 'evaluations', 'history'
    (list of (rho, residual) per iteration).

    Raises
    ------
    ValueError
        f_r does not change sign over [lo, hi].
    NonConvergenceError
        Iteration or time cap hit before a stopping rule fired.
    """
    if root_tolerance is None:
        root_tolerance = config.ROOT_TOLERANCE
    if residual_tolerance is None:
        residual_tolerance = config.RESIDUAL_TOLERANCE
    if max_iterations is None:
        max_iterations = config.MAX_ITERATIONS
    if max_seconds is None:
        max_seconds = config.MAX_SECONDS

    t0 = time.perf_counter()
    evaluations = 0
    if f_lo is None:
        f_lo = func(lo)
        evaluations += 1
    if f_hi is None:
        f_hi = func(hi)
        evaluations += 1

    if f_lo == 0.0:
        return {"rho": lo, "residual": 0.0, "iterations": 0,
                "evaluations": evaluations, "history": []}
    if f_hi == 0.0:
        return {"rho": hi, "residual": 0.0, "iterations": 0,
                "evaluations": evaluations, "history": []}
    if np.sign(f_lo) == np.sign(f_hi):
        raise ValueError(f"f_r does not change sign over [{lo}, {hi}] "
                         f"(f(lo)={f_lo:.3e}, f(hi)={f_hi:.3e})")

    x0, f0, x1, f1 = lo, f_lo, hi, f_hi
    side = 0
    prev = None
    history = []
    x, fx = x0, f0

    for it in range(1, max_iterations + 1):
        if max_seconds is not None and time.perf_counter() - t0 > max_seconds:
            raise NonConvergenceError(x, fx, it - 1, reason="time cap")

        x = (x0 * f1 - x1 * f0) / (f1 - f0)
        if not (min(x0, x1) < x < max(x0, x1)):
            x = 0.5 * (x0 + x1)
        fx = func(x)
        evaluations += 1
        history.append((x, fx))

        if (abs(fx) < residual_tolerance
                or (prev is not None and abs(x - prev) < root_tolerance)
                or abs(x1 - x0) < root_tolerance):
            return {"rho": x, "residual": fx, "iterations": it,
                    "evaluations": evaluations, "history": history}

        if fx * f1 > 0:
            x1, f1 = x, fx
            if side == -1:
                f0 /= 2.0
            side = -1
        else:
            x0, f0 = x, fx
            if side == +1:
                f1 /= 2.0
            side = +1
        prev = x

    raise NonConvergenceError(x, fx, max_iterations)


def solve_stochastic(functional, target, rho0, lo=-1.0, hi=1.0, n_batches=None,
                     gain=None, offset=None, min_gradient=None,
                     polyak_fraction=None, se_batches=None, max_seconds=None):
    """Robbins-Monro with Polyak-Ruppert averaging over a noisy functional.

    Parameters
    ----------
    functional : CorrelationFunctional
        Must expose ``evaluate(rho) -> (value, se)`` and a running
        ``gradient`` attribute (NI3).
    target : float
        Target correlation r_X.
    rho0 : float
        Starting point.
    n_batches : int
        Iteration (batch) budget; the only stopping rule.

    Returns
    -------
    dict with keys 'rho', 'residual' (mean residual over the averaged
    iterates), 'iterations', 'evaluations', 'std_error', 'history'.

    Notes
    -----
    Each iterate in the averaged tail already pools every batch before it,
    so iterates are strongly autocorrelated.  The standard error is taken
    from the per-batch residual noise, sd(f_hat) / (G * sqrt(n_tail)),
    which is conservative for the averaged estimate.
    """
    if n_batches is None:
        n_batches = config.MC_BATCHES
    if gain is None:
        gain = config.SA_GAIN
    if offset is None:
        offset = config.SA_OFFSET
    if min_gradient is None:
        min_gradient = config.SA_MIN_GRADIENT
    if polyak_fraction is None:
        polyak_fraction = config.POLYAK_FRACTION
    if se_batches is None:
        se_batches = config.POLYAK_SE_BATCHES
    if max_seconds is None:
        max_seconds = config.MAX_SECONDS
    if n_batches < 2:
        raise ValueError("n_batches must be at least 2")

    t0 = time.perf_counter()
    constant = functional.grid.target_constant(target)
    rho = float(np.clip(rho0, lo, hi))
    iterates = np.empty(n_batches)
    residuals = np.empty(n_batches)
    noise = np.empty(n_batches)
    done = 0

    for k in range(n_batches):
        if max_seconds is not None and time.perf_counter() - t0 > max_seconds:
            break
        value, se = functional.evaluate(rho)
        f = value - constant
        grad = max(functional.gradient, min_gradient)
        iterates[k] = rho
        residuals[k] = f
        noise[k] = se
        rho = float(np.clip(rho - gain / ((k + offset) * grad) * f, lo, hi))
        done += 1

    if done < 2:
        raise NonConvergenceError(rho, float(residuals[0]) if done else np.nan,
                                  done, reason="time cap")

    iterates = iterates[:done]
    residuals = residuals[:done]
    noise = noise[:done]
    n_tail = max(1, int(round(done * polyak_fraction)))
    tail = iterates[-n_tail:]
    estimate = float(tail.mean())

    grad = max(functional.gradient, min_gradient)
    sd_f = float(np.sqrt(np.mean(noise[-n_tail:] ** 2)))
    std_error = sd_f / (grad * np.sqrt(n_tail))

    # Spread of the tail across batch means, as a floor for the estimate.
    n_groups = min(se_batches, n_tail)
    if n_groups >= 2:
        groups = np.array_split(tail, n_groups)
        spread = float(np.std([g.mean() for g in groups], ddof=1) / np.sqrt(n_groups))
        std_error = max(std_error, spread)

    return {
        "rho": estimate,
        "residual": float(residuals[-n_tail:].mean()),
        "iterations": done,
        "evaluations": done,
        "std_error": float(std_error),
        "history": list(zip(iterates.tolist(), residuals.tolist())),
    }
