"""
Exceptions and warnings raised by the correlation-matching engine.

Validation failures derive from ValueError and convergence failures from
RuntimeError so callers that only know the builtin types still catch them.
"""


class NortaError(Exception):
    """Base class for calibration failures."""


class InvalidMarginalError(NortaError, ValueError):
    """A marginal table violates the support/mass/cdf contract."""


class UnachievableCorrelationError(NortaError, ValueError):
    """No latent normal correlation reproduces the requested target.

    Attributes
    ----------
    target : float
        Requested correlation.
    attainable : tuple of float or None
        (lowest, highest) correlation these marginals can reach, when known.
    """

    def __init__(self, target, attainable=None, kind="rank"):
        self.target = target
        self.attainable = attainable
        self.kind = kind
        msg = f"target {kind} correlation {target:.6g} is not attainable"
        if attainable is not None:
            lo, hi = attainable
            msg += f"; attainable range is [{lo:.6g}, {hi:.6g}]"
        super().__init__(msg)


class NonConvergenceError(NortaError, RuntimeError):
    """The root finder ran out of iterations or time.

    Attributes
    ----------
    rho : float
        Last iterate.
    residual : float
        f_r at the last iterate.
    iterations : int
    """

    def __init__(self, rho, residual, iterations, reason="iteration cap"):
        self.rho = rho
        self.residual = residual
        self.iterations = iterations
        self.reason = reason
        super().__init__(
            f"root finder stopped ({reason}) after {iterations} iterations: "
            f"rho={rho:.10g}, residual={residual:.3e}")


class PrecisionWarning(UserWarning):
    """Non-fatal loss of precision (NI2b drift, NI3 standard error)."""
