"""
Configuration for discrete NORTA correlation matching.

Every option accepted by ``norta_init_disc.compute_rho`` has its default
here.  Values can be overridden per call by keyword, or globally by
assigning to the module attribute before the call (e.g. the scripts flip
``config.USE_NUMBA`` from a ``--no-numba`` flag).
"""

# ---------------------------------------------------------------------------
# Marginal tables
# ---------------------------------------------------------------------------
# Upper quantile at which unbounded supports are cut.  The tail mass beyond
# the cut is lumped into the end point so the table still sums to one.
TRUNCATION_QUANTILE = 1.0 - 1e-6

# |sum(mass) - 1| allowed before a table is rejected.
MASS_TOLERANCE = 1e-6

# Grids kept by breakpoint_grid.cached_grid (one per marginal pair and kind).
GRID_CACHE_SIZE = 32

# ---------------------------------------------------------------------------
# Deterministic root finder (NI1 / NI2a / NI2b)
# ---------------------------------------------------------------------------
# Bracket is [-1 + RHO_BOUND_EPS, 1 - RHO_BOUND_EPS].
RHO_BOUND_EPS = 1e-9

# Stop when |rho_{k+1} - rho_k| (or the bracket width) drops below this.
ROOT_TOLERANCE = 1e-10

# Stop when |f_r(rho)| drops below this.
RESIDUAL_TOLERANCE = 1e-13

MAX_ITERATIONS = 100

# The bracket is searched outward from the continuous-marginal starting
# point in steps of BRACKET_STEP, growing by BRACKET_GROWTH, before falling
# back to the ends of the full bracket.
BRACKET_STEP = 0.02
BRACKET_GROWTH = 2.0

# Wall-clock cap per calibration, seconds.  None disables the cap.
MAX_SECONDS = 120.0

# ---------------------------------------------------------------------------
# Strategy selection ("auto")
# ---------------------------------------------------------------------------
STRATEGIES = ["NI1", "NI2a", "NI2b", "NI3"]
CORRELATION_KINDS = ["rank", "linear"]

# m1 * m2 at or below which auto picks NI1.
AUTO_NI1_MAX_CELLS = 2_500

# m1 * m2 above which auto gives up on exact evaluation and picks NI3.
AUTO_EXACT_MAX_CELLS = 4_000_000

# ---------------------------------------------------------------------------
# NI2a: row-cumulative quadrature
# ---------------------------------------------------------------------------
# Gauss-Legendre points per panel.
NI2A_QUAD_POINTS = 20

# Panel width limit in z, scaled by sqrt(1 - rho^2) so that the integrand
# Phi((a - rho z) / s) is resolved as it steepens.
NI2A_PANEL_WIDTH = 0.5

# At or above this |rho| the integrand is close to a step and NI2a evaluates
# the corners directly instead.
NI2A_DIRECT_RHO = 0.95

# ---------------------------------------------------------------------------
# NI2b: incremental corner correction
# ---------------------------------------------------------------------------
# Largest |delta rho| for which a correction is attempted.
NI2B_MAX_STEP = 0.05

# Estimated error of one correction (gap between the corrected trapezoid and
# Simpson steps, in units of g_r) above which it is rejected.
NI2B_STEP_TOLERANCE = 1e-10

# Accumulated correction error above which a PrecisionWarning is emitted and
# the corners are recomputed before the scheduled refresh.
NI2B_DRIFT_BOUND = 2e-10

# Full recomputation after this many consecutive corrections.
NI2B_REFRESH_EVERY = 5

# ---------------------------------------------------------------------------
# NI3: Monte Carlo + stochastic approximation
# ---------------------------------------------------------------------------
MC_SAMPLE_SIZE = 20_000      # normal pairs per batch
MC_BATCHES = 200             # Robbins-Monro iterations

# Each batch is split into this many independently seeded chunks; n_jobs only
# decides how many run at once.
MC_CHUNKS = 8

# Finite-difference half-width for the common-random-number gradient.
NI3_GRADIENT_STEP = 0.05

# Step size a_k = SA_GAIN / ((k + SA_OFFSET) * gradient).
SA_GAIN = 1.0
SA_OFFSET = 1.0

# Floor for the running gradient so a noisy early estimate cannot blow up
# the step size.
SA_MIN_GRADIENT = 1e-3

# Fraction of iterates (the last ones) averaged for the final estimate.
POLYAK_FRACTION = 0.5

# Batch means used for the standard error of the averaged estimate.
POLYAK_SE_BATCHES = 10

# Standard error of rho above which a PrecisionWarning is emitted.
NI3_SE_WARNING = 5e-3

# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------
USE_NUMBA = True
N_JOBS = 1
