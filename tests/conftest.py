import sys
from pathlib import Path
_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import pytest

import config as settings
from marginal_table import from_pmf, negative_binomial


def pytest_addoption(parser):
    parser.addoption("--no-numba", action="store_true",
                     help="Run the suite on the NumPy Phi2 path")


def pytest_configure(config):
    if config.getoption("--no-numba", default=False):
        settings.USE_NUMBA = False


@pytest.fixture(scope="session")
def small_pair():
    """Two short marginals of different shape (4 and 6 points)."""
    m1 = from_pmf([0, 1, 2, 3], [0.1, 0.4, 0.3, 0.2], label="m1")
    m2 = from_pmf([0, 1, 2, 3, 4, 5], [0.3, 0.2, 0.15, 0.15, 0.1, 0.1], label="m2")
    return m1, m2


@pytest.fixture(scope="session")
def nb_pair():
    """Negative-binomial pair nbinom(15.68, 0.3861) x nbinom(60.21, 0.6211)."""
    return negative_binomial(15.68, 0.3861), negative_binomial(60.21, 0.6211)
