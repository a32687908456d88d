"""Warm up Numba JIT cache by running small workloads that trigger compilation."""

import argparse
import time

import numpy as np

import config

parser = argparse.ArgumentParser(description="Warm up Numba JIT cache.")
parser.add_argument("--no-numba", action="store_true",
                    help="Disable Numba (verify fallback works)")
args = parser.parse_args()
if args.no_numba:
    config.USE_NUMBA = False

from bivariate_normal import bvn_cdf_grid
from marginal_table import from_pmf
from norta_init_disc import compute_rho

if not config.USE_NUMBA:
    print("Numba is disabled -- running the workload on the NumPy Phi2 path.")

print("=== Warming up Numba (first run compiles; may take 5-15 s) ===")
t0 = time.time()

a = np.array([-np.inf, -1.0, 0.0, 1.0, np.inf])
b = np.array([-np.inf, -0.5, 0.5, np.inf])
for rho in (-1.0, -0.95, 0.3, 0.95, 1.0):
    bvn_cdf_grid(a, b, rho)

m = from_pmf([0, 1, 2, 3], [0.1, 0.4, 0.3, 0.2], label="warm-up")
res = compute_rho(m, m, 0.5, strategy="NI1")
print(f"  NI1 calibration: rho={res['rho']:.6f} in {res['iterations']} iterations")

elapsed = time.time() - t0
print(f"=== Numba cache written ({elapsed:.1f} s) ===")
print("Subsequent runs will load from cache and skip compilation.")
