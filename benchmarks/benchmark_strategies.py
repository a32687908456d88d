"""
Benchmark the four strategies on the negative-binomial scenario.
Warm up first, then time each strategy sequentially, then NI3 with joblib.
"""
import sys
from pathlib import Path
_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import time
import warnings

import numba

import config
from breakpoint_grid import cached_grid
from marginal_table import negative_binomial
from norta_init_disc import compute_rho

TARGET = 0.43
N_REPEATS = 3

m1 = negative_binomial(15.68, 0.3861)
m2 = negative_binomial(60.21, 0.6211)
grid = cached_grid(m1, m2, "rank")

# Warm up Numba
print("Warming up Numba (one NI1 calibration)...")
compute_rho(m1, m2, TARGET, strategy="NI1", grid=grid)
print("Warmup done.\n")

print(f"{m1!r}\n{m2!r}")
print(f"Grid: {grid.m1} x {grid.m2} = {grid.n_cells} cells, target={TARGET}")
print("=" * 60)
print(f"Numba threads: {numba.get_num_threads()}, USE_NUMBA={config.USE_NUMBA}")


def _time(strategy, **kwargs):
    best = None
    res = None
    for _ in range(N_REPEATS):
        t0 = time.perf_counter()
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            res = compute_rho(m1, m2, TARGET, strategy=strategy, grid=grid,
                              seed=42, **kwargs)
        elapsed = time.perf_counter() - t0
        best = elapsed if best is None else min(best, elapsed)
    return best, res


timings = {}
for i, strategy in enumerate(config.STRATEGIES, start=1):
    print(f"\n{i}. {strategy}, sequential...")
    t, res = _time(strategy, n_jobs=1)
    timings[strategy] = (t, res)
    print(f"   {t:.3f}s  rho={res['rho']:.10f}  bvn_calls={res['bvn_calls']}")

print(f"\n{len(config.STRATEGIES) + 1}. NI3, parallel batches (n_jobs=-1)...")
t_par, res_par = _time("NI3", n_jobs=-1)
print(f"   {t_par:.3f}s  rho={res_par['rho']:.10f}")

rho_ref = timings["NI1"][1]["rho"]
print("\n" + "=" * 60)
print("Summary")
print("-" * 60)
print(f"{'Strategy':<20} {'Time':>8} {'Phi2 calls':>12} {'|rho - NI1|':>14}")
print("-" * 60)
for strategy, (t, res) in timings.items():
    print(f"{strategy:<20} {t:>7.3f}s {res['bvn_calls']:>12d} "
          f"{abs(res['rho'] - rho_ref):>14.2e}")
print(f"{'NI3 (n_jobs=-1)':<20} {t_par:>7.3f}s {'-':>12} "
      f"{abs(res_par['rho'] - rho_ref):>14.2e}")
print("-" * 60)
print(f"NI2b speedup vs NI1: {timings['NI1'][0] / timings['NI2b'][0]:.2f}x")
print(f"NI3 parallel speedup: {timings['NI3'][0] / t_par:.2f}x")
