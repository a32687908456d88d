"""
Run every evaluation strategy on the same calibration problem and tabulate.

For one marginal pair and one or more target correlations, calls
compute_rho with NI1, NI2a, NI2b and NI3, and reports rho, iterations,
Phi2 calls, runtime and the difference from the NI1 answer.  Exact
strategies should agree with NI1 to within the root tolerance; NI3 should
land within a few standard errors.

Default problem: two negative-binomial marginals, nbinom(15.68, 0.3861)
and nbinom(60.21, 0.6211), rank target 0.43.

Programmatic usage
------------------
    from strategy_comparison import main
    df = main(targets=[0.43, -0.2])
    df = main(marginal1=stats.poisson(3), marginal2=stats.poisson(8),
              strategies=["NI1", "NI2b"])

CLI usage
---------
    python strategy_comparison.py
    python strategy_comparison.py --targets 0.43,-0.2 --kind linear
    python strategy_comparison.py --strategies NI1,NI2b --no-numba
    python strategy_comparison.py --outfile comparison.csv
"""

import argparse
import sys
import warnings

import numpy as np
import pandas as pd

import config
from breakpoint_grid import cached_grid
from marginal_table import negative_binomial
from norta_init_disc import as_marginal, compute_rho

DEFAULT_NB1 = (15.68, 0.3861)
DEFAULT_NB2 = (60.21, 0.6211)
DEFAULT_TARGETS = [0.43]


def compare_strategies(marginal1, marginal2, targets, correlation_kind="rank",
                       strategies=None, seed=42, verbose=True, **options):
    """Calibrate every (target, strategy) pair and collect one row each.

    Parameters
    ----------
    marginal1, marginal2 : MarginalTable or frozen scipy discrete law
    targets : list of float
    strategies : list of str or None
        Subset of config.STRATEGIES.  None = all.
    options :
        Passed to compute_rho (mc_sample_size, root_tolerance, ...).

    Returns
    -------
    pd.DataFrame with one row per (target, strategy).  A strategy that
    raises is recorded with its error message instead of aborting the run.
    """
    if strategies is None:
        strategies = list(config.STRATEGIES)
    m1 = as_marginal(marginal1, options.get("truncation_quantile"))
    m2 = as_marginal(marginal2, options.get("truncation_quantile"))
    grid = cached_grid(m1, m2, correlation_kind)

    rows = []
    total = len(targets) * len(strategies)
    done = 0
    for target in targets:
        for strategy in strategies:
            row = {"target": target, "strategy": strategy,
                   "m1": m1.size, "m2": m2.size}
            try:
                with warnings.catch_warnings():
                    warnings.simplefilter("ignore", category=UserWarning)
                    res = compute_rho(m1, m2, target,
                                      correlation_kind=correlation_kind,
                                      strategy=strategy, grid=grid, seed=seed,
                                      **options)
            except (ValueError, RuntimeError) as exc:
                row.update({"rho": np.nan, "error": str(exc)})
            else:
                row.update({
                    "rho": res["rho"],
                    "std_error": res["std_error"],
                    "iterations": res["iterations"],
                    "evaluations": res["evaluations"],
                    "bvn_calls": res["bvn_calls"],
                    "achieved": res["achieved_correlation"],
                    "n_warnings": len(res["warnings"]),
                    "elapsed_s": res["elapsed_s"],
                    "error": "",
                })
            rows.append(row)
            done += 1
            if verbose:
                print(f"\r  {done}/{total} calibrations run", end="", flush=True)
    if verbose:
        print()

    df = pd.DataFrame(rows)
    reference = (df[df["strategy"] == "NI1"]
                 .set_index("target")["rho"])
    df["diff_vs_NI1"] = df["rho"] - df["target"].map(reference)
    return df.sort_values(["target", "strategy"]).reset_index(drop=True)


def print_report(df):
    """Print the comparison table and a per-strategy summary."""
    print(f"\n{'='*80}")
    print(f"STRATEGY COMPARISON  (m1={df['m1'].iloc[0]}, m2={df['m2'].iloc[0]})")
    print(f"{'='*80}")
    cols = [c for c in ["target", "strategy", "rho", "std_error", "diff_vs_NI1",
                        "iterations", "bvn_calls", "elapsed_s"] if c in df]
    print(df[cols].to_string(index=False, float_format=lambda v: f"{v:.8g}"))

    failed = df[df["error"].astype(bool)]
    if len(failed):
        print("\nFailures:")
        for _, row in failed.iterrows():
            print(f"  {row['strategy']:5s} target={row['target']:+.3f}: {row['error']}")

    print("\nPer-strategy summary:")
    for strategy in df["strategy"].unique():
        sub = df[df["strategy"] == strategy]
        max_abs = sub["diff_vs_NI1"].abs().max()
        elapsed = sub["elapsed_s"].sum() if "elapsed_s" in sub else float("nan")
        print(f"  {strategy:5s}: max|diff vs NI1|={max_abs:.2e}, "
              f"total time={elapsed:.3f}s")


def _parse_list(s, cast=str):
    return [cast(x.strip()) for x in s.split(",")]


def main(marginal1=None, marginal2=None, targets=None, correlation_kind="rank",
         strategies=None, seed=42, outfile=None, verbose=True, **options):
    """Run the comparison.  Callable without CLI.

    Parameters
    ----------
    marginal1, marginal2 : MarginalTable, frozen scipy law or None
        None = the default negative-binomial pair.
    targets : list of float or None
        None = [0.43].
    outfile : str or None
        If set, save results to CSV.

    Returns
    -------
    pd.DataFrame
    """
    if marginal1 is None:
        marginal1 = negative_binomial(*DEFAULT_NB1)
    if marginal2 is None:
        marginal2 = negative_binomial(*DEFAULT_NB2)
    if targets is None:
        targets = DEFAULT_TARGETS

    if verbose:
        print(f"Comparing strategies on {marginal1!r} x {marginal2!r}, "
              f"{correlation_kind} targets {targets}...")
    df = compare_strategies(marginal1, marginal2, targets,
                            correlation_kind=correlation_kind,
                            strategies=strategies, seed=seed,
                            verbose=verbose, **options)
    if verbose:
        print_report(df)

    if outfile:
        df.to_csv(outfile, index=False, float_format="%.10g")
        if verbose:
            print(f"\nResults saved to {outfile}")
    return df


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Compare NORTA initialization strategies on one problem.")
    parser.add_argument("--nb1", type=str, default=None,
                        help="First negative binomial as s,p (default: 15.68,0.3861)")
    parser.add_argument("--nb2", type=str, default=None,
                        help="Second negative binomial as s,p (default: 60.21,0.6211)")
    parser.add_argument("--targets", type=str, default=None,
                        help="Comma-separated target correlations (default: 0.43)")
    parser.add_argument("--kind", type=str, default="rank",
                        choices=config.CORRELATION_KINDS,
                        help="Correlation kind (default: rank)")
    parser.add_argument("--strategies", type=str, default=None,
                        help="Comma-separated strategies (default: all)")
    parser.add_argument("--mc-sample-size", type=int, default=None,
                        help=f"NI3 pairs per batch (default: {config.MC_SAMPLE_SIZE})")
    parser.add_argument("--mc-batches", type=int, default=None,
                        help=f"NI3 batches (default: {config.MC_BATCHES})")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--outfile", type=str, default=None,
                        help="Save results to CSV")
    parser.add_argument("--no-numba", action="store_true",
                        help="Use the NumPy Phi2 path instead of Numba")
    args = parser.parse_args()

    if args.no_numba:
        config.USE_NUMBA = False

    nb1 = _parse_list(args.nb1, float) if args.nb1 else DEFAULT_NB1
    nb2 = _parse_list(args.nb2, float) if args.nb2 else DEFAULT_NB2
    options = {}
    if args.mc_sample_size is not None:
        options["mc_sample_size"] = args.mc_sample_size
    if args.mc_batches is not None:
        options["mc_batches"] = args.mc_batches

    df = main(marginal1=negative_binomial(*nb1),
              marginal2=negative_binomial(*nb2),
              targets=_parse_list(args.targets, float) if args.targets else None,
              correlation_kind=args.kind,
              strategies=_parse_list(args.strategies) if args.strategies else None,
              seed=args.seed, outfile=args.outfile, **options)
    sys.exit(1 if df["error"].astype(bool).any() else 0)
