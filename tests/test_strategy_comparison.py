"""strategy_comparison table and report."""

import sys
from pathlib import Path
_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import numpy as np

from strategy_comparison import compare_strategies, main, print_report


def test_exact_rows_agree(small_pair):
    df = main(*small_pair, targets=[0.3, -0.2], strategies=["NI1", "NI2a", "NI2b"],
              verbose=False)
    assert len(df) == 6
    assert set(df["strategy"]) == {"NI1", "NI2a", "NI2b"}
    assert (df["error"] == "").all()
    assert df["diff_vs_NI1"].abs().max() < 1e-6
    assert np.allclose(df["achieved"], df["target"], atol=1e-8)


def test_monte_carlo_row_and_failures(small_pair, capsys):
    df = compare_strategies(*small_pair, targets=[0.4, 0.999],
                            strategies=["NI1", "NI3"], verbose=False,
                            mc_sample_size=5000, mc_batches=50)
    ok = df[df["target"] == 0.4].set_index("strategy")
    assert ok.loc["NI3", "std_error"] > 0.0
    assert abs(ok.loc["NI3", "diff_vs_NI1"]) < 0.05
    failed = df[df["target"] == 0.999]
    assert failed["rho"].isna().all()
    assert failed["error"].str.contains("not attainable").all()

    print_report(df)
    out = capsys.readouterr().out
    assert "STRATEGY COMPARISON" in out
    assert "Failures:" in out


def test_outfile(small_pair, tmp_path):
    path = tmp_path / "comparison.csv"
    main(*small_pair, targets=[0.2], strategies=["NI1"], outfile=str(path),
         verbose=False)
    assert path.exists()
    assert "diff_vs_NI1" in path.read_text().splitlines()[0]
