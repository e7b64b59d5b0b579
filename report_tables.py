"""
report_tables.py

End-to-end script to:

  • load block-level results from `run_one_block.py`,
  • merge them into one experiment grid,
  • reduce replicates to per-condition evaluation rows,
  • select the best interpolator per criterion and the majority winner, and
  • export the tables as CSV for the reporting / plotting side.

Expected directory layout (relative to this script):

  results/
      <dataset_name>/
          dataset1_<dataset_name>_prop-*pct_gap-*.pkl
      ...

Outputs (under figures_and_tables/):

  evaluation.csv       one row per (dataset, proportion, gap width, algorithm)
  best.csv             one row per (dataset, proportion, gap width, metric)
  summary.csv          one row per (dataset, proportion, gap width)
  winner_grid.csv      summary winner laid out as (dataset, gap width) × proportion
  winner_counts.csv    how many conditions each algorithm wins, per dataset
  replicates_long.csv  replicate-level long table (only with --long)
"""

# =============================================================================
# Imports
# =============================================================================

import argparse
import glob
import os
import pickle
from typing import Dict, List, Tuple

import pandas as pd

import interp_validation as iv

# =============================================================================
# Configuration
# =============================================================================

# Locations for input results and exported outputs
RESULTS_ROOT = "results"
OUTPUT_ROOT = "figures_and_tables"

BLOCK_PATTERN = "dataset*_prop-*pct_gap-*.pkl"

# =============================================================================
# I. Loading block-level results
# =============================================================================


def _load_block_file(path: str) -> dict:
    """
    Load a single block .pkl file produced by `run_one_block.py`.

    Returns the payload dict with keys
    (dataset_id, dataset_name, proportion, gap_width, n_repeats, algorithms,
    random_seed, n_failures, metric_vectors).
    """
    with open(path, "rb") as f:
        payload = pickle.load(f)

    missing = {"dataset_id", "dataset_name", "proportion", "gap_width", "metric_vectors"} - set(payload)
    if missing:
        raise ValueError(f"Block file {path!r} is missing keys: {sorted(missing)}")
    return payload


def load_block_payloads(results_root: str = RESULTS_ROOT) -> List[dict]:
    """Load every block file under results_root/<dataset>/ (sorted by path)."""
    pattern = os.path.join(results_root, "*", BLOCK_PATTERN)
    files = sorted(glob.glob(pattern))
    if not files:
        raise FileNotFoundError(f"No block files found under {results_root!r}")
    return [_load_block_file(path) for path in files]


def merge_blocks(payloads: List[dict]) -> Tuple[iv.ResultTensor, Dict]:
    """
    Rebuild the experiment axes from a set of blocks and merge their metric
    vectors.

    - datasets are ordered by dataset_id,
    - algorithms by first appearance,
    - proportions and gap widths ascending,
    - the replicate axis is the largest n_repeats seen.

    Returns (skeleton ResultTensor, merged metric vectors). The tensor holds no
    imputed series; it only carries the axes that `aggregate` iterates over.
    """
    payloads = sorted(payloads, key=lambda p: (int(p["dataset_id"]), p["proportion"], p["gap_width"]))

    datasets = list(dict.fromkeys(p["dataset_name"] for p in payloads))
    algorithms = list(
        dict.fromkeys(a for p in payloads for a in p.get("algorithms", []))
    )
    if not algorithms:
        algorithms = list(dict.fromkeys(alg for p in payloads for (_, alg) in p["metric_vectors"]))
    proportions = sorted({p["proportion"] for p in payloads})
    gap_widths = sorted({int(p["gap_width"]) for p in payloads})
    n_replicates = max(int(p.get("n_repeats", 0)) for p in payloads)

    seeds = sorted({p["random_seed"] for p in payloads if "random_seed" in p})
    repeats = sorted({int(p["n_repeats"]) for p in payloads if "n_repeats" in p})
    if len(seeds) > 1:
        print(f"[report] WARNING: blocks were run with different seeds {seeds}; replicates are not comparable.")
    if len(repeats) > 1:
        print(f"[report] WARNING: blocks have different replicate counts {repeats}; means use unequal sample sizes.")

    tensor = iv.ResultTensor(datasets, algorithms, proportions, gap_widths, n_replicates)

    metric_vectors: Dict = {}
    for p in payloads:
        metric_vectors.update(p["metric_vectors"])

    print(
        f"[report] {len(payloads)} block(s): {len(datasets)} dataset(s), "
        f"{len(algorithms)} algorithm(s), {len(proportions)} proportion(s), "
        f"{len(gap_widths)} gap width(s), up to {n_replicates} replicate(s)"
    )
    return tensor, metric_vectors


# =============================================================================
# II. Tables
# =============================================================================


def build_tables(
    tensor: iv.ResultTensor,
    metric_vectors: Dict,
    direction_table: Dict[str, str] = iv.METRIC_DIRECTIONS,
) -> Dict[str, pd.DataFrame]:
    """aggregate → select_best → summarize, plus the two winner layouts."""
    evaluation = iv.aggregate(tensor, metric_vectors)
    best = iv.select_best(evaluation, direction_table)
    summary = iv.summarize(best, algorithm_order=tensor.algorithms)

    return dict(
        evaluation=evaluation,
        best=best,
        summary=summary,
        winner_grid=winner_grid(summary),
        winner_counts=winner_counts(summary, tensor.algorithms),
    )


def winner_grid(summary: pd.DataFrame) -> pd.DataFrame:
    """Majority winner per condition as a (dataset, gap_width) × proportion grid."""
    if summary.empty:
        return pd.DataFrame()
    return summary.pivot(
        index=["dataset", "gap_width"],
        columns="proportion",
        values="best_algorithm",
    )


def winner_counts(summary: pd.DataFrame, algorithm_order: List[str]) -> pd.DataFrame:
    """
    Count how many (proportion, gap width) conditions each algorithm wins,
    per dataset. Columns follow `algorithm_order`; algorithms that never win
    get zero.
    """
    datasets = list(dict.fromkeys(summary["dataset"]))
    counts = pd.DataFrame(0, index=datasets, columns=list(algorithm_order), dtype=int)
    for dataset, winner in zip(summary["dataset"], summary["best_algorithm"]):
        if winner is None or pd.isna(winner):
            continue
        counts.loc[dataset, winner] += 1
    counts.index.name = "dataset"
    return counts


def write_tables(tables: Dict[str, pd.DataFrame], output_root: str = OUTPUT_ROOT) -> List[str]:
    """Write every table to <output_root>/<name>.csv and return the paths."""
    os.makedirs(output_root, exist_ok=True)
    paths = []
    for name, df in tables.items():
        path = os.path.join(output_root, f"{name}.csv")
        keep_index = name in ("winner_grid", "winner_counts")
        df.to_csv(path, index=keep_index)
        paths.append(path)
        print(f"[report] wrote {path} ({len(df)} rows)")
    return paths


# =============================================================================
# III. Main
# =============================================================================


def main(argv=None) -> List[str]:
    parser = argparse.ArgumentParser(
        description="Aggregate block results and export evaluation / best / summary tables."
    )
    parser.add_argument("--results-root", type=str, default=RESULTS_ROOT)
    parser.add_argument("--output-root", type=str, default=OUTPUT_ROOT)
    parser.add_argument(
        "--long",
        action="store_true",
        help="Also export the replicate-level long table (can be large).",
    )
    args = parser.parse_args(argv)

    payloads = load_block_payloads(args.results_root)
    tensor, metric_vectors = merge_blocks(payloads)

    tables = build_tables(tensor, metric_vectors)
    if args.long:
        tables["replicates_long"] = iv.flatten_results(metric_vectors)

    n_failed = sum(int(p.get("n_failures", 0)) for p in payloads)
    if n_failed:
        print(f"[report] WARNING: {n_failed} replicate cell(s) failed and were excluded from the means.")

    return write_tables(tables, args.output_root)


if __name__ == "__main__":
    main()
