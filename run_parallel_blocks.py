# run_parallel_blocks.py
"""
Run ALL remaining (proportion, gap width) blocks for a single dataset in parallel.

A block counts as done when its .pkl file exists under
results/<dataset_name>/; only the other blocks are dispatched, each one a
run_one_block.run_block(...) call on a joblib worker.

    python run_parallel_blocks.py --dataset-id 1 --n-jobs 18 --n-repeats 100

Interrupted runs resume from the blocks that are still missing.
"""

import os
import argparse
from itertools import product
from typing import List, Tuple

from joblib import Parallel, delayed

import interp_validation as iv
from series_datasets import load_all_datasets, DATA_DIR
from run_one_block import run_block, block_output_path, build_interpolators_for_block


def _parse_list(text: str, cast, label: str):
    try:
        return [cast(x) for x in text.split(",")]
    except ValueError:
        raise ValueError(
            f"Could not parse --{label} '{text}'. Use e.g. --{label} '0.05,0.10' or '1,5,10'."
        )


def remaining_blocks(
    dataset_id: int,
    dataset_name: str,
    proportions: List[float],
    gap_widths: List[int],
    out_root: str,
) -> Tuple[List[Tuple[float, int]], List[Tuple[float, int]]]:
    """Return (all_blocks, blocks_without_a_result_file)."""
    all_blocks = list(product(proportions, gap_widths))
    todo = []
    for proportion, gap_width in all_blocks:
        out_path = block_output_path(dataset_id, dataset_name, proportion, gap_width, out_root)
        if os.path.exists(out_path):
            print(f"[SKIP] proportion={proportion:g}, gap_width={gap_width} (found {out_path})")
        else:
            print(f"[TODO] proportion={proportion:g}, gap_width={gap_width}")
            todo.append((proportion, gap_width))
    return all_blocks, todo


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Run all missing (proportion, gap width) blocks for one dataset in parallel."
    )
    parser.add_argument(
        "--dataset-id",
        type=int,
        required=True,
        help="Dataset index: 1-based position of the CSV file in sorted order under --data-dir.",
    )
    parser.add_argument(
        "--n-jobs",
        type=int,
        required=True,
        help="Number of blocks to run at the same time.",
    )
    parser.add_argument(
        "--n-repeats",
        type=int,
        default=iv.DEFAULT_N_REPLICATES,
        help=f"Number of replicates per block (default {iv.DEFAULT_N_REPLICATES}).",
    )
    parser.add_argument(
        "--proportions",
        type=str,
        default=None,
        help=(
            "Comma-separated list of proportions for this job, e.g. '0.05' or "
            "'0.10,0.15,0.20'. If omitted, uses "
            f"{iv.DEFAULT_PROPORTIONS}."
        ),
    )
    parser.add_argument(
        "--gap-widths",
        type=str,
        default=None,
        help=f"Comma-separated list of gap widths (default {iv.DEFAULT_GAP_WIDTHS}).",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=iv.BASE_SEED,
        help=f"Base random seed (default: {iv.BASE_SEED}).",
    )
    parser.add_argument(
        "--length",
        type=int,
        default=None,
        help="Common series length (default: shortest dataset).",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=DATA_DIR,
        help=f"Folder with one CSV per dataset (default: {DATA_DIR}).",
    )
    parser.add_argument(
        "--out-root",
        type=str,
        default="results",
        help="Root folder for results (default: results).",
    )

    args = parser.parse_args(argv)

    # -------------------------------------------------------------
    # 1) Load dataset names to identify the dataset folder
    # -------------------------------------------------------------
    series_list, names = load_all_datasets(args.data_dir, args.length)
    n_datasets = len(names)
    if not (1 <= args.dataset_id <= n_datasets):
        raise ValueError(
            f"dataset-id must be between 1 and {n_datasets}, got {args.dataset_id}."
        )

    ds_name = names[args.dataset_id - 1]
    print(f"Dataset {args.dataset_id}: {ds_name}")

    # -------------------------------------------------------------
    # 2) Decide which blocks this job will handle
    # -------------------------------------------------------------
    proportions = (
        iv.DEFAULT_PROPORTIONS if args.proportions is None
        else _parse_list(args.proportions, float, "proportions")
    )
    gap_widths = (
        iv.DEFAULT_GAP_WIDTHS if args.gap_widths is None
        else _parse_list(args.gap_widths, int, "gap-widths")
    )
    print("Proportions for this job:", proportions)
    print("Gap widths for this job:", gap_widths)

    # Fail fast on an invalid grid before any worker starts
    iv.check_experiment_config(
        [(ds_name, series_list[args.dataset_id - 1])],
        build_interpolators_for_block(random_state=args.seed),
        proportions,
        gap_widths,
        args.n_repeats,
        args.seed,
    )

    all_blocks, todo = remaining_blocks(
        args.dataset_id, ds_name, proportions, gap_widths, args.out_root
    )

    if not todo:
        print("\nAll blocks for this grid are already done. Nothing to run.")
        return []

    print(f"\nTotal blocks: {len(all_blocks)}, remaining: {len(todo)}")
    print(f"Running remaining blocks with n_jobs={args.n_jobs} ...\n")

    # -------------------------------------------------------------
    # 3) Run remaining blocks in parallel
    # -------------------------------------------------------------
    def _run(proportion, gap_width):
        return run_block(
            dataset_id=args.dataset_id,
            proportion=proportion,
            gap_width=gap_width,
            n_repeats=args.n_repeats,
            out_root=args.out_root,
            data_dir=args.data_dir,
            length=args.length,
            random_seed=args.seed,
        )

    paths = Parallel(n_jobs=args.n_jobs)(
        delayed(_run)(proportion, gap_width) for proportion, gap_width in todo
    )

    print(f"\nFinished {len(paths)} block(s) for {ds_name}.")
    return paths


if __name__ == "__main__":
    main()
