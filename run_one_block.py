# run_one_block.py
"""
Run a *single* (dataset, proportion, gap width) block from the full experiment.

The default grid is 6 proportions × 4 gap widths = 24 blocks per dataset;
each block is an independent job that can run on its own machine.

Each job:
  - loads the dataset folder and picks the series by its 1-based id
  - builds the interpolator panel
  - calls interp_validation.run_experiment with:
        proportions = [chosen_proportion]
        gap_widths  = [chosen_gap_width]
  - scores every imputed series and saves the replicate-level metric
    vectors (not the imputed series) to a per-block .pkl file under:

        results/<dataset_name>/dataset{ID}_{dataset_name}_prop-{XX}pct_gap-{W}.pkl

Replicate seeds are derived from (seed, dataset, proportion, gap width,
replicate), so a block draws exactly the gaps the same condition would get
in a single full-grid run.

Either use the CLI:

        python run_one_block.py --dataset-id 1 --proportion 0.10 --gap-width 5 --n-repeats 100

or call run_block(...) directly.
"""

import os
import time
import pickle
import argparse
from typing import List, Optional

import interp_validation as iv
from series_datasets import load_all_datasets, DATA_DIR
from interpolators import INTERPOLATOR_IDS, build_interpolators


def build_interpolators_for_block(algorithm_ids: Optional[List[str]] = None, random_state: int = iv.BASE_SEED):
    """Default panel used for every block (same settings on every machine)."""
    return build_interpolators(
        algorithm_ids,
        ma_window=4,
        fft_keep_fraction=0.1,
        fft_iters=100,
        random_state=random_state,
    )


def proportion_tag(proportion: float) -> str:
    """Percent label for file names, exact to the millionth like the replicate seeds (0.075 -> '7.5pct')."""
    return f"{round(float(proportion) * 1_000_000) / 10_000:g}pct"


def block_output_path(
    dataset_id: int, dataset_name: str, proportion: float, gap_width: int, out_root: str
) -> str:
    """Construct the output path for a given (dataset, proportion, gap width)."""
    safe_name = str(dataset_name).replace(" ", "_")
    prop_str = proportion_tag(proportion)
    out_dir = os.path.join(out_root, safe_name)
    fname = f"dataset{dataset_id}_{safe_name}_prop-{prop_str}_gap-{int(gap_width)}.pkl"
    return os.path.join(out_dir, fname)


def run_block(
    dataset_id: int,
    proportion: float,
    gap_width: int,
    n_repeats: int = iv.DEFAULT_N_REPLICATES,
    out_root: str = "results",
    data_dir: str = DATA_DIR,
    length: Optional[int] = None,
    algorithm_ids: Optional[List[str]] = None,
    random_seed: int = iv.BASE_SEED,
    n_jobs: int = 1,
) -> str:
    """
    Core function to run a single (dataset, proportion, gap width) block.
    Returns the path of the written .pkl file.
    """
    # 1) Load datasets and pick the requested one
    series_list, names = load_all_datasets(data_dir, length)
    n_datasets = len(names)
    if not (1 <= dataset_id <= n_datasets):
        raise ValueError(
            f"dataset_id must be between 1 and {n_datasets}, got {dataset_id}."
        )

    ds_idx = dataset_id - 1
    series = series_list[ds_idx]
    ds_name = names[ds_idx]

    print(f"[Block] Dataset {dataset_id}/{n_datasets}: {ds_name} (n={len(series)})")
    print(f"        proportion={proportion}, gap_width={gap_width}, repeats={n_repeats}")

    # 2) Build interpolators
    print("        Building interpolators …")
    algorithms = build_interpolators_for_block(algorithm_ids, random_state=random_seed)
    print("        Interpolators:", list(algorithms.keys()))

    # 3) Prepare output + progress paths: results/<dataset_name>/...
    out_path = block_output_path(dataset_id, ds_name, proportion, gap_width, out_root)
    out_dir = os.path.dirname(out_path)
    os.makedirs(out_dir, exist_ok=True)
    progress_path = os.path.join(
        out_dir,
        f"progress_prop-{proportion_tag(proportion)}_gap-{int(gap_width)}.txt",
    )

    print(f"        Output   -> {out_path}")
    print(f"        Progress -> {progress_path}")

    # 4) Per-unit progress callback
    def progress_callback(done, total):
        msg = f"proportion={proportion:g} | gap_width={gap_width} | unit={done}/{total}\n"
        try:
            with open(progress_path, "w", encoding="utf-8") as f:
                f.write(msg)
        except OSError:
            # progress file is best-effort
            pass

        if done == 1 or done == total or (done % 10 == 0):
            print("        " + msg.strip())

    # 5) Run the grid restricted to this single (proportion, gap width)
    t0 = time.time()
    datasets = [(ds_name, series)]
    tensor = iv.run_experiment(
        datasets,
        algorithms,
        [proportion],
        [gap_width],
        n_repeats,
        random_seed=random_seed,
        n_jobs=n_jobs,
        progress_callback=progress_callback,
    )
    metric_vectors = iv.score_results(tensor, datasets)
    elapsed = time.time() - t0

    # 6) Save result
    payload = dict(
        dataset_id=dataset_id,
        dataset_name=ds_name,
        proportion=proportion,
        gap_width=gap_width,
        n_repeats=n_repeats,
        algorithms=list(algorithms.keys()),
        random_seed=random_seed,
        n_failures=len(tensor.failures()),
        metric_vectors=metric_vectors,  # {(ExperimentKey, algorithm): MetricVector | AlgorithmFailure}
    )
    with open(out_path, "wb") as f:
        pickle.dump(payload, f)

    print(f"        Done in {elapsed / 60.0:.2f} minutes.")
    print(f"        Saved to: {out_path}")

    # Clean up progress file once this block is finished
    try:
        if os.path.exists(progress_path):
            os.remove(progress_path)
    except OSError:
        pass

    return out_path


# ---------------------------------------------------------------------
# CLI interface
# ---------------------------------------------------------------------

def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Run a single (dataset, proportion, gap width) block of the interpolation benchmark."
    )

    parser.add_argument(
        "--dataset-id",
        type=int,
        required=True,
        help="Dataset index: 1-based position of the CSV file in sorted order under --data-dir.",
    )
    parser.add_argument(
        "--proportion",
        type=float,
        required=True,
        help="Proportion of values to remove (e.g. 0.05, 0.10, ..., 0.30).",
    )
    parser.add_argument(
        "--gap-width",
        type=int,
        required=True,
        help="Width of each contiguous gap (e.g. 1, 5, 10, 20).",
    )
    parser.add_argument(
        "--n-repeats",
        type=int,
        default=iv.DEFAULT_N_REPLICATES,
        help=f"Number of replicates for this block (default: {iv.DEFAULT_N_REPLICATES}).",
    )
    parser.add_argument(
        "--algorithms",
        type=str,
        default=None,
        help=(
            "Comma-separated interpolator ids (default: all of "
            f"{','.join(INTERPOLATOR_IDS)})."
        ),
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=iv.BASE_SEED,
        help=f"Base random seed (default: {iv.BASE_SEED}).",
    )
    parser.add_argument(
        "--n-jobs",
        type=int,
        default=1,
        help="Parallel workers inside the block (default: 1).",
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
        help="Root directory to save block-level results (default: results).",
    )

    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    algorithm_ids = args.algorithms.split(",") if args.algorithms else None
    run_block(
        dataset_id=args.dataset_id,
        proportion=args.proportion,
        gap_width=args.gap_width,
        n_repeats=args.n_repeats,
        out_root=args.out_root,
        data_dir=args.data_dir,
        length=args.length,
        algorithm_ids=algorithm_ids,
        random_seed=args.seed,
        n_jobs=args.n_jobs,
    )


if __name__ == "__main__":
    main()
