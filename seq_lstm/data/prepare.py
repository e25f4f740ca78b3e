import os
import argparse
import numpy as np
import pandas as pd


def _save_split(path, data, labels):
    np.savez(path, data=data.astype(np.float32), labels=labels.astype(np.float32))
    print(f"Wrote {len(data)} records to {path}")


def prepare_from_csv(
    csv_path, out_dir, feature_columns, label_columns, val_fraction=0.05
):
    """
    Converts a time-ordered CSV into train.npz / val.npz for SequentialDB.

    Rows are kept in file order, the last val_fraction of them become the
    validation split (no shuffling, the recurrent window needs neighbours).
    """
    print(f"Reading {csv_path}...")
    df = pd.read_csv(csv_path)

    missing = [c for c in list(feature_columns) + list(label_columns) if c not in df]
    if missing:
        raise ValueError(f"Columns not found in {csv_path}: {missing}")

    df = df[list(feature_columns) + list(label_columns)].dropna()
    data = df[list(feature_columns)].to_numpy()
    labels = df[list(label_columns)].to_numpy()

    n = int((1.0 - val_fraction) * len(df))
    if n == 0 or n == len(df):
        raise ValueError(
            f"val_fraction={val_fraction} leaves an empty split for {len(df)} rows"
        )

    os.makedirs(out_dir, exist_ok=True)
    train_path = os.path.join(out_dir, "train.npz")
    val_path = os.path.join(out_dir, "val.npz")
    _save_split(train_path, data[:n], labels[:n])
    _save_split(val_path, data[n:], labels[n:])
    return train_path, val_path


def make_sine_dataset(
    out_dir, num_records=2000, period=50, noise=0.05, val_fraction=0.2, seed=0
):
    """Noisy sine wave, label is the next (clean) value of the wave."""
    rng = np.random.default_rng(seed)
    t = np.arange(num_records + 1, dtype=np.float32)
    wave = np.sin(2 * np.pi * t / period)

    data = (wave[:-1] + noise * rng.standard_normal(num_records))[:, None]
    labels = wave[1:, None]

    n = int((1.0 - val_fraction) * num_records)
    os.makedirs(out_dir, exist_ok=True)
    train_path = os.path.join(out_dir, "train.npz")
    val_path = os.path.join(out_dir, "val.npz")
    _save_split(train_path, data[:n], labels[:n])
    _save_split(val_path, data[n:], labels[n:])
    return train_path, val_path


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Prepare train/val archives for LSTM training"
    )
    parser.add_argument("--out_dir", type=str, default="data")
    parser.add_argument("--csv", type=str, default=None, help="time-ordered CSV file")
    parser.add_argument("--features", type=str, nargs="+", default=[])
    parser.add_argument("--labels", type=str, nargs="+", default=[])
    parser.add_argument("--val_fraction", type=float, default=0.05)
    parser.add_argument(
        "--sine",
        type=int,
        default=0,
        help="write a synthetic sine dataset with this many records instead",
    )
    args = parser.parse_args(argv)
    if not args.sine and not (args.csv and args.features and args.labels):
        parser.error("either --sine N or --csv with --features and --labels is required")
    return args


def main(argv=None):
    args = parse_args(argv)
    if args.sine:
        make_sine_dataset(args.out_dir, num_records=args.sine)
    else:
        prepare_from_csv(
            args.csv, args.out_dir, args.features, args.labels, args.val_fraction
        )


if __name__ == "__main__":
    main()
