import matplotlib

matplotlib.use("Agg")
import pandas as pd
import matplotlib.pyplot as plt
import sys
import argparse
import os


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Plot LSTM training metrics")
    parser.add_argument(
        "--log_path",
        type=str,
        default="./log.txt",
        help="CSV log written by seq_lstm.training.train",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output image (default: loss_curves.png next to the log)",
    )
    return parser.parse_args(argv)


def report(log: pd.DataFrame):
    print("--- Analysis Report ---")
    print(f"Total Epochs logged: {len(log)}")
    if log.empty:
        return

    print(f"Final Training Loss: {log['train_loss'].iloc[-1]:.6f}")

    test_log = log.dropna(subset=["test_loss"])
    if not test_log.empty:
        best_row = test_log.loc[test_log["test_loss"].idxmin()]
        print(
            f"Minimum Test Loss: {best_row['test_loss']:.6f} at epoch {int(best_row['epoch'])}"
        )

        # Simple overfitting check: last test loss vs. the best one
        last_row = test_log.iloc[-1]
        if last_row["test_loss"] > best_row["test_loss"]:
            print(
                f"Warning: Potential Overfitting. Last Test Loss ({last_row['test_loss']:.6f}) > Min Test Loss."
            )


def plot(log: pd.DataFrame, output_file: str):
    plt.style.use("ggplot")
    fig, ax = plt.subplots(figsize=(10, 6))
    fig.suptitle("LSTM Training Metrics", fontsize=16)

    ax.plot(log["epoch"], log["train_loss"], label="Train Loss", alpha=0.7)
    test_log = log.dropna(subset=["test_loss"])
    ax.plot(
        test_log["epoch"],
        test_log["test_loss"],
        label="Test Loss",
        marker="o",
        linewidth=2,
    )
    ax.set_title("MSE Loss (Log Scale)")
    ax.set_xlabel("Epoch")
    ax.set_ylabel("Loss")
    ax.set_yscale("log")
    ax.legend()
    ax.grid(True)

    plt.tight_layout()
    plt.savefig(output_file)
    plt.close(fig)
    print(f"Plots saved to {output_file}")


def main(argv=None):
    args = parse_args(argv)

    print(f"Loading log from {args.log_path}...")
    try:
        log = pd.read_csv(args.log_path)
    except FileNotFoundError as e:
        print(f"Error: Log file not found: {e.filename}")
        sys.exit(1)

    report(log)

    output_file = args.output or os.path.join(
        os.path.dirname(args.log_path) or ".", "loss_curves.png"
    )
    plot(log, output_file)
    return output_file


if __name__ == "__main__":
    main()
