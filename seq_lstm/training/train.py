import os
import csv
import math
import time
from dataclasses import asdict, dataclass
from typing import Optional
import matplotlib

matplotlib.use("Agg")  # plots go to files, no display needed
import matplotlib.pyplot as plt
import torch
import torch.nn as nn
from tqdm import tqdm
from seq_lstm.data.sequential import SequentialDB
from seq_lstm.modeling.config import ModelConfig
from seq_lstm.modeling.lstm import build_model, resolve_device
from seq_lstm.training.config import (
    TrainingConfig,
    make_snapshot_dir,
    parse_args,
)

CHECKPOINT_NAME = "model.pt"


# -----------------------------------------------------------------------------
# Schedule Gates
# -----------------------------------------------------------------------------
def should_evaluate(epoch: int, test_every: int) -> bool:
    return test_every > 0 and epoch % test_every == 0


def should_save(epoch: int, save_every: int) -> bool:
    return save_every > 0 and epoch % save_every == 0


def should_plot(epoch: int, plot_regression: int) -> bool:
    return plot_regression > 0 and epoch % plot_regression == 0


# -----------------------------------------------------------------------------
# Log, Checkpoint, Plot
# -----------------------------------------------------------------------------
class LossLog:
    """Per-epoch CSV log: epoch, train_loss, test_loss (empty when not evaluated)."""

    HEADER = ["epoch", "train_loss", "test_loss"]

    def __init__(self, path: str):
        self.path = path
        log_dir = os.path.dirname(path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(self.HEADER)

    def append(self, epoch: int, train_loss: float, test_loss: Optional[float]):
        with open(self.path, "a", newline="") as f:
            writer = csv.writer(f)
            writer.writerow([epoch, train_loss, "" if test_loss is None else test_loss])

    def read(self):
        with open(self.path, newline="") as f:
            return list(csv.DictReader(f))


def save_checkpoint(model, model_config: ModelConfig, epoch: int, snapshot_dir: str):
    checkpoint = {
        "model": model.persistable_state_dict(),
        "model_config": asdict(model_config),
        "epoch": epoch,
    }
    ckpt_path = os.path.join(snapshot_dir, CHECKPOINT_NAME)
    print(f"Saving checkpoint to {ckpt_path}")
    torch.save(checkpoint, ckpt_path)
    return ckpt_path


def plot_regression(predictions, targets, path: str, title: str = "Regression"):
    fig, ax = plt.subplots(figsize=(12, 4))
    ax.plot(predictions.numpy(), label="outputs")
    ax.plot(targets.numpy(), label="targets", alpha=0.7)
    # With rho > 1 the last rho - 1 windows wrap around to the start of the sequence
    ax.set_title(title)
    ax.set_xlabel("Step")
    ax.legend()
    ax.grid(True)
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)
    print(f"Regression plot saved to {path}")


# -----------------------------------------------------------------------------
# Train / Eval
# -----------------------------------------------------------------------------
def _to_device(inputs, targets, db: SequentialDB, device: str):
    inputs = inputs.reshape(db.batch_size, db.rho, db.feature_dim)
    # Ground truth is the label at the last position of the window
    targets = targets[:, -1, :].reshape(db.batch_size, db.label_dim)
    return inputs.to(device), targets.to(device)


def train_epoch(
    model: nn.Module,
    optimizer: torch.optim.Optimizer,
    criterion: nn.Module,
    train_db: SequentialDB,
    config: TrainingConfig,
    device: str = "cpu",
) -> float:
    model.train()
    loss_sum = 0.0
    num_iters = train_db.num_batches

    pbar = tqdm(range(1, num_iters + 1), desc="Train", leave=False)
    for it in pbar:
        optimizer.zero_grad(set_to_none=True)

        inputs, targets = _to_device(*train_db.get_batch(), train_db, device)
        outputs = model(inputs)
        loss = criterion(outputs, targets)
        loss.backward()

        # Gradient Clipping (BPTT is prone to exploding gradients)
        torch.nn.utils.clip_grad_norm_(model.parameters(), config.grad_clip)
        optimizer.step()

        loss_sum += loss.item()
        if config.print_every > 0 and it % config.print_every == 0:
            tqdm.write(f"Iter: {it}, loss: {loss_sum / it:.6f}")

    return loss_sum / num_iters


@dataclass
class EvalResult:
    loss: float
    predictions: Optional[torch.Tensor] = None
    targets: Optional[torch.Tensor] = None


@torch.no_grad()
def evaluate(
    model: nn.Module,
    criterion: nn.Module,
    val_db: SequentialDB,
    device: str = "cpu",
    collect: bool = False,
) -> EvalResult:
    was_training = model.training
    model.eval()  # dropout off, batch norm uses running statistics

    loss_sum = 0.0
    output_hist, target_hist = [], []
    num_iters = val_db.num_batches

    for _ in tqdm(range(num_iters), desc="Test", leave=False):
        inputs, targets = _to_device(*val_db.get_batch(), val_db, device)
        outputs = model(inputs)
        if collect:
            output_hist.append(outputs.float().cpu().view(-1))
            target_hist.append(targets.float().cpu().view(-1))
        loss_sum += criterion(outputs, targets).item()

    model.train(was_training)

    result = EvalResult(loss=loss_sum / num_iters)
    if collect:
        result.predictions = torch.cat(output_hist)
        result.targets = torch.cat(target_hist)
    return result


# -----------------------------------------------------------------------------
# Run
# -----------------------------------------------------------------------------
def train(train_config: TrainingConfig, model_config: ModelConfig):
    print("Training Configuration:")
    print(train_config)

    # BatchNorm1d cannot normalize a single sample in training mode
    if train_config.batch_size < 2 and model_config.batch_norm:
        print("Warning: batch_size 1 does not support batch norm, disabling it.")
        model_config.batch_norm = False

    snapshot_dir = make_snapshot_dir(train_config)

    torch.manual_seed(train_config.seed)
    device = resolve_device(train_config.device)
    train_config.device = device

    # -----------------------------------------------------------------------------
    # Data
    # -----------------------------------------------------------------------------
    train_db = SequentialDB(
        train_config.train_path, train_config.batch_size, train_config.rho
    )
    # batch size 1 to loop exactly once through all the validation data
    val_db = SequentialDB(train_config.val_path, 1, train_config.rho)
    if (val_db.feature_dim, val_db.label_dim) != (
        train_db.feature_dim,
        train_db.label_dim,
    ):
        raise ValueError(
            f"Validation data dims (feature={val_db.feature_dim}, label={val_db.label_dim}) "
            f"do not match training data (feature={train_db.feature_dim}, label={train_db.label_dim})"
        )
    print(
        f"Loaded {train_db.num_records} training and {val_db.num_records} validation records "
        f"(feature dim {train_db.feature_dim}, label dim {train_db.label_dim})"
    )

    # -----------------------------------------------------------------------------
    # Model Init
    # -----------------------------------------------------------------------------
    model_config.input_dim = train_db.feature_dim
    model_config.output_dim = train_db.label_dim
    model_config.uniform = train_config.uniform
    print("\nModel Configuration:")
    print(model_config)

    model = build_model(model_config, train_db.label_dim, device)
    print(model)

    criterion = nn.MSELoss()
    optimizer = torch.optim.Adam(
        model.parameters(),
        lr=train_config.learning_rate,
        betas=(train_config.momentum, 0.999),
    )

    log = LossLog(train_config.log_path)
    log_dir = os.path.dirname(train_config.log_path) or "."

    # -----------------------------------------------------------------------------
    # Epoch Loop
    # -----------------------------------------------------------------------------
    rows = []
    for epoch in range(1, train_config.max_epoch + 1):
        print(f"epoch {epoch}:")
        t0 = time.time()

        train_loss = train_epoch(
            model, optimizer, criterion, train_db, train_config, device
        )
        print(f"Avg train loss: {train_loss:.6f}")
        if not math.isfinite(train_loss):
            print("Warning: train loss is not finite.")

        test_loss = None
        if should_evaluate(epoch, train_config.test_every):
            plot = should_plot(epoch, train_config.plot_regression)
            result = evaluate(model, criterion, val_db, device, collect=plot)
            test_loss = result.loss
            print(f"Avg test loss: {test_loss:.6f}")
            if plot:
                plot_regression(
                    result.predictions,
                    result.targets,
                    os.path.join(log_dir, f"regression_epoch_{epoch}.png"),
                    title=f"Epoch {epoch}",
                )

        log.append(epoch, train_loss, test_loss)
        rows.append((epoch, train_loss, test_loss))

        if snapshot_dir is not None and should_save(epoch, train_config.save_every):
            save_checkpoint(model, model_config, epoch, snapshot_dir)

        print(f"time {(time.time() - t0):.2f}s")

    print("Training Complete.")
    return rows


def main(argv=None):
    args = parse_args(argv)
    train_config = TrainingConfig.from_args(args)
    model_config = ModelConfig(
        hidden_size=args.hidden_size,
        depth=args.depth,
        dropout=args.dropout_prob,
        uniform=args.uniform,
        batch_norm=not args.no_batch_norm,
    )
    train(train_config, model_config)


if __name__ == "__main__":
    main()
