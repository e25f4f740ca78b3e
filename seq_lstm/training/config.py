import os
import argparse
from datetime import datetime
from dataclasses import dataclass, fields


@dataclass
class TrainingConfig:
    # -------------------------------------------------------------------------
    # Data
    # -------------------------------------------------------------------------
    train_path: str = ""  # train.npz
    val_path: str = ""  # val.npz

    # -------------------------------------------------------------------------
    # Optimization
    # -------------------------------------------------------------------------
    learning_rate: float = 0.01
    momentum: float = 0.9  # Adam beta1
    batch_size: int = 32
    max_epoch: int = 1000
    uniform: float = 0.1  # init range, <= 0 for default init
    rho: int = 5  # back-propagate through time for rho time-steps
    grad_clip: float = 5.0  # max gradient norm

    # -------------------------------------------------------------------------
    # Schedule & Output
    # -------------------------------------------------------------------------
    print_every: int = 0  # print running loss every N iters (0 disables)
    test_every: int = 1  # evaluate every N epochs (0 disables)
    log_path: str = "./log.txt"
    save_path: str = "./snapshots"
    save_every: int = 0  # checkpoint every N epochs (0 disables)
    plot_regression: int = 0  # plot predictions every N epochs (0 disables)

    # -------------------------------------------------------------------------
    # System
    # -------------------------------------------------------------------------
    device: str = "cuda"  # 'cuda', 'cpu', 'mps'
    seed: int = 1337

    @classmethod
    def from_args(cls, args: argparse.Namespace):
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in vars(args).items() if k in names})


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Train a dataset using LSTM",
        epilog="Example: python -m seq_lstm.training.train --rho 10 "
        "--train_path data/train.npz --val_path data/val.npz",
    )
    defaults = TrainingConfig()

    # Each flag is also accepted in camelCase (--trainPath, --learningRate, ...)
    parser.add_argument("--train_path", "--trainPath", type=str, required=True, help="train.npz path")
    parser.add_argument("--val_path", "--valPath", type=str, required=True, help="validation .npz path")
    parser.add_argument("--learning_rate", "--learningRate", type=float, default=defaults.learning_rate, help="learning rate at t=0")
    parser.add_argument("--momentum", type=float, default=defaults.momentum, help="momentum (Adam beta1)")
    parser.add_argument("--batch_size", "--batchSize", type=int, default=defaults.batch_size, help="number of examples per batch")
    parser.add_argument("--max_epoch", "--maxEpoch", type=int, default=defaults.max_epoch, help="maximum number of epochs to run")
    parser.add_argument(
        "--uniform",
        type=float,
        default=defaults.uniform,
        help="initialize parameters using uniform distribution between -uniform and uniform. -1 means default initialization",
    )

    # recurrent layer
    parser.add_argument("--rho", type=int, default=defaults.rho, help="back-propagate through time (BPTT) for rho time-steps")
    parser.add_argument("--hidden_size", "--hiddenSize", type=int, default=200, help="number of hidden units of each recurrent layer")
    parser.add_argument("--depth", type=int, default=1, help="number of stacked recurrent layers")
    parser.add_argument("--dropout_prob", "--dropoutProb", type=float, default=0.5, help="probability of zeroing a neuron (dropout probability)")
    parser.add_argument("--no_batch_norm", action="store_true", help="disable recurrent batch normalization")

    # other
    parser.add_argument("--print_every", "--printEvery", type=int, default=defaults.print_every, help="print loss every n iters")
    parser.add_argument("--test_every", "--testEvery", type=int, default=defaults.test_every, help="evaluate on the validation set every n epochs")
    parser.add_argument("--log_path", "--logPath", type=str, default=defaults.log_path, help="log here")
    parser.add_argument("--save_path", "--savePath", type=str, default=defaults.save_path, help="save snapshots here")
    parser.add_argument("--save_every", "--saveEvery", type=int, default=defaults.save_every, help="number of epochs between model snapshots")
    parser.add_argument("--plot_regression", "--plotRegression", type=int, default=defaults.plot_regression, help="number of epochs between regression plots")
    parser.add_argument("--device", type=str, default=defaults.device)
    parser.add_argument("--seed", type=int, default=defaults.seed)

    args = parser.parse_args(argv)
    if args.batch_size < 1 or args.rho < 1 or args.depth < 1:
        parser.error("--batch_size, --rho and --depth must be positive")
    return args


def make_snapshot_dir(config: TrainingConfig, now=None):
    if config.save_every <= 0:
        return None
    now = now or datetime.now()
    snapshot_dir = os.path.join(config.save_path, now.strftime("%d_%m_%y-%H-%M-%S"))
    os.makedirs(snapshot_dir, exist_ok=True)
    return snapshot_dir
