import os
import argparse
import numpy as np
import torch
from seq_lstm.data.sequential import SequentialDB
from seq_lstm.modeling.config import ModelConfig
from seq_lstm.modeling.lstm import SequenceRegressor


class LSTMPredictor:
    def __init__(self, checkpoint_path, device=None):
        if device is None:
            self.device = (
                "cuda"
                if torch.cuda.is_available()
                else "mps" if torch.backends.mps.is_available() else "cpu"
            )
        else:
            self.device = device

        if not os.path.exists(checkpoint_path):
            raise FileNotFoundError(f"Checkpoint not found at {checkpoint_path}")

        print(f"Loading model from {checkpoint_path}...")
        checkpoint = torch.load(checkpoint_path, map_location=self.device)
        config_dict = checkpoint["model_config"]
        if isinstance(config_dict, dict):
            self.config = ModelConfig(**config_dict)
        else:
            self.config = config_dict
        self.epoch = checkpoint.get("epoch")

        self.model = SequenceRegressor(self.config)
        # Snapshots hold only weights, biases and running statistics.
        # Batch counters are not needed in eval mode.
        missing, unexpected = self.model.load_state_dict(
            checkpoint["model"], strict=False
        )
        missing = [k for k in missing if not k.endswith("num_batches_tracked")]
        if missing or unexpected:
            raise RuntimeError(
                f"Checkpoint does not match model: missing={missing}, unexpected={unexpected}"
            )
        self.model.to(self.device)
        self.model.eval()

    @torch.no_grad()
    def predict(self, windows):
        """windows: (batch, rho, input_dim) array or tensor -> (batch, output_dim) numpy array"""
        x = torch.as_tensor(np.asarray(windows), dtype=torch.float32)
        if x.dim() == 2:
            x = x.unsqueeze(0)  # single window
        x = x.reshape(x.size(0), x.size(1), -1).to(self.device)
        return self.model(x).cpu().numpy()

    def predict_dataset(self, path, rho):
        """Runs over every record of an archive once (batch size 1). Returns (predictions, targets)."""
        db = SequentialDB(path, 1, rho)
        predictions, targets = [], []
        for _ in range(db.num_batches):
            inputs, labels = db.get_batch()
            predictions.append(self.predict(inputs))
            targets.append(labels[:, -1, :].numpy())
        return np.concatenate(predictions), np.concatenate(targets)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run a trained LSTM snapshot on a dataset")
    parser.add_argument("--checkpoint", type=str, required=True, help="model.pt snapshot")
    parser.add_argument("--data_path", type=str, required=True, help=".npz archive")
    parser.add_argument("--rho", type=int, default=5)
    parser.add_argument("--output", type=str, default="predictions.csv")
    parser.add_argument("--device", type=str, default=None)
    args = parser.parse_args(argv)

    predictor = LSTMPredictor(args.checkpoint, device=args.device)
    predictions, targets = predictor.predict_dataset(args.data_path, args.rho)

    mse = float(np.mean((predictions - targets) ** 2))
    print(f"Predicted {len(predictions)} records, MSE {mse:.6f}")

    header = ",".join(
        [f"pred_{i}" for i in range(predictions.shape[1])]
        + [f"target_{i}" for i in range(targets.shape[1])]
    )
    np.savetxt(
        args.output,
        np.concatenate([predictions, targets], axis=1),
        delimiter=",",
        header=header,
        comments="",
    )
    print(f"Predictions saved to {args.output}")


if __name__ == "__main__":
    main()
