import torch
import torch.nn as nn
from .config import ModelConfig

# State dict entries that are needed to rebuild the model for inference.
# Batch counters and anything optimizer related are left out.
PERSISTABLE_SUFFIXES = ("weight", "bias", "running_mean", "running_var")


class LSTMCell(nn.Module):
    """
    One LSTM step with fused gate projections.

    With batch_norm=True the input-to-gates and hidden-to-gates projections
    are normalized separately, and so is the cell state before the output
    non-linearity (recurrent batch normalization). The BatchNorm modules are
    shared over time-steps, so their running statistics cover the whole window.
    """

    def __init__(self, input_size: int, hidden_size: int, batch_norm: bool = True):
        super().__init__()
        self.input_size = input_size
        self.hidden_size = hidden_size

        # Input -> all four gates (input, forget, cell candidate, output)
        self.i2g = nn.Linear(input_size, 4 * hidden_size)
        # Hidden -> all four gates. Bias lives in i2g only.
        self.h2g = nn.Linear(hidden_size, 4 * hidden_size, bias=False)

        if batch_norm:
            self.bn_i2g = nn.BatchNorm1d(4 * hidden_size)
            self.bn_h2g = nn.BatchNorm1d(4 * hidden_size)
            self.bn_cell = nn.BatchNorm1d(hidden_size)
        else:
            self.bn_i2g = nn.Identity()
            self.bn_h2g = nn.Identity()
            self.bn_cell = nn.Identity()

    def forward(self, x, state):
        h, c = state
        gates = self.bn_i2g(self.i2g(x)) + self.bn_h2g(self.h2g(h))
        i, f, g, o = gates.chunk(4, dim=1)

        i = torch.sigmoid(i)
        f = torch.sigmoid(f)
        g = torch.tanh(g)
        o = torch.sigmoid(o)

        c = f * c + i * g
        h = o * torch.tanh(self.bn_cell(c))
        return h, c


class SequenceRegressor(nn.Module):
    """
    Stacked LSTM followed by a per-step linear projection.
    Only the prediction of the last time-step is returned.
    """

    def __init__(self, config: ModelConfig):
        super().__init__()
        self.config = config

        sizes = [config.input_dim] + [config.hidden_size] * config.depth
        self.layers = nn.ModuleList(
            [
                LSTMCell(sizes[d], sizes[d + 1], batch_norm=config.batch_norm)
                for d in range(config.depth)
            ]
        )
        # Dropout has no parameters, one module serves every layer
        self.dropout = nn.Dropout(config.dropout) if config.dropout > 0 else None
        self.output = nn.Linear(config.hidden_size, config.output_dim)

        self.reset_parameters()

    def reset_parameters(self):
        if self.config.uniform <= 0:
            return  # keep PyTorch default init
        with torch.no_grad():
            for p in self.parameters():
                p.uniform_(-self.config.uniform, self.config.uniform)

    def forward(self, x):
        if x.dim() != 3 or x.size(-1) != self.config.input_dim:
            raise ValueError(
                f"Expected input of shape (batch, rho, {self.config.input_dim}), "
                f"got {tuple(x.shape)}"
            )
        B = x.size(0)

        # 1. Split the window into per-step slices: rho x (B, input_dim)
        steps = x.unbind(1)

        # 2. Run every layer over the whole sequence before the next one
        for cell in self.layers:
            h = x.new_zeros(B, cell.hidden_size)
            c = x.new_zeros(B, cell.hidden_size)
            outputs = []
            for step in steps:
                h, c = cell(step, (h, c))
                outputs.append(self.dropout(h) if self.dropout is not None else h)
            steps = outputs

        # 3. Project every step, keep only the last one: (B, output_dim)
        y = self.output(torch.stack(steps, dim=1))
        return y[:, -1]

    def flat_parameters(self):
        return nn.utils.parameters_to_vector(self.parameters())

    def flat_gradients(self):
        return torch.cat(
            [
                (p.grad if p.grad is not None else torch.zeros_like(p)).reshape(-1)
                for p in self.parameters()
            ]
        )

    def persistable_state_dict(self):
        # Tensors share storage with the live model
        return {
            k: v
            for k, v in self.state_dict().items()
            if k.rsplit(".", 1)[-1] in PERSISTABLE_SUFFIXES
        }


def resolve_device(device: str) -> str:
    if "cuda" in device and not torch.cuda.is_available():
        print(
            "Warning: CUDA not available. Switching to MPS for Mac if available, else CPU."
        )
        if torch.backends.mps.is_available():
            return "mps"
        return "cpu"
    return device


def build_model(config: ModelConfig, label_dim: int, device: str = "cpu"):
    if config.output_dim != label_dim:
        raise ValueError(
            f"Model output_dim ({config.output_dim}) does not match "
            f"the dataset label dimension ({label_dim})"
        )
    if config.depth < 1:
        raise ValueError(f"depth must be >= 1, got {config.depth}")

    model = SequenceRegressor(config)
    model.to(device)
    return model
