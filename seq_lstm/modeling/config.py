from dataclasses import dataclass


@dataclass
class ModelConfig:
    input_dim: int = 1  # Flattened feature size of one time-step
    output_dim: int = 1  # Flattened label size, must match the dataset
    hidden_size: int = 200  # Units per recurrent layer
    depth: int = 1  # Stacked LSTM layers
    dropout: float = 0.5  # Applied after every recurrent layer (0 disables)
    uniform: float = 0.1  # Init range U(-uniform, uniform). <= 0: PyTorch default
    batch_norm: bool = True  # Recurrent batch normalization inside each cell
