"""Unit tests for the stacked LSTM regressor (CPU only)."""

from __future__ import annotations

import unittest
from typing import Final

import torch
import torch.nn as nn

from seq_lstm.modeling.config import ModelConfig
from seq_lstm.modeling.lstm import (
    PERSISTABLE_SUFFIXES,
    LSTMCell,
    SequenceRegressor,
    build_model,
)


def _small_config(**overrides) -> ModelConfig:
    params = dict(input_dim=4, output_dim=2, hidden_size=8, depth=2, dropout=0.5)
    params.update(overrides)
    return ModelConfig(**params)


class SequenceRegressorTests(unittest.TestCase):
    """Layer chain, initialisation and persistable state."""

    RNG_SEED: Final = 2025

    def setUp(self) -> None:
        torch.manual_seed(self.RNG_SEED)

    def test_forward_selects_last_step(self) -> None:
        """(B, rho, input_dim) maps to (B, output_dim)."""
        model = SequenceRegressor(_small_config())
        y = model(torch.randn(3, 5, 4))
        self.assertEqual(tuple(y.shape), (3, 2))

    def test_output_depends_on_last_step(self) -> None:
        """Changing the final step of the window changes the prediction."""
        model = SequenceRegressor(_small_config(dropout=0.0, batch_norm=False))
        model.eval()
        x = torch.randn(2, 4, 4)
        full = model(x)
        x_changed = x.clone()
        x_changed[:, -1] += 1.0
        self.assertFalse(torch.allclose(full, model(x_changed)))

    def test_wrong_feature_dim_raises(self) -> None:
        model = SequenceRegressor(_small_config())
        with self.assertRaises(ValueError):
            model(torch.randn(2, 3, 5))
        with self.assertRaises(ValueError):
            model(torch.randn(2, 4))

    def test_layer_sizes(self) -> None:
        model = SequenceRegressor(_small_config(depth=3))
        self.assertEqual(len(model.layers), 3)
        self.assertEqual(model.layers[0].input_size, 4)
        self.assertTrue(all(cell.input_size == 8 for cell in model.layers[1:]))
        self.assertEqual(model.output.in_features, 8)
        self.assertEqual(model.output.out_features, 2)

    def test_no_dropout_module_when_disabled(self) -> None:
        model = SequenceRegressor(_small_config(dropout=0.0))
        self.assertIsNone(model.dropout)

    def test_uniform_init_range(self) -> None:
        model = SequenceRegressor(_small_config(uniform=0.05))
        flat = model.flat_parameters()
        self.assertLessEqual(flat.abs().max().item(), 0.05)

    def test_default_init_when_uniform_negative(self) -> None:
        """uniform <= 0 keeps PyTorch defaults, e.g. batch norm scale of one."""
        model = SequenceRegressor(_small_config(uniform=-1))
        self.assertTrue(torch.all(model.layers[0].bn_i2g.weight == 1.0))

    def test_eval_mode_is_deterministic(self) -> None:
        model = SequenceRegressor(_small_config())
        model.train()
        model(torch.randn(4, 3, 4))  # populate running statistics
        model.eval()
        x = torch.randn(1, 3, 4)
        self.assertTrue(torch.equal(model(x), model(x)))

    def test_flat_vectors(self) -> None:
        """Flat parameter and gradient vectors cover every parameter."""
        model = SequenceRegressor(_small_config())
        n_params = sum(p.numel() for p in model.parameters())
        self.assertEqual(model.flat_parameters().numel(), n_params)

        grads = model.flat_gradients()
        self.assertEqual(grads.numel(), n_params)
        self.assertEqual(grads.abs().sum().item(), 0.0)

        loss = model(torch.randn(4, 3, 4)).pow(2).mean()
        loss.backward()
        grads = model.flat_gradients()
        self.assertGreater(grads.abs().sum().item(), 0.0)
        expected = torch.cat([p.grad.reshape(-1) for p in model.parameters()])
        self.assertTrue(torch.equal(grads, expected))

    def test_persistable_state_dict(self) -> None:
        """Only weights, biases and running statistics are kept."""
        model = SequenceRegressor(_small_config())
        state = model.persistable_state_dict()

        self.assertTrue(all(k.rsplit(".", 1)[-1] in PERSISTABLE_SUFFIXES for k in state))
        self.assertFalse(any(k.endswith("num_batches_tracked") for k in state))
        self.assertIn("layers.0.bn_i2g.running_mean", state)
        self.assertIn("layers.0.bn_cell.running_var", state)
        self.assertIn("output.weight", state)
        # Every parameter is present
        self.assertTrue(all(name in state for name, _ in model.named_parameters()))
        # Alias, not a copy
        self.assertEqual(
            state["output.weight"].data_ptr(), model.output.weight.data_ptr()
        )

    def test_persistable_state_without_batch_norm(self) -> None:
        model = SequenceRegressor(_small_config(batch_norm=False))
        state = model.persistable_state_dict()
        self.assertFalse(any("running" in k for k in state))
        self.assertEqual(set(state), {name for name, _ in model.named_parameters()})


class BuildModelTests(unittest.TestCase):
    def test_output_dim_must_match_labels(self) -> None:
        with self.assertRaises(ValueError):
            build_model(_small_config(output_dim=2), label_dim=3)

    def test_depth_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            build_model(_small_config(depth=0), label_dim=2)

    def test_build_on_cpu(self) -> None:
        model = build_model(_small_config(), label_dim=2, device="cpu")
        self.assertIsInstance(model, SequenceRegressor)
        self.assertEqual(next(model.parameters()).device.type, "cpu")


class LSTMCellTests(unittest.TestCase):
    def test_step_shapes(self) -> None:
        cell = LSTMCell(3, 5, batch_norm=True)
        h = torch.zeros(2, 5)
        c = torch.zeros(2, 5)
        h, c = cell(torch.randn(2, 3), (h, c))
        self.assertEqual(tuple(h.shape), (2, 5))
        self.assertEqual(tuple(c.shape), (2, 5))

    def test_identity_norm_without_batch_norm(self) -> None:
        cell = LSTMCell(3, 5, batch_norm=False)
        self.assertIsInstance(cell.bn_i2g, nn.Identity)
        self.assertIsNone(cell.h2g.bias)


if __name__ == "__main__":
    unittest.main()
