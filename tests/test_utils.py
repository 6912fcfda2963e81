"""
Tests for checkpointing and numerical gradients.
"""

import numpy as np
import pytest

from slmnet.errors import ShapeError
from slmnet.layers import Dense, Layer, Sequential
from slmnet.model import ModelConfig, build_language_model
from slmnet.tensor import Tensor
from slmnet.utils import load_checkpoint, numerical_gradient, save_checkpoint


class TestCheckpointing:
    def test_round_trip_restores_parameters(self, tmp_path):
        np.random.seed(0)
        source = Sequential([Dense(3, 4), Dense(4, 2)])
        target = Sequential([Dense(3, 4), Dense(4, 2)])
        path = str(tmp_path / "checkpoint.npz")

        save_checkpoint(source, path, step=7)
        metadata = load_checkpoint(target, path)

        for saved, restored in zip(source.parameters(), target.parameters()):
            assert np.array_equal(saved.data, restored.data)
        assert metadata == {"step": 7, "config": None, "vocabulary": None}

    def test_parameters_are_updated_in_place(self, tmp_path):
        """Existing references (e.g. held by an optimizer) see the new values."""
        source = Dense(2, 2)
        target = Dense(2, 2)
        weights_before = target.weights
        path = str(tmp_path / "checkpoint.npz")

        save_checkpoint(source, path)
        load_checkpoint(target, path)

        assert target.weights is weights_before
        assert np.array_equal(weights_before.data, source.weights.data)

    def test_config_and_vocabulary_metadata(self, tmp_path):
        config = ModelConfig(
            vocab_size=4, embedding_dim=8, num_heads=2, num_layers=1
        )
        model = build_language_model(config)
        path = str(tmp_path / "model.npz")

        save_checkpoint(model, path, step=3, config=config, vocabulary=list("abcd"))
        metadata = load_checkpoint(build_language_model(config), path)

        assert metadata["step"] == 3
        assert ModelConfig(**metadata["config"]) == config
        assert metadata["vocabulary"] == ["a", "b", "c", "d"]

    def test_shape_mismatch_raises(self, tmp_path):
        path = str(tmp_path / "checkpoint.npz")
        save_checkpoint(Dense(3, 4), path)

        with pytest.raises(ShapeError, match="does not match"):
            load_checkpoint(Dense(3, 5), path)

    def test_keys_are_ordered_numerically(self, tmp_path):
        """param_10 follows param_9 even though it sorts first as a string."""

        class Many(Layer):
            def __init__(self, count):
                self.values = [Tensor([0.0], requires_grad=True) for _ in range(count)]

        path = str(tmp_path / "checkpoint.npz")
        np.savez(path, **{f"param_{index}": np.array([index]) for index in range(12)})
        model = Many(12)

        load_checkpoint(model, path)

        assert [p.item() for p in model.parameters()] == list(range(12))

    def test_parameter_count_mismatch_raises(self, tmp_path):
        path = str(tmp_path / "checkpoint.npz")
        save_checkpoint(Dense(3, 4), path)

        with pytest.raises(ShapeError, match="parameters"):
            load_checkpoint(Dense(3, 4, use_bias=False), path)

    def test_failed_load_leaves_model_untouched(self, tmp_path):
        path = str(tmp_path / "checkpoint.npz")
        save_checkpoint(Sequential([Dense(2, 2), Dense(2, 3)]), path)
        target = Sequential([Dense(2, 2), Dense(2, 4)])
        first_weights = target.parameters()[0].data.copy()

        with pytest.raises(ShapeError):
            load_checkpoint(target, path)

        assert np.array_equal(target.parameters()[0].data, first_weights)


class TestNumericalGradient:
    def test_sum_of_squares(self, float64):
        x = Tensor([[1.0, -2.0], [3.0, 0.5]], requires_grad=True)

        gradient = numerical_gradient(lambda: (x * x).sum(), x)

        assert gradient.shape == (2, 2)
        assert np.allclose(gradient, 2 * x.data, atol=1e-6)

    def test_tensor_is_restored(self, float64):
        x = Tensor([1.0, 2.0, 3.0])
        original = x.data.copy()

        numerical_gradient(lambda: (x * x).sum(), x)

        assert np.array_equal(x.data, original)
