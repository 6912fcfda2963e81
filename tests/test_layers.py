"""
Tests for neural network layers module.

Tests cover:
- Dense: initialization, forward pass, gradients
- Sequential and activation layers
- Embedding: lookup, gradient accumulation for repeated tokens
- LayerNorm: normalization, learnable parameters, exact backward pass
- PositionalEncoding: sinusoidal table, pass-through gradient
- Layer.parameters(): ordering and de-duplication
"""

import numpy as np
import pytest


class TestDense:
    """
    Test suite for the Dense (fully connected) layer.

    Dense computes y = x @ W + b with W of shape (in_features, out_features).
    """

    def test_dense_output_shape(self):
        """Dense layer should map (batch, in) to (batch, out)."""
        from slmnet.layers import Dense
        from slmnet.tensor import Tensor

        layer = Dense(8, 16)
        output = layer.forward(Tensor(np.random.randn(4, 8)))

        assert output.shape == (4, 16), f"Expected (4, 16), got {output.shape}"

    def test_dense_parameter_shapes(self):
        from slmnet.layers import Dense

        layer = Dense(3, 5)

        assert layer.weights.shape == (3, 5)
        assert layer.bias.shape == (1, 5)
        assert np.all(layer.bias.data == 0), "Bias should start at zero"
        assert layer.parameters() == [layer.weights, layer.bias]

    def test_dense_no_bias(self):
        """Without a bias the only parameter is the weight matrix."""
        from slmnet.layers import Dense
        from slmnet.tensor import Tensor

        layer = Dense(4, 2, use_bias=False)
        inputs = Tensor(np.random.randn(3, 4))

        output = layer.forward(inputs)

        assert layer.bias is None
        assert layer.parameters() == [layer.weights]
        assert np.allclose(output.data, inputs.data @ layer.weights.data, atol=1e-6)

    def test_he_initialization_bound(self):
        """Weights are drawn from U(-sqrt(2 / fan_in), sqrt(2 / fan_in))."""
        from slmnet.layers import Dense

        np.random.seed(0)
        layer = Dense(50, 40)
        limit = np.sqrt(2.0 / 50)

        assert np.all(np.abs(layer.weights.data) <= limit + 1e-7)
        # 2000 uniform draws span most of the interval
        assert np.max(np.abs(layer.weights.data)) > 0.9 * limit

    def test_identity_weights_gradient(self):
        """
        W = I and b = 0 map [[1, 0], [0, 1]] to itself; after backward() of the
        sum, dW is the column sums of the input broadcast across outputs.
        """
        from slmnet import ops
        from slmnet.layers import Dense
        from slmnet.tensor import Tensor

        layer = Dense(2, 2)
        layer.weights.data[...] = np.eye(2)
        inputs = Tensor([[1.0, 0.0], [0.0, 1.0]])

        output = layer(inputs)
        ops.sum(output).backward()

        assert np.allclose(output.data, [[1.0, 0.0], [0.0, 1.0]])
        assert np.allclose(layer.weights.grad, [[1.0, 1.0], [1.0, 1.0]])
        assert np.allclose(layer.bias.grad, [[2.0, 2.0]]), (
            "Bias gradient should sum over the batch"
        )

    def test_dense_gradients(self, check_gradients):
        from slmnet import ops
        from slmnet.layers import Dense
        from slmnet.tensor import Tensor

        np.random.seed(1)
        layer = Dense(3, 4)
        inputs = Tensor(np.random.randn(5, 3), requires_grad=True)

        check_gradients(
            lambda: ops.sum(ops.sigmoid(layer(inputs))),
            [inputs, layer.weights, layer.bias],
        )


class TestSequentialAndActivations:
    def test_sequential_runs_in_order(self):
        from slmnet.layers import Dense, ReLU, Sequential
        from slmnet.tensor import Tensor

        first = Dense(2, 3)
        second = Dense(3, 1)
        model = Sequential([first, ReLU(), second])
        inputs = Tensor([[1.0, -1.0]])

        expected = np.maximum(inputs.data @ first.weights.data, 0) @ second.weights.data
        output = model(inputs)

        assert np.allclose(output.data, expected, atol=1e-6)

    def test_sequential_parameters_in_layer_order(self):
        from slmnet.layers import Dense, Sigmoid, Sequential

        first = Dense(2, 3)
        second = Dense(3, 1)
        model = Sequential([first, Sigmoid(), second])

        assert model.parameters() == [
            first.weights,
            first.bias,
            second.weights,
            second.bias,
        ]

    def test_activations_have_no_parameters(self):
        from slmnet.layers import ReLU, Sigmoid
        from slmnet.tensor import Tensor

        assert ReLU().parameters() == []
        assert Sigmoid().parameters() == []
        assert Sigmoid()(Tensor([0.0])).item() == pytest.approx(0.5)

    def test_base_layer_forward_not_implemented(self):
        from slmnet.layers import Layer
        from slmnet.tensor import Tensor

        with pytest.raises(NotImplementedError):
            Layer().forward(Tensor([1.0]))


class TestParameterCollection:
    def test_shared_tensor_reported_once(self):
        """A tensor reachable through two attributes appears a single time."""
        from slmnet.layers import Dense, Layer

        class Tied(Layer):
            def __init__(self):
                self.encoder = Dense(4, 4)
                self.decoder = Dense(4, 4)
                self.decoder.weights = self.encoder.weights

        tied = Tied()
        parameters = tied.parameters()

        assert len(parameters) == 3
        assert parameters[0] is tied.encoder.weights

    def test_non_trainable_tensors_skipped(self):
        from slmnet.layers import Layer
        from slmnet.tensor import Tensor

        class WithConstant(Layer):
            def __init__(self):
                self.scale = Tensor([2.0])
                self.weight = Tensor([1.0], requires_grad=True)

        layer = WithConstant()

        assert layer.parameters() == [layer.weight]


class TestEmbedding:
    """
    Test suite for the Embedding layer.

    Embedding maps token IDs to dense vectors: output[i] = weight[token_ids[i]].
    """

    def test_embedding_lookup(self):
        from slmnet.layers import Embedding

        embedding = Embedding(vocabulary_size=10, embedding_dimension=4)

        output = embedding([3, 7, 3])

        assert output.shape == (3, 4)
        assert np.array_equal(output.data[0], embedding.weight.data[3])
        assert np.array_equal(output.data[1], embedding.weight.data[7])

    def test_embedding_accepts_tensor_ids(self):
        from slmnet.layers import Embedding
        from slmnet.tensor import Tensor

        embedding = Embedding(5, 2)

        output = embedding(Tensor([[0, 1], [2, 4]]))

        assert output.shape == (4, 2), "IDs of any shape are flattened"

    def test_repeated_token_accumulates_gradient(self):
        """A token used twice receives the sum of both row gradients."""
        from slmnet import ops
        from slmnet.layers import Embedding
        from slmnet.tensor import Tensor

        embedding = Embedding(5, 3)
        upstream = Tensor([[1.0, 2.0, 3.0], [10.0, 20.0, 30.0], [4.0, 5.0, 6.0]])

        output = embedding([2, 4, 2])
        ops.sum(ops.mul(output, upstream)).backward()

        assert np.allclose(embedding.weight.grad[2], [5.0, 7.0, 9.0])
        assert np.allclose(embedding.weight.grad[4], [10.0, 20.0, 30.0])
        assert np.all(embedding.weight.grad[[0, 1, 3]] == 0), (
            "Unused rows should have zero gradient"
        )

    def test_out_of_range_ids_raise(self):
        from slmnet.layers import Embedding

        embedding = Embedding(5, 3)

        with pytest.raises(ValueError, match="Token ids"):
            embedding([1, 5])
        with pytest.raises(ValueError):
            embedding([-1])

    def test_embedding_gradient(self, check_gradients):
        from slmnet import ops
        from slmnet.layers import Embedding
        from slmnet.tensor import Tensor

        np.random.seed(2)
        embedding = Embedding(6, 3)
        weights = Tensor(np.random.randn(4, 3))

        check_gradients(
            lambda: ops.sum(ops.mul(ops.sigmoid(embedding([5, 0, 5, 2])), weights)),
            [embedding.weight],
        )


class TestLayerNorm:
    """
    Test suite for Layer Normalization.

    LayerNorm normalizes across features: y = gamma * (x - mean) / std + beta

    Reference: "Layer Normalization" (Ba et al., 2016)
    """

    def test_layer_norm_output_statistics(self):
        """With gamma = 1 and beta = 0 every row has mean 0 and variance 1."""
        from slmnet.layers import LayerNorm
        from slmnet.tensor import Tensor

        np.random.seed(3)
        layer_norm = LayerNorm(16)
        inputs = Tensor(np.random.randn(6, 16) * 5 + 3)

        output = layer_norm(inputs)

        assert np.allclose(output.data.mean(axis=-1), 0.0, atol=1e-5)
        assert np.allclose(output.data.var(axis=-1), 1.0, atol=1e-4)

    def test_layer_norm_parameters(self):
        from slmnet.layers import LayerNorm

        layer_norm = LayerNorm(8)

        assert layer_norm.gamma.shape == (1, 8) and np.all(layer_norm.gamma.data == 1)
        assert layer_norm.beta.shape == (1, 8) and np.all(layer_norm.beta.data == 0)
        assert layer_norm.parameters() == [layer_norm.gamma, layer_norm.beta]

    def test_layer_norm_scale_and_shift(self):
        from slmnet.layers import LayerNorm
        from slmnet.tensor import Tensor

        layer_norm = LayerNorm(4)
        layer_norm.gamma.data[...] = 2.0
        layer_norm.beta.data[...] = 1.0

        output = layer_norm(Tensor([[1.0, 2.0, 3.0, 4.0]]))

        assert np.allclose(output.data.mean(), 1.0, atol=1e-5)

    def test_layer_norm_caches_statistics(self):
        from slmnet.layers import LayerNorm
        from slmnet.tensor import Tensor

        layer_norm = LayerNorm(3)
        layer_norm(Tensor([[1.0, 2.0, 3.0], [2.0, 2.0, 2.0]]))

        assert np.allclose(layer_norm._mean_cache.ravel(), [2.0, 2.0])
        assert np.allclose(layer_norm._variance_cache.ravel(), [2.0 / 3.0, 0.0])

    def test_layer_norm_wrong_width_raises(self):
        from slmnet.errors import ShapeError
        from slmnet.layers import LayerNorm
        from slmnet.tensor import Tensor

        with pytest.raises(ShapeError):
            LayerNorm(4)(Tensor.zeros((2, 3)))

    def test_layer_norm_gradients(self, check_gradients):
        """Input, gamma and beta gradients match finite differences."""
        from slmnet import ops
        from slmnet.layers import LayerNorm
        from slmnet.tensor import Tensor

        np.random.seed(4)
        layer_norm = LayerNorm(5)
        layer_norm.gamma.data[...] = np.random.randn(1, 5)
        layer_norm.beta.data[...] = np.random.randn(1, 5)
        inputs = Tensor(np.random.randn(3, 5), requires_grad=True)
        weights = Tensor(np.random.randn(3, 5))

        check_gradients(
            lambda: ops.sum(ops.mul(layer_norm(inputs), weights)),
            [inputs, layer_norm.gamma, layer_norm.beta],
        )


class TestPositionalEncoding:
    def test_encoding_values(self):
        """Position 0 is [0, 1, 0, 1, ...]; even columns are sines."""
        from slmnet.layers import PositionalEncoding

        encoding = PositionalEncoding(max_sequence_length=10, embedding_dimension=4)
        table = encoding.get_encoding(3)

        assert table.shape == (3, 4)
        assert np.allclose(table[0], [0.0, 1.0, 0.0, 1.0])
        assert np.allclose(table[1, 0], np.sin(1.0))
        assert np.allclose(table[1, 3], np.cos(1.0 / 100.0))

    def test_adds_encoding_without_parameters(self):
        from slmnet.layers import PositionalEncoding
        from slmnet.tensor import Tensor

        encoding = PositionalEncoding(8, 4)
        output = encoding(Tensor.zeros((5, 4)))

        assert encoding.parameters() == []
        assert np.allclose(output.data, encoding.get_encoding(5), atol=1e-6)

    def test_gradient_passes_through(self):
        from slmnet import ops
        from slmnet.layers import PositionalEncoding
        from slmnet.tensor import Tensor

        inputs = Tensor.zeros((3, 4), requires_grad=True)

        ops.sum(PositionalEncoding(8, 4)(inputs)).backward()

        assert np.all(inputs.grad == 1.0)

    def test_sequence_too_long_raises(self):
        from slmnet.layers import PositionalEncoding
        from slmnet.tensor import Tensor

        with pytest.raises(ValueError, match="exceeds maximum"):
            PositionalEncoding(4, 2)(Tensor.zeros((5, 2)))
