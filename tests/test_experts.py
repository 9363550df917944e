import io

import numpy as np
import pytest
import cv2

from pypatchexperts.core.ccnf_patch_expert import CCNFPatchExpert
from pypatchexperts.core.cen_patch_expert import CENPatchExpert, contrast_norm, im2col_bias, im2col_bias_sparse
from pypatchexperts.core.svr_patch_expert import gradient_squared_magnitude
from pypatchexperts.core.utils import interpolation_matrix

WINDOW = 11


@pytest.fixture
def patch():
    rng = np.random.default_rng(7)
    return rng.uniform(10.0, 200.0, size=(WINDOW + 10, WINDOW + 10)).astype(np.float32)


# SVR

def test_svr_response_shape_and_range(factory, patch):
    response = factory.svr().response(patch)
    assert response.shape == (WINDOW, WINDOW)
    assert response.dtype == np.float32
    assert np.all((response > 0) & (response < 1))


def test_svr_peaks_where_template_matches(factory, patch):
    expert = factory.svr()
    weights = expert.modalities[0].weights
    patch[5:16, 5:16] = weights * 40.0 + 100.0

    response = expert.response(patch)
    assert np.unravel_index(np.argmax(response), response.shape) == (5, 5)


def test_multi_modal_svr_multiplies(factory, patch):
    expert = factory.svr(n_modalities=2)
    expected = expert.modalities[0].response(patch) * expert.modalities[1].response(patch)
    np.testing.assert_allclose(expert.response(patch), expected, rtol=1e-5)


def test_gradient_magnitude_interior_only():
    image = np.tile(np.arange(6, dtype=np.float32), (5, 1))
    grad = gradient_squared_magnitude(image)
    assert grad[0].sum() == 0 and grad[:, 0].sum() == 0
    # Central difference of a unit ramp is 2 per pixel
    np.testing.assert_allclose(grad[1:-1, 1:-1], 4.0)


# CCNF

def test_ccnf_sigma_inverts_precision(factory, groups_for):
    expert = factory.ccnf()
    components = groups_for((WINDOW,))[0].components
    sigma = expert.compute_sigma(components, WINDOW)

    precision = 2.0 * (sum(n.alpha for n in expert.neurons) * np.eye(WINDOW * WINDOW)
                       + expert.betas[0] * components[0])
    assert sigma.shape == (WINDOW * WINDOW, WINDOW * WINDOW)
    np.testing.assert_allclose(sigma @ precision, np.eye(WINDOW * WINDOW), atol=1e-4)


def test_ccnf_response_is_non_negative(factory, patch, groups_for):
    expert = factory.ccnf()
    sigma = expert.compute_sigma(groups_for((WINDOW,))[0].components, WINDOW)
    response = expert.response(patch, sigma)
    assert response.shape == (WINDOW, WINDOW)
    assert response.min() >= 0.0
    assert response.max() > 0.0


def test_ccnf_small_alpha_neurons_skipped(factory, patch):
    expert = factory.ccnf(n_neurons=1)
    expert.neurons[0].alpha = 1e-6
    sigma = np.eye(WINDOW * WINDOW, dtype=np.float32)
    np.testing.assert_array_equal(expert.response(patch, sigma), np.zeros((WINDOW, WINDOW)))


def test_ccnf_rejects_mismatched_sigma(factory, patch):
    with pytest.raises(ValueError):
        factory.ccnf().response(patch, np.eye(9 * 9, dtype=np.float32))


def test_ccnf_record_written_and_read_back(factory, groups_for):
    expert = factory.ccnf(n_neurons=3)
    buf = io.BytesIO()
    expert.write(buf)
    CCNFPatchExpert().write(buf)

    buf.seek(0)
    groups = groups_for((WINDOW,))
    restored = CCNFPatchExpert.from_stream(buf, groups)
    empty = CCNFPatchExpert.from_stream(buf, groups)

    assert [n.neuron_type for n in restored.neurons] == [0, 3, 0]
    np.testing.assert_array_equal(restored.neurons[2].weights, expert.neurons[2].weights)
    assert restored.neurons[1].alpha == expert.neurons[1].alpha
    assert empty.is_empty
    assert buf.read() == b""


# CEN

def test_im2col_shapes(patch):
    cols = im2col_bias(patch, 11, 11)
    assert cols.shape == (WINDOW * WINDOW, 122)
    assert np.all(cols[:, 0] == 1.0)
    # Second row is one step down (column-major window order)
    np.testing.assert_array_equal(cols[1, 1:12], patch[1:12, 0])

    sparse = im2col_bias_sparse(patch, 11, 11)
    assert sparse.shape == (36, 122)
    # Second sparse row is two steps right (row-major order)
    np.testing.assert_array_equal(sparse[1, 1:12], patch[0:11, 2])


def test_contrast_norm_rows(patch):
    normed = contrast_norm(im2col_bias(patch, 11, 11))
    assert np.all(normed[:, 0] == 1.0)
    np.testing.assert_allclose(normed[:, 1:].mean(axis=1), 0.0, atol=1e-5)
    np.testing.assert_allclose(np.linalg.norm(normed[:, 1:], axis=1), 1.0, atol=1e-4)


def test_cen_sparse_matches_dense_on_even_grid(factory, patch):
    expert = factory.cen()
    dense = expert.response(patch)
    sparse = expert.response_sparse(patch, interpolation_matrix(WINDOW, WINDOW))

    assert dense.shape == sparse.shape == (WINDOW, WINDOW)
    np.testing.assert_allclose(sparse[::2, ::2], dense[::2, ::2], atol=1e-4)


def test_cen_mirror_flips_input_and_output(factory, patch):
    expert = factory.cen()
    expected = cv2.flip(expert.response_sparse(cv2.flip(patch, 1)), 1)
    np.testing.assert_allclose(expert.response_sparse_mirror(patch), expected, atol=1e-6)


def test_cen_joint_matches_separate_calls(factory, patch):
    expert = factory.cen()
    other = np.ascontiguousarray(patch[::-1])
    response, response_mirror = expert.response_sparse_mirror_joint(patch, other)

    np.testing.assert_allclose(response, expert.response_sparse(patch), atol=1e-5)
    np.testing.assert_allclose(response_mirror, expert.response_sparse_mirror(other), atol=1e-5)


def test_cen_layers_fold_bias(factory):
    expert = factory.cen(hidden=3)
    assert expert._layers[0].shape == (122, 3)
    np.testing.assert_array_equal(expert._layers[0][0], expert.biases[0][0])
    np.testing.assert_array_equal(expert._layers[1][1:], expert.weights[1])


def test_cen_record_written_and_read_back(factory, patch):
    expert = factory.cen()
    buf = io.BytesIO()
    expert.write(buf)
    CENPatchExpert.from_layers(11, 11, [], confidence=0.25).write(buf)

    buf.seek(0)
    restored = CENPatchExpert.from_stream(buf)
    empty = CENPatchExpert.from_stream(buf)

    np.testing.assert_allclose(restored.response(patch), expert.response(patch), atol=1e-6)
    assert restored.confidence == pytest.approx(0.7)
    assert empty.is_empty
    assert empty.confidence == 0.25


@pytest.mark.parametrize("activation", [0, 1, 2, 3])
def test_cen_activations(activation, patch):
    rng = np.random.default_rng(activation)
    expert = CENPatchExpert.from_layers(11, 11, [
        (activation, rng.standard_normal((121, 1)), np.zeros(1)),
    ])
    response = expert.response(patch)
    if activation == 0:
        assert np.all((response > 0) & (response < 1))
    elif activation == 1:
        assert np.all(np.abs(response) <= 1)
    elif activation == 2:
        assert response.min() >= 0
