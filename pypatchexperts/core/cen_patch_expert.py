"""
CEN patch expert - Convolutional Experts Network response maps

Every support-sized window of the area of interest is flattened (im2col),
contrast normalised and pushed through a small fully connected network whose
single output is the response at that window position.

Hot paths (im2col and contrast normalisation) are Numba JIT compiled.
Sparse evaluation computes every second position only and recovers the dense
map with a bilinear interpolation matrix, and mirrored evaluation reuses the
expert of the left-right symmetric landmark on a horizontally flipped patch.
"""

import numpy as np
import cv2
from numba import njit

from .base_expert import PatchExpert
from .matrix_io import read_float64, read_int32, read_mat_bin, write_float64, write_int32, write_mat_bin
from .utils import interpolation_matrix

CEN_RECORD_MARKER = 6

ACTIVATION_SIGMOID = 0
ACTIVATION_TANH = 1
ACTIVATION_RELU = 2


# ============================================================================
# NUMBA KERNELS
# ============================================================================

@njit(fastmath=True, cache=True)
def im2col_bias(input_patch, width, height):
    """
    Extract all sliding window patches and add a leading bias column.

    Rows are window positions in column-major order, columns are the window
    pixels in column-major order.

    Args:
        input_patch: Input image (H, W) as float32
        width: Patch width
        height: Patch height

    Returns:
        Column matrix with patches as rows
    """
    y_blocks = input_patch.shape[0] - height + 1
    x_blocks = input_patch.shape[1] - width + 1
    num_patches = y_blocks * x_blocks

    output = np.ones((num_patches, width * height + 1), dtype=np.float32)

    for idx in range(num_patches):
        j = idx // y_blocks
        i = idx % y_blocks

        patch_idx = 1
        for xx in range(width):
            for yy in range(height):
                output[idx, patch_idx] = input_patch[i + yy, j + xx]
                patch_idx += 1

    return output


@njit(fastmath=True, cache=True)
def im2col_bias_sparse(input_patch, width, height):
    """
    im2col over every second window position in both directions.

    Rows are the sparse positions in row-major order so the output reshapes
    directly to (ceil(y_blocks / 2), ceil(x_blocks / 2)).
    """
    y_blocks = input_patch.shape[0] - height + 1
    x_blocks = input_patch.shape[1] - width + 1
    y_sparse = (y_blocks + 1) // 2
    x_sparse = (x_blocks + 1) // 2

    output = np.ones((y_sparse * x_sparse, width * height + 1), dtype=np.float32)

    for r in range(y_sparse):
        for c in range(x_sparse):
            idx = r * x_sparse + c
            i = 2 * r
            j = 2 * c

            patch_idx = 1
            for xx in range(width):
                for yy in range(height):
                    output[idx, patch_idx] = input_patch[i + yy, j + xx]
                    patch_idx += 1

    return output


@njit(fastmath=True, cache=True)
def contrast_norm(input_patch):
    """
    Zero-mean, unit-norm each row, leaving the bias column untouched.
    """
    output = np.empty_like(input_patch)
    cols = input_patch.shape[1] - 1

    for y in range(input_patch.shape[0]):
        row_sum = 0.0
        for x in range(1, input_patch.shape[1]):
            row_sum += input_patch[y, x]
        mean = row_sum / cols

        sum_sq = 0.0
        for x in range(1, input_patch.shape[1]):
            diff = input_patch[y, x] - mean
            sum_sq += diff * diff

        norm = np.sqrt(sum_sq)
        if norm < 1e-10:
            norm = 1.0

        output[y, 0] = input_patch[y, 0]
        inv_norm = 1.0 / norm
        for x in range(1, input_patch.shape[1]):
            output[y, x] = (input_patch[y, x] - mean) * inv_norm

    return output


def _activate(x: np.ndarray, activation: int) -> np.ndarray:
    if activation == ACTIVATION_SIGMOID:
        return 1.0 / (1.0 + np.exp(-np.clip(x, -88.0, 88.0)))
    if activation == ACTIVATION_TANH:
        return np.tanh(x)
    if activation == ACTIVATION_RELU:
        return np.maximum(x, 0.0)
    return x


# ============================================================================
# CEN PATCH EXPERT
# ============================================================================

class CENPatchExpert(PatchExpert):
    """CEN patch expert for a single landmark at a specific view and scale."""

    def __init__(self):
        super().__init__()
        self.activation_function = []
        self.weights = []   # (in, out) per layer
        self.biases = []    # (1, out) per layer
        self._layers = []   # bias folded in as the first row: (in + 1, out)

    @classmethod
    def from_layers(cls, width, height, layers, confidence=1.0):
        """
        Build an expert from (activation, weight (in, out), bias (out,)) triples.
        An empty layer list gives an empty (mirror target) expert.
        """
        expert = cls()
        expert.width = int(width)
        expert.height = int(height)
        expert.confidence = float(confidence)
        for activation, weight, bias in layers:
            expert.activation_function.append(int(activation))
            expert.weights.append(np.asarray(weight, dtype=np.float32))
            expert.biases.append(np.asarray(bias, dtype=np.float32).reshape(1, -1))
        expert._fold_layers()
        return expert

    @property
    def is_empty(self) -> bool:
        return not self._layers

    def _fold_layers(self):
        self._layers = [np.ascontiguousarray(np.vstack([bias, weight]), dtype=np.float32)
                        for weight, bias in zip(self.weights, self.biases)]

    def read(self, f):
        read_type = read_int32(f)
        if read_type != CEN_RECORD_MARKER:
            raise ValueError(f"Expected CEN record marker {CEN_RECORD_MARKER}, got {read_type}")

        self.width = read_int32(f)
        self.height = read_int32(f)
        num_layers = read_int32(f)

        self.activation_function, self.weights, self.biases = [], [], []
        if num_layers == 0:
            # Empty patch: invisible at this orientation or computed through mirroring
            self.confidence = read_float64(f)
            self._layers = []
            return

        for _ in range(num_layers):
            self.activation_function.append(read_int32(f))
            self.biases.append(read_mat_bin(f).astype(np.float32).reshape(1, -1))
            self.weights.append(read_mat_bin(f).astype(np.float32))

        self.confidence = read_float64(f)
        self._fold_layers()

    def write(self, f):
        write_int32(f, CEN_RECORD_MARKER)
        write_int32(f, self.width)
        write_int32(f, self.height)
        write_int32(f, len(self.weights))
        for activation, weight, bias in zip(self.activation_function, self.weights, self.biases):
            write_int32(f, activation)
            write_mat_bin(f, np.asarray(bias, dtype=np.float64).reshape(1, -1))
            write_mat_bin(f, np.asarray(weight, dtype=np.float64))
        write_float64(f, self.confidence)

    def _forward(self, input_col: np.ndarray) -> np.ndarray:
        """Run the network over bias-prefixed rows; returns one value per row."""
        output = input_col
        for layer, (weight, activation) in enumerate(zip(self._layers, self.activation_function)):
            if layer > 0:
                output = np.hstack([np.ones((output.shape[0], 1), dtype=np.float32), output])
            output = _activate(output @ weight, activation).astype(np.float32)
        return output[:, 0]

    def _sparse_columns(self, area_of_interest):
        patch = np.ascontiguousarray(area_of_interest, dtype=np.float32)
        return contrast_norm(im2col_bias_sparse(patch, self.width, self.height))

    @staticmethod
    def _densify(sparse, response_height, response_width, map_matrix):
        n = response_height * response_width
        if map_matrix is None or map_matrix.shape != (n, sparse.shape[0]):
            map_matrix = interpolation_matrix(response_height, response_width)
        return (map_matrix @ sparse).reshape(response_height, response_width).astype(np.float32)

    def response(self, area_of_interest: np.ndarray) -> np.ndarray:
        """
        Dense response map, evaluating every window position.

        Args:
            area_of_interest: float image of size (window + height - 1, window + width - 1)

        Returns:
            response: (window, window) float32 response map
        """
        response_height, response_width = self.response_size(area_of_interest)
        patch = np.ascontiguousarray(area_of_interest, dtype=np.float32)
        output = self._forward(contrast_norm(im2col_bias(patch, self.width, self.height)))
        return output.reshape(response_height, response_width, order='F').astype(np.float32)

    def response_sparse(self, area_of_interest: np.ndarray, map_matrix: np.ndarray = None) -> np.ndarray:
        """
        Response map evaluated at every second position and interpolated to dense.

        Args:
            area_of_interest: float image of size (window + height - 1, window + width - 1)
            map_matrix: Precomputed interpolation_matrix(window, window); rebuilt if
                missing or of the wrong size

        Returns:
            response: (window, window) float32 response map
        """
        response_height, response_width = self.response_size(area_of_interest)
        sparse = self._forward(self._sparse_columns(area_of_interest))
        return self._densify(sparse, response_height, response_width, map_matrix)

    def response_sparse_mirror(self, area_of_interest: np.ndarray, map_matrix: np.ndarray = None) -> np.ndarray:
        """Response of the mirror-symmetric landmark using this expert on a flipped patch."""
        flipped = cv2.flip(np.ascontiguousarray(area_of_interest, dtype=np.float32), 1)
        return cv2.flip(self.response_sparse(flipped, map_matrix), 1)

    def response_sparse_mirror_joint(self, area_of_interest: np.ndarray, area_of_interest_mirror: np.ndarray,
                                     map_matrix: np.ndarray = None):
        """
        Responses for this landmark and its mirror partner in one network pass.

        Args:
            area_of_interest: Patch around this expert's landmark
            area_of_interest_mirror: Same-sized patch around the mirror partner

        Returns:
            (response, response_mirror): two float32 response maps
        """
        response_height, response_width = self.response_size(area_of_interest)
        flipped = cv2.flip(np.ascontiguousarray(area_of_interest_mirror, dtype=np.float32), 1)

        own_cols = self._sparse_columns(area_of_interest)
        mirror_cols = self._sparse_columns(flipped)
        output = self._forward(np.vstack([own_cols, mirror_cols]))

        n_sparse = own_cols.shape[0]
        response = self._densify(output[:n_sparse], response_height, response_width, map_matrix)
        response_mirror = self._densify(output[n_sparse:], response_height, response_width, map_matrix)
        return response, cv2.flip(response_mirror, 1)
