"""
CCNF Patch Expert - Response map computation with Continuous Conditional Neural Fields

Implements the Local Neural Field patch expert from the OpenFace CCNF model.

Each neuron correlates the area of interest with its weights and squashes the
normalised cross-correlation:

    r_k(x, y) = 2 * α_k * σ(norm_k * ncc(w_k, f)(x, y) + b_k)

The neuron responses are summed and smoothed by the CCNF covariance:

    R = Σ · vec(Σ_k r_k)

Where Σ depends on the window size and is derived from the shared sigma
components C_b of the model file and this expert's betas β_b:

    Σ = (2 * (Σ_k α_k · I + Σ_b β_b · C_b))^(-1)
"""

import numpy as np
import cv2

from ..config import CCNF_ALPHA_THRESHOLD
from .base_expert import PatchExpert
from .matrix_io import read_float64, read_int32, read_mat_bin, write_float64, write_int32, write_mat_bin

NEURON_RECORD_MARKER = 2
CCNF_RECORD_MARKER = 5

NEURON_TYPE_RAW = 0
NEURON_TYPE_NORMALISED = 3


def _logistic(x):
    return 1.0 / (1.0 + np.exp(-x))


class CCNFNeuron:
    """A single CCNF neuron."""

    def __init__(self):
        self.neuron_type = NEURON_TYPE_RAW
        self.norm_weights = 1.0
        self.bias = 0.0
        self.alpha = 0.0
        self.weights = np.zeros((0, 0), dtype=np.float32)

    def read(self, f):
        read_type = read_int32(f)
        if read_type != NEURON_RECORD_MARKER:
            raise ValueError(f"Expected neuron type {NEURON_RECORD_MARKER}, got {read_type}")

        self.neuron_type = read_int32(f)
        if self.neuron_type not in (NEURON_TYPE_RAW, NEURON_TYPE_NORMALISED):
            raise ValueError(f"Neuron type {self.neuron_type} not defined")
        self.norm_weights = read_float64(f)
        self.bias = read_float64(f)
        self.alpha = read_float64(f)
        self.weights = read_mat_bin(f).astype(np.float32)

    def write(self, f):
        write_int32(f, NEURON_RECORD_MARKER)
        write_int32(f, self.neuron_type)
        write_float64(f, self.norm_weights)
        write_float64(f, self.bias)
        write_float64(f, self.alpha)
        write_mat_bin(f, np.asarray(self.weights, dtype=np.float32))

    def _normalise(self, image: np.ndarray) -> np.ndarray:
        if self.neuron_type == NEURON_TYPE_RAW:
            return image

        # Normalise across the whole patch, ignoring missing (<= 0) pixels
        mask = (image > 0).astype(np.uint8)
        mean, std = cv2.meanStdDev(image, mask=mask)
        mean, std = float(mean[0, 0]), float(std[0, 0])
        normalised = image - mean
        if std != 0:
            normalised = normalised / std
        normalised[mask == 0] = 0
        return normalised.astype(np.float32)

    def response(self, image: np.ndarray) -> np.ndarray:
        ncc = cv2.matchTemplate(self._normalise(image), self.weights, cv2.TM_CCOEFF_NORMED)
        return (2.0 * self.alpha) * _logistic(ncc * self.norm_weights + self.bias)


class CCNFPatchExpert(PatchExpert):
    """CCNF patch expert for a single landmark at a specific view and scale."""

    def __init__(self):
        super().__init__()
        self.neurons = []
        self.betas = np.zeros(0, dtype=np.float64)

    @property
    def is_empty(self) -> bool:
        return not self.neurons

    def read(self, f, sigma_groups=()):
        """
        Read a CCNF record.

        Args:
            f: Binary stream
            sigma_groups: SigmaGroup list read from the same file; the number of
                betas equals the component count of the first group
        """
        read_type = read_int32(f)
        if read_type != CCNF_RECORD_MARKER:
            raise ValueError(f"Expected CCNF record marker {CCNF_RECORD_MARKER}, got {read_type}")

        self.width = read_int32(f)
        self.height = read_int32(f)
        num_neurons = read_int32(f)

        if num_neurons == 0:
            # Empty patch (landmark invisible at this orientation), padded with one int
            read_int32(f)
            return

        self.neurons = []
        for _ in range(num_neurons):
            neuron = CCNFNeuron()
            neuron.read(f)
            self.neurons.append(neuron)

        n_betas = len(sigma_groups[0].components) if len(sigma_groups) > 0 else 0
        self.betas = np.array([read_float64(f) for _ in range(n_betas)], dtype=np.float64)
        self.confidence = read_float64(f)

    def write(self, f):
        write_int32(f, CCNF_RECORD_MARKER)
        write_int32(f, self.width)
        write_int32(f, self.height)
        write_int32(f, len(self.neurons))
        if not self.neurons:
            write_int32(f, 0)
            return
        for neuron in self.neurons:
            neuron.write(f)
        for beta in self.betas:
            write_float64(f, beta)
        write_float64(f, self.confidence)

    def compute_sigma(self, sigma_components, window_size: int) -> np.ndarray:
        """
        Compute the response covariance Σ for one window size.

        Args:
            sigma_components: Shared component matrices (window_size² square each);
                may be empty, in which case only the neuron alphas contribute
            window_size: Response map side

        Returns:
            sigma: float32 (window_size², window_size²) matrix
        """
        n = window_size * window_size
        sum_alphas = sum(neuron.alpha for neuron in self.neurons)

        q1 = sum_alphas * np.eye(n, dtype=np.float32)
        q2 = np.zeros((n, n), dtype=np.float32)
        for beta, component in zip(self.betas, sigma_components):
            q2 += np.float32(beta) * component.astype(np.float32)

        sigma_inv = 2.0 * (q1 + q2)
        _, sigma = cv2.invert(sigma_inv, flags=cv2.DECOMP_CHOLESKY)
        return sigma

    def response(self, area_of_interest: np.ndarray, sigma: np.ndarray) -> np.ndarray:
        """
        Compute the response map over an area of interest.

        Args:
            area_of_interest: float image of size (window + height - 1, window + width - 1)
            sigma: Covariance from compute_sigma() for this window size

        Returns:
            response: (window, window) float32 response map, non-negative
        """
        area_of_interest = area_of_interest.astype(np.float32)
        response_height, response_width = self.response_size(area_of_interest)
        n = response_height * response_width
        if sigma.shape != (n, n):
            raise ValueError(
                f"Sigma of shape {sigma.shape} does not match a {response_height}x{response_width} response")

        response = np.zeros((response_height, response_width), dtype=np.float32)
        for neuron in self.neurons:
            # Neurons with tiny alpha do not contribute much to the result
            if neuron.alpha > CCNF_ALPHA_THRESHOLD:
                response += neuron.response(area_of_interest)

        response = (sigma @ response.reshape(n)).reshape(response_height, response_width)

        # Making sure the response does not have negative numbers
        minimum = response.min()
        if minimum < 0:
            response = response - minimum
        return response.astype(np.float32)
