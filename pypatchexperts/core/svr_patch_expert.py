"""
SVR patch experts - Linear SVR regressors over intensity or gradient patches

Each modality correlates a normalised area of interest with its SVR weights and
passes the result through a logistic regressor:

    R(x, y) = 1 / (1 + exp(-(ncc(x, y) * scaling + bias)))

Multi-modal experts multiply the per-modality responses.
"""

import numpy as np
import cv2

from .base_expert import PatchExpert
from .matrix_io import write_mat

SVR_RECORD_MARKER = 2
MULTI_SVR_RECORD_MARKER = 3

PATCH_TYPE_INTENSITY = 0
PATCH_TYPE_GRADIENT = 1


def gradient_squared_magnitude(image: np.ndarray) -> np.ndarray:
    """
    Squared gradient magnitude using central differences (borders are zero).

    Args:
        image: 2D float image

    Returns:
        grad: float32 array of the same shape
    """
    image = image.astype(np.float32)
    grad = np.zeros_like(image)
    vx = image[1:-1, 2:] - image[1:-1, :-2]
    vy = image[2:, 1:-1] - image[:-2, 1:-1]
    grad[1:-1, 1:-1] = vx * vx + vy * vy
    return grad


class SVRPatchExpert:
    """A single-modality SVR patch expert."""

    def __init__(self):
        self.type = PATCH_TYPE_INTENSITY
        self.confidence = 0.0
        self.scaling = 1.0
        self.bias = 0.0
        self.weights = np.zeros((0, 0), dtype=np.float32)

    def read(self, reader):
        read_type = reader.read_int()
        if read_type != SVR_RECORD_MARKER:
            raise ValueError(f"Expected SVR record marker {SVR_RECORD_MARKER}, got {read_type}")

        self.type = reader.read_int()
        if self.type not in (PATCH_TYPE_INTENSITY, PATCH_TYPE_GRADIENT):
            raise ValueError(f"Unsupported SVR patch type {self.type}")
        self.confidence = reader.read_float()
        self.scaling = reader.read_float()
        self.bias = reader.read_float()

        # Weights are stored column-major (transposed)
        self.weights = np.ascontiguousarray(reader.read_mat().T, dtype=np.float32)

    def write(self, f):
        f.write(f"{SVR_RECORD_MARKER}\n")
        f.write(f"{int(self.type)} {float(self.confidence)!r} {float(self.scaling)!r} {float(self.bias)!r}\n")
        write_mat(f, np.asarray(self.weights, dtype=np.float64).T)

    def _normalise(self, area_of_interest: np.ndarray) -> np.ndarray:
        if self.type == PATCH_TYPE_INTENSITY:
            mean, std = cv2.meanStdDev(area_of_interest)
            std = float(std[0, 0]) or 1.0
            return (area_of_interest - float(mean[0, 0])) / std
        return gradient_squared_magnitude(area_of_interest)

    def response(self, area_of_interest: np.ndarray) -> np.ndarray:
        normalised = self._normalise(area_of_interest.astype(np.float32)).astype(np.float32)
        ncc = cv2.matchTemplate(normalised, self.weights, cv2.TM_CCOEFF_NORMED)
        return (1.0 / (1.0 + np.exp(-(ncc * self.scaling + self.bias)))).astype(np.float32)


class MultiSVRPatchExpert(PatchExpert):
    """SVR patch expert combining one or more modalities for a landmark."""

    def __init__(self):
        super().__init__()
        self.modalities = []

    @property
    def is_empty(self) -> bool:
        return not self.modalities

    def read(self, reader):
        read_type = reader.read_int()
        if read_type != MULTI_SVR_RECORD_MARKER:
            raise ValueError(
                f"Expected multi-SVR record marker {MULTI_SVR_RECORD_MARKER}, got {read_type}")

        self.width = reader.read_int()
        self.height = reader.read_int()
        n_modalities = reader.read_int()

        self.modalities = []
        for _ in range(n_modalities):
            modality = SVRPatchExpert()
            modality.read(reader)
            self.modalities.append(modality)
        if self.modalities:
            self.confidence = self.modalities[0].confidence

    def write(self, f):
        f.write(f"{MULTI_SVR_RECORD_MARKER}\n")
        f.write(f"{self.width} {self.height} {len(self.modalities)}\n")
        for modality in self.modalities:
            modality.write(f)

    def response(self, area_of_interest: np.ndarray) -> np.ndarray:
        """
        Compute the response map over an area of interest.

        Args:
            area_of_interest: float image of size (window + height - 1, window + width - 1)

        Returns:
            response: (window, window) float32 response map
        """
        if len(self.modalities) == 1:
            return self.modalities[0].response(area_of_interest)

        response = np.ones(self.response_size(area_of_interest), dtype=np.float32)
        for modality in self.modalities:
            response *= modality.response(area_of_interest)
        return response
