"""
Point Distribution Model (PDM) - Shape model supplying landmark locations

Implements the PDM transform from parameters to 2D landmarks:
    xi = s · R2D · (x̄i + Φiq) + t

Where:
    - x̄i: Mean position of landmark i
    - Φi: Principal component rows for landmark i
    - q: Non-rigid shape parameters (PCA coefficients)
    - s: Global scale
    - R2D: First two rows of the 3×3 rotation matrix from XYZ Euler angles
    - t: Translation [tx, ty]

Global parameter vector: [s, rx, ry, rz, tx, ty]

The mean shape is stored as all x coordinates, then all y, then all z.
"""

from pathlib import Path
from typing import Protocol

import numpy as np

from .matrix_io import TextModelReader
from .utils import euler_to_rotation_matrix


class ShapeModel(Protocol):
    """What the response engine needs from a shape model."""

    n_points: int

    def calc_shape_2d(self, params_local: np.ndarray, params_global) -> np.ndarray:
        ...


class PDM:
    """Point Distribution Model for facial landmark representation."""

    def __init__(self, mean_shape: np.ndarray, princ_comp: np.ndarray, eigen_values: np.ndarray = None):
        """
        Args:
            mean_shape: (3n, 1) mean shape
            princ_comp: (3n, m) principal components
            eigen_values: (1, m) or (m,) mode variances
        """
        self.mean_shape = np.asarray(mean_shape, dtype=np.float64).reshape(-1, 1)
        princ_comp = np.asarray(princ_comp, dtype=np.float64)
        if princ_comp.size == 0:
            princ_comp = np.zeros((self.mean_shape.shape[0], 0))
        self.princ_comp = princ_comp.reshape(self.mean_shape.shape[0], -1)
        if eigen_values is None:
            eigen_values = np.ones(self.princ_comp.shape[1])
        self.eigen_values = np.asarray(eigen_values, dtype=np.float64).reshape(1, -1)

        if self.mean_shape.shape[0] % 3 != 0:
            raise ValueError(f"Mean shape length {self.mean_shape.shape[0]} is not a multiple of 3")

        self.n_points = self.mean_shape.shape[0] // 3
        self.n_modes = self.princ_comp.shape[1]

    @classmethod
    def from_txt(cls, model_path):
        """Load from the OpenFace text format (mean shape, components, eigenvalues)."""
        with open(model_path, 'r') as f:
            reader = TextModelReader(f)
            mean_shape = reader.read_mat()
            princ_comp = reader.read_mat()
            eigen_values = reader.read_mat()
        return cls(mean_shape, princ_comp, eigen_values)

    @classmethod
    def from_npy_dir(cls, model_dir):
        """Load from mean_shape.npy, princ_comp.npy and eigen_values.npy."""
        model_dir = Path(model_dir)
        return cls(np.load(model_dir / 'mean_shape.npy'),
                   np.load(model_dir / 'princ_comp.npy'),
                   np.load(model_dir / 'eigen_values.npy'))

    def calc_shape_3d(self, params_local: np.ndarray) -> np.ndarray:
        """
        Non-rigid 3D shape before the global transform.

        Returns:
            shape_3d: (n_points, 3)
        """
        params_local = np.asarray(params_local, dtype=np.float64).reshape(-1)
        if params_local.shape[0] != self.n_modes:
            raise ValueError(f"Expected {self.n_modes} local parameters, got {params_local.shape[0]}")

        shape_3d = self.mean_shape[:, 0] + self.princ_comp @ params_local
        return shape_3d.reshape(3, self.n_points).T

    def calc_shape_2d(self, params_local: np.ndarray, params_global) -> np.ndarray:
        """
        Project the shape into the image.

        Args:
            params_local: (n_modes,) shape parameters
            params_global: [s, rx, ry, rz, tx, ty]

        Returns:
            landmarks_2d: (n_points, 2)
        """
        params_global = np.asarray(params_global, dtype=np.float64).reshape(-1)
        s = params_global[0]
        R = euler_to_rotation_matrix(params_global[1:4])
        t = params_global[4:6]

        shape_3d = self.calc_shape_3d(params_local)
        return s * (shape_3d @ R[:2].T) + t

    def get_info(self) -> dict:
        """Get PDM information."""
        return {
            'n_points': self.n_points,
            'n_modes': self.n_modes,
            'mean_shape_shape': self.mean_shape.shape,
            'princ_comp_shape': self.princ_comp.shape,
            'eigen_values_shape': self.eigen_values.shape,
        }
