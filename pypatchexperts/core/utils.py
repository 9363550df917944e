"""
Geometry helpers shared by the response engine and the patch experts.
"""

from functools import lru_cache

import numpy as np
import cv2


def align_shapes_kabsch_2d(align_from: np.ndarray, align_to: np.ndarray) -> np.ndarray:
    """
    Rotation that best aligns two mean-normalised 2D point sets (no reflection).

    Args:
        align_from: (n, 2) source points
        align_to: (n, 2) destination points

    Returns:
        R: (2, 2) rotation matrix
    """
    U, _, Vt = np.linalg.svd(align_from.T @ align_to)

    # corr ensures that we do only rotations and not reflections
    d = np.linalg.det(Vt.T @ U.T)
    corr = np.eye(2)
    corr[1, 1] = 1.0 if d > 0 else -1.0

    return Vt.T @ corr @ U.T


def align_shapes_with_scale(src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """
    Least-squares similarity (rotation + uniform scale) mapping src onto dst.

    Translation is removed by mean-normalising both shapes first.

    Args:
        src: (n, 2) source shape
        dst: (n, 2) destination shape

    Returns:
        A: (2, 2) float32 matrix, s * R
    """
    src = np.asarray(src, dtype=np.float64)
    dst = np.asarray(dst, dtype=np.float64)
    n = src.shape[0]

    src_centered = src - src.mean(axis=0)
    dst_centered = dst - dst.mean(axis=0)

    s_src = np.sqrt(np.sum(src_centered ** 2) / n)
    s_dst = np.sqrt(np.sum(dst_centered ** 2) / n)

    R = align_shapes_kabsch_2d(src_centered / s_src, dst_centered / s_dst)
    scale = s_dst / s_src
    return (scale * R).astype(np.float32)


def invert_similarity_transform(sim: np.ndarray) -> np.ndarray:
    """Inverse of a 2x2 similarity matrix (LU decomposition)."""
    _, inverse = cv2.invert(np.asarray(sim, dtype=np.float32), flags=cv2.DECOMP_LU)
    return inverse


def euler_to_rotation_matrix(euler_angles) -> np.ndarray:
    """
    Rotation matrix from XYZ Euler angles (radians), R = Rx · Ry · Rz.
    """
    s1, s2, s3 = np.sin(euler_angles[0]), np.sin(euler_angles[1]), np.sin(euler_angles[2])
    c1, c2, c3 = np.cos(euler_angles[0]), np.cos(euler_angles[1]), np.cos(euler_angles[2])

    return np.array([
        [c2 * c3, -c2 * s3, s2],
        [c1 * s3 + c3 * s1 * s2, c1 * c3 - s1 * s2 * s3, -c2 * s1],
        [s1 * s3 - c1 * c3 * s2, c3 * s1 + c1 * s2 * s3, c1 * c2],
    ])


def extract_area_of_interest(image: np.ndarray, a1: float, b1: float,
                             center_x: float, center_y: float,
                             width: int, height: int) -> np.ndarray:
    """
    Sample an oriented, scaled rectangle of the image centred on a point.

    Equivalent of cvGetQuadrangleSubPix with the matrix [[a1, -b1, x], [b1, a1, y]]:
    output pixel (u, v) reads the image at

        (a1 * u' - b1 * v' + x,  b1 * u' + a1 * v' + y)

    where (u', v') is measured from the output centre ((width-1)/2, (height-1)/2).

    Args:
        image: float32 grayscale image
        a1, b1: Rotation/scale components of the reference-to-image similarity
        center_x, center_y: Landmark position in image coordinates
        width, height: Output size

    Returns:
        area_of_interest: (height, width) float32 patch
    """
    cx = (width - 1.0) / 2.0
    cy = (height - 1.0) / 2.0

    tx = center_x - a1 * cx + b1 * cy
    ty = center_y - b1 * cx - a1 * cy

    sim_matrix = np.array([
        [a1, -b1, tx],
        [b1, a1, ty]
    ], dtype=np.float64)

    # WARP_INVERSE_MAP: sim_matrix maps output coordinates to image coordinates
    return cv2.warpAffine(
        image,
        sim_matrix,
        (int(width), int(height)),
        flags=cv2.WARP_INVERSE_MAP | cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_REPLICATE
    )


def _interpolation_weights(dense_size: int) -> np.ndarray:
    """(dense_size, ceil(dense_size / 2)) linear interpolation from a step-2 grid."""
    sparse_size = (dense_size + 1) // 2
    weights = np.zeros((dense_size, sparse_size), dtype=np.float32)
    for y in range(dense_size):
        position = y / 2.0
        k0 = min(int(np.floor(position)), sparse_size - 1)
        frac = position - k0
        if k0 + 1 < sparse_size and frac > 0:
            weights[y, k0] = 1.0 - frac
            weights[y, k0 + 1] = frac
        else:
            weights[y, k0] = 1.0
    return weights


@lru_cache(maxsize=16)
def interpolation_matrix(response_height: int, response_width: int) -> np.ndarray:
    """
    Bilinear map from a sparse (every second position) response to a dense one.

    The sparse response is ordered row-major over a
    (ceil(h / 2), ceil(w / 2)) grid; dense = M @ sparse gives the row-major
    (h, w) map. The returned array is shared and read-only.

    Returns:
        M: (h * w, ceil(h / 2) * ceil(w / 2)) float32 matrix
    """
    mat = np.kron(_interpolation_weights(response_height), _interpolation_weights(response_width))
    mat.flags.writeable = False
    return mat
