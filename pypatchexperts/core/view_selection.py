"""
View selection and visibility filtering.
"""

import numpy as np

from .bank import ExpertFamily


def select_view(view_centers: np.ndarray, params_global) -> int:
    """
    Index of the trained view closest to the current head orientation.

    Distance is the squared Euclidean distance between (rx, ry, rz) of the
    global parameters and each view center; the first (lowest index) view wins
    ties.

    Args:
        view_centers: (n_views, 3) orientations in radians
        params_global: [s, rx, ry, rz, tx, ty]

    Returns:
        view_idx: Best view index
    """
    orientation = np.asarray(params_global, dtype=np.float64).reshape(-1)[1:4]

    best_view = 0
    best_distance = None
    for view_idx, center in enumerate(np.asarray(view_centers, dtype=np.float64).reshape(-1, 3)):
        diff = orientation - center
        distance = float(diff @ diff)
        if best_distance is None or distance < best_distance:
            best_distance = distance
            best_view = view_idx
    return best_view


def collect_visible_landmarks(bank, scale: int, view_idx: int, n_points: int) -> list:
    """
    Landmarks whose responses have to be computed for a view.

    A landmark is included when its visibility flag is set. A visibility mask
    whose length differs from n_points yields no landmarks. For CEN experts at
    the frontal view, landmarks without trained parameters are skipped: they are
    mirror targets computed together with their partner.

    Args:
        bank: ExpertBank
        scale: Scale level
        view_idx: View index
        n_points: Number of landmarks in the shape model

    Returns:
        Ordered list of landmark indices
    """
    visibility = bank.scales[scale].visibilities[view_idx]
    if visibility.shape[0] != n_points:
        return []

    flags = visibility.reshape(-1)
    skip_mirror_targets = bank.family is ExpertFamily.CEN and view_idx == 0

    visible = []
    for landmark in range(n_points):
        if flags[landmark] == 0:
            continue
        if skip_mirror_targets and bank.expert(scale, view_idx, landmark).is_empty:
            continue
        visible.append(landmark)
    return visible
