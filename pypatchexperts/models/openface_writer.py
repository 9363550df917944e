"""
Write patch expert banks in the OpenFace file formats read by openface_loader.

View centers are given in degrees, the unit used on disk.
"""

import logging
from pathlib import Path

import numpy as np

from ..core.bank import ExpertFamily
from ..core.matrix_io import write_float64, write_int32, write_mat, write_mat_bin

logger = logging.getLogger(__name__)

SCALE_FILE_PATTERNS = {
    ExpertFamily.SVR: "svr_patches_{scale}.txt",
    ExpertFamily.CCNF: "ccnf_patches_{scale}.dat",
    ExpertFamily.CEN: "cen_patches_{scale}.dat",
}


def _centers_column(center_deg) -> np.ndarray:
    return np.asarray(center_deg, dtype=np.float64).reshape(3, 1)


def _visibility_column(visibility) -> np.ndarray:
    return np.asarray(visibility).astype(np.int32).reshape(-1, 1)


def _write_binary_header(f, reference_scale, view_centers_deg, visibilities):
    write_float64(f, reference_scale)
    write_int32(f, len(view_centers_deg))
    for center in view_centers_deg:
        write_mat_bin(f, _centers_column(center))
    for visibility in visibilities:
        write_mat_bin(f, _visibility_column(visibility))


def write_svr_patch_experts(path, reference_scale, view_centers_deg, visibilities, experts):
    """
    Write one scale of SVR experts as text.

    Args:
        path: Output file
        reference_scale: Scaling of the reference shape
        view_centers_deg: (n_views, 3) orientations in degrees
        visibilities: Per view (n_points,) visibility flags
        experts: [view][landmark] MultiSVRPatchExpert
    """
    with open(path, 'w') as f:
        f.write("# scaling factor of training\n")
        f.write(f"{float(reference_scale)!r}\n")
        f.write("# number of views\n")
        f.write(f"{len(view_centers_deg)}\n")
        f.write("# centers of the views\n")
        for center in view_centers_deg:
            write_mat(f, _centers_column(center))
        f.write("# visibility indices per view\n")
        for visibility in visibilities:
            write_mat(f, _visibility_column(visibility))
        f.write("# patches themselves (1 line patches of a vertex)\n")
        for view_experts in experts:
            for expert in view_experts:
                expert.write(f)


def write_ccnf_patch_experts(path, reference_scale, view_centers_deg, visibilities, experts, sigma_groups=()):
    """
    Write one scale of CCNF experts in binary form.

    Args:
        sigma_groups: SigmaGroup list; each expert carries one beta per
            component of the first group
    """
    with open(path, 'wb') as f:
        _write_binary_header(f, reference_scale, view_centers_deg, visibilities)

        write_int32(f, len(sigma_groups))
        for group in sigma_groups:
            write_int32(f, group.window_size)
            write_int32(f, len(group.components))
            for component in group.components:
                write_mat_bin(f, np.asarray(component, dtype=np.float32))

        for view_experts in experts:
            for expert in view_experts:
                expert.write(f)


def write_cen_patch_experts(path, reference_scale, view_centers_deg, visibilities, experts,
                            mirror_landmarks, mirror_views):
    """
    Write one scale of CEN experts in binary form.

    Args:
        mirror_landmarks: Mirror partner of every landmark
        mirror_views: Mirror partner of every view
    """
    with open(path, 'wb') as f:
        _write_binary_header(f, reference_scale, view_centers_deg, visibilities)
        write_mat_bin(f, np.asarray(mirror_landmarks, dtype=np.int32).reshape(-1, 1))
        write_mat_bin(f, np.asarray(mirror_views, dtype=np.int32).reshape(-1, 1))

        for view_experts in experts:
            for expert in view_experts:
                expert.write(f)


def write_early_termination(path, weights, biases, cutoffs):
    """Write early termination weights, biases and cutoffs, one block per line."""
    with open(path, 'w') as f:
        for values in (weights, biases, cutoffs):
            f.write(" ".join(repr(float(v)) for v in np.asarray(values).reshape(-1)) + "\n")


def save_patch_experts(bank, output_dir):
    """
    Write every scale of a bank to output_dir, one file per scale.

    Args:
        bank: ExpertBank
        output_dir: Directory (created if missing)

    Returns:
        dict with 'paths' (per scale files in scale order) and, when the bank
        has early termination parameters, 'early_term_path'
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for scale, level in enumerate(bank.scales):
        path = output_dir / SCALE_FILE_PATTERNS[bank.family].format(scale=scale)
        centers_deg = np.degrees(np.asarray(level.view_centers, dtype=np.float64).reshape(-1, 3))
        header = (level.reference_scale, centers_deg, level.visibilities, level.experts)

        if bank.family is ExpertFamily.SVR:
            write_svr_patch_experts(path, *header)
        elif bank.family is ExpertFamily.CCNF:
            write_ccnf_patch_experts(path, *header, sigma_groups=bank.sigma_components)
        else:
            if bank.mirror is None:
                raise ValueError("CEN banks need a mirror table to be written")
            write_cen_patch_experts(path, *header, bank.mirror.landmark_indices, bank.mirror.view_indices)

        logger.debug(f"Wrote scale {scale} of the {bank.family} patch experts to {path}")
        paths.append(path)

    result = {'paths': paths}
    if bank.early_termination is not None:
        early_term_path = output_dir / "early_termination.txt"
        et = bank.early_termination
        write_early_termination(early_term_path, et.weights, et.biases, et.cutoffs)
        result['early_term_path'] = early_term_path
    return result
