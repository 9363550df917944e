"""
OpenFace Model Loader - Parse OpenFace patch expert banks without C++ dependency

Reads the SVR (text), CCNF (binary) and CEN (binary) patch expert files, one
file per scale, into an ExpertBank. Families are read in the order SVR, CCNF,
CEN and every non-empty family replaces the previous one, so the bank ends up
holding the last family given.
"""

import logging
import struct
from contextlib import contextmanager
from pathlib import Path

import numpy as np

from ..core.bank import EarlyTermination, ExpertBank, ExpertFamily, MirrorMap, ScaleLevel, SigmaGroup
from ..core.ccnf_patch_expert import CCNFPatchExpert
from ..core.cen_patch_expert import CENPatchExpert
from ..core.matrix_io import TextModelReader, read_float64, read_int32, read_mat_bin
from ..core.svr_patch_expert import MultiSVRPatchExpert
from ..exceptions import ModelFormatError, ModelLoadError

logger = logging.getLogger(__name__)


@contextmanager
def _open_model(family, path, mode):
    """Open a model file, turning I/O and parse failures into load errors."""
    try:
        f = open(path, mode)
    except OSError as e:
        raise ModelLoadError(family, path, e.strerror) from e

    with f:
        try:
            yield f
        except (EOFError, ValueError, struct.error) as e:
            raise ModelFormatError(family, path, str(e)) from e


def _center_to_radians(center: np.ndarray) -> np.ndarray:
    center = np.asarray(center, dtype=np.float64).reshape(-1)
    if center.shape[0] != 3:
        raise ValueError(f"View center must have 3 values, got {center.shape[0]}")
    return center * np.pi / 180.0


def _visibility(mat: np.ndarray) -> np.ndarray:
    return np.asarray(mat).astype(np.int32).reshape(-1, 1)


def _read_experts(n_views, n_points, read_one):
    return [[read_one() for _ in range(n_points)] for _ in range(n_views)]


def read_svr_patch_experts(path) -> ScaleLevel:
    """Read one scale of SVR patch experts from the OpenFace text format."""
    with _open_model(ExpertFamily.SVR, path, 'r') as f:
        reader = TextModelReader(f)

        reference_scale = reader.read_float()
        n_views = reader.read_int()

        # centers of each view (which view corresponds to which orientation)
        centers = np.array([_center_to_radians(reader.read_mat()) for _ in range(n_views)]).reshape(-1, 3)

        # which landmarks are visible at a specific view
        visibilities = [_visibility(reader.read_mat()) for _ in range(n_views)]
        n_points = visibilities[0].shape[0] if visibilities else 0

        experts = _read_experts(n_views, n_points, lambda: MultiSVRPatchExpert.from_stream(reader))

    return ScaleLevel(reference_scale, centers, visibilities, experts)


def _read_binary_header(f):
    reference_scale = read_float64(f)
    n_views = read_int32(f)
    if n_views < 0:
        raise ValueError(f"Invalid view count {n_views}")

    centers = np.array([_center_to_radians(read_mat_bin(f)) for _ in range(n_views)]).reshape(-1, 3)
    visibilities = [_visibility(read_mat_bin(f)) for _ in range(n_views)]
    return reference_scale, centers, visibilities


def read_ccnf_patch_experts(path):
    """
    Read one scale of CCNF patch experts from the OpenFace binary format.

    Returns:
        (ScaleLevel, list of SigmaGroup)
    """
    with _open_model(ExpertFamily.CCNF, path, 'rb') as f:
        reference_scale, centers, visibilities = _read_binary_header(f)
        n_points = visibilities[0].shape[0] if visibilities else 0

        # Sigma components without betas, shared by all experts of a window size
        sigma_groups = []
        n_window_sizes = read_int32(f)
        for _ in range(n_window_sizes):
            window_size = read_int32(f)
            n_components = read_int32(f)
            components = [read_mat_bin(f).astype(np.float32) for _ in range(n_components)]
            sigma_groups.append(SigmaGroup(window_size, components))

        experts = _read_experts(len(centers), n_points,
                                lambda: CCNFPatchExpert.from_stream(f, sigma_groups))

    return ScaleLevel(reference_scale, centers, visibilities, experts), sigma_groups


def read_cen_patch_experts(path):
    """
    Read one scale of CEN patch experts from the OpenFace binary format.

    Returns:
        (ScaleLevel, MirrorMap)
    """
    with _open_model(ExpertFamily.CEN, path, 'rb') as f:
        reference_scale, centers, visibilities = _read_binary_header(f)
        n_points = visibilities[0].shape[0] if visibilities else 0

        mirror = MirrorMap.from_arrays(read_mat_bin(f), read_mat_bin(f))

        experts = _read_experts(len(centers), n_points, lambda: CENPatchExpert.from_stream(f))

    return ScaleLevel(reference_scale, centers, visibilities, experts), mirror


def read_early_termination(path, n_entries: int) -> EarlyTermination:
    """
    Read early termination weights, biases and cutoffs (n_entries each, in that order).
    """
    family = "early termination"
    with _open_model(family, path, 'r') as f:
        values = np.array(f.read().split(), dtype=np.float64)

    if values.shape[0] < 3 * n_entries:
        raise ModelFormatError(family, path, f"expected {3 * n_entries} values, got {values.shape[0]}")

    return EarlyTermination(weights=values[:n_entries],
                            biases=values[n_entries:2 * n_entries],
                            cutoffs=values[2 * n_entries:3 * n_entries])


def _read_family(family, paths, read_one):
    results = []
    for path in paths:
        logger.info(f"Reading the {family} patch experts from: {path}")
        results.append(read_one(Path(path)))
        logger.info(f"Done reading {path}")
    return results


def load_patch_experts(svr_paths=(), ccnf_paths=(), cen_paths=(), early_term_path=None) -> ExpertBank:
    """
    Load a patch expert bank, one model file per scale.

    CCNF experts override the SVR ones and CEN experts override both.

    Args:
        svr_paths: SVR text files, one per scale
        ccnf_paths: CCNF binary files, one per scale
        cen_paths: CEN binary files, one per scale
        early_term_path: Optional early termination parameter file

    Returns:
        ExpertBank holding the last non-empty family

    Raises:
        ModelLoadError: a requested file is missing or unreadable
        ModelFormatError: a file is truncated or malformed
    """
    svr_paths, ccnf_paths, cen_paths = list(svr_paths), list(ccnf_paths), list(cen_paths)
    if not (svr_paths or ccnf_paths or cen_paths):
        raise ValueError("At least one SVR, CCNF or CEN patch expert file is required")

    bank = None

    if svr_paths:
        scales = _read_family(ExpertFamily.SVR, svr_paths, read_svr_patch_experts)
        bank = ExpertBank(ExpertFamily.SVR, scales)

    if ccnf_paths:
        results = _read_family(ExpertFamily.CCNF, ccnf_paths, read_ccnf_patch_experts)
        # Every file carries the same sigma components; the last one read is kept
        bank = ExpertBank(ExpertFamily.CCNF, [level for level, _ in results],
                          sigma_components=results[-1][1])

    if cen_paths:
        results = _read_family(ExpertFamily.CEN, cen_paths, read_cen_patch_experts)
        bank = ExpertBank(ExpertFamily.CEN, [level for level, _ in results], mirror=results[-1][1])

    if early_term_path:
        n_entries = bank.n_views(0)
        bank.early_termination = read_early_termination(early_term_path, n_entries)

    bank.validate()
    logger.info(f"Loaded {bank.family} patch experts: {bank.n_scales} scales, "
                f"{bank.n_views(0)} views, {bank.n_points(0)} landmarks")
    return bank
