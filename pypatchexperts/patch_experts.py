"""
PatchExperts - user-facing API for OpenFace patch experts

Combines:
- ExpertBank loaded from the SVR, CCNF or CEN model files (one per scale)
- ResponseEngine computing per-landmark response maps
- SigmaCache memoising CCNF covariances across calls

Usage:
    from pypatchexperts import PatchExperts, PDM

    experts = PatchExperts.load(cen_paths=["cen_patches_0.25_of.dat",
                                           "cen_patches_0.35_of.dat",
                                           "cen_patches_0.50_of.dat"])
    pdm = PDM.from_txt("In-the-wild_aligned_PDM_68.txt")

    responses, sim_ref_to_img, sim_img_to_ref = experts.response(
        gray, pdm, params_global, params_local, window_size=11, scale=0)
"""

import logging
from typing import Optional, Sequence

import numpy as np

from .core.bank import ExpertBank
from .core.response_engine import ResponseEngine
from .core.sigma_cache import SigmaCache
from .models.openface_loader import load_patch_experts
from .models.openface_writer import save_patch_experts

logger = logging.getLogger(__name__)


class PatchExperts:
    """
    Loaded patch expert bank plus response computation.

    The bank is read-only after loading; the Sigma cache is shared by every
    response() call made through this object.
    """

    def __init__(self, bank: ExpertBank, n_jobs: Optional[int] = None):
        """
        Args:
            bank: Loaded ExpertBank
            n_jobs: Worker threads for response computation (default from
                PYPATCHEXPERTS_N_JOBS, otherwise 1)
        """
        self.bank = bank
        self.sigma_cache = SigmaCache()
        self.engine = ResponseEngine(bank, sigma_cache=self.sigma_cache, n_jobs=n_jobs)

    @classmethod
    def load(cls,
             svr_paths: Sequence = (),
             ccnf_paths: Sequence = (),
             cen_paths: Sequence = (),
             early_term_path=None,
             n_jobs: Optional[int] = None) -> "PatchExperts":
        """
        Load patch experts, one file per scale.

        When several families are given the later one wins (CEN over CCNF over SVR).

        Raises:
            ModelLoadError: a requested file is missing or unreadable
            ModelFormatError: a file is truncated or malformed
        """
        bank = load_patch_experts(svr_paths=svr_paths, ccnf_paths=ccnf_paths,
                                  cen_paths=cen_paths, early_term_path=early_term_path)
        return cls(bank, n_jobs=n_jobs)

    @property
    def family(self):
        return self.bank.family

    @property
    def n_scales(self) -> int:
        return self.bank.n_scales

    def select_view(self, params_global, scale: int) -> int:
        """Index of the trained view closest to the head orientation at this scale."""
        return self.engine.select_view(params_global, scale)

    def response(self,
                 image: np.ndarray,
                 pdm,
                 params_global,
                 params_local,
                 window_size: int,
                 scale: int,
                 responses=None):
        """
        Compute response maps around the current landmark estimates.

        Args:
            image: Grayscale (or BGR) image
            pdm: Shape model (n_points, calc_shape_2d)
            params_global: [s, rx, ry, rz, tx, ty]
            params_local: Non-rigid shape parameters
            window_size: Side of each response map
            scale: Scale level, 0 <= scale < n_scales
            responses: Optional list of n_points slots filled in place

        Returns:
            responses: Per-landmark (window_size, window_size) maps, None (or the
                caller's previous value) for landmarks not computed
            sim_ref_to_img: (2, 2) reference-to-image similarity
            sim_img_to_ref: (2, 2) image-to-reference similarity
        """
        if not 0 <= scale < self.bank.n_scales:
            raise ValueError(f"Scale {scale} out of range (bank has {self.bank.n_scales} scales)")
        return self.engine.response(image, pdm, params_global, params_local,
                                    window_size, scale, responses=responses)

    def save(self, output_dir) -> dict:
        """Write the bank back to OpenFace model files, one per scale."""
        return save_patch_experts(self.bank, output_dir)

    def get_info(self) -> dict:
        """Get model information."""
        info = self.bank.get_info()
        info['n_jobs'] = self.engine.n_jobs
        info['cached_sigmas'] = len(self.sigma_cache)
        return info
