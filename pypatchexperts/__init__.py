"""
pypatchexperts - OpenFace patch experts in pure Python

Loads the multi-scale, multi-view SVR, CCNF and CEN patch expert banks used by
CLNF facial landmark fitting and computes per-landmark response maps.

Usage:
    from pypatchexperts import PatchExperts, PDM

    experts = PatchExperts.load(cen_paths=["cen_patches_0.25_of.dat"])
    pdm = PDM.from_txt("In-the-wild_aligned_PDM_68.txt")
    responses, sim_ref_to_img, sim_img_to_ref = experts.response(
        image, pdm, params_global, params_local, window_size=11, scale=0)
"""

from .config import VERSION
from .core.bank import ExpertBank, ExpertFamily
from .core.pdm import PDM
from .core.sigma_cache import SigmaCache
from .exceptions import (BankConsistencyError, MissingExpertError, ModelFormatError,
                         ModelLoadError, PatchExpertError)
from .patch_experts import PatchExperts

__version__ = VERSION
__all__ = [
    'PatchExperts', 'PDM', 'ExpertBank', 'ExpertFamily', 'SigmaCache',
    'PatchExpertError', 'ModelLoadError', 'ModelFormatError', 'MissingExpertError',
    'BankConsistencyError',
]
