"""
OpenFace patch expert file readers and writers
"""

from .openface_loader import (load_patch_experts, read_ccnf_patch_experts, read_cen_patch_experts,
                              read_early_termination, read_svr_patch_experts)
from .openface_writer import save_patch_experts

__all__ = [
    'load_patch_experts', 'read_svr_patch_experts', 'read_ccnf_patch_experts',
    'read_cen_patch_experts', 'read_early_termination', 'save_patch_experts',
]
