"""
pypatchexperts core - patch experts, expert bank and response engine
"""

from .bank import EarlyTermination, ExpertBank, ExpertFamily, MirrorMap, ScaleLevel, SigmaGroup
from .ccnf_patch_expert import CCNFNeuron, CCNFPatchExpert
from .cen_patch_expert import CENPatchExpert
from .pdm import PDM
from .response_engine import ResponseEngine
from .sigma_cache import SigmaCache
from .svr_patch_expert import MultiSVRPatchExpert, SVRPatchExpert
from .view_selection import collect_visible_landmarks, select_view

__all__ = [
    'EarlyTermination', 'ExpertBank', 'ExpertFamily', 'MirrorMap', 'ScaleLevel', 'SigmaGroup',
    'CCNFNeuron', 'CCNFPatchExpert', 'CENPatchExpert', 'MultiSVRPatchExpert', 'SVRPatchExpert',
    'PDM', 'ResponseEngine', 'SigmaCache', 'collect_visible_landmarks', 'select_view',
]
