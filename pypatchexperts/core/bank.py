"""
Expert bank - multi-scale, multi-view container of trained patch experts

Per scale level the bank holds the reference shape scaling, the orientation
of each trained view, which landmarks are visible in each view and one patch
expert per (view, landmark). A bank holds a single patch expert family.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

from ..exceptions import BankConsistencyError
from .base_expert import PatchExpert

logger = logging.getLogger(__name__)


class ExpertFamily(Enum):
    SVR = "SVR"
    CCNF = "CCNF"
    CEN = "CEN"

    def __str__(self):
        return self.value


@dataclass
class ScaleLevel:
    """Experts and view metadata for one scale."""

    reference_scale: float
    view_centers: np.ndarray                      # (n_views, 3) radians
    visibilities: List[np.ndarray]                # per view, (n_points, 1) int
    experts: List[List[PatchExpert]]              # [view][landmark]

    @property
    def n_views(self) -> int:
        return len(self.experts)

    @property
    def n_points(self) -> int:
        if not self.visibilities:
            return 0
        return int(self.visibilities[0].shape[0])


@dataclass
class SigmaGroup:
    """Shared CCNF sigma components for one window size."""

    window_size: int
    components: List[np.ndarray]

    @property
    def dimension(self) -> int:
        return int(self.components[0].shape[0]) if self.components else 0


@dataclass(frozen=True)
class MirrorMap:
    """
    Left-right symmetry of landmarks and views.

    A landmark (or view) mapped to itself has no mirror partner.
    """

    landmark_indices: tuple
    view_indices: tuple

    @classmethod
    def from_arrays(cls, landmark_indices, view_indices):
        return cls(tuple(int(i) for i in np.asarray(landmark_indices).reshape(-1)),
                   tuple(int(v) for v in np.asarray(view_indices).reshape(-1)))

    def landmark_mirror(self, landmark: int) -> int:
        return self.landmark_indices[landmark]

    def view_mirror(self, view: int) -> int:
        return self.view_indices[view]

    def has_mirror(self, landmark: int) -> bool:
        return self.landmark_indices[landmark] != landmark


@dataclass(frozen=True)
class EarlyTermination:
    """Parameters an outer fitting loop uses to stop early (one entry per view of scale 0)."""

    weights: np.ndarray
    biases: np.ndarray
    cutoffs: np.ndarray


@dataclass
class ExpertBank:
    """All trained patch experts of one family, over every scale."""

    family: ExpertFamily
    scales: List[ScaleLevel]
    sigma_components: List[SigmaGroup] = field(default_factory=list)
    mirror: Optional[MirrorMap] = None
    early_termination: Optional[EarlyTermination] = None

    @property
    def n_scales(self) -> int:
        return len(self.scales)

    def n_views(self, scale: int) -> int:
        return self.scales[scale].n_views

    def n_points(self, scale: int = 0) -> int:
        return self.scales[scale].n_points

    def reference_scale(self, scale: int) -> float:
        return self.scales[scale].reference_scale

    def expert(self, scale: int, view: int, landmark: int) -> PatchExpert:
        return self.scales[scale].experts[view][landmark]

    def sigma_group(self, window_size: int) -> Optional[SigmaGroup]:
        """The sigma component group whose matrices match window_size², if any."""
        for group in self.sigma_components:
            if group.components and group.dimension == window_size * window_size:
                return group
        return None

    def validate(self):
        """
        Check the per-scale invariants.

        Raises:
            BankConsistencyError: if view counts or per-view expert counts disagree
        """
        if not self.scales:
            raise BankConsistencyError("Bank has no scale levels")

        for index, level in enumerate(self.scales):
            n_centers = len(level.view_centers)
            if not (len(level.experts) == n_centers == len(level.visibilities)):
                raise BankConsistencyError(
                    f"Scale {index}: {len(level.experts)} expert views, {n_centers} view centers, "
                    f"{len(level.visibilities)} visibility masks")

            n_points = level.n_points
            for view, (visibility, experts) in enumerate(zip(level.visibilities, level.experts)):
                if len(experts) != n_points:
                    raise BankConsistencyError(
                        f"Scale {index}, view {view}: expected {n_points} experts, got {len(experts)}")
                if visibility.shape[0] != n_points:
                    # Tolerated: no landmark of this view is treated as visible
                    logger.warning(f"Scale {index}, view {view}: visibility mask has "
                                   f"{visibility.shape[0]} rows, expected {n_points}")

        if self.family is ExpertFamily.CEN and self.mirror is not None:
            n_points = self.scales[0].n_points
            if len(self.mirror.landmark_indices) != n_points:
                raise BankConsistencyError(
                    f"Mirror table has {len(self.mirror.landmark_indices)} landmarks, expected {n_points}")

    def get_info(self) -> dict:
        """Get expert bank information."""
        info = {
            'family': str(self.family),
            'n_scales': self.n_scales,
            'scales': [],
        }
        for level in self.scales:
            n_trained = sum(not expert.is_empty for view in level.experts for expert in view)
            info['scales'].append({
                'reference_scale': level.reference_scale,
                'n_views': level.n_views,
                'n_points': level.n_points,
                'view_centers_deg': np.degrees(level.view_centers).round(3).tolist(),
                'trained_experts': n_trained,
            })
        if self.sigma_components:
            info['sigma_window_sizes'] = [group.window_size for group in self.sigma_components]
        if self.early_termination is not None:
            info['early_termination'] = len(self.early_termination.weights)
        return info
