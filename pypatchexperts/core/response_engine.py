"""
Response engine - patch expert response maps for the current shape estimate

For one image and one set of shape model parameters the engine:
    1. picks the trained view closest to the head orientation
    2. renders the current shape in the image and in a pose-free reference frame
    3. aligns the two with a similarity transform (rotation + scale)
    4. samples an area of interest around every visible landmark, oriented and
       scaled into the reference frame
    5. evaluates the patch expert of each landmark over its area of interest

The response maps are consumed by an outer shape fitting loop together with the
two similarity transforms, which map response map offsets back to the image.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import cv2

from ..config import CEN_SUPPORT_REGION, get_default_n_jobs
from ..exceptions import MissingExpertError
from .bank import ExpertFamily
from .pdm import ShapeModel
from .sigma_cache import SigmaCache
from .utils import (align_shapes_with_scale, extract_area_of_interest,
                    interpolation_matrix, invert_similarity_transform)
from .view_selection import collect_visible_landmarks, select_view

logger = logging.getLogger(__name__)


@dataclass
class _CallContext:
    """State shared by every landmark of one response() call."""

    image: np.ndarray
    scale: int
    view_idx: int
    window_size: int
    landmarks: np.ndarray
    a1: float
    b1: float
    sigmas: dict = field(default_factory=dict)
    interp_matrix: Optional[np.ndarray] = None


def _to_float_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 3:
        image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return np.ascontiguousarray(image, dtype=np.float32)


class ResponseEngine:
    """
    Computes patch expert response maps from an ExpertBank.

    Args:
        bank: Loaded ExpertBank
        sigma_cache: Cache for CCNF Sigma matrices (one is created if omitted)
        n_jobs: Worker threads for the per-landmark loop (default from
            PYPATCHEXPERTS_N_JOBS, otherwise 1)
    """

    def __init__(self, bank, sigma_cache: SigmaCache = None, n_jobs: int = None):
        self.bank = bank
        self.sigma_cache = sigma_cache if sigma_cache is not None else SigmaCache()
        self.n_jobs = get_default_n_jobs() if n_jobs is None else max(1, int(n_jobs))

    def select_view(self, params_global, scale: int) -> int:
        """Index of the view at this scale closest to the orientation in params_global."""
        return select_view(self.bank.scales[scale].view_centers, params_global)

    def response(self, image: np.ndarray, pdm: ShapeModel, params_global, params_local,
                 window_size: int, scale: int, responses: Optional[List] = None):
        """
        Compute response maps around the current landmark estimates.

        Args:
            image: Grayscale (or BGR) image
            pdm: Shape model with n_points and calc_shape_2d(params_local, params_global)
            params_global: [s, rx, ry, rz, tx, ty]
            params_local: Non-rigid shape parameters
            window_size: Side of each response map
            scale: Scale level of the bank to use
            responses: Optional list of length n_points to fill in place

        Returns:
            responses: List of (window_size, window_size) float32 maps; entries of
                landmarks that were not computed are left untouched (None when
                the list is created here)
            sim_ref_to_img: (2, 2) reference-to-image similarity
            sim_img_to_ref: (2, 2) image-to-reference similarity
        """
        n_points = pdm.n_points
        if responses is None:
            responses = [None] * n_points
        elif len(responses) != n_points:
            raise ValueError(f"responses must have {n_points} entries, got {len(responses)}")

        view_idx = self.select_view(params_global, scale)

        # Current landmark locations (around which responses will be computed)
        landmarks = pdm.calc_shape_2d(params_local, params_global)

        # Same non-rigid shape in the reference frame: no rotation or translation
        global_ref = np.array([self.bank.reference_scale(scale), 0, 0, 0, 0, 0], dtype=np.float64)
        reference_shape = pdm.calc_shape_2d(params_local, global_ref)

        sim_img_to_ref = align_shapes_with_scale(landmarks, reference_shape)
        sim_ref_to_img = invert_similarity_transform(sim_img_to_ref)

        ctx = _CallContext(
            image=_to_float_gray(image),
            scale=scale,
            view_idx=view_idx,
            window_size=window_size,
            landmarks=landmarks,
            a1=float(sim_ref_to_img[0, 0]),
            b1=float(-sim_ref_to_img[0, 1]),
        )

        # Visible landmarks only, mirror targets of the frontal CEN view excluded
        visible = collect_visible_landmarks(self.bank, scale, view_idx, n_points)
        logger.debug(f"Scale {scale}, view {view_idx}: {len(visible)} of {n_points} landmarks to compute")

        if self.bank.family is ExpertFamily.CCNF:
            ctx.sigmas = self._precompute_sigmas(visible, scale, view_idx, window_size)
        elif self.bank.family is ExpertFamily.CEN:
            # Same support region assumed for all experts
            area_of_interest_size = window_size + CEN_SUPPORT_REGION - 1
            resp_size = area_of_interest_size - CEN_SUPPORT_REGION + 1
            ctx.interp_matrix = interpolation_matrix(resp_size, resp_size)

        if self.n_jobs > 1 and len(visible) > 1:
            with ThreadPoolExecutor(max_workers=self.n_jobs) as pool:
                results = list(pool.map(lambda landmark: self._evaluate(ctx, landmark), visible))
        else:
            results = [self._evaluate(ctx, landmark) for landmark in visible]

        for item in results:
            for landmark, response_map in item:
                responses[landmark] = response_map

        return responses, sim_ref_to_img, sim_img_to_ref

    def _precompute_sigmas(self, visible, scale, view_idx, window_size) -> dict:
        group = self.bank.sigma_group(window_size)
        if group is None:
            logger.warning(f"No CCNF sigma components for window size {window_size}; "
                           f"response smoothing falls back to the neuron alphas only")
            components = []
        else:
            components = group.components

        sigmas = {}
        for landmark in visible:
            expert = self._required_expert(scale, view_idx, landmark)
            sigmas[landmark] = self.sigma_cache.get(expert, window_size, components)
        return sigmas

    def _required_expert(self, scale, view_idx, landmark):
        expert = self.bank.expert(scale, view_idx, landmark)
        if expert.is_empty:
            raise MissingExpertError(scale, view_idx, landmark)
        return expert

    def _area_of_interest(self, ctx, landmark, expert):
        width = ctx.window_size + expert.width - 1
        height = ctx.window_size + expert.height - 1
        x, y = ctx.landmarks[landmark]
        return extract_area_of_interest(ctx.image, ctx.a1, ctx.b1, float(x), float(y), width, height)

    def _evaluate(self, ctx, landmark):
        """
        Evaluate one unit of work.

        Returns:
            List of (landmark, response map) pairs; two pairs for a joint
            mirrored evaluation
        """
        family = self.bank.family

        if family is ExpertFamily.CEN:
            return self._evaluate_cen(ctx, landmark)

        expert = self._required_expert(ctx.scale, ctx.view_idx, landmark)
        area_of_interest = self._area_of_interest(ctx, landmark, expert)

        if family is ExpertFamily.CCNF:
            return [(landmark, expert.response(area_of_interest, ctx.sigmas[landmark]))]
        return [(landmark, expert.response(area_of_interest))]

    def _evaluate_cen(self, ctx, landmark):
        bank = self.bank
        mirror = bank.mirror
        expert = bank.expert(ctx.scale, ctx.view_idx, landmark)

        if ctx.view_idx == 0:
            # Frontal view: mirror targets were filtered out, so the expert is trained
            if expert.is_empty:
                raise MissingExpertError(ctx.scale, ctx.view_idx, landmark)
            area_of_interest = self._area_of_interest(ctx, landmark, expert)

            partner = mirror.landmark_mirror(landmark) if mirror is not None else landmark
            if partner == landmark or not bank.expert(ctx.scale, ctx.view_idx, partner).is_empty:
                return [(landmark, expert.response_sparse(area_of_interest, ctx.interp_matrix))]

            # Partner has no expert of its own: compute both from one pass
            area_of_interest_r = self._area_of_interest(ctx, partner, expert)
            response, response_r = expert.response_sparse_mirror_joint(
                area_of_interest, area_of_interest_r, ctx.interp_matrix)
            return [(landmark, response), (partner, response_r)]

        if not expert.is_empty:
            area_of_interest = self._area_of_interest(ctx, landmark, expert)
            return [(landmark, expert.response_sparse(area_of_interest, ctx.interp_matrix))]

        # Use the expert of the mirrored landmark in the mirrored view
        if mirror is None:
            raise MissingExpertError(ctx.scale, ctx.view_idx, landmark)
        mirror_expert = bank.expert(ctx.scale, mirror.view_mirror(ctx.view_idx), mirror.landmark_mirror(landmark))
        if mirror_expert.is_empty:
            raise MissingExpertError(ctx.scale, ctx.view_idx, landmark)

        area_of_interest = self._area_of_interest(ctx, landmark, mirror_expert)
        return [(landmark, mirror_expert.response_sparse_mirror(area_of_interest, ctx.interp_matrix))]
