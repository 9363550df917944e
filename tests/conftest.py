from pathlib import Path

import numpy as np
import pytest

from pypatchexperts.core.bank import SigmaGroup
from pypatchexperts.core.ccnf_patch_expert import CCNFNeuron, CCNFPatchExpert
from pypatchexperts.core.cen_patch_expert import CENPatchExpert
from pypatchexperts.core.pdm import PDM
from pypatchexperts.core.svr_patch_expert import MultiSVRPatchExpert, SVRPatchExpert
from pypatchexperts.models.openface_writer import (write_ccnf_patch_experts, write_cen_patch_experts,
                                                   write_svr_patch_experts)

SUPPORT = 11
WINDOW = 11


class ExpertFactory:
    """Builds small, deterministic patch experts of every family."""

    def __init__(self, seed=0):
        self.rng = np.random.default_rng(seed)

    def svr(self, size=SUPPORT, patch_type=0, n_modalities=1):
        expert = MultiSVRPatchExpert()
        expert.width = expert.height = size
        for index in range(n_modalities):
            modality = SVRPatchExpert()
            modality.type = patch_type if index == 0 else 1 - patch_type
            modality.confidence = 0.8
            modality.scaling = 2.0
            modality.bias = -0.5
            modality.weights = self.rng.standard_normal((size, size)).astype(np.float32)
            expert.modalities.append(modality)
        expert.confidence = 0.8
        return expert

    def empty_svr(self, size=SUPPORT):
        expert = MultiSVRPatchExpert()
        expert.width = expert.height = size
        return expert

    def ccnf(self, size=SUPPORT, n_neurons=2, n_betas=1):
        expert = CCNFPatchExpert()
        expert.width = expert.height = size
        for index in range(n_neurons):
            neuron = CCNFNeuron()
            neuron.neuron_type = 0 if index % 2 == 0 else 3
            neuron.norm_weights = 1.5
            neuron.bias = 0.1
            neuron.alpha = 0.5 + index
            neuron.weights = self.rng.standard_normal((size, size)).astype(np.float32)
            expert.neurons.append(neuron)
        expert.betas = np.full(n_betas, 0.2)
        expert.confidence = 0.9
        return expert

    def empty_ccnf(self, size=SUPPORT):
        expert = CCNFPatchExpert()
        expert.width = expert.height = size
        return expert

    def cen(self, size=SUPPORT, hidden=4):
        n_in = size * size
        return CENPatchExpert.from_layers(size, size, [
            (0, self.rng.standard_normal((n_in, hidden)) * 0.1, self.rng.standard_normal(hidden) * 0.1),
            (0, self.rng.standard_normal((hidden, 1)), np.zeros(1)),
        ], confidence=0.7)

    def empty_cen(self, size=SUPPORT):
        return CENPatchExpert.from_layers(size, size, [], confidence=0.0)


def sigma_groups(window_sizes=(WINDOW,)):
    """One identity-like component per window size."""
    return [SigmaGroup(ws, [0.5 * np.eye(ws * ws, dtype=np.float32)]) for ws in window_sizes]


def make_pdm(points, n_modes=1):
    """PDM whose mean shape is the given (n, 3) points and whose modes are zero."""
    points = np.asarray(points, dtype=np.float64)
    mean_shape = points.T.reshape(-1, 1)
    princ_comp = np.zeros((mean_shape.shape[0], n_modes))
    return PDM(mean_shape, princ_comp, np.ones(n_modes))


class BankWriter:
    """Writes one-scale model files into a directory through the package writers."""

    def __init__(self, directory: Path):
        self.directory = directory
        self._count = 0

    def _path(self, stem, suffix):
        self._count += 1
        return self.directory / f"{stem}_{self._count}{suffix}"

    @staticmethod
    def _defaults(experts, centers_deg, visibilities):
        if centers_deg is None:
            centers_deg = [(0.0, 0.0, 0.0)] * len(experts)
        if visibilities is None:
            visibilities = [np.ones(len(view), dtype=np.int32) for view in experts]
        return centers_deg, visibilities

    def svr(self, experts, centers_deg=None, visibilities=None, reference_scale=1.0):
        centers_deg, visibilities = self._defaults(experts, centers_deg, visibilities)
        path = self._path("svr_patches", ".txt")
        write_svr_patch_experts(path, reference_scale, centers_deg, visibilities, experts)
        return path

    def ccnf(self, experts, centers_deg=None, visibilities=None, reference_scale=1.0, groups=None):
        centers_deg, visibilities = self._defaults(experts, centers_deg, visibilities)
        path = self._path("ccnf_patches", ".dat")
        write_ccnf_patch_experts(path, reference_scale, centers_deg, visibilities, experts,
                                 sigma_groups() if groups is None else groups)
        return path

    def cen(self, experts, mirror_landmarks, mirror_views, centers_deg=None, visibilities=None,
            reference_scale=1.0):
        centers_deg, visibilities = self._defaults(experts, centers_deg, visibilities)
        path = self._path("cen_patches", ".dat")
        write_cen_patch_experts(path, reference_scale, centers_deg, visibilities, experts,
                                mirror_landmarks, mirror_views)
        return path


@pytest.fixture
def factory():
    return ExpertFactory(seed=0)


@pytest.fixture
def bank_writer(tmp_path):
    return BankWriter(tmp_path)


@pytest.fixture
def image():
    """Blocky random texture; float32 grayscale, 120x120."""
    rng = np.random.default_rng(42)
    noise = rng.uniform(1.0, 255.0, size=(30, 30)).astype(np.float32)
    return np.ascontiguousarray(np.kron(noise, np.ones((4, 4), dtype=np.float32)))


@pytest.fixture
def triangle_pdm():
    return make_pdm([(-20.0, -10.0, 0.0), (20.0, -10.0, 0.0), (0.0, 15.0, 0.0)])


@pytest.fixture
def pair_pdm():
    return make_pdm([(-15.0, 0.0, 0.0), (15.0, 0.0, 0.0)])


@pytest.fixture
def frontal_params():
    return np.array([1.0, 0.0, 0.0, 0.0, 60.0, 60.0])


@pytest.fixture
def pdm_from_points():
    return make_pdm


@pytest.fixture
def groups_for():
    return sigma_groups
