import numpy as np
import pytest

from pypatchexperts import ExpertFamily, ModelLoadError, PatchExperts


@pytest.fixture
def cen_paths(factory, bank_writer):
    centers = [(0.0, 0.0, 0.0), (0.0, 30.0, 0.0), (0.0, -30.0, 0.0)]
    experts = [[factory.cen(), factory.empty_cen(), factory.cen()] for _ in centers]
    return [bank_writer.cen(experts, [1, 0, 2], [0, 2, 1], centers_deg=centers, reference_scale=s)
            for s in (0.25, 0.35)]


def test_load_and_inspect(cen_paths):
    experts = PatchExperts.load(cen_paths=cen_paths, n_jobs=2)
    assert experts.family is ExpertFamily.CEN
    assert experts.n_scales == 2

    info = experts.get_info()
    assert info['family'] == "CEN"
    assert info['n_jobs'] == 2
    assert [s['n_views'] for s in info['scales']] == [3, 3]
    assert info['scales'][0]['trained_experts'] == 6
    assert info['scales'][0]['view_centers_deg'][1] == [0.0, 30.0, 0.0]


def test_select_view(cen_paths):
    experts = PatchExperts.load(cen_paths=cen_paths)
    assert experts.select_view([1.0, 0.0, np.radians(-28.0), 0.0, 0.0, 0.0], 1) == 2


def test_response_through_facade(cen_paths, triangle_pdm, frontal_params, image):
    experts = PatchExperts.load(cen_paths=cen_paths)
    responses, _, sim_img_to_ref = experts.response(image, triangle_pdm, frontal_params, np.zeros(1), 11, 1)

    assert all(r.shape == (11, 11) for r in responses)
    np.testing.assert_allclose(sim_img_to_ref, 0.35 * np.eye(2), atol=1e-5)


def test_scale_out_of_range(cen_paths, triangle_pdm, frontal_params, image):
    experts = PatchExperts.load(cen_paths=cen_paths)
    with pytest.raises(ValueError):
        experts.response(image, triangle_pdm, frontal_params, np.zeros(1), 11, 2)


def test_save_and_reload(cen_paths, tmp_path):
    experts = PatchExperts.load(cen_paths=cen_paths)
    written = experts.save(tmp_path / "out")
    assert [p.name for p in written['paths']] == ["cen_patches_0.dat", "cen_patches_1.dat"]

    reloaded = PatchExperts.load(cen_paths=written['paths'])
    assert reloaded.get_info()['scales'] == experts.get_info()['scales']


def test_load_failure_surfaces_before_response(tmp_path):
    with pytest.raises(ModelLoadError):
        PatchExperts.load(svr_paths=[tmp_path / "svr_patches_0.25_general.txt"])
