import cv2
import numpy as np

from pypatchexperts.cli import main
from pypatchexperts.core.matrix_io import write_mat


def test_reports_bank(factory, bank_writer, capsys):
    path = bank_writer.svr([[factory.svr(), factory.svr()]], reference_scale=0.25)
    assert main(["--svr", str(path)]) == 0

    out = capsys.readouterr().out
    assert "Family: SVR  scales: 1" in out
    assert "1 views, 2 landmarks, 2 trained experts" in out


def test_relative_paths_use_model_dir(factory, bank_writer, tmp_path, monkeypatch, capsys):
    path = bank_writer.svr([[factory.svr()]])
    monkeypatch.setenv("PYPATCHEXPERTS_MODEL_DIR", str(tmp_path))
    assert main(["--svr", path.name, "--pose", "0", "0", "0"]) == 0
    assert "scale 0 view 0" in capsys.readouterr().out


def test_missing_model_exits_with_error(tmp_path, caplog):
    assert main(["--cen", str(tmp_path / "missing.dat")]) == 1
    assert "Can't find/open the CEN patch experts file" in caplog.text


def test_requires_a_family(capsys):
    assert main([]) == 2
    assert "at least one of" in capsys.readouterr().err


def test_image_responses(factory, bank_writer, tmp_path, image, capsys):
    path = bank_writer.svr([[factory.svr(), factory.svr(), factory.svr()]])

    pdm_path = tmp_path / "pdm.txt"
    with open(pdm_path, "w") as f:
        write_mat(f, np.array([-20.0, 20.0, 0.0, -10.0, -10.0, 15.0, 0.0, 0.0, 0.0]).reshape(-1, 1))
        write_mat(f, np.zeros((9, 1)))
        write_mat(f, np.ones((1, 1)))

    image_path = tmp_path / "face.png"
    cv2.imwrite(str(image_path), image.astype(np.uint8))

    args = ["--svr", str(path), "--pdm", str(pdm_path), "--image", str(image_path),
            "--params", "1", "0", "0", "0", "60", "60"]
    assert main(args) == 0
    assert "Responses: 3 of 3 landmarks computed" in capsys.readouterr().out
