import logging
from pathlib import Path

import numpy as np
import pytest

from pypatchexperts import config
from pypatchexperts.core.bank import ExpertBank, ExpertFamily
from pypatchexperts.core.response_engine import ResponseEngine


def test_n_jobs_defaults_to_one(monkeypatch):
    monkeypatch.delenv(config.ENV_N_JOBS, raising=False)
    assert config.get_default_n_jobs() == 1


def test_n_jobs_from_environment(monkeypatch):
    monkeypatch.setenv(config.ENV_N_JOBS, "3")
    assert ResponseEngine(ExpertBank(ExpertFamily.SVR, [])).n_jobs == 3

    monkeypatch.setenv(config.ENV_N_JOBS, "0")
    assert config.get_default_n_jobs() == 1


def test_n_jobs_must_be_integer(monkeypatch):
    monkeypatch.setenv(config.ENV_N_JOBS, "many")
    with pytest.raises(ValueError):
        config.get_default_n_jobs()


def test_model_paths_resolve_against_model_dir(monkeypatch, tmp_path):
    monkeypatch.setenv(config.ENV_MODEL_DIR, str(tmp_path))
    assert config.resolve_model_path("cen_patches_0.25_of.dat") == tmp_path / "cen_patches_0.25_of.dat"
    assert config.resolve_model_path("/abs/model.dat") == Path("/abs/model.dat")

    monkeypatch.delenv(config.ENV_MODEL_DIR)
    assert config.get_model_dir() == Path.cwd()


def test_type_tables_agree():
    for code, dtype in config.CV_TYPE_DTYPES.items():
        assert config.DTYPE_CV_TYPES[np.dtype(dtype).name] == code


def test_configure_logging_sets_level(monkeypatch):
    captured = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))
    config.configure_logging(logging.DEBUG)
    assert captured["level"] == logging.DEBUG
