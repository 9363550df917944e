"""
Configuration for pypatchexperts.

Module-level constants shared by the loaders, the patch experts and the
response engine, plus the environment overrides used by entry points.
"""
import logging
import os
from pathlib import Path

VERSION = "0.1.0"

# Support region (in reference-frame pixels) assumed when the CEN interpolation
# matrix is precomputed for a call
CEN_SUPPORT_REGION = 11

# CCNF neurons with alpha at or below this contribute nothing worth computing
CCNF_ALPHA_THRESHOLD = 1e-4

# OpenCV matrix type codes used by the OpenFace model files
CV_TYPE_DTYPES = {
    0: "<u1",   # CV_8UC1
    1: "<i1",   # CV_8SC1
    2: "<u2",   # CV_16UC1
    3: "<i2",   # CV_16SC1
    4: "<i4",   # CV_32SC1
    5: "<f4",   # CV_32FC1
    6: "<f8",   # CV_64FC1
}
DTYPE_CV_TYPES = {
    "uint8": 0,
    "int8": 1,
    "uint16": 2,
    "int16": 3,
    "int32": 4,
    "float32": 5,
    "float64": 6,
}

ENV_N_JOBS = "PYPATCHEXPERTS_N_JOBS"
ENV_MODEL_DIR = "PYPATCHEXPERTS_MODEL_DIR"


def get_default_n_jobs():
    """
    Number of worker threads used for per-landmark response computation.

    Returns:
        int: value of PYPATCHEXPERTS_N_JOBS, or 1 when unset
    """
    value = os.environ.get(ENV_N_JOBS)
    if not value:
        return 1
    try:
        n_jobs = int(value)
    except ValueError:
        raise ValueError(f"{ENV_N_JOBS} must be an integer, got {value!r}")
    return max(1, n_jobs)


def get_model_dir():
    """
    Directory against which relative model paths are resolved by the CLI.

    Returns:
        Path: PYPATCHEXPERTS_MODEL_DIR if set, otherwise the working directory
    """
    value = os.environ.get(ENV_MODEL_DIR)
    if value:
        return Path(value).expanduser()
    return Path.cwd()


def resolve_model_path(path):
    """Resolve a model file path relative to the configured model directory."""
    path = Path(path).expanduser()
    if path.is_absolute():
        return path
    return get_model_dir() / path


def configure_logging(level=logging.INFO):
    """Configure root logging for command line use (library code never calls this)."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
