"""
Matrix codecs for OpenFace model files.

Binary matrices:
    4 bytes: rows (int32)
    4 bytes: cols (int32)
    4 bytes: type (OpenCV type code)
    remaining: rows * cols elements, row-major, little-endian

Text matrices:
    rows, cols and type on their own lines, then one row of
    whitespace-separated values per line. Lines starting with '#' are comments.
"""

import struct

import numpy as np

from ..config import CV_TYPE_DTYPES, DTYPE_CV_TYPES


def _read_exact(f, n_bytes: int) -> bytes:
    data = f.read(n_bytes)
    if len(data) != n_bytes:
        raise EOFError(f"Unexpected end of file: wanted {n_bytes} bytes, got {len(data)}")
    return data


def read_int32(f) -> int:
    """Read 4-byte integer."""
    return struct.unpack('<i', _read_exact(f, 4))[0]


def read_float64(f) -> float:
    """Read 8-byte double."""
    return struct.unpack('<d', _read_exact(f, 8))[0]


def write_int32(f, value: int):
    f.write(struct.pack('<i', int(value)))


def write_float64(f, value: float):
    f.write(struct.pack('<d', float(value)))


def _dtype_for(cv_type: int) -> np.dtype:
    if cv_type not in CV_TYPE_DTYPES:
        raise ValueError(f"Unsupported OpenCV type: {cv_type}")
    return np.dtype(CV_TYPE_DTYPES[cv_type])


def _cv_type_for(mat: np.ndarray) -> int:
    name = mat.dtype.name
    if name not in DTYPE_CV_TYPES:
        raise ValueError(f"No OpenCV type code for dtype {name}")
    return DTYPE_CV_TYPES[name]


def _as_2d(mat) -> np.ndarray:
    mat = np.asarray(mat)
    if mat.ndim == 0:
        return mat.reshape(1, 1)
    if mat.ndim == 1:
        return mat.reshape(-1, 1)
    if mat.ndim != 2:
        raise ValueError(f"Only 2D matrices can be serialised, got shape {mat.shape}")
    return mat


def read_mat_bin(f) -> np.ndarray:
    """Read binary matrix in OpenFace format."""
    rows = read_int32(f)
    cols = read_int32(f)
    cv_type = read_int32(f)
    if rows < 0 or cols < 0:
        raise ValueError(f"Invalid matrix size {rows}x{cols}")

    dtype = _dtype_for(cv_type)
    n_bytes = rows * cols * dtype.itemsize
    data = np.frombuffer(_read_exact(f, n_bytes), dtype=dtype)

    # Native byte order so cv2 accepts the arrays directly
    return data.reshape(rows, cols).astype(dtype.newbyteorder('='))


def write_mat_bin(f, mat):
    mat = _as_2d(mat)
    cv_type = _cv_type_for(mat)
    write_int32(f, mat.shape[0])
    write_int32(f, mat.shape[1])
    write_int32(f, cv_type)
    f.write(np.ascontiguousarray(mat, dtype=CV_TYPE_DTYPES[cv_type]).tobytes())


class TextModelReader:
    """Whitespace token reader over a text model file that skips '#' comment lines."""

    def __init__(self, f):
        self._f = f
        self._tokens = []

    def _fill(self):
        while not self._tokens:
            line = self._f.readline()
            if not line:
                raise EOFError("Unexpected end of text model file")
            stripped = line.strip()
            if not stripped or stripped.startswith('#'):
                continue
            self._tokens = stripped.split()
            # Consume left to right
            self._tokens.reverse()

    def next_token(self) -> str:
        self._fill()
        return self._tokens.pop()

    def read_int(self) -> int:
        token = self.next_token()
        try:
            return int(token)
        except ValueError:
            # Some writers emit integral values as "5.0"
            value = float(token)
            if not value.is_integer():
                raise ValueError(f"Expected an integer, got {token!r}")
            return int(value)

    def read_float(self) -> float:
        return float(self.next_token())

    def read_mat(self) -> np.ndarray:
        """
        Read a matrix in OpenFace text format:
        Line 1: rows
        Line 2: cols
        Line 3: type (OpenCV type code)
        Remaining lines: data values
        """
        rows = self.read_int()
        cols = self.read_int()
        cv_type = self.read_int()
        dtype = _dtype_for(cv_type)

        values = [self.read_float() for _ in range(rows * cols)]
        return np.array(values, dtype=np.float64).reshape(rows, cols).astype(dtype.newbyteorder('='))


def write_mat(f, mat):
    """Write a matrix in OpenFace text format."""
    mat = _as_2d(mat)
    cv_type = _cv_type_for(mat)
    f.write(f"{mat.shape[0]}\n{mat.shape[1]}\n{cv_type}\n")
    integral = mat.dtype.kind in 'iu'
    for row in mat:
        if integral:
            f.write(" ".join(str(int(v)) for v in row) + "\n")
        else:
            f.write(" ".join(repr(float(v)) for v in row) + "\n")
