# tracking/linalg2x2.py
from __future__ import annotations
import numpy as np


class SingularMatrixError(ArithmeticError):
    """Raised by invert() when the determinant is exactly zero."""


def as_matrix(a) -> np.ndarray:
    return np.array(a, dtype=float).reshape(2, 2)


def as_vector(v) -> np.ndarray:
    return np.array(v, dtype=float).reshape(2,)


def add(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return as_matrix(a) + as_matrix(b)


def subtract(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return as_matrix(a) - as_matrix(b)


def multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    2x2 @ 2x2 -> 2x2, or 2x2 @ 2-vector -> 2-vector.
    """
    b = np.asarray(b, dtype=float)
    if b.shape == (2,):
        return as_matrix(a) @ b
    return as_matrix(a) @ as_matrix(b)


def transpose(a: np.ndarray) -> np.ndarray:
    return as_matrix(a).T.copy()


def identity(n: int = 2) -> np.ndarray:
    return np.eye(int(n), dtype=float)


def determinant(a: np.ndarray) -> float:
    a = as_matrix(a)
    return float(a[0, 0] * a[1, 1] - a[0, 1] * a[1, 0])


def invert(a: np.ndarray) -> np.ndarray:
    """
    Closed-form 2x2 inverse.

    Only an exactly-zero determinant counts as singular; there is no
    epsilon tolerance.
    """
    a = as_matrix(a)
    det = determinant(a)
    if det == 0.0:
        raise SingularMatrixError(f"Matrix cannot be inverted: {a.tolist()}")
    return np.array(
        [[a[1, 1] / det, -a[0, 1] / det],
         [-a[1, 0] / det, a[0, 0] / det]],
        dtype=float
    )
