import math
from typing import Tuple

import numpy as np

from .utils import NonConvergenceError

_EPS = 1e-8


def eigen_decomposition(C: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Decompose a covariance matrix into its eigenbasis.

    Args:
        C (np.ndarray): Symmetric ``(n, n)`` covariance matrix.

    Returns:
        tuple: ``(C_sym, B, D)`` where ``C_sym = B diag(D**2) B^T`` is the
        symmetrised matrix rebuilt from the decomposition, ``B`` holds the
        orthonormal eigenvectors as columns and ``D`` the square roots of the
        eigenvalues in ascending order.

    Raises:
        NonConvergenceError: When ``C`` is not finite or ``numpy.linalg.eigh``
            fails to converge.
    """
    if not np.all(np.isfinite(C)):
        raise NonConvergenceError("Covariance matrix contains non-finite entries.")
    C = (C + C.T) / 2
    try:
        D2, B = np.linalg.eigh(C)
    except np.linalg.LinAlgError as e:
        raise NonConvergenceError(f"Eigendecomposition did not converge: {e}") from e
    if not (np.all(np.isfinite(D2)) and np.all(np.isfinite(B))):
        raise NonConvergenceError("Eigendecomposition produced non-finite values.")

    D = np.sqrt(np.where(D2 < 0, _EPS, D2))
    C = np.dot(np.dot(B, np.diag(D**2)), B.T)
    return C, B, D


def inverse_sqrt(B: np.ndarray, D: np.ndarray) -> np.ndarray:
    """C^(-1/2) = B D^(-1) B^T"""
    return np.dot(np.dot(B, np.diag(1 / D)), B.T)


def expected_norm(n: int) -> float:
    # E||N(0, I_n)||
    return math.sqrt(n) * (1.0 - (1.0 / (4.0 * n)) + 1.0 / (21.0 * (n**2)))


def lazy_gap(c1: float, cmu: float, n: int) -> int:
    """Number of generations the cached eigenbasis may lag behind C."""
    return max(1, int(math.floor(1.0 / ((c1 + cmu) * n * 10))))
