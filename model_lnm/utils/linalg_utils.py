import numpy as np

# Umbrales de regularización para sistemas mal condicionados
DET_FLOOR = 1e-10
JITTER = 1e-8


def make_symmetric(A: np.ndarray) -> np.ndarray:
    """Simetriza una matriz cuadrada: 0.5 * (A + Aᵗ)"""
    return 0.5 * (A + A.T)


def regularize(S: np.ndarray) -> np.ndarray:
    """
    Simetriza ``S`` y le suma JITTER·I cuando su determinante es menor que
    DET_FLOOR (matriz casi singular).
    """
    S = make_symmetric(S)
    if np.linalg.det(S) < DET_FLOOR:
        S = S + JITTER * np.eye(S.shape[0])
    return S


def repl(x: float, times: int) -> np.ndarray:
    """Vector con ``x`` repetido ``times`` veces"""
    return np.full(times, float(x))
