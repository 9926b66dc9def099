"""
Validación de entradas antes de lanzar cualquier cadena.

Las funciones numéricas del muestreador no validan nada: asumen datos
consistentes. Aquí se detectan los errores de configuración y se lanza
``ValueError`` con un mensaje claro.
"""

import numpy as np


def validate_data(t, delta, X):
    """
    Valida y convierte los datos de supervivencia.

    Returns
    -------
    tuple
        (t, delta, X) como arreglos float, int y float 2D.
    """
    t = np.asarray(t, dtype=float)
    delta = np.asarray(delta)
    X = np.asarray(X, dtype=float)

    if X.ndim == 1:
        X = X.reshape(-1, 1)
    if X.ndim != 2:
        raise ValueError(f"X debe ser una matriz 2D, no {X.ndim}D")
    if t.ndim != 1 or delta.ndim != 1:
        raise ValueError("t y delta deben ser vectores 1D")

    n = X.shape[0]
    if n == 0:
        raise ValueError("No hay observaciones")
    if t.shape[0] != n or delta.shape[0] != n:
        raise ValueError(
            f"Shapes incompatibles: X {X.shape}, t {t.shape}, delta {delta.shape}"
        )
    if not np.all(np.isfinite(t)) or np.any(t <= 0):
        raise ValueError("Todos los tiempos t deben ser finitos y positivos")
    if not np.all(np.isfinite(X)):
        raise ValueError("X contiene valores no finitos")
    if not np.all(np.isin(delta, (0, 1))):
        raise ValueError("delta solo puede tomar los valores 0 (censurado) y 1 (observado)")

    return t, delta.astype(int), X


def validate_em_settings(Niter, G, better_initial_values, N_em, Niter_em):
    if int(Niter) < 1:
        raise ValueError(f"Niter debe ser >= 1, no {Niter}")
    if int(G) < 1:
        raise ValueError(f"G debe ser >= 1, no {G}")
    if better_initial_values and (int(N_em) < 1 or int(Niter_em) < 1):
        raise ValueError(
            "better_initial_values requiere N_em >= 1 y Niter_em >= 1 "
            f"(recibido N_em={N_em}, Niter_em={Niter_em})"
        )


def validate_seeds(starting_seed, n_chains):
    """Comprueba que haya una semilla entera no negativa por cadena."""
    if int(n_chains) < 1:
        raise ValueError(f"n_chains debe ser >= 1, no {n_chains}")

    seeds = np.atleast_1d(np.asarray(starting_seed))
    if seeds.ndim != 1 or seeds.shape[0] != int(n_chains):
        raise ValueError(
            f"Se necesitan {n_chains} semillas (una por cadena), se recibieron {seeds.size}"
        )
    if not np.all(np.mod(seeds, 1) == 0) or np.any(seeds < 0):
        raise ValueError("Las semillas deben ser enteros no negativos")

    return [int(s) for s in seeds]


def validate_gibbs_settings(Niter, G, em_iter, better_initial_values, N_em, Niter_em):
    if int(Niter) < 1:
        raise ValueError(f"Niter debe ser >= 1, no {Niter}")
    if int(G) < 1:
        raise ValueError(f"G debe ser >= 1, no {G}")
    if int(em_iter) < 0:
        raise ValueError(f"em_iter no puede ser negativo: {em_iter}")
    if int(em_iter) > 0:
        validate_em_settings(em_iter, G, better_initial_values, N_em, Niter_em)
