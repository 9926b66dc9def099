import numpy as np
import pytest

from model_lnm.simulations import simulate_survival_data


@pytest.fixture
def rng():
    return np.random.Generator(np.random.MT19937(123))


@pytest.fixture(scope="session")
def two_component_data():
    """Dos componentes bien separadas, 20% de censura"""
    return simulate_survival_data(
        n=500,
        eta=[0.3, 0.7],
        beta=[[0.0, 0.5], [5.0, -0.5]],
        phi=[4.0, 4.0],
        censoring_rate=0.2,
        seed=2024,
    )


@pytest.fixture(scope="session")
def single_component_data():
    """Una componente, sin censura (regresión lineal sobre log t)"""
    return simulate_survival_data(
        n=200,
        eta=[1.0],
        beta=[[1.0, 2.0]],
        phi=[4.0],
        censoring_rate=0.0,
        seed=7,
    )


@pytest.fixture
def small_data():
    return simulate_survival_data(
        n=60,
        eta=[0.5, 0.5],
        beta=[[0.0, 1.0], [3.0, -1.0]],
        phi=[2.0, 2.0],
        censoring_rate=0.25,
        seed=11,
    )
