import numpy as np
import pytest
from scipy.stats import norm, truncnorm

from model_lnm.models.lognormal_mixture import EMState, EMTrace, fit_em, lognormal_mixture_em
from model_lnm.models.lognormal_mixture.em import (
    PHI_CEILING,
    compute_W,
    em_step,
    em_trace_row,
    expected_value_truncnorm,
    mixture_loglik,
    update_phi_g,
)
from model_lnm.simulations import simulate_survival_data
from model_lnm.utils.rng_utils import set_seed


class TestEStep:

    def test_expected_value_matches_scipy(self):
        mean, sigma, y = 1.0, 2.0, 1.5
        alpha = (y - mean) / sigma
        expected = truncnorm.mean(alpha, np.inf, loc=mean, scale=sigma)
        assert expected_value_truncnorm(alpha, mean, sigma) == pytest.approx(expected)

    def test_expected_value_far_tail_is_finite(self):
        assert np.isfinite(expected_value_truncnorm(50.0, 0.0, 1.0))

    def test_W_rows_sum_to_one(self, small_data):
        X = small_data.X
        W = compute_W(small_data.y, X, np.array([0.4, 0.6]),
                      np.array([[0.0, 1.0], [3.0, -1.0]]), np.array([1.0, 1.0]))
        assert W.shape == (X.shape[0], 2)
        assert np.allclose(W.sum(axis=1), 1.0)

    def test_W_uniform_when_all_densities_vanish(self):
        X = np.ones((2, 1))
        W = compute_W(np.array([1e6, -1e6]), X, np.array([0.5, 0.5]),
                      np.zeros((2, 1)), np.array([1e-3, 1e-3]))
        assert np.allclose(W, 0.5)


class TestMStep:

    def test_phi_safety_valve(self):
        # residuos nulos => quant == 0 => phi se re-muestrea de la previa
        n = 10
        X = np.ones((n, 1))
        z = np.full(n, 2.0)
        phi = update_phi_g(np.ones(n), np.array([], dtype=int), X, z, z, 1.0,
                           np.array([2.0]), set_seed(1))
        assert 0 < phi <= PHI_CEILING
        assert np.isfinite(phi)


class TestFitEM:

    def test_trace_shape_and_layout(self, small_data):
        result = lognormal_mixture_em(15, 2, small_data.t, small_data.delta, small_data.X, 3)
        assert isinstance(result, EMTrace)
        assert result.trace.shape == (15, 2 * (2 + 2))
        assert np.isfinite(result.loglik)
        # columnas (eta_g, beta_g, phi_g): precisiones positivas
        assert np.all(result.trace[:, [3, 7]] > 0)

    def test_internal_state(self, small_data):
        state = fit_em(10, 2, small_data.t, small_data.delta, small_data.X, set_seed(5),
                       internal=True)
        assert isinstance(state, EMState)
        n = small_data.X.shape[0]
        assert state.W.shape == (n, 2)
        assert state.z.shape == (n,)
        assert np.all(state.z[small_data.delta == 1] == small_data.y[small_data.delta == 1])
        assert np.allclose(state.W.sum(axis=1), 1.0)

    def test_last_trace_row_is_final_state(self, small_data):
        state = fit_em(8, 2, small_data.t, small_data.delta, small_data.X, set_seed(9),
                       internal=True)
        trace = fit_em(8, 2, small_data.t, small_data.delta, small_data.X, set_seed(9))
        assert np.allclose(trace.trace[-1], em_trace_row(state.eta, state.beta, state.phi))
        assert trace.loglik == pytest.approx(state.loglik)

    def test_deterministic(self, small_data):
        a = lognormal_mixture_em(10, 2, small_data.t, small_data.delta, small_data.X, 21)
        b = lognormal_mixture_em(10, 2, small_data.t, small_data.delta, small_data.X, 21)
        assert np.array_equal(a.trace, b.trace)
        assert a.loglik == b.loglik

    def test_single_component_recovers_ols(self, single_component_data):
        d = single_component_data
        result = lognormal_mixture_em(20, 1, d.t, d.delta, d.X, 1)
        ols = np.linalg.lstsq(d.X, d.y, rcond=None)[0]
        eta, beta = result.trace[-1, 0], result.trace[-1, 1:3]
        assert eta == pytest.approx(1.0)
        assert np.allclose(beta, ols, atol=1e-6)

    def test_better_initial_values_logs(self, small_data, caplog):
        with caplog.at_level("INFO", logger="model_lnm"):
            lognormal_mixture_em(5, 2, small_data.t, small_data.delta, small_data.X, 2,
                                 better_initial_values=True, N_em=2, Niter_em=3,
                                 show_output=True)
        assert "Initial LogLik" in caplog.text
        assert "Starting EM with better initial values" in caplog.text

    def test_restarts_require_counts(self, small_data):
        with pytest.raises(ValueError):
            lognormal_mixture_em(5, 2, small_data.t, small_data.delta, small_data.X, 2,
                                 better_initial_values=True, N_em=0, Niter_em=3)


class TestObservedLoglik:

    def test_matches_direct_computation(self):
        X = np.column_stack([np.ones(3), [0.0, 1.0, -1.0]])
        y = np.array([0.2, 1.5, -0.7])
        delta = np.array([1, 0, 1])
        eta = np.array([0.3, 0.7])
        beta = np.array([[0.0, 1.0], [1.0, 0.0]])
        phi = np.array([1.0, 4.0])
        sd = 1.0 / np.sqrt(phi)
        means = X @ beta.T

        expected = 0.0
        for i in range(3):
            f = norm.pdf(y[i], means[i], sd) if delta[i] == 1 else norm.sf(y[i], means[i], sd)
            expected += np.log(np.sum(eta * f))

        assert mixture_loglik(eta, beta, phi, y, X, delta) == pytest.approx(expected)

    @pytest.mark.parametrize("beta_start", [
        [[0.5, 0.5], [3.0, 0.0]],
        [[-1.0, 0.0], [2.0, 0.0]],
        [[1.0, 2.0], [5.0, -2.0]],
    ])
    def test_em_never_decreases_without_censoring(self, beta_start):
        d = simulate_survival_data(300, [0.5, 0.5], [[0.0, 1.0], [4.0, -1.0]], [4.0, 4.0],
                                   censoring_rate=0.0, seed=3)
        eta = np.array([0.5, 0.5])
        beta = np.array(beta_start, dtype=float)
        phi = np.ones(2)
        W = compute_W(d.y, d.X, eta, beta, 1.0 / np.sqrt(phi))
        no_censored = np.array([], dtype=int)
        rng = set_seed(0)

        logliks = [mixture_loglik(eta, beta, phi, d.y, d.X, d.delta)]
        for _ in range(40):
            W = em_step(eta, beta, phi, W, d.X, d.y, no_censored, rng)
            logliks.append(mixture_loglik(eta, beta, phi, d.y, d.X, d.delta))

        assert np.all(np.diff(logliks) >= -1e-8)
        # ambas componentes siguen presentes
        assert np.all(eta > 0.3)
        assert np.all(phi < 100.0)
