import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np
from numpy.linalg import det
from scipy.stats import norm

from model_lnm.models.lognormal_mixture.em import fit_em
from model_lnm.models.lognormal_mixture.latent import (
    augment,
    avoid_group_with_zero_allocation,
    groups_table,
    sample_groups,
    sample_groups_from_W,
    sample_groups_start,
)
from model_lnm.utils.linalg_utils import make_symmetric, regularize, repl
from model_lnm.utils.rng_utils import rdirichlet, rgamma_, rmvnorm, runif_0_1, set_seed
from model_lnm.utils.validation import validate_data, validate_gibbs_settings

logger = logging.getLogger(__name__)

# Concentración añadida a n_groups en la posterior Dirichlet de eta.
# TODO: confirmar con los autores del modelo la diferencia entre ambos caminos
ETA_PRIOR_CONJUGATE = 150.0
ETA_PRIOR_ADAPTIVE = 1.5

# Previas: phi ~ Gamma(0.01, 0.01), beta ~ N(0, 1000 I)
PHI_PRIOR_SHAPE = 0.01
PHI_PRIOR_RATE = 0.01
BETA_PRIOR_VAR = 1000.0

# Robbins–Monro
TARGET_ACCEPTANCE = 0.44
ADAPT_EXPONENT = 0.55


class SamplingCancelled(RuntimeError):
    """La cadena fue cancelada externamente entre iteraciones"""


@dataclass
class AdaptiveProposal:
    """Escalas de propuesta y tasas de adaptación por grupo (camino adaptativo)"""
    G: int
    proposal_var_phi: np.ndarray = field(init=False)
    adapt_rate_phi: np.ndarray = field(init=False)
    proposal_var_beta: np.ndarray = field(init=False)
    adapt_rate_beta: np.ndarray = field(init=False)

    def __post_init__(self):
        self.proposal_var_phi = np.ones(self.G)
        self.adapt_rate_phi = np.ones(self.G)
        self.proposal_var_beta = np.ones(self.G)
        self.adapt_rate_beta = np.ones(self.G)


def robbins_monro(proposal_var, accepted, t):
    """
    Paso de adaptación hacia una aceptación de 0.44.

    Returns
    -------
    tuple
        (nueva escala de propuesta, tasa de adaptación usada)
    """
    adapt_rate = 1.0 / (t + 1.0) ** ADAPT_EXPONENT
    new_var = math.exp(math.log(proposal_var) + adapt_rate * (float(accepted) - TARGET_ACCEPTANCE))
    return new_var, adapt_rate


# ============================================================================
# CAMINO CONJUGADO (con data augmentation)
# ============================================================================

def update_phi_g_gibbs(n_g, linear_comb, rng):
    """phi_g | resto ~ Gamma(n_g/2 + 0.01, ||y_g - X_g beta_g||²/2 + 0.01)"""
    return rgamma_(n_g / 2.0 + PHI_PRIOR_SHAPE,
                   0.5 * float(linear_comb @ linear_comb) + PHI_PRIOR_RATE, rng)


def update_beta_g_gibbs(phi_g, Xg, yg, rng):
    """
    beta_g | resto ~ N(m_g, S_g) con S_g⁻¹ = phi_g X_gᵗX_g + I/1000 y
    m_g = phi_g S_g X_gᵗ y_g.

    Devuelve None cuando la matriz de precisión es singular.
    """
    p = Xg.shape[1]
    comb = phi_g * Xg.T @ Xg + np.diag(repl(1.0 / BETA_PRIOR_VAR, p))

    if det(comb) == 0:
        return None

    Sg = make_symmetric(np.linalg.solve(regularize(comb), np.eye(p)))
    mg = phi_g * (Sg @ Xg.T @ yg)
    return rmvnorm(mg, Sg, rng)


def update_gibbs_parameters(G, X, y_aug, n_groups, groups, eta, beta, phi, rng):
    """
    Actualiza eta, phi y beta con sus posteriores condicionales conjugadas.
    ``eta``, ``beta`` y ``phi`` se modifican in place.
    """
    eta[:] = rdirichlet(n_groups + ETA_PRIOR_CONJUGATE, rng)

    for g in range(G):
        indexg = groups == g
        Xg = X[indexg]
        yg = y_aug[indexg]
        linear_comb = yg - Xg @ beta[g]

        phi[g] = update_phi_g_gibbs(n_groups[g], linear_comb, rng)

        beta_g = update_beta_g_gibbs(phi[g], Xg, yg, rng)
        if beta_g is None:
            logger.debug("Precisión singular en el grupo %d, beta no se actualiza", g)
        else:
            beta[g] = beta_g


# ============================================================================
# CAMINO ADAPTATIVO (verosimilitud censurada, sin augmentation)
# ============================================================================

def _loglik_terms(phi, linear_comb, delta):
    """
    Contribución de cada observación: densidad si fue observada y
    log S(sqrt(phi) r) si fue censurada.
    """
    observed = 0.5 * np.log(phi) - 0.5 * phi * np.square(linear_comb)
    censored = norm.logsf(np.sqrt(phi) * linear_comb)
    return float(np.sum(np.where(delta == 1, observed, censored)))


def update_phi_g_adaptive(phi_actual, linear_comb, delta, proposal_var, t, rng):
    """
    Metropolis-Hastings de paseo aleatorio sobre psi = log(phi).

    Las propuestas cuyo exp(psi) se desborda o se redondea a 0 se rechazan,
    de modo que phi se mantiene finito y estrictamente positivo.

    Returns
    -------
    tuple
        (phi, proposal_var, adapt_rate)
    """
    psi_actual = math.log(phi_actual)
    psi_prop = float(rng.normal(psi_actual, proposal_var))
    with np.errstate(over="ignore"):
        phi_prop = float(np.exp(psi_prop))

    if not np.isfinite(phi_prop) or phi_prop <= 0.0:
        proposal_var, adapt_rate = robbins_monro(proposal_var, False, t)
        return phi_actual, proposal_var, adapt_rate

    log_post_actual = (PHI_PRIOR_SHAPE - 1) * psi_actual - PHI_PRIOR_RATE * phi_actual
    log_post_prop = (PHI_PRIOR_SHAPE - 1) * psi_prop - PHI_PRIOR_RATE * phi_prop
    log_post_actual += _loglik_terms(phi_actual, linear_comb, delta)
    log_post_prop += _loglik_terms(phi_prop, linear_comb, delta)

    # jacobiano de la transformación log
    log_alpha = log_post_prop - log_post_actual + psi_prop - psi_actual

    accepted = np.log(runif_0_1(rng)) < log_alpha
    decision = phi_prop if accepted else phi_actual

    proposal_var, adapt_rate = robbins_monro(proposal_var, accepted, t)
    return decision, proposal_var, adapt_rate


def update_beta_g_adaptive(beta_actual, phi, Xg, yg, delta, proposal_var, t,
                           linear_actual, rng):
    """
    Metropolis-Hastings de paseo aleatorio sobre beta_g con propuesta
    N(beta_g, proposal_var·I) y previa N(0, 1000 I).

    Returns
    -------
    tuple
        (beta_g, proposal_var, adapt_rate)
    """
    p = beta_actual.shape[0]
    beta_prop = rmvnorm(beta_actual, np.diag(repl(proposal_var, p)), rng)
    linear_prop = yg - Xg @ beta_prop

    log_post_actual = -0.5 * float(beta_actual @ beta_actual) / BETA_PRIOR_VAR
    log_post_prop = -0.5 * float(beta_prop @ beta_prop) / BETA_PRIOR_VAR
    log_post_actual += _loglik_terms(phi, linear_actual, delta)
    log_post_prop += _loglik_terms(phi, linear_prop, delta)

    accepted = np.log(runif_0_1(rng)) < log_post_prop - log_post_actual
    decision = beta_prop if accepted else beta_actual

    proposal_var, adapt_rate = robbins_monro(proposal_var, accepted, t)
    return decision, proposal_var, adapt_rate


def update_gibbs_parameters_adaptive(G, X, y, n_groups, groups, eta, beta, phi,
                                     delta, proposal: AdaptiveProposal, t, rng):
    """
    Metropolis-within-Gibbs para phi y beta usando la verosimilitud censurada.
    ``eta``, ``beta``, ``phi`` y ``proposal`` se modifican in place.
    """
    eta[:] = rdirichlet(n_groups + ETA_PRIOR_ADAPTIVE, rng)

    for g in range(G):
        indexg = groups == g
        Xg = X[indexg]
        yg = y[indexg]
        deltag = delta[indexg]
        linear_comb = yg - Xg @ beta[g]

        phi[g], proposal.proposal_var_phi[g], proposal.adapt_rate_phi[g] = update_phi_g_adaptive(
            phi[g], linear_comb, deltag, proposal.proposal_var_phi[g], t, rng
        )

        beta[g], proposal.proposal_var_beta[g], proposal.adapt_rate_beta[g] = update_beta_g_adaptive(
            beta[g], phi[g], Xg, yg, deltag, proposal.proposal_var_beta[g], t, linear_comb, rng
        )


# ============================================================================
# CADENA
# ============================================================================

class LognormalMixtureGibbs:
    """
    Una cadena del muestreador de Gibbs para la mezcla de regresiones
    lognormales con censura a derecha.

    Modelo:
    log(t_i) | z_i = g ~ N(x_iᵗ beta_g, 1/phi_g), censurado a derecha si delta_i = 0
    z_i ~ Categorical(eta_1, ..., eta_G)

    Previas:
    eta ~ Dirichlet, phi_g ~ Gamma(0.01, 0.01), beta_g ~ N(0, 1000 I)

    Con ``data_augmentation`` los tiempos censurados se simulan en cada
    iteración y se usan las condicionales conjugadas; sin ella phi y beta se
    actualizan con Metropolis-Hastings adaptativo.

    La traza tiene Niter filas y, para cada grupo g, las columnas
    (beta_g, phi_g, eta_g) en ese orden.
    """

    def __init__(self, t, delta, X, G=2, starting_seed=0, em_iter=0,
                 better_initial_values=False, N_em=0, Niter_em=0,
                 data_augmentation=False, show_output=False, chain_num=1,
                 should_stop: Optional[Callable[[], bool]] = None):
        self.t, self.delta, self.X = validate_data(t, delta, X)
        self.y = np.log(self.t)
        self.n, self.p = self.X.shape
        self.G = int(G)
        self.starting_seed = int(starting_seed)
        self.em_iter = int(em_iter)
        self.better_initial_values = better_initial_values
        self.N_em = int(N_em)
        self.Niter_em = int(Niter_em)
        self.data_augmentation = data_augmentation
        self.show_output = show_output
        self.chain_num = chain_num
        self.should_stop = should_stop

        self.rng = None
        self.em_params = None
        self.proposal = AdaptiveProposal(self.G)
        self.trace = None

    def warm_start(self):
        """Corre el EM (modo interno) si em_iter > 0"""
        if self.em_iter > 0:
            self.em_params = fit_em(
                self.em_iter, self.G, self.t, self.delta, self.X, self.rng,
                better_initial_values=self.better_initial_values, N_em=self.N_em,
                Niter_em=self.Niter_em, internal=True, show_output=False,
            )
        elif self.show_output:
            logger.info("Skipping EM Algorithm")

    def initialize(self):
        """Valores de la primera iteración: último estado del EM o previas"""
        if self.em_params is not None:
            self.eta = self.em_params.eta.copy()
            self.beta = self.em_params.beta.copy()
            self.phi = self.em_params.phi.copy()
            self.groups = sample_groups_from_W(self.em_params.W)
        else:
            self.eta = rdirichlet(repl(1.0, self.G), self.rng)
            self.phi = np.zeros(self.G)
            self.beta = np.zeros((self.G, self.p))
            for g in range(self.G):
                self.phi[g] = rgamma_(0.5, 0.5, self.rng)
                self.beta[g] = rmvnorm(repl(0.0, self.p),
                                       np.diag(repl(20.0 * 20.0, self.p)), self.rng)
            self.groups = sample_groups_start(self.n, self.eta, self.rng)

        self.sd = 1.0 / np.sqrt(self.phi)
        self.n_groups = groups_table(self.G, self.groups)

    def step(self, iteration):
        """Una iteración completa del muestreador"""
        means = self.X @ self.beta.T
        self.sd = 1.0 / np.sqrt(self.phi)

        if self.data_augmentation:
            self.y_aug = augment(self.y, self.groups, self.delta, self.sd, means, self.rng)
        else:
            self.y_aug = self.y

        self.groups = sample_groups(self.G, self.y_aug, self.eta, self.sd,
                                    self.data_augmentation, means, self.delta, self.rng)
        self.n_groups = groups_table(self.G, self.groups)
        self.n_groups, self.groups = avoid_group_with_zero_allocation(
            self.n_groups, self.groups, self.G, self.n, self.rng
        )

        if self.data_augmentation:
            update_gibbs_parameters(self.G, self.X, self.y_aug, self.n_groups, self.groups,
                                    self.eta, self.beta, self.phi, self.rng)
        else:
            update_gibbs_parameters_adaptive(self.G, self.X, self.y, self.n_groups,
                                             self.groups, self.eta, self.beta, self.phi,
                                             self.delta, self.proposal, float(iteration),
                                             self.rng)

    def trace_row(self):
        return np.concatenate(
            [np.concatenate((self.beta[g], [self.phi[g]], [self.eta[g]])) for g in range(self.G)]
        )

    def run(self, Niter):
        """
        Ejecuta la cadena completa.

        Returns
        -------
        np.ndarray
            Traza (Niter, G·(p+2))
        """
        Niter = int(Niter)
        self.rng = set_seed(self.starting_seed)
        self.warm_start()
        self.initialize()

        self.trace = np.zeros((Niter, self.G * (self.p + 2)))
        step = int(math.ceil(Niter / 10.0))

        for it in range(Niter):
            if self.should_stop is not None and self.should_stop():
                raise SamplingCancelled(f"Cadena {self.chain_num} cancelada en la iteración {it}")

            self.step(it)
            self.trace[it] = self.trace_row()

            if self.show_output and (it + 1) % step == 0:
                logger.info("(Chain %d) MCMC Iter: %d/%d", self.chain_num, it + 1, Niter)

        if self.show_output:
            logger.info("Chain %d finished sampling.", self.chain_num)

        return self.trace


def lognormal_mixture_gibbs_chain(Niter, em_iter, G, t, delta, X, starting_seed,
                                  show_output=False, chain_num=1,
                                  better_initial_values=False, Niter_em=0, N_em=0,
                                  data_augmentation=False, should_stop=None):
    """Corre una sola cadena y devuelve su traza (Niter, G·(k+2))"""
    validate_gibbs_settings(Niter, G, em_iter, better_initial_values, N_em, Niter_em)
    chain = LognormalMixtureGibbs(
        t, delta, X, G=G, starting_seed=starting_seed, em_iter=em_iter,
        better_initial_values=better_initial_values, N_em=N_em, Niter_em=Niter_em,
        data_augmentation=data_augmentation, show_output=show_output,
        chain_num=chain_num, should_stop=should_stop,
    )
    return chain.run(Niter)
