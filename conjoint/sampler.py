"""
Metropolis-Hastings Posterior Sampler

Random-walk Metropolis-Hastings over the multinomial logit part-worths with
independent zero-mean Gaussian priors. Chains run for a fixed number of
iterations; acceptance rate, split R-hat and bulk ESS are reported afterwards.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import arviz as az
import numpy as np
import numpy.typing as npt
import pandas as pd
from scipy import stats

from .exceptions import EstimationError, SamplerTuningWarning
from .model import MLEResult, MultinomialLogit
from .panel import AttributeDesign, ChoicePanel

logger = logging.getLogger(__name__)

# Random-walk step sizes: brand/ad coefficients live on a unit scale, price is per dollar
PROPOSAL_SCALE = 0.05
PRICE_PROPOSAL_SCALE = 0.005

# Prior standard deviations
PRIOR_SCALE = 5.0
PRICE_PRIOR_SCALE = 1.0

# Acceptance rates outside this band trigger a SamplerTuningWarning
ACCEPTANCE_BOUNDS = (0.05, 0.95)


def default_proposal_scales(design: AttributeDesign) -> npt.NDArray[np.float64]:
    return np.array([PROPOSAL_SCALE] * (design.num_parameters - 1) + [PRICE_PROPOSAL_SCALE])


def default_prior_scales(design: AttributeDesign) -> npt.NDArray[np.float64]:
    return np.array([PRIOR_SCALE] * (design.num_parameters - 1) + [PRICE_PRIOR_SCALE])


@dataclass(frozen=True, eq=False)
class PosteriorChain:
    """
    Draws from one or more Metropolis-Hastings chains.

    Attributes:
        draws (np.ndarray): Post-decision state of every iteration, shape
            (n_chains, n_iterations, K). Burn-in rows are kept here.
        log_posterior (np.ndarray): Log-posterior of each recorded state,
            shape (n_chains, n_iterations).
        accepted (np.ndarray): Accepted proposals per chain (n_chains,).
        burn_in (int): Leading iterations per chain excluded from summaries.
        parameter_names (tuple[str, ...]): Names matching the last axis of draws.
    """

    draws: npt.NDArray[np.float64]
    log_posterior: npt.NDArray[np.float64]
    accepted: npt.NDArray[np.int64]
    burn_in: int
    parameter_names: tuple[str, ...]

    @property
    def n_chains(self) -> int:
        return int(self.draws.shape[0])

    @property
    def n_iterations(self) -> int:
        return int(self.draws.shape[1])

    @property
    def retained(self) -> npt.NDArray[np.float64]:
        """Draws after burn-in, shape (n_chains, n_iterations - burn_in, K)."""
        return self.draws[:, self.burn_in :, :]

    @property
    def samples(self) -> npt.NDArray[np.float64]:
        """Retained draws pooled across chains, shape (n_samples, K)."""
        return self.retained.reshape(-1, self.draws.shape[2])

    @property
    def acceptance_rate(self) -> float:
        return float(np.sum(self.accepted) / (self.n_chains * self.n_iterations))

    @property
    def chain_acceptance_rates(self) -> npt.NDArray[np.float64]:
        return self.accepted / self.n_iterations

    @property
    def mean(self) -> npt.NDArray[np.float64]:
        return self.samples.mean(axis=0)

    @property
    def std(self) -> npt.NDArray[np.float64]:
        return self.samples.std(axis=0, ddof=1)

    def credible_interval(
        self, prob: float = 0.95
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Equal-tailed credible interval bounds per parameter."""
        if not 0 < prob < 1:
            raise ValueError(f"prob must be in (0, 1), got {prob}")
        tail = (1 - prob) / 2
        lower, upper = np.quantile(self.samples, [tail, 1 - tail], axis=0)
        return lower, upper

    def _dataset(self) -> Any:
        return az.convert_to_dataset(
            {"beta": self.retained},
            coords={"parameter": list(self.parameter_names)},
            dims={"beta": ["parameter"]},
        )

    def rhat(self) -> npt.NDArray[np.float64]:
        """Rank-normalized split R-hat per parameter."""
        return np.asarray(az.rhat(self._dataset())["beta"].values, dtype=np.float64)

    def ess(self) -> npt.NDArray[np.float64]:
        """Bulk effective sample size per parameter."""
        return np.asarray(az.ess(self._dataset())["beta"].values, dtype=np.float64)

    def summary(self, prob: float = 0.95) -> pd.DataFrame:
        """
        Posterior table over the retained draws.

        Columns: mean, std, ci_lower, ci_upper, ess_bulk, r_hat.
        """
        lower, upper = self.credible_interval(prob)
        return pd.DataFrame(
            {
                "mean": self.mean,
                "std": self.std,
                "ci_lower": lower,
                "ci_upper": upper,
                "ess_bulk": self.ess(),
                "r_hat": self.rhat(),
            },
            index=pd.Index(self.parameter_names, name="parameter"),
        )


class MetropolisHastings:
    """
    Random-walk Metropolis-Hastings sampler for the multinomial logit posterior.

    The proposal adds independent Gaussian noise per coordinate; a candidate is
    accepted iff ``log(u) < log_posterior(candidate) - log_posterior(current)``
    with ``u ~ Uniform(0, 1)``.

    Attributes:
        panel (ChoicePanel): Data the likelihood is evaluated on.
        proposal_scales (np.ndarray): Proposal standard deviations (K,).
        prior_scales (np.ndarray): Prior standard deviations (K,).
    """

    def __init__(
        self,
        panel: ChoicePanel,
        proposal_scales: Optional[Sequence[float]] = None,
        prior_scales: Optional[Sequence[float]] = None,
    ) -> None:
        self.panel = panel
        self.model = MultinomialLogit(panel.design)
        self.K = self.model.K
        self.proposal_scales = self._check_scales(
            proposal_scales, default_proposal_scales(panel.design), "proposal_scales"
        )
        self.prior_scales = self._check_scales(
            prior_scales, default_prior_scales(panel.design), "prior_scales"
        )

    def _check_scales(
        self,
        scales: Optional[Sequence[float]],
        default: npt.NDArray[np.float64],
        name: str,
    ) -> npt.NDArray[np.float64]:
        if scales is None:
            return default
        arr = np.asarray(scales, dtype=np.float64)
        if arr.shape != (self.K,):
            raise ValueError(f"{name} must have size {self.K}, got {arr.size}")
        if not np.all(np.isfinite(arr)) or np.any(arr <= 0):
            raise ValueError(f"{name} must be finite and positive")
        return arr

    def log_prior(self, flat_beta: npt.NDArray[np.float64]) -> float:
        return float(
            np.sum(stats.norm.logpdf(flat_beta, loc=0.0, scale=self.prior_scales))
        )

    def log_posterior(self, flat_beta: npt.NDArray[np.float64]) -> float:
        """Unnormalized log-posterior: log-likelihood plus log-prior."""
        log_lik = -self.model._neg_log_likelihood(
            flat_beta, self.panel.X, self.panel.chosen
        )
        return log_lik + self.log_prior(flat_beta)

    def run_chain(
        self,
        initial: npt.NDArray[np.float64],
        n_iterations: int,
        rng: np.random.Generator,
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], int]:
        """
        Run a single chain from ``initial``.

        Returns:
            tuple: (draws (n_iterations, K), log_posterior (n_iterations,), n_accepted)

        Raises:
            EstimationError: If the starting point has a non-finite log-posterior.
        """
        current = np.array(initial, dtype=np.float64)
        current_lp = self.log_posterior(current)
        if not np.isfinite(current_lp):
            raise EstimationError(
                f"Initial state has a non-finite log-posterior ({current_lp})"
            )

        steps = rng.normal(scale=self.proposal_scales, size=(n_iterations, self.K))
        log_u = np.log(rng.uniform(size=n_iterations))

        draws = np.empty((n_iterations, self.K))
        log_post = np.empty(n_iterations)
        n_accepted = 0

        for i in range(n_iterations):
            candidate = current + steps[i]
            candidate_lp = self.log_posterior(candidate)
            if log_u[i] < candidate_lp - current_lp:
                current, current_lp = candidate, candidate_lp
                n_accepted += 1
            draws[i] = current
            log_post[i] = current_lp

        return draws, log_post, n_accepted

    def sample(
        self,
        initial: npt.NDArray[np.float64],
        n_iterations: int = 11000,
        burn_in: int = 1000,
        *,
        n_chains: int = 1,
        init_jitter: float = 0.0,
        seed: int | None = None,
        rng: np.random.Generator | None = None,
    ) -> PosteriorChain:
        """
        Draw from the posterior.

        Args:
            initial (np.ndarray): Starting parameter vector (K,).
            n_iterations (int): Iterations per chain, burn-in included.
            burn_in (int): Leading iterations per chain dropped from summaries.
            n_chains (int): Independent chains, run one after another.
            init_jitter (float): Std. dev. of Gaussian noise added to ``initial``
                for each chain's start. Zero starts every chain at ``initial``.
            seed (int | None): Random seed. Ignored if rng is provided.
            rng (np.random.Generator, optional): Parent generator; each chain
                gets its own spawned stream.

        Returns:
            PosteriorChain

        Raises:
            ValueError: If counts, burn-in or the initial vector are invalid.
        """
        if n_iterations < 1:
            raise ValueError(f"n_iterations must be >= 1, got {n_iterations}")
        # Posterior std uses ddof=1, so keep at least two draws
        if not 0 <= burn_in < n_iterations - 1:
            raise ValueError(
                f"burn_in must be in [0, {n_iterations - 1}) to retain at least "
                f"2 draws, got {burn_in}"
            )
        if n_chains < 1:
            raise ValueError(f"n_chains must be >= 1, got {n_chains}")
        if init_jitter < 0:
            raise ValueError(f"init_jitter must be >= 0, got {init_jitter}")
        start = self.model._check_params(initial, name="initial")

        rng = rng or np.random.default_rng(seed)
        chain_rngs = rng.spawn(n_chains)

        draws = np.empty((n_chains, n_iterations, self.K))
        log_post = np.empty((n_chains, n_iterations))
        accepted = np.zeros(n_chains, dtype=np.int64)

        for c, chain_rng in enumerate(chain_rngs):
            chain_start = start
            if init_jitter > 0:
                chain_start = start + chain_rng.normal(scale=init_jitter, size=self.K)
            draws[c], log_post[c], accepted[c] = self.run_chain(
                chain_start, n_iterations, chain_rng
            )
            rate = accepted[c] / n_iterations
            logger.debug("Chain %d finished: acceptance rate %.3f", c, rate)
            if not ACCEPTANCE_BOUNDS[0] <= rate <= ACCEPTANCE_BOUNDS[1]:
                warnings.warn(
                    f"Chain {c} acceptance rate {rate:.3f} is outside "
                    f"{ACCEPTANCE_BOUNDS}; consider rescaling proposal_scales.",
                    SamplerTuningWarning,
                    stacklevel=2,
                )

        return PosteriorChain(
            draws=draws,
            log_posterior=log_post,
            accepted=accepted,
            burn_in=burn_in,
            parameter_names=self.panel.design.parameter_names,
        )


def sample_posterior(
    panel: ChoicePanel,
    initial: npt.NDArray[np.float64],
    n_iterations: int = 11000,
    burn_in: int = 1000,
    proposal_scales: Optional[Sequence[float]] = None,
    prior_scales: Optional[Sequence[float]] = None,
    *,
    n_chains: int = 1,
    init_jitter: float = 0.0,
    seed: int | None = None,
    rng: np.random.Generator | None = None,
) -> PosteriorChain:
    """Run Metropolis-Hastings on ``panel``; see MetropolisHastings.sample."""
    sampler = MetropolisHastings(
        panel, proposal_scales=proposal_scales, prior_scales=prior_scales
    )
    return sampler.sample(
        initial,
        n_iterations=n_iterations,
        burn_in=burn_in,
        n_chains=n_chains,
        init_jitter=init_jitter,
        seed=seed,
        rng=rng,
    )


def compare_estimates(
    mle: MLEResult, chain: PosteriorChain, prob: float = 0.95
) -> pd.DataFrame:
    """Side-by-side MLE and posterior summaries per parameter."""
    if tuple(mle.parameter_names) != tuple(chain.parameter_names):
        raise ValueError("MLE and posterior chain have different parameters")
    lower, upper = chain.credible_interval(prob)
    return pd.DataFrame(
        {
            "mle": mle.estimate,
            "mle_std_err": mle.standard_errors,
            "posterior_mean": chain.mean,
            "posterior_std": chain.std,
            "ci_lower": lower,
            "ci_upper": upper,
        },
        index=pd.Index(chain.parameter_names, name="parameter"),
    )
