"""
Conjoint: Multinomial Logit Estimation for Choice Experiments

Simulates conjoint choice panels, fits the multinomial logit by maximum
likelihood, and samples its posterior with Metropolis-Hastings.
"""

from .exceptions import ConvergenceWarning, EstimationError, SamplerTuningWarning
from .model import MLEResult, MultinomialLogit, fit_mle, log_likelihood, standard_errors
from .panel import (
    AttributeDesign,
    ChoicePanel,
    ChoiceTask,
    Profile,
    read_panel,
    write_panel,
)
from .sampler import (
    MetropolisHastings,
    PosteriorChain,
    compare_estimates,
    sample_posterior,
)
from .simulate import DEFAULT_TRUE_BETA, simulate_panel

__all__ = [
    "AttributeDesign",
    "ChoicePanel",
    "ChoiceTask",
    "ConvergenceWarning",
    "DEFAULT_TRUE_BETA",
    "EstimationError",
    "MLEResult",
    "MetropolisHastings",
    "MultinomialLogit",
    "PosteriorChain",
    "Profile",
    "SamplerTuningWarning",
    "compare_estimates",
    "fit_mle",
    "log_likelihood",
    "read_panel",
    "sample_posterior",
    "simulate_panel",
    "standard_errors",
    "write_panel",
]
