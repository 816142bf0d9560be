"""Errors and warnings raised by the estimators."""


class EstimationError(RuntimeError):
    """Raised when a numerical step fails (non-finite likelihood, singular Hessian)."""


class ConvergenceWarning(RuntimeWarning):
    """The optimizer stopped before meeting its convergence criteria."""


class SamplerTuningWarning(RuntimeWarning):
    """Metropolis-Hastings acceptance rate suggests badly scaled proposals."""
