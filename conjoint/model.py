"""
Multinomial Logit Model

Vectorized likelihood, gradient and Hessian for conjoint choice panels, with
maximum likelihood estimation via scipy.optimize.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

import numpy as np
import numpy.typing as npt
import pandas as pd
from scipy import stats
from scipy.linalg import cho_solve
from scipy.optimize import OptimizeResult, minimize
from scipy.special import logsumexp, softmax

from .exceptions import ConvergenceWarning, EstimationError
from .panel import AttributeDesign, ChoicePanel

logger = logging.getLogger(__name__)

DEFAULT_OPTIONS = {"gtol": 1e-5, "maxiter": 1000}
PRECISION_LOSS_GTOL = 1e-3


class MultinomialLogit:
    """
    Conditional multinomial logit with a linear-in-attributes utility.

    Utility of alternative j in task i is ``X[i, j] @ beta``; choice
    probabilities are the softmax of utilities within each task.

    Attributes:
        design (AttributeDesign): Coding shared with the panels being fitted.
        K (int): Number of parameters.
        coef_ (np.ndarray): Fitted coefficients of shape (K,). Available after fit().
        hessian_ (np.ndarray): Hessian of the negative log-likelihood at coef_.
        optimization_result_ (OptimizeResult): Full optimization result. Available after fit().
        converged_ (bool): Whether the optimizer reached a stationary point.
    """

    def __init__(self, design: AttributeDesign | None = None) -> None:
        self.design = design or AttributeDesign()
        self.K = self.design.num_parameters

        # Fitted attributes (set by fit method)
        self.coef_: npt.NDArray[np.float64] | None = None
        self.hessian_: npt.NDArray[np.float64] | None = None
        self.optimization_result_: OptimizeResult | None = None
        self.converged_: bool = False

    def _check_params(self, flat_beta: Any, name: str = "flat_beta") -> npt.NDArray[np.float64]:
        beta = np.asarray(flat_beta, dtype=np.float64)
        if beta.shape != (self.K,):
            raise ValueError(f"{name} must have size {self.K}, got {beta.size}")
        if not np.all(np.isfinite(beta)):
            raise ValueError(f"{name} must be finite")
        return beta

    def _check_panel(self, panel: ChoicePanel) -> None:
        if panel.design != self.design:
            raise ValueError(
                "panel was built with a different AttributeDesign than the model"
            )

    @staticmethod
    def calculate_utilities(
        X: npt.NDArray[np.float64], flat_beta: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Deterministic utilities V of shape (n_tasks, n_alternatives)."""
        return X @ flat_beta

    def _neg_log_likelihood(
        self,
        flat_beta: npt.NDArray[np.float64],
        X: npt.NDArray[np.float64],
        chosen: npt.NDArray[np.int64],
    ) -> float:
        """
        Internal NLL on pre-built arrays, no validation.
        """
        V = self.calculate_utilities(X, flat_beta)
        rows = np.arange(V.shape[0])
        # logsumexp subtracts the row max before exponentiating
        return -float(np.sum(V[rows, chosen] - logsumexp(V, axis=1)))

    def _gradient(
        self,
        flat_beta: npt.NDArray[np.float64],
        X: npt.NDArray[np.float64],
        chosen: npt.NDArray[np.int64],
    ) -> npt.NDArray[np.float64]:
        """
        Internal gradient of the NLL: -sum_i (x_i,chosen - sum_j P_ij x_ij).
        """
        probs = softmax(self.calculate_utilities(X, flat_beta), axis=1)
        rows = np.arange(X.shape[0])
        x_bar = np.einsum("nj,njk->nk", probs, X)
        return -np.sum(X[rows, chosen] - x_bar, axis=0)

    def _hessian(
        self,
        flat_beta: npt.NDArray[np.float64],
        X: npt.NDArray[np.float64],
        chosen: npt.NDArray[np.int64],
    ) -> npt.NDArray[np.float64]:
        """
        Internal analytic Hessian of the NLL:
        sum_i sum_j P_ij (x_ij - x_bar_i)(x_ij - x_bar_i)^T.

        Does not depend on which alternative was chosen.
        """
        probs = softmax(self.calculate_utilities(X, flat_beta), axis=1)
        x_bar = np.einsum("nj,njk->nk", probs, X)
        centered = X - x_bar[:, np.newaxis, :]
        return np.einsum("nj,njk,njl->kl", probs, centered, centered)

    def log_likelihood_contributions(
        self, flat_beta: npt.NDArray[np.float64], panel: ChoicePanel
    ) -> npt.NDArray[np.float64]:
        """
        Return per-task log-likelihood contributions.

        Args:
            flat_beta: Parameter vector (K,).
            panel: Choice panel.

        Returns:
            Vector of per-task log probabilities of the chosen alternative (n_tasks,).
        """
        self._check_panel(panel)
        beta = self._check_params(flat_beta)
        V = self.calculate_utilities(panel.X, beta)
        rows = np.arange(V.shape[0])
        return V[rows, panel.chosen] - logsumexp(V, axis=1)

    def log_likelihood(
        self, flat_beta: npt.NDArray[np.float64], panel: ChoicePanel
    ) -> float:
        """
        Total log-likelihood of the panel.

        Raises:
            ValueError: If flat_beta has the wrong size or is not finite.
            EstimationError: If the result is not finite.
        """
        total = float(np.sum(self.log_likelihood_contributions(flat_beta, panel)))
        if not np.isfinite(total):
            raise EstimationError(f"Log-likelihood is not finite ({total})")
        return total

    def neg_log_likelihood(
        self, flat_beta: npt.NDArray[np.float64], panel: ChoicePanel
    ) -> float:
        return -self.log_likelihood(flat_beta, panel)

    def gradient(
        self, flat_beta: npt.NDArray[np.float64], panel: ChoicePanel
    ) -> npt.NDArray[np.float64]:
        """
        Computes the analytical gradient of the negative log-likelihood.

        Args:
            flat_beta: Parameter vector (K,).
            panel: Choice panel.

        Returns:
            Gradient vector (K,).
        """
        self._check_panel(panel)
        beta = self._check_params(flat_beta)
        return self._gradient(beta, panel.X, panel.chosen)

    def hessian(
        self, flat_beta: npt.NDArray[np.float64], panel: ChoicePanel
    ) -> npt.NDArray[np.float64]:
        """Analytic Hessian (K, K) of the negative log-likelihood."""
        self._check_panel(panel)
        beta = self._check_params(flat_beta)
        return self._hessian(beta, panel.X, panel.chosen)

    def predict_proba(
        self,
        panel: ChoicePanel,
        flat_beta: Optional[npt.NDArray[np.float64]] = None,
    ) -> npt.NDArray[np.float64]:
        """
        Choice probabilities for every alternative of every task.

        Args:
            panel: Choice panel.
            flat_beta: Optional parameter vector (K,). Uses fitted coef_ if None.

        Returns:
            (n_tasks, n_alternatives) softmax probabilities; rows sum to 1.

        Raises:
            ValueError: If the model is unfitted and no parameters are provided.
        """
        if flat_beta is None:
            if self.coef_ is None:
                raise ValueError("Model is not fitted. Provide flat_beta or call fit.")
            flat_beta = self.coef_
        self._check_panel(panel)
        beta = self._check_params(flat_beta)
        return softmax(self.calculate_utilities(panel.X, beta), axis=1)

    def fit(
        self,
        panel: ChoicePanel,
        init_beta: Optional[npt.NDArray[np.float64]] = None,
        method: str = "BFGS",
        options: Optional[dict[str, Any]] = None,
        num_restarts: int = 0,
        restart_scale: float = 0.5,
        rng: Optional[np.random.Generator] = None,
    ) -> "MultinomialLogit":
        """
        Fit the model by maximum likelihood.

        Wraps scipy.optimize.minimize with the analytic gradient. A run that
        stops without meeting the optimizer's convergence criteria is not
        fatal: a ConvergenceWarning is emitted and the best estimate is kept.
        A line-search stall (status 2) with a gradient below
        PRECISION_LOSS_GTOL counts as converged.

        Args:
            panel (ChoicePanel): Data to fit.
            init_beta (np.ndarray, optional): Starting values (K,). Zeros if None.
            method (str): Optimization method for scipy.optimize.minimize. Default is 'BFGS'.
            options (dict, optional): Optimizer options. Default is DEFAULT_OPTIONS.
            num_restarts (int): Number of random restarts to perform beyond init_beta.
            restart_scale (float): Scale of normal noise for restart initialization.
            rng (np.random.Generator, optional): Random generator for restarts.

        Returns:
            self: Returns the instance itself for method chaining.

        Raises:
            ValueError: If the panel or init_beta is incompatible with the model.
            EstimationError: If the best run has a non-finite objective or estimate.

        Example:
            >>> from conjoint import MultinomialLogit, simulate_panel
            >>> panel = simulate_panel(seed=42)
            >>> model = MultinomialLogit().fit(panel)
            >>> print(model.coef_)
        """
        self._check_panel(panel)
        if options is None:
            options = dict(DEFAULT_OPTIONS)
        if num_restarts < 0:
            raise ValueError(f"num_restarts must be >= 0, got {num_restarts}")

        if init_beta is None:
            init_beta = np.zeros(self.K)
        else:
            init_beta = self._check_params(init_beta, name="init_beta")

        rng = rng or np.random.default_rng()
        X, chosen = panel.X, panel.chosen

        def run_optimization(start_beta: npt.NDArray[np.float64]) -> OptimizeResult:
            return minimize(
                fun=self._neg_log_likelihood,
                jac=self._gradient,
                x0=start_beta,
                args=(X, chosen),
                method=method,
                options=options,
            )

        start_points = [init_beta]
        if num_restarts > 0:
            noise = rng.normal(scale=restart_scale, size=(num_restarts, self.K))
            start_points.extend(init_beta + noise_i for noise_i in noise)

        best_result: OptimizeResult | None = None
        for start in start_points:
            result = run_optimization(start)
            if best_result is None or _improves(result, best_result):
                best_result = result

        assert best_result is not None

        coef = np.array(best_result.x, dtype=np.float64)
        if not (np.isfinite(best_result.fun) and np.all(np.isfinite(coef))):
            raise EstimationError(
                f"Estimation failed: optimizer returned a non-finite objective "
                f"({best_result.fun}) or estimate ({coef})."
            )

        converged = self._converged(best_result, X, chosen)
        if not converged:
            warnings.warn(
                f"Optimization did not converge: {best_result.message} "
                f"Returning the best estimate found.",
                ConvergenceWarning,
                stacklevel=2,
            )

        self.coef_ = coef
        self.hessian_ = self._hessian(coef, X, chosen)
        self.optimization_result_ = best_result
        self.converged_ = converged
        logger.debug(
            "MLE finished after %s iterations: converged=%s, nll=%.4f",
            best_result.get("nit"),
            converged,
            best_result.fun,
        )
        return self

    def _converged(
        self,
        result: OptimizeResult,
        X: npt.NDArray[np.float64],
        chosen: npt.NDArray[np.int64],
    ) -> bool:
        if result.success:
            return True
        # Status 2 is a stalled line search; at the optimum of a steep price
        # direction this happens once the objective is flat to rounding error
        if result.get("status") == 2:
            grad = self._gradient(np.asarray(result.x, dtype=np.float64), X, chosen)
            return bool(np.max(np.abs(grad)) < PRECISION_LOSS_GTOL)
        return False

    def compute_standard_errors(
        self,
        panel: ChoicePanel,
        flat_beta: Optional[npt.NDArray[np.float64]] = None,
    ) -> npt.NDArray[np.float64]:
        """
        Standard errors from the inverse analytic Hessian.

        Raises:
            ValueError: If the model is unfitted and no parameters are provided.
            EstimationError: If the Hessian is not positive definite.
        """
        if flat_beta is None:
            if self.coef_ is None:
                raise ValueError("Model is not fitted. Provide flat_beta or call fit.")
            flat_beta = self.coef_
        return standard_errors(self.hessian(flat_beta, panel))

    def get_result(self) -> "MLEResult":
        """Package the fitted state as an MLEResult."""
        if self.coef_ is None or self.optimization_result_ is None:
            raise ValueError("Model is not fitted. Call fit first.")
        assert self.hessian_ is not None
        return MLEResult(
            estimate=self.coef_.copy(),
            hessian=self.hessian_.copy(),
            log_likelihood=-float(self.optimization_result_.fun),
            parameter_names=self.design.parameter_names,
            optimization_result=self.optimization_result_,
            converged=self.converged_,
        )


def _improves(result: OptimizeResult, best: OptimizeResult) -> bool:
    """Finite objectives beat non-finite ones; otherwise lower wins."""
    if not np.isfinite(result.fun):
        return False
    return not np.isfinite(best.fun) or result.fun < best.fun


def covariance_matrix(hessian: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """
    Invert a negative log-likelihood Hessian via its Cholesky factor.

    Raises:
        EstimationError: If the Hessian is non-finite or not positive definite.
    """
    H = np.asarray(hessian, dtype=np.float64)
    if H.ndim != 2 or H.shape[0] != H.shape[1]:
        raise ValueError(f"hessian must be a square matrix, got shape {H.shape}")
    if not np.all(np.isfinite(H)):
        raise EstimationError("Hessian contains non-finite entries")
    try:
        lower = np.linalg.cholesky(H)
    except np.linalg.LinAlgError as exc:
        raise EstimationError(
            "Hessian is not positive definite; the model may be unidentified "
            "at this estimate"
        ) from exc
    return cho_solve((lower, True), np.eye(H.shape[0]))


def standard_errors(hessian: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """Square roots of the diagonal of the inverse Hessian."""
    return np.sqrt(np.diag(covariance_matrix(hessian)))


@dataclass(frozen=True, eq=False)
class MLEResult:
    """
    Point estimate and curvature from fit_mle.

    Unpacks as ``estimate, hessian = fit_mle(panel)``. Standard errors are
    derived on access and raise EstimationError when the Hessian cannot be
    inverted.
    """

    estimate: npt.NDArray[np.float64]
    hessian: npt.NDArray[np.float64]
    log_likelihood: float
    parameter_names: tuple[str, ...]
    optimization_result: OptimizeResult = field(repr=False, compare=False)
    converged: bool = True

    def __iter__(self) -> Iterator[npt.NDArray[np.float64]]:
        yield self.estimate
        yield self.hessian

    @property
    def covariance(self) -> npt.NDArray[np.float64]:
        return covariance_matrix(self.hessian)

    @property
    def standard_errors(self) -> npt.NDArray[np.float64]:
        return standard_errors(self.hessian)

    def summary(self, level: float = 0.95) -> pd.DataFrame:
        """
        Coefficient table with Wald statistics.

        Columns: estimate, std_err, z, p_value, ci_lower, ci_upper.
        """
        if not 0 < level < 1:
            raise ValueError(f"level must be in (0, 1), got {level}")
        se = self.standard_errors
        z = self.estimate / se
        crit = stats.norm.ppf(0.5 + level / 2)
        return pd.DataFrame(
            {
                "estimate": self.estimate,
                "std_err": se,
                "z": z,
                "p_value": 2 * stats.norm.sf(np.abs(z)),
                "ci_lower": self.estimate - crit * se,
                "ci_upper": self.estimate + crit * se,
            },
            index=pd.Index(self.parameter_names, name="parameter"),
        )


def log_likelihood(params: npt.NDArray[np.float64], panel: ChoicePanel) -> float:
    """Multinomial-logit log-likelihood of ``params`` given ``panel``."""
    return MultinomialLogit(panel.design).log_likelihood(params, panel)


def fit_mle(
    panel: ChoicePanel,
    initial: Optional[npt.NDArray[np.float64]] = None,
    *,
    method: str = "BFGS",
    options: Optional[dict[str, Any]] = None,
    num_restarts: int = 0,
    restart_scale: float = 0.5,
    rng: Optional[np.random.Generator] = None,
) -> MLEResult:
    """
    Maximum likelihood estimate and Hessian for ``panel``.

    See MultinomialLogit.fit for the arguments.
    """
    model = MultinomialLogit(panel.design).fit(
        panel,
        init_beta=initial,
        method=method,
        options=options,
        num_restarts=num_restarts,
        restart_scale=restart_scale,
        rng=rng,
    )
    return model.get_result()
