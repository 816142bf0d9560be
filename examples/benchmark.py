"""
Benchmark script for conjoint estimation

Times simulation, likelihood evaluation, MLE and Metropolis-Hastings across
panel sizes and reports recovery accuracy against the true part-worths.
"""

import time

import numpy as np

from conjoint import (
    DEFAULT_TRUE_BETA,
    MultinomialLogit,
    fit_mle,
    sample_posterior,
    simulate_panel,
)


def benchmark_estimation(
    n_respondents,
    n_tasks=10,
    n_alternatives=3,
    method="BFGS",
    n_iterations=2000,
    burn_in=500,
    seed=42,
):
    """
    Benchmark a single estimation run.

    Returns:
        dict: Contains timing, accuracy, and convergence information
    """
    true_beta = np.array(DEFAULT_TRUE_BETA)

    t0 = time.time()
    panel = simulate_panel(
        seed,
        true_beta,
        n_respondents=n_respondents,
        n_tasks=n_tasks,
        n_alternatives=n_alternatives,
    )
    sim_time = time.time() - t0

    model = MultinomialLogit(panel.design)
    t0 = time.time()
    _ = model.log_likelihood(np.zeros(model.K), panel)
    likelihood_time = time.time() - t0

    t0 = time.time()
    mle = fit_mle(panel, method=method)
    opt_time = time.time() - t0

    t0 = time.time()
    _ = mle.standard_errors
    se_time = time.time() - t0

    t0 = time.time()
    chain = sample_posterior(
        panel, mle.estimate, n_iterations=n_iterations, burn_in=burn_in, seed=seed
    )
    mcmc_time = time.time() - t0

    errors = mle.estimate - true_beta
    return {
        "n_respondents": n_respondents,
        "n_tasks": n_tasks,
        "n_alternatives": n_alternatives,
        "method": method,
        "sim_time": sim_time,
        "likelihood_time": likelihood_time,
        "opt_time": opt_time,
        "se_time": se_time,
        "mcmc_time": mcmc_time,
        "total_time": sim_time + opt_time + se_time + mcmc_time,
        "success": mle.converged,
        "nit": mle.optimization_result.nit,
        "final_ll": mle.log_likelihood,
        "mae": float(np.mean(np.abs(errors))),
        "max_error": float(np.max(np.abs(errors))),
        "acceptance_rate": chain.acceptance_rate,
        "posterior_gap": float(np.max(np.abs(chain.mean - mle.estimate))),
    }


def print_results(results):
    """Pretty print benchmark results."""
    print("\n" + "=" * 96)
    print(
        f"{'Resp':<7} {'Method':<10} {'Opt(s)':<8} {'MCMC(s)':<8} {'Total(s)':<9} "
        f"{'Iters':<6} {'MAE':<8} {'MaxErr':<8} {'Accept':<7} {'Gap':<8} {'Success':<7}"
    )
    print("=" * 96)

    for r in results:
        print(
            f"{r['n_respondents']:<7} {r['method']:<10} "
            f"{r['opt_time']:<8.3f} {r['mcmc_time']:<8.3f} {r['total_time']:<9.3f} "
            f"{r['nit']:<6} {r['mae']:<8.4f} {r['max_error']:<8.4f} "
            f"{r['acceptance_rate']:<7.3f} {r['posterior_gap']:<8.4f} "
            f"{'yes' if r['success'] else 'no':<7}"
        )
    print("=" * 96)


def main():
    print("Conjoint Estimation Benchmark")

    results = []
    for n_respondents in [100, 500, 2000]:
        print(f"Running: {n_respondents} respondents...", end=" ", flush=True)
        r = benchmark_estimation(n_respondents)
        results.append(r)
        print(f"done ({r['total_time']:.2f}s)")

    for method in ["L-BFGS-B", "Newton-CG"]:
        print(f"Running: {method}...", end=" ", flush=True)
        r = benchmark_estimation(500, method=method)
        results.append(r)
        print(f"done ({r['opt_time']:.2f}s)")

    print_results(results)


if __name__ == "__main__":
    main()
