"""Minimal quickstart: simulate a conjoint study, fit by MLE, sample the posterior."""

from __future__ import annotations

import logging

import numpy as np

from conjoint import (
    DEFAULT_TRUE_BETA,
    compare_estimates,
    fit_mle,
    sample_posterior,
    simulate_panel,
)


def main() -> None:
    logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    # 100 respondents x 10 tasks x 3 streaming offers each
    true_beta = np.array(DEFAULT_TRUE_BETA)
    panel = simulate_panel(seed=42, true_beta=true_beta)

    mle = fit_mle(panel)
    print("Maximum likelihood estimates:")
    print(mle.summary().round(4))

    # Start the chain at the MLE; burn-in discards the first 1000 draws
    chain = sample_posterior(
        panel, mle.estimate, n_iterations=11000, burn_in=1000, seed=42
    )
    print(f"\nAcceptance rate: {chain.acceptance_rate:.3f}")
    print("\nPosterior summary:")
    print(chain.summary().round(4))

    print("\nMLE vs posterior:")
    print(compare_estimates(mle, chain).round(4))
    print("\nTrue parameters:", np.array2string(true_beta, precision=4))


if __name__ == "__main__":
    main()
